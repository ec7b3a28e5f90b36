"""Integration tests for the Evidence Core API.

These tests drive the HTTP endpoints against a per-test SQLite database.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from uuid6 import uuid7

pytestmark = pytest.mark.asyncio

API = "/api/v1"


# =============================================================================
# Helpers
# =============================================================================


async def register_source(client: AsyncClient, src_id: str = "SRC-001", tier: str = "T1") -> dict:
    response = await client.post(
        f"{API}/registry/sources",
        params={"actor": "steward"},
        json={"src_id": src_id, "name_en": "Central Bank of Yemen - Aden", "tier": tier, "cadence": "DAILY"},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def start_run(client: AsyncClient, source_id: str) -> dict:
    response = await client.post(f"{API}/ingestion/runs", json={"source_id": source_id})
    assert response.status_code == 201, response.text
    return response.json()


async def create_series(client: AsyncClient, source_id: str) -> dict:
    response = await client.post(
        f"{API}/series",
        json={
            "indicator_code": "FX_RATE_PARALLEL",
            "geo_code": "YE",
            "regime": "IRG_ADEN",
            "source_id": source_id,
            "frequency": "DAILY",
            "unit": "YER/USD",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def put_observation(client: AsyncClient, series_id: str, source_id: str, run_id: str, value, vintage: str) -> dict:
    response = await client.post(
        f"{API}/series/{series_id}/observations",
        json={
            "obs_date": "2024-01-01",
            "value": value,
            "vintage_date": vintage,
            "source_id": source_id,
            "run_id": run_id,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Health & Root Tests
# =============================================================================


class TestHealthEndpoints:
    """Tests for health and root endpoints."""

    async def test_health_check(self, async_client: AsyncClient) -> None:
        """Test health endpoint returns healthy status."""
        response = await async_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    async def test_root_endpoint(self, async_client: AsyncClient) -> None:
        """Test root endpoint returns API info."""
        response = await async_client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Evidence Core API"


# =============================================================================
# Registry and Ingestion
# =============================================================================


class TestRegistryAPI:
    """Tests for the source registry endpoints."""

    async def test_register_is_idempotent(self, async_client: AsyncClient) -> None:
        first = await register_source(async_client)
        second = await register_source(async_client)

        assert first["id"] == second["id"]
        assert first["tier"] == "T1"
        assert first["active"] is True

    async def test_unknown_source_is_404(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{API}/registry/sources/{uuid7()}")

        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "NotFound"
        assert data["details"]["kind"] == "source"

    async def test_default_policy(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{API}/registry/policies/daily_brief")

        assert response.status_code == 200
        assert response.json()["approval_mode"] == "AUTOMATED"


class TestIngestionAPI:
    """Tests for ingestion run endpoints."""

    async def test_complete_twice_is_conflict(self, async_client: AsyncClient) -> None:
        source = await register_source(async_client)
        run = await start_run(async_client, source["id"])

        first = await async_client.post(f"{API}/ingestion/runs/{run['id']}/complete", json={"status": "SUCCESS"})
        assert first.status_code == 200
        assert first.json()["status"] == "SUCCESS"

        second = await async_client.post(f"{API}/ingestion/runs/{run['id']}/complete", json={"status": "FAILED"})
        assert second.status_code == 409
        assert second.json()["error"] == "AlreadySealed"

    async def test_run_for_unknown_source_is_422(self, async_client: AsyncClient) -> None:
        response = await async_client.post(f"{API}/ingestion/runs", json={"source_id": str(uuid7())})

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidReference"


# =============================================================================
# Series and Lineage
# =============================================================================


class TestSeriesAPI:
    """Tests for versioned observation endpoints."""

    async def test_point_in_time_reads(self, async_client: AsyncClient) -> None:
        source = await register_source(async_client)
        run = await start_run(async_client, source["id"])
        series = await create_series(async_client, source["id"])

        await put_observation(async_client, series["id"], source["id"], run["id"], 100, "2024-01-05")
        correction = await put_observation(async_client, series["id"], source["id"], run["id"], 105, "2024-01-05")
        assert correction["revision_no"] == 1

        known = await async_client.get(
            f"{API}/series/{series['id']}/observations/as-of",
            params={"obs_date": "2024-01-01", "as_of_date": "2024-01-10"},
        )
        assert known.status_code == 200
        assert Decimal(str(known.json()["value"])) == Decimal("105")

        unknown = await async_client.get(
            f"{API}/series/{series['id']}/observations/as-of",
            params={"obs_date": "2024-01-01", "as_of_date": "2024-01-04"},
        )
        assert unknown.status_code == 404

    async def test_observation_lineage(self, async_client: AsyncClient) -> None:
        source = await register_source(async_client)
        run = await start_run(async_client, source["id"])
        series = await create_series(async_client, source["id"])
        observation = await put_observation(async_client, series["id"], source["id"], run["id"], 1530, "2024-01-05")

        response = await async_client.get(f"{API}/lineage/observation:{observation['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["cycles_detected"] == 0
        assert [e["action"] for e in data["entries"]] == ["NORMALIZE", "INGEST"]

    async def test_ledger_entry_with_unknown_reference_is_422(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"{API}/lineage/entries",
            json={"action": "DERIVE", "inputs": [f"observation:{uuid7()}"], "outputs": []},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "InvalidReference"

    async def test_malformed_reference_is_422(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{API}/lineage/not-a-ref")
        assert response.status_code == 422


# =============================================================================
# Content
# =============================================================================


class TestContentAPI:
    """Tests for drafting and the approval stage endpoints."""

    async def test_draft_flow(self, async_client: AsyncClient) -> None:
        source = await register_source(async_client)
        run = await start_run(async_client, source["id"])
        series = await create_series(async_client, source["id"])
        observation = await put_observation(async_client, series["id"], source["id"], run["id"], 1530, "2024-01-05")

        created = await async_client.post(
            f"{API}/content",
            json={
                "content_type": "daily_brief",
                "title_en": "Parallel exchange rate",
                "body_en": "The parallel rate stood at 1530 rials per dollar.",
                "claims": [{"claim_text": "Rate was 1530", "observation_id": observation["id"]}],
            },
        )
        assert created.status_code == 201, created.text
        item = created.json()
        assert item["status"] == "DRAFT"
        assert len(item["evidence"]) == 1

        early = await async_client.post(f"{API}/content/{item['id']}/stages/DRAFTING")
        assert early.status_code == 409

        submitted = await async_client.post(f"{API}/content/{item['id']}/submit", json={"actor": "editor"})
        assert submitted.status_code == 200
        assert submitted.json()["review_round"] == 1

        skipped = await async_client.post(f"{API}/content/{item['id']}/stages/EVIDENCE")
        assert skipped.status_code == 409
        assert skipped.json()["error"] == "InvalidStateTransition"

        drafting = await async_client.post(f"{API}/content/{item['id']}/stages/DRAFTING")
        assert drafting.status_code == 200
        assert drafting.json()["result"] == "PASS"

        stage = await async_client.get(f"{API}/content/{item['id']}/stage")
        assert stage.json()["stage"] == "EVIDENCE"
        assert stage.json()["state"] == "IN_STAGE"

        runs = await async_client.get(f"{API}/content/{item['id']}/runs")
        assert [r["stage"] for r in runs.json()] == ["DRAFTING"]

    async def test_unknown_content_item_is_404(self, async_client: AsyncClient) -> None:
        response = await async_client.get(f"{API}/content/{uuid7()}/stage")
        assert response.status_code == 404
