"""Unit tests for settings, logging helpers and the documented API surface."""

import pytest
import structlog
from fastapi.testclient import TestClient

from evidence_core.core.config import Settings, get_settings
from evidence_core.core.logging import SERVICE_NAME, add_service_info, log_context


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.environment == "development"
        assert settings.postgres_user == "evidence"
        assert settings.postgres_db == "evidence_core"
        assert settings.contradiction_default_threshold == 0.15
        assert settings.default_min_citations == 3
        assert settings.compliance_provider == "mock"

    def test_db_url_assembled_from_parts(self) -> None:
        settings = Settings(
            _env_file=None,
            postgres_user="steward",
            postgres_password="secret",
            postgres_host="db",
            postgres_port=5433,
            postgres_db="yemen",
        )
        assert settings.db_url == "postgresql+asyncpg://steward:secret@db:5433/yemen"
        assert settings.db_url_sync == "postgresql://steward:secret@db:5433/yemen"

    def test_celery_urls_fall_back_to_redis(self) -> None:
        settings = Settings(_env_file=None, redis_host="cache", redis_port=6380)
        assert settings.celery_broker == "redis://cache:6380/0"
        assert settings.celery_backend == "redis://cache:6380/0"

        explicit = Settings(_env_file=None, celery_broker_url="memory://")
        assert explicit.celery_broker == "memory://"

    def test_cors_origins_split_on_commas(self) -> None:
        settings = Settings(_env_file=None, cors_origins="http://a.com, http://b.com,")
        assert settings.cors_origins == ["http://a.com", "http://b.com"]

    def test_environment_flags(self) -> None:
        assert Settings(_env_file=None).is_development is True
        prod = Settings(_env_file=None, environment="production")
        assert prod.is_production is True
        assert prod.is_development is False

    def test_revision_attempts_are_bounded(self) -> None:
        assert Settings(_env_file=None, revision_write_max_attempts=10).revision_write_max_attempts == 10

        with pytest.raises(ValueError):
            Settings(_env_file=None, revision_write_max_attempts=0)
        with pytest.raises(ValueError):
            Settings(_env_file=None, revision_write_max_attempts=50)

    def test_coverage_is_a_fraction(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, default_min_evidence_coverage=1.5)

    def test_http_screening_requires_url(self) -> None:
        with pytest.raises(ValueError, match="compliance_api_url"):
            Settings(_env_file=None, compliance_provider="http")

        settings = Settings(_env_file=None, compliance_provider="http", compliance_api_url="https://screen.test")
        assert settings.compliance_api_url == "https://screen.test"

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestLoggingHelpers:
    def test_service_info_does_not_override_explicit_values(self) -> None:
        event = add_service_info(None, "info", {"event": "x", "environment": "ci"})
        assert event["service"] == SERVICE_NAME
        assert event["environment"] == "ci"

    def test_log_context_is_scoped_to_block(self) -> None:
        structlog.contextvars.clear_contextvars()
        with log_context(content_item_id="abc", stage="EVIDENCE"):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"content_item_id": "abc", "stage": "EVIDENCE"}
        assert structlog.contextvars.get_contextvars() == {}


class TestOpenAPISchema:
    def test_routes_documented(self, client: TestClient) -> None:
        response = client.get("/openapi.json")
        assert response.status_code == 200
        schema = response.json()
        assert schema["info"]["title"] == "Evidence Core API"
        assert "/api/v1/series/{series_id}/observations/as-of" in schema["paths"]
        assert "/api/v1/content/{content_item_id}/stages/{stage}" in schema["paths"]

    def test_engine_errors_documented(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()
        responses = schema["paths"]["/api/v1/registry/sources/{source_id}"]["get"]["responses"]
        assert {"404", "409", "422"} <= set(responses)
        assert "ErrorResponse" in schema["components"]["schemas"]
