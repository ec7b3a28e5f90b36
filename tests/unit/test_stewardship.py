"""Unit tests for source registry and approval policy stewardship."""

import pytest
from sqlalchemy import func, select
from uuid6 import uuid7

from evidence_core.core.config import settings
from evidence_core.core.exceptions import NotFound
from evidence_core.db.enums import ApprovalStage, SourceStatus, SourceTier
from evidence_core.db.models import ApprovalPolicy, AuditAction, Source
from evidence_core.services import StewardshipService

pytestmark = pytest.mark.asyncio


class TestSources:
    """Tests for source registration and audited edits."""

    async def test_register_is_idempotent(self, db_session) -> None:
        steward = StewardshipService(db_session, actor="steward")
        first = await steward.register_source("SRC-010", "World Bank", tier=SourceTier.T1)
        second = await steward.register_source("SRC-010", "Renamed", tier=SourceTier.T3)

        assert first.id == second.id
        assert second.name_en == "World Bank"
        assert second.tier == SourceTier.T1

        count = await db_session.scalar(select(func.count()).select_from(Source))
        assert count == 1

        trail = await steward.audit_trail("sources", first.id)
        assert [entry.action for entry in trail] == [AuditAction.CREATE.value]
        assert trail[0].actor == "steward"
        assert trail[0].new_data["src_id"] == "SRC-010"

    async def test_tier_change_is_audited(self, db_session, source: Source) -> None:
        steward = StewardshipService(db_session, actor="steward")

        await steward.set_source_tier(source.id, SourceTier.T2, reason="Methodology change")

        trail = await steward.audit_trail("sources", source.id)
        change = trail[-1]
        assert change.action == AuditAction.UPDATE.value
        assert change.old_data["tier"] == "T1"
        assert change.new_data["tier"] == "T2"
        assert change.reason == "Methodology change"

    async def test_status_change_is_audited(self, db_session, source: Source) -> None:
        steward = StewardshipService(db_session, actor="steward")

        await steward.set_source_status(source.id, SourceStatus.NEEDS_KEY)

        change = (await steward.audit_trail("sources", source.id))[-1]
        assert change.action == AuditAction.STATUS_CHANGE.value
        assert (change.old_data["status"], change.new_data["status"]) == ("ACTIVE", "NEEDS_KEY")

    async def test_deactivate_keeps_the_row(self, db_session, source: Source) -> None:
        steward = StewardshipService(db_session, actor="steward")

        deactivated = await steward.deactivate_source(source.id, reason="Publisher closed")

        assert deactivated.active is False
        assert deactivated.status == SourceStatus.INACTIVE
        assert await db_session.get(Source, source.id) is not None
        assert (await steward.audit_trail("sources", source.id))[-1].action == AuditAction.DEACTIVATE.value

    async def test_unknown_source(self, db_session) -> None:
        with pytest.raises(NotFound):
            await StewardshipService(db_session).set_source_tier(uuid7(), SourceTier.T2)


class TestPolicies:
    """Tests for approval policy edits."""

    async def test_default_policy_is_not_persisted(self, db_session) -> None:
        policy = await StewardshipService(db_session).get_policy("daily_brief")

        assert policy.min_citations == settings.default_min_citations
        assert policy.min_evidence_coverage == settings.default_min_evidence_coverage
        assert policy.approval_mode == "AUTOMATED"

        count = await db_session.scalar(select(func.count()).select_from(ApprovalPolicy))
        assert count == 0

    async def test_upsert_keeps_unspecified_thresholds(self, db_session) -> None:
        steward = StewardshipService(db_session, actor="steward")
        created = await steward.upsert_policy("sitrep", min_citations=5)
        updated = await steward.upsert_policy(
            "sitrep", approval_mode="HUMAN_FINAL", rules={"skippable_stages": ["AR_COPY"]}, reason="Board request"
        )

        assert created.id == updated.id
        assert updated.min_citations == 5
        assert updated.max_similarity_score == settings.default_max_similarity_score
        assert updated.skippable_stages == {ApprovalStage.AR_COPY}

        trail = await steward.audit_trail("approval_policies", updated.id)
        assert [entry.action for entry in trail] == [AuditAction.CREATE.value, AuditAction.UPDATE.value]
        assert trail[-1].old_data["approval_mode"] == "AUTOMATED"
        assert trail[-1].new_data["approval_mode"] == "HUMAN_FINAL"

    async def test_unknown_threshold_rejected(self, db_session) -> None:
        with pytest.raises(ValueError, match="min_words"):
            await StewardshipService(db_session).upsert_policy("sitrep", min_words=300)

    async def test_unknown_skippable_stage_rejected(self, db_session) -> None:
        with pytest.raises(ValueError):
            await StewardshipService(db_session).upsert_policy("sitrep", rules={"skippable_stages": ["FR_COPY"]})
