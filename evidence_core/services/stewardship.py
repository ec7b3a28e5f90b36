"""
Stewardship service for the source registry and approval policies.

Stewardship is the only writer of source tier/status and of approval
policies. Every mutation writes an AuditLog row with the record state
before and after; sources are never deleted, only deactivated.
"""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.config import settings
from evidence_core.core.exceptions import NotFound
from evidence_core.core.logging import get_logger
from evidence_core.db.enums import ApprovalStage, Frequency, SourceStatus, SourceTier
from evidence_core.db.models import ApprovalPolicy, AuditAction, AuditLog, Source

logger = get_logger(__name__)

POLICY_THRESHOLDS = ("min_citations", "min_evidence_coverage", "max_similarity_score", "max_variance_flag")


def default_policy(content_type: str) -> ApprovalPolicy:
    """A transient policy built from settings; never added to a session."""
    return ApprovalPolicy(
        content_type=content_type,
        approval_mode="AUTOMATED",
        min_citations=settings.default_min_citations,
        min_evidence_coverage=settings.default_min_evidence_coverage,
        max_similarity_score=settings.default_max_similarity_score,
        max_variance_flag=settings.default_max_variance_flag,
        rules={},
    )


class StewardshipService:
    """
    Registry and policy edits with an audit trail.

    Usage:
        steward = StewardshipService(db, actor="data-steward")
        source = await steward.register_source("SRC-001", "Central Bank of Yemen", tier=SourceTier.T1)
        await steward.set_source_tier(source.id, SourceTier.T2, reason="Methodology change")
        await db.commit()
    """

    def __init__(self, db: AsyncSession, actor: str | None = None):
        self.db = db
        self.actor = actor

    def _audit(self, audit: AuditLog) -> None:
        self.db.add(audit)

    # =========================================================================
    # Sources
    # =========================================================================

    async def register_source(
        self,
        src_id: str,
        name_en: str,
        tier: SourceTier = SourceTier.UNKNOWN,
        status: SourceStatus = SourceStatus.ACTIVE,
        cadence: Frequency | None = None,
        name_ar: str | None = None,
        url: str | None = None,
        description: str | None = None,
    ) -> Source:
        """
        Register a source, or return the existing one with this src_id.

        An existing registration is returned unchanged.
        """
        existing = await self.get_source_by_src_id(src_id)
        if existing is not None:
            return existing

        source = Source(
            src_id=src_id,
            name_en=name_en,
            name_ar=name_ar,
            tier=tier,
            status=status,
            active=True,
            cadence=cadence,
            url=url,
            description=description,
        )
        self.db.add(source)
        await self.db.flush()
        self._audit(AuditLog.create_insert("sources", source.id, source.to_dict(), actor=self.actor))
        await self.db.flush()

        logger.info("Source registered", src_id=src_id, tier=tier.value)
        return source

    async def get_source(self, source_id: uuid.UUID) -> Source:
        """
        Raises:
            NotFound: If no such source exists
        """
        source = await self.db.get(Source, source_id)
        if source is None:
            raise NotFound("source", source_id)
        return source

    async def get_source_by_src_id(self, src_id: str) -> Source | None:
        result = await self.db.execute(select(Source).where(Source.src_id == src_id))
        return result.scalar_one_or_none()

    async def set_source_tier(self, source_id: uuid.UUID, tier: SourceTier, reason: str | None = None) -> Source:
        source = await self.get_source(source_id)
        before = source.to_dict()
        source.tier = tier
        await self.db.flush()
        self._audit(
            AuditLog.create_update("sources", source.id, before, source.to_dict(), actor=self.actor, reason=reason)
        )
        await self.db.flush()
        logger.info("Source tier changed", src_id=source.src_id, old=before["tier"], new=tier.value)
        return source

    async def set_source_status(self, source_id: uuid.UUID, status: SourceStatus, reason: str | None = None) -> Source:
        source = await self.get_source(source_id)
        before = source.to_dict()
        source.status = status
        await self.db.flush()
        self._audit(
            AuditLog.create_update(
                "sources",
                source.id,
                before,
                source.to_dict(),
                actor=self.actor,
                reason=reason,
                action=AuditAction.STATUS_CHANGE,
            )
        )
        await self.db.flush()
        logger.info("Source status changed", src_id=source.src_id, old=before["status"], new=status.value)
        return source

    async def deactivate_source(self, source_id: uuid.UUID, reason: str | None = None) -> Source:
        """Mark a source inactive. Its series, runs and observations are kept."""
        source = await self.get_source(source_id)
        before = source.to_dict()
        source.active = False
        source.status = SourceStatus.INACTIVE
        await self.db.flush()
        self._audit(
            AuditLog.create_update(
                "sources",
                source.id,
                before,
                source.to_dict(),
                actor=self.actor,
                reason=reason,
                action=AuditAction.DEACTIVATE,
            )
        )
        await self.db.flush()
        logger.info("Source deactivated", src_id=source.src_id, reason=reason)
        return source

    # =========================================================================
    # Approval Policies
    # =========================================================================

    async def upsert_policy(
        self,
        content_type: str,
        approval_mode: str | None = None,
        rules: dict[str, Any] | None = None,
        reason: str | None = None,
        **thresholds: float,
    ) -> ApprovalPolicy:
        """
        Create or update the policy of a content type.

        Thresholds not given keep their current value (or the settings
        default for a new policy).

        Raises:
            ValueError: On an unknown threshold name or skippable stage
        """
        unknown = set(thresholds) - set(POLICY_THRESHOLDS)
        if unknown:
            raise ValueError(f"Unknown policy thresholds: {sorted(unknown)}")
        for stage in (rules or {}).get("skippable_stages", []):
            ApprovalStage(stage)

        result = await self.db.execute(select(ApprovalPolicy).where(ApprovalPolicy.content_type == content_type))
        policy = result.scalar_one_or_none()

        if policy is None:
            policy = default_policy(content_type)
            before = None
            self.db.add(policy)
        else:
            before = policy.to_dict()

        for name, value in thresholds.items():
            setattr(policy, name, value)
        if approval_mode is not None:
            policy.approval_mode = approval_mode
        if rules is not None:
            policy.rules = rules
        await self.db.flush()

        if before is None:
            self._audit(AuditLog.create_insert("approval_policies", policy.id, policy.to_dict(), actor=self.actor))
        else:
            self._audit(
                AuditLog.create_update(
                    "approval_policies", policy.id, before, policy.to_dict(), actor=self.actor, reason=reason
                )
            )
        await self.db.flush()

        logger.info("Approval policy saved", content_type=content_type, created=before is None)
        return policy

    async def get_policy(self, content_type: str) -> ApprovalPolicy:
        """
        The stored policy of a content type, or the settings defaults.

        The fallback is not persisted.
        """
        result = await self.db.execute(select(ApprovalPolicy).where(ApprovalPolicy.content_type == content_type))
        policy = result.scalar_one_or_none()
        if policy is None:
            logger.debug("No stored policy, using defaults", content_type=content_type)
            return default_policy(content_type)
        return policy

    # =========================================================================
    # Audit Trail
    # =========================================================================

    async def audit_trail(self, table_name: str, record_id: uuid.UUID) -> list[AuditLog]:
        """Audit entries of one record, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.table_name == table_name, AuditLog.record_id == record_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
