"""
Source model for registered evidence providers.

Sources are the root of every lineage chain: each ingestion run pulls
from exactly one source, and each observation cites exactly one source.

Key features:
- Stable external identifier (src_id, e.g. "SRC-001")
- Reliability tier (T1/T2/T3/UNKNOWN) consulted by contradiction detection
- Operating status and nominal cadence
- Never deleted: stewardship deactivates instead
"""

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, JSONType, TimestampMixin, UUIDMixin
from evidence_core.db.enums import Frequency, SourceStatus, SourceTier


class Source(UUIDMixin, TimestampMixin, Base):
    """
    A registered evidence provider.

    Attributes:
        id: UUID7 primary key
        src_id: Stable external identifier, immutable once registered
        name_en: English display name
        name_ar: Arabic display name
        tier: Reliability tier (mutated only by stewardship)
        status: Operating status (mutated only by stewardship)
        active: False once deactivated
        cadence: Nominal publication cadence
        url: Landing page of the provider
        extra_data: Free-form registry metadata

    Example:
        source = Source(
            src_id="SRC-001",
            name_en="Central Bank of Yemen - Aden",
            tier=SourceTier.T1,
            cadence=Frequency.MONTHLY,
        )
    """

    # === Identity ===
    src_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Stable external identifier (SRC-001 etc.)",
    )

    name_en: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="English display name",
    )

    name_ar: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Arabic display name",
    )

    # === Stewardship Fields ===
    tier: Mapped[SourceTier] = mapped_column(
        nullable=False,
        default=SourceTier.UNKNOWN,
        comment="Reliability tier",
    )

    status: Mapped[SourceStatus] = mapped_column(
        nullable=False,
        default=SourceStatus.ACTIVE,
        comment="Operating status",
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="False once the source is deactivated",
    )

    cadence: Mapped[Frequency | None] = mapped_column(
        nullable=True,
        comment="Nominal publication cadence",
    )

    url: Mapped[str | None] = mapped_column(
        String(1000),
        nullable=True,
        comment="Landing page of the provider",
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    extra_data: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=dict,
        comment="Free-form registry metadata",
    )

    def __repr__(self) -> str:
        return f"<Source(src_id={self.src_id}, tier={self.tier.value}, status={self.status.value})>"

    @property
    def is_authoritative(self) -> bool:
        """Check if disagreements with this source open contradictions."""
        return self.tier.is_authoritative


# === Indexes ===
Index("ix_sources_tier_status", Source.tier, Source.status)
