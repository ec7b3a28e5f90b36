"""
Contradiction models.

A Contradiction is a detected disagreement between observations expected to
represent the same quantity (same indicator, geo and obs_date across series
of different sources or regimes).

Key features:
- One OPEN ticket per implicated observation set (partial unique index on
  implicated_key), so re-running detection is idempotent
- Link table to series/observations for "open contradictions of series X"
- Append-only resolutions; a ticket is closed exactly once
"""

import hashlib
import uuid
from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, TimestampMixin, UUIDMixin, append_only
from evidence_core.db.enums import ContradictionStatus


class Contradiction(UUIDMixin, TimestampMixin, Base):
    """
    A disagreement ticket.

    Attributes:
        id: UUID7 primary key
        indicator_code / geo_code / obs_date: The compared quantity
        observation_ids: Implicated observation ids (sorted, as strings)
        series_ids: Series of the implicated observations
        implicated_key: SHA256 of the sorted observation ids
        description: Human-readable summary of the disagreement
        detected_by: Agent key of the detector
        status: OPEN until resolved or dismissed
        max_deviation: Largest pairwise relative deviation found
        threshold: Threshold the deviation exceeded
        resolution_summary / resolved_at / resolved_by: Closure details

    Lifecycle:
        OPEN -> RESOLVED
             |-> DISMISSED
    """

    # === Compared Quantity ===
    indicator_code: Mapped[str] = mapped_column(String(100), nullable=False)

    geo_code: Mapped[str] = mapped_column(String(50), nullable=False)

    obs_date: Mapped[date] = mapped_column(Date, nullable=False)

    # === Implicated Set ===
    observation_ids: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        comment="Implicated observation ids",
    )

    series_ids: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        comment="Series of the implicated observations",
    )

    implicated_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA256 of the sorted implicated observation ids",
    )

    # === Detection ===
    description: Mapped[str] = mapped_column(Text, nullable=False)

    detected_by: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[ContradictionStatus] = mapped_column(
        nullable=False,
        default=ContradictionStatus.OPEN,
    )

    max_deviation: Mapped[float | None] = mapped_column(Float, nullable=True)

    threshold: Mapped[float | None] = mapped_column(Float, nullable=True)

    # === Resolution ===
    resolution_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<Contradiction(id={self.id}, {self.indicator_code}/{self.geo_code}@{self.obs_date}, status={self.status.value})>"

    @staticmethod
    def compute_key(observation_ids: Iterable[uuid.UUID]) -> str:
        """SHA256 over the sorted, comma-joined observation ids."""
        joined = ",".join(sorted(str(oid) for oid in observation_ids))
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()

    @property
    def is_open(self) -> bool:
        return self.status == ContradictionStatus.OPEN


class ContradictionObservation(UUIDMixin, Base):
    """Link from a contradiction to one implicated observation and its series."""

    contradiction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contradictions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    observation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("observations.id", ondelete="CASCADE"),
        nullable=False,
    )

    series_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("series.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "contradiction_id",
            "observation_id",
            name="uq_contradiction_observations_pair",
        ),
    )


@append_only
class ContradictionResolution(UUIDMixin, CreatedAtMixin, Base):
    """
    The decision that closed a contradiction.

    Attributes:
        contradiction_id: The closed contradiction
        outcome: RESOLVED or DISMISSED
        resolution_text: The decision and its rationale
        resolved_by: Actor (user or agent key)
    """

    contradiction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contradictions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    outcome: Mapped[ContradictionStatus] = mapped_column(nullable=False)

    resolution_text: Mapped[str] = mapped_column(Text, nullable=False)

    resolved_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<ContradictionResolution(contradiction={self.contradiction_id}, outcome={self.outcome.value})>"


# === Indexes ===
# At most one OPEN ticket per implicated set
Index(
    "uq_contradictions_open_implicated_key",
    Contradiction.implicated_key,
    unique=True,
    postgresql_where=text("status = 'OPEN'"),
    sqlite_where=text("status = 'OPEN'"),
)

Index("ix_contradictions_quantity", Contradiction.indicator_code, Contradiction.geo_code, Contradiction.obs_date)
Index("ix_contradictions_status", Contradiction.status)
