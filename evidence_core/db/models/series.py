"""
Series and Observation models for the temporal observation store.

A Series is one homogeneous time line; its Observations are versioned by
(obs_date, vintage_date, revision_no).

Key features:
- Series identity (indicator, geo, regime, source, external series code)
- Regime tags are never merged: each regime is its own series
- Observations are append-only; corrections insert a higher revision
- Every observation cites exactly one source and one ingestion run
- Value payloads are opaque (numeric, text or JSON)

Versioning semantics:
    vintage_date  when the value was known to be true
    revision_no   supersession counter within one (series, obs_date, vintage)
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, TimestampMixin, UUIDMixin, append_only
from evidence_core.db.enums import Frequency, RegimeTag, ValueKind


class Series(UUIDMixin, TimestampMixin, Base):
    """
    A homogeneous time line of one indicator.

    Attributes:
        id: UUID7 primary key
        indicator_code: Indicator identifier (e.g. "FX_RATE_PARALLEL")
        geo_code: Geography code ("YE" for national)
        regime: Administrative regime tag
        source_id: The source publishing this series
        external_series_code: Source-side code ("" when the source has none)
        frequency: Declared cadence, used for read-side gap detection
        value_kind: Payload kind of its observations
        unit: Unit of measure
        currency: ISO currency code, for monetary series
        extra_data: Free-form metadata

    Constraints:
        - (indicator_code, geo_code, regime, source_id, external_series_code)
          is unique
    """

    # Explicit table name ("series" is its own plural)
    __tablename__ = "series"

    # === Identity ===
    indicator_code: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Indicator identifier",
    )

    geo_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="YE",
        comment="Geography code",
    )

    regime: Mapped[RegimeTag] = mapped_column(
        nullable=False,
        comment="Administrative regime tag",
    )

    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Publishing source",
    )

    external_series_code: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="",
        comment="Source-side series code",
    )

    # === Description ===
    frequency: Mapped[Frequency] = mapped_column(
        nullable=False,
        default=Frequency.IRREGULAR,
    )

    value_kind: Mapped[ValueKind] = mapped_column(
        nullable=False,
        default=ValueKind.NUMERIC,
    )

    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)

    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    extra_data: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=dict,
    )

    __table_args__ = (
        UniqueConstraint(
            "indicator_code",
            "geo_code",
            "regime",
            "source_id",
            "external_series_code",
            name="uq_series_identity",
        ),
    )

    def __repr__(self) -> str:
        return f"<Series(indicator={self.indicator_code}, geo={self.geo_code}, regime={self.regime.value})>"


@append_only
class Observation(UUIDMixin, CreatedAtMixin, Base):
    """
    One value of one Series for one obs_date, at one vintage and revision.

    Attributes:
        id: UUID7 primary key
        series_id: Owning series (cascade on series deletion)
        obs_date: Date the value describes
        vintage_date: Date as of which the value was known to be true
        revision_no: Supersession counter, starting at 0
        value_numeric / value_text / value_json: Opaque payload
        source_id: Cited source (required)
        ingestion_run_id: Cited ingestion run (required)
        period_start / period_end: Covered period, when not a point in time
        is_estimate: Whether the supplier flagged the value as an estimate
        confidence: Supplier confidence (0-1)
        notes: Free text

    Constraints:
        - (series_id, obs_date, vintage_date, revision_no) is unique
        - Rows are never updated or deleted through the ORM
    """

    # === Versioning Key ===
    series_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("series.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning series",
    )

    obs_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date the value describes",
    )

    vintage_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date the value was known to be true",
    )

    revision_no: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Supersession counter within (series, obs_date, vintage_date)",
    )

    # === Payload ===
    value_numeric: Mapped[Decimal | None] = mapped_column(
        Numeric(28, 8),
        nullable=True,
    )

    value_text: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    value_json: Mapped[Any] = mapped_column(
        JSONType,
        nullable=True,
    )

    # === Evidence (required) ===
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Cited source",
    )

    ingestion_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ingestion_runs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Cited ingestion run",
    )

    # === Qualifiers ===
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)

    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_estimate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "series_id",
            "obs_date",
            "vintage_date",
            "revision_no",
            name="uq_observations_version_key",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Observation(series={self.series_id}, obs_date={self.obs_date}, "
            f"vintage={self.vintage_date}, rev={self.revision_no})>"
        )

    @property
    def value(self) -> Any:
        """The stored payload, whichever column holds it."""
        if self.value_numeric is not None:
            return self.value_numeric
        if self.value_text is not None:
            return self.value_text
        return self.value_json

    @staticmethod
    def split_value(value: Any) -> dict[str, Any]:
        """
        Map an opaque payload onto the value columns.

        Numbers (int, float, Decimal) go to value_numeric, strings to
        value_text, everything else to value_json. bool is JSON.
        """
        if isinstance(value, bool) or value is None:
            return {"value_json": value}
        if isinstance(value, (int, float, Decimal)):
            return {"value_numeric": Decimal(str(value))}
        if isinstance(value, str):
            return {"value_text": value}
        return {"value_json": value}


# === Indexes ===
# As-of lookups: newest vintage, then newest revision, for one series/date
Index(
    "ix_observations_asof",
    Observation.series_id,
    Observation.obs_date,
    Observation.vintage_date.desc(),
    Observation.revision_no.desc(),
)

Index("ix_series_indicator_geo", Series.indicator_code, Series.geo_code)
