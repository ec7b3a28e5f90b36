"""
Temporal observation store.

Versioned series/observation repository with point-in-time (as-of)
resolution.

Features:
- Series get-or-create by identity (indicator, geo, regime, source, code)
- put_observation: evidence-first (cites one source and one run), with an
  atomic compare-and-increment of revision_no per (series, obs_date,
  vintage_date): the next revision is computed, inserted in a SAVEPOINT,
  and on a unique-key collision recomputed and retried with random
  exponential backoff, up to a small ceiling, then WriteConflict
- as_of / latest: greatest vintage_date <= as-of date, then greatest
  revision; None when nothing was known yet
- history and read-side gap detection against the series frequency grid

Observations are never updated or deleted; corrections insert a new
revision and the old row keeps answering historical as-of queries.
"""

import calendar
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from evidence_core.core.config import settings
from evidence_core.core.exceptions import InvalidReference, NotFound, WriteConflict
from evidence_core.core.logging import get_logger
from evidence_core.db.enums import Frequency, LedgerAction, RegimeTag, ValueKind
from evidence_core.db.models import IngestionRun, Observation, Series, Source
from evidence_core.services.provenance import ProvenanceLedger, Ref

logger = get_logger(__name__)


class _RevisionRace(Exception):
    """Another writer committed the revision this attempt computed."""


# Calendar months per grid step
_MONTH_STEPS: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.ANNUAL: 12,
}


def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def frequency_grid(frequency: Frequency, start: date, end: date) -> list[date]:
    """
    Period start dates of a frequency grid anchored at `start`.

    IRREGULAR series have no grid.
    """
    if frequency == Frequency.IRREGULAR:
        return []

    grid = []
    step = 0
    current = start
    while current <= end:
        grid.append(current)
        step += 1
        if frequency == Frequency.DAILY:
            current = start + timedelta(days=step)
        elif frequency == Frequency.WEEKLY:
            current = start + timedelta(weeks=step)
        else:
            current = _add_months(start, _MONTH_STEPS[frequency] * step)
    return grid


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class ObservationStore:
    """
    Versioned observation repository.

    Usage:
        store = ObservationStore(db)
        series = await store.get_or_create_series("CPI", "YE", RegimeTag.IRG_ADEN, source.id)
        obs = await store.put_observation(
            series.id, date(2024, 1, 1), 100, date(2024, 1, 5), source.id, run.id
        )
        await db.commit()

        await store.as_of(series.id, date(2024, 1, 1), date(2024, 1, 10))
    """

    def __init__(
        self,
        db: AsyncSession,
        max_attempts: int | None = None,
        retry_max_wait: float | None = None,
    ):
        """
        Initialize the store.

        Args:
            db: Database session
            max_attempts: Revision write attempts before WriteConflict
            retry_max_wait: Upper bound of the backoff between attempts
        """
        self.db = db
        self.max_attempts = max_attempts or settings.revision_write_max_attempts
        self.retry_max_wait = settings.revision_retry_max_wait if retry_max_wait is None else retry_max_wait
        self.ledger = ProvenanceLedger(db)

    # =========================================================================
    # Series
    # =========================================================================

    async def get_or_create_series(
        self,
        indicator_code: str,
        geo_code: str,
        regime: RegimeTag,
        source_id: uuid.UUID,
        external_series_code: str = "",
        frequency: Frequency = Frequency.IRREGULAR,
        value_kind: ValueKind = ValueKind.NUMERIC,
        unit: str | None = None,
        currency: str | None = None,
    ) -> Series:
        """
        Get the series with this identity, creating it if needed.

        Descriptive fields (frequency, unit, ...) only apply on creation.

        Raises:
            InvalidReference: If the source does not exist
        """
        if await self.db.get(Source, source_id) is None:
            raise InvalidReference(f"Source {source_id} does not exist")

        series = await self._find_series(indicator_code, geo_code, regime, source_id, external_series_code)
        if series is not None:
            return series

        series = Series(
            indicator_code=indicator_code,
            geo_code=geo_code,
            regime=regime,
            source_id=source_id,
            external_series_code=external_series_code,
            frequency=frequency,
            value_kind=value_kind,
            unit=unit,
            currency=currency,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(series)
        except IntegrityError:
            series = await self._find_series(indicator_code, geo_code, regime, source_id, external_series_code)
            if series is None:
                raise
            return series

        logger.info(
            "Series created",
            series_id=str(series.id),
            indicator=indicator_code,
            geo=geo_code,
            regime=regime.value,
        )
        return series

    async def _find_series(
        self,
        indicator_code: str,
        geo_code: str,
        regime: RegimeTag,
        source_id: uuid.UUID,
        external_series_code: str,
    ) -> Series | None:
        result = await self.db.execute(
            select(Series).where(
                Series.indicator_code == indicator_code,
                Series.geo_code == geo_code,
                Series.regime == regime,
                Series.source_id == source_id,
                Series.external_series_code == external_series_code,
            )
        )
        return result.scalar_one_or_none()

    async def get_series(self, series_id: uuid.UUID) -> Series:
        """
        Get a series by id.

        Raises:
            NotFound: If no such series exists
        """
        series = await self.db.get(Series, series_id)
        if series is None:
            raise NotFound("series", series_id)
        return series

    async def list_series(self, indicator_code: str | None = None, geo_code: str | None = None) -> list[Series]:
        query = select(Series).order_by(Series.indicator_code, Series.geo_code, Series.id)
        if indicator_code is not None:
            query = query.where(Series.indicator_code == indicator_code)
        if geo_code is not None:
            query = query.where(Series.geo_code == geo_code)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # =========================================================================
    # Writes
    # =========================================================================

    async def put_observation(
        self,
        series_id: uuid.UUID,
        obs_date: date,
        value: Any,
        vintage_date: date,
        source_id: uuid.UUID,
        run_id: uuid.UUID,
        raw_object_ids: list[uuid.UUID] | None = None,
        period_start: date | None = None,
        period_end: date | None = None,
        is_estimate: bool = False,
        confidence: float | None = None,
        notes: str | None = None,
    ) -> Observation:
        """
        Append a new revision of (series, obs_date, vintage_date).

        The first write of a key gets revision 0; each later write gets the
        current maximum plus one. obs_date is not checked against the
        series frequency.

        Raises:
            InvalidReference: If the series, source or run does not exist,
                or the run belongs to another source
            WriteConflict: If the revision race was lost on every attempt
        """
        await self._check_references(series_id, source_id, run_id)

        fields = dict(
            series_id=series_id,
            obs_date=obs_date,
            vintage_date=vintage_date,
            source_id=source_id,
            ingestion_run_id=run_id,
            period_start=period_start,
            period_end=period_end,
            is_estimate=is_estimate,
            confidence=confidence,
            notes=notes,
            **Observation.split_value(value),
        )

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_RevisionRace),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_random_exponential(multiplier=0.05, max=self.retry_max_wait),
            ):
                with attempt:
                    observation = await self._insert_next_revision(fields)
        except RetryError as e:
            logger.error(
                "Revision write conflict",
                series_id=str(series_id),
                obs_date=str(obs_date),
                vintage_date=str(vintage_date),
                attempts=self.max_attempts,
            )
            raise WriteConflict(
                f"Could not claim a revision for series {series_id} at {obs_date} "
                f"(vintage {vintage_date}) after {self.max_attempts} attempts",
                attempts=self.max_attempts,
            ) from e

        await self.ledger.record(
            LedgerAction.NORMALIZE,
            inputs=[Ref("ingestion_run", run_id), *Ref.of("raw_object", raw_object_ids or [])],
            outputs=[Ref("observation", observation.id)],
            ingestion_run_id=run_id,
            recorded_by="observation_store",
        )

        logger.info(
            "Observation stored",
            series_id=str(series_id),
            obs_date=str(obs_date),
            vintage_date=str(vintage_date),
            revision_no=observation.revision_no,
        )
        return observation

    async def _check_references(self, series_id: uuid.UUID, source_id: uuid.UUID, run_id: uuid.UUID) -> None:
        if await self.db.get(Series, series_id) is None:
            raise InvalidReference(f"Series {series_id} does not exist")
        if await self.db.get(Source, source_id) is None:
            raise InvalidReference(f"Source {source_id} does not exist")
        run = await self.db.get(IngestionRun, run_id)
        if run is None:
            raise InvalidReference(f"Ingestion run {run_id} does not exist")
        if run.source_id != source_id:
            raise InvalidReference(f"Ingestion run {run_id} belongs to source {run.source_id}, not {source_id}")

    async def _next_revision(self, series_id: uuid.UUID, obs_date: date, vintage_date: date) -> int:
        result = await self.db.execute(
            select(func.max(Observation.revision_no)).where(
                Observation.series_id == series_id,
                Observation.obs_date == obs_date,
                Observation.vintage_date == vintage_date,
            )
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def _insert_next_revision(self, fields: dict[str, Any]) -> Observation:
        """One compare-and-increment attempt inside a SAVEPOINT."""
        revision_no = await self._next_revision(fields["series_id"], fields["obs_date"], fields["vintage_date"])
        observation = Observation(revision_no=revision_no, **fields)
        try:
            async with self.db.begin_nested():
                self.db.add(observation)
        except IntegrityError as e:
            logger.warning(
                "Revision race lost, retrying",
                series_id=str(fields["series_id"]),
                obs_date=str(fields["obs_date"]),
                revision_no=revision_no,
            )
            raise _RevisionRace(revision_no) from e
        return observation

    # =========================================================================
    # Reads
    # =========================================================================

    async def as_of(self, series_id: uuid.UUID, obs_date: date, as_of_date: date | datetime) -> Observation | None:
        """
        The value that was authoritative at `as_of_date`.

        Picks the greatest vintage_date <= as_of_date and, within it, the
        greatest revision_no. Returns None when nothing was known yet.
        """
        if isinstance(as_of_date, datetime):
            as_of_date = as_of_date.date()
        result = await self.db.execute(
            select(Observation)
            .where(
                Observation.series_id == series_id,
                Observation.obs_date == obs_date,
                Observation.vintage_date <= as_of_date,
            )
            .order_by(Observation.vintage_date.desc(), Observation.revision_no.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest(self, series_id: uuid.UUID, obs_date: date) -> Observation | None:
        """as_of with today's (UTC) date."""
        return await self.as_of(series_id, obs_date, _utc_today())

    async def history(self, series_id: uuid.UUID, obs_date: date) -> list[Observation]:
        """Every version of one series/date, by vintage then revision."""
        result = await self.db.execute(
            select(Observation)
            .where(Observation.series_id == series_id, Observation.obs_date == obs_date)
            .order_by(Observation.vintage_date, Observation.revision_no)
        )
        return list(result.scalars().all())

    async def find_gaps(self, series_id: uuid.UUID, start: date, end: date) -> list[date]:
        """
        Grid periods of the series frequency with no observation at all.

        The grid is anchored at `start`; a period [g, next g) is covered
        when any observation (any vintage) falls inside it.

        Raises:
            NotFound: If the series does not exist
        """
        series = await self.get_series(series_id)
        grid = frequency_grid(series.frequency, start, end)
        if not grid:
            return []

        result = await self.db.execute(
            select(Observation.obs_date)
            .where(
                Observation.series_id == series_id,
                Observation.obs_date >= start,
                Observation.obs_date <= end,
            )
            .distinct()
        )
        observed = sorted(result.scalars().all())

        gaps = []
        bounds = [*grid[1:], end + timedelta(days=1)]
        for period_start, period_end in zip(grid, bounds):
            if not any(period_start <= d < period_end for d in observed):
                gaps.append(period_start)
        return gaps
