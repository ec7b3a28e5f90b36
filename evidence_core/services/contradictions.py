"""
Contradiction detector and resolver.

Cross-source consistency check over the temporal observation store.

Detection, for one (indicator, geo, obs_date) group:
1. Candidate series: every series of the indicator/geo whose source is
   tier T1 or T2 (optionally restricted to one regime)
2. Candidate values: the as-of value of each series (latest by default);
   only numeric payloads are compared
3. Relative deviation of each pair from distinct sources:
       |a - b| / min(|a|, |b|)      (0 when both are 0, inf when one is)
4. Every observation in a pair above the threshold is implicated; one
   OPEN contradiction lists them all
5. At most one OPEN contradiction per implicated set: a second run over
   unchanged data returns the existing ticket

Resolution closes an OPEN ticket exactly once (RESOLVED, or DISMISSED for
a no-op decision), writes a ContradictionResolution and a VALIDATE ledger
entry. Closed tickets cannot be resolved again or reopened.
"""

import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import combinations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.config import settings
from evidence_core.core.exceptions import InvalidStateTransition, NotFound
from evidence_core.core.logging import get_logger
from evidence_core.db.base import utcnow
from evidence_core.db.enums import ContradictionStatus, LedgerAction, RegimeTag, SourceTier
from evidence_core.db.models import (
    Contradiction,
    ContradictionObservation,
    ContradictionResolution,
    Observation,
    Series,
    Source,
)
from evidence_core.services.observations import ObservationStore
from evidence_core.services.provenance import ProvenanceLedger, Ref
from evidence_core.services.stewardship import StewardshipService

logger = get_logger(__name__)

AUTHORITATIVE_TIERS = (SourceTier.T1, SourceTier.T2)


def relative_deviation(a: Decimal | float, b: Decimal | float) -> float:
    """
    Relative deviation of two values, against the smaller magnitude.

    100 vs 140 -> 0.4. Both zero -> 0.0; exactly one zero -> inf.
    """
    a, b = float(a), float(b)
    if a == b:
        return 0.0
    smaller = min(abs(a), abs(b))
    if smaller == 0:
        return math.inf
    return abs(a - b) / smaller


@dataclass
class _Candidate:
    observation: Observation
    series: Series
    source: Source


class ContradictionService:
    """
    Opens, lists and resolves contradiction tickets.

    Usage:
        service = ContradictionService(db)
        ticket = await service.detect("FX_RATE_PARALLEL", "YE", date(2024, 1, 1))
        if ticket:
            await service.resolve(ticket.id, "CBY-Aden figure is authoritative", "analyst@example.org")
        await db.commit()
    """

    def __init__(self, db: AsyncSession, detector_agent: str | None = None):
        self.db = db
        self.detector_agent = detector_agent or settings.contradiction_detector_agent
        self.observations = ObservationStore(db)
        self.ledger = ProvenanceLedger(db)

    # =========================================================================
    # Detection
    # =========================================================================

    async def _threshold(self, threshold: float | None, content_type: str | None) -> float:
        if threshold is not None:
            return threshold
        if content_type is not None:
            policy = await StewardshipService(self.db).get_policy(content_type)
            return policy.max_variance_flag
        return settings.contradiction_default_threshold

    async def _candidates(
        self,
        indicator_code: str,
        geo_code: str,
        obs_date: date,
        as_of: date,
        regime: RegimeTag | None,
    ) -> list[_Candidate]:
        query = (
            select(Series, Source)
            .join(Source, Series.source_id == Source.id)
            .where(
                Series.indicator_code == indicator_code,
                Series.geo_code == geo_code,
                Source.tier.in_(AUTHORITATIVE_TIERS),
            )
            .order_by(Series.id)
        )
        if regime is not None:
            query = query.where(Series.regime == regime)
        rows = (await self.db.execute(query)).all()

        candidates = []
        for series, source in rows:
            observation = await self.observations.as_of(series.id, obs_date, as_of)
            if observation is None or observation.value_numeric is None:
                continue
            # The observation's cited source decides the tier
            if observation.source_id != source.id:
                cited = await self.db.get(Source, observation.source_id)
                if cited is None or cited.tier not in AUTHORITATIVE_TIERS:
                    continue
                source = cited
            candidates.append(_Candidate(observation=observation, series=series, source=source))
        return candidates

    async def detect(
        self,
        indicator_code: str,
        geo_code: str,
        obs_date: date,
        as_of: date | None = None,
        threshold: float | None = None,
        content_type: str | None = None,
        regime: RegimeTag | None = None,
    ) -> Contradiction | None:
        """
        Check one (indicator, geo, obs_date) group.

        Args:
            indicator_code: Indicator to compare
            geo_code: Geography to compare
            obs_date: Observation date to compare
            as_of: Compare values known at this date (default: today)
            threshold: Explicit deviation threshold
            content_type: Use this content type's policy max_variance_flag
                when no explicit threshold is given
            regime: Only compare series of this regime

        Returns:
            The OPEN contradiction for the implicated set (new or existing),
            or None when no authoritative pair disagrees
        """
        as_of = as_of or datetime.now(timezone.utc).date()
        limit = await self._threshold(threshold, content_type)
        candidates = await self._candidates(indicator_code, geo_code, obs_date, as_of, regime)

        implicated: dict[uuid.UUID, _Candidate] = {}
        max_deviation = 0.0
        for left, right in combinations(candidates, 2):
            if left.source.id == right.source.id:
                continue
            deviation = relative_deviation(left.observation.value_numeric, right.observation.value_numeric)
            if deviation > limit:
                implicated[left.observation.id] = left
                implicated[right.observation.id] = right
                max_deviation = max(max_deviation, deviation)

        if not implicated:
            logger.debug(
                "No contradiction",
                indicator=indicator_code,
                geo=geo_code,
                obs_date=str(obs_date),
                candidates=len(candidates),
            )
            return None

        key = Contradiction.compute_key(implicated)
        existing = await self._find_open(key)
        if existing is not None:
            logger.debug("Contradiction already open", contradiction_id=str(existing.id))
            return existing

        ordered = [implicated[oid] for oid in sorted(implicated, key=str)]
        contradiction = Contradiction(
            indicator_code=indicator_code,
            geo_code=geo_code,
            obs_date=obs_date,
            observation_ids=[str(c.observation.id) for c in ordered],
            series_ids=sorted({str(c.series.id) for c in ordered}),
            implicated_key=key,
            description=self._describe(ordered, max_deviation, limit),
            detected_by=self.detector_agent,
            status=ContradictionStatus.OPEN,
            max_deviation=None if math.isinf(max_deviation) else max_deviation,
            threshold=limit,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(contradiction)
                await self.db.flush()
                for candidate in ordered:
                    self.db.add(
                        ContradictionObservation(
                            contradiction_id=contradiction.id,
                            observation_id=candidate.observation.id,
                            series_id=candidate.series.id,
                        )
                    )
        except IntegrityError:
            # A concurrent detector opened the same ticket
            existing = await self._find_open(key)
            if existing is None:
                raise
            return existing

        await self.ledger.record(
            LedgerAction.VALIDATE,
            inputs=[Ref("observation", c.observation.id) for c in ordered],
            outputs=[Ref("contradiction", contradiction.id)],
            formula="|a - b| / min(|a|, |b|) > threshold",
            parameters={"threshold": limit, "as_of": as_of.isoformat()},
            recorded_by=self.detector_agent,
        )

        logger.warning(
            "Contradiction opened",
            contradiction_id=str(contradiction.id),
            indicator=indicator_code,
            geo=geo_code,
            obs_date=str(obs_date),
            observations=len(ordered),
            max_deviation=max_deviation,
            threshold=limit,
        )
        return contradiction

    async def detect_all(
        self,
        as_of: date | None = None,
        threshold: float | None = None,
        indicator_code: str | None = None,
    ) -> list[Contradiction]:
        """
        Sweep every (indicator, geo, obs_date) group with two or more
        authoritative series.

        Returns:
            The OPEN contradictions found, new or existing
        """
        query = (
            select(Series.indicator_code, Series.geo_code, Observation.obs_date)
            .join(Observation, Observation.series_id == Series.id)
            .join(Source, Series.source_id == Source.id)
            .where(Source.tier.in_(AUTHORITATIVE_TIERS))
            .group_by(Series.indicator_code, Series.geo_code, Observation.obs_date)
            .having(func.count(func.distinct(Series.id)) >= 2)
            .order_by(Series.indicator_code, Series.geo_code, Observation.obs_date)
        )
        if indicator_code is not None:
            query = query.where(Series.indicator_code == indicator_code)
        groups = (await self.db.execute(query)).all()

        found = []
        for group_indicator, group_geo, group_date in groups:
            contradiction = await self.detect(group_indicator, group_geo, group_date, as_of=as_of, threshold=threshold)
            if contradiction is not None:
                found.append(contradiction)

        logger.info("Contradiction sweep finished", groups=len(groups), open=len(found))
        return found

    @staticmethod
    def _describe(candidates: list[_Candidate], max_deviation: float, threshold: float) -> str:
        values = ", ".join(
            f"{c.source.src_id}/{c.series.regime.value}={c.observation.value_numeric}" for c in candidates
        )
        deviation = "inf" if math.isinf(max_deviation) else f"{max_deviation:.1%}"
        return f"Sources disagree ({values}); max deviation {deviation} exceeds {threshold:.1%}"

    async def _find_open(self, implicated_key: str) -> Contradiction | None:
        result = await self.db.execute(
            select(Contradiction).where(
                Contradiction.implicated_key == implicated_key,
                Contradiction.status == ContradictionStatus.OPEN,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, contradiction_id: uuid.UUID) -> Contradiction:
        """
        Raises:
            NotFound: If no such contradiction exists
        """
        contradiction = await self.db.get(Contradiction, contradiction_id)
        if contradiction is None:
            raise NotFound("contradiction", contradiction_id)
        return contradiction

    async def open_contradictions(self, series_id: uuid.UUID | None = None) -> list[Contradiction]:
        """OPEN contradictions, optionally only those touching one series."""
        return await self.open_for_series([series_id] if series_id is not None else None)

    async def open_for_series(self, series_ids: list[uuid.UUID] | None) -> list[Contradiction]:
        """OPEN contradictions touching any of the given series (all when None)."""
        query = (
            select(Contradiction)
            .where(Contradiction.status == ContradictionStatus.OPEN)
            .order_by(Contradiction.created_at, Contradiction.id)
        )
        if series_ids is not None:
            if not series_ids:
                return []
            touching = select(ContradictionObservation.contradiction_id).where(
                ContradictionObservation.series_id.in_(series_ids)
            )
            query = query.where(Contradiction.id.in_(touching))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(
        self,
        contradiction_id: uuid.UUID,
        resolution_text: str,
        resolved_by: str,
        dismiss: bool = False,
    ) -> ContradictionResolution:
        """
        Close an OPEN contradiction.

        Args:
            contradiction_id: Ticket to close
            resolution_text: The decision and its rationale
            resolved_by: Actor
            dismiss: Close as DISMISSED (no-op decision) instead of RESOLVED

        Raises:
            NotFound: If the contradiction does not exist
            InvalidStateTransition: If it is already RESOLVED or DISMISSED
        """
        result = await self.db.execute(
            select(Contradiction).where(Contradiction.id == contradiction_id).with_for_update()
        )
        contradiction = result.scalar_one_or_none()
        if contradiction is None:
            raise NotFound("contradiction", contradiction_id)
        if not contradiction.is_open:
            raise InvalidStateTransition(
                f"Contradiction {contradiction_id} is {contradiction.status.value}; only OPEN contradictions can be resolved"
            )

        outcome = ContradictionStatus.DISMISSED if dismiss else ContradictionStatus.RESOLVED
        contradiction.status = outcome
        contradiction.resolution_summary = resolution_text
        contradiction.resolved_by = resolved_by
        contradiction.resolved_at = utcnow()

        resolution = ContradictionResolution(
            contradiction_id=contradiction_id,
            outcome=outcome,
            resolution_text=resolution_text,
            resolved_by=resolved_by,
        )
        self.db.add(resolution)
        await self.db.flush()

        await self.ledger.record(
            LedgerAction.VALIDATE,
            inputs=[Ref("contradiction", contradiction_id)],
            outputs=[Ref("contradiction_resolution", resolution.id)],
            parameters={"outcome": outcome.value},
            recorded_by=resolved_by,
        )

        logger.info(
            "Contradiction closed",
            contradiction_id=str(contradiction_id),
            outcome=outcome.value,
            resolved_by=resolved_by,
        )
        return resolution

    async def dismiss(self, contradiction_id: uuid.UUID, resolution_text: str, resolved_by: str) -> ContradictionResolution:
        """Close an OPEN contradiction as DISMISSED."""
        return await self.resolve(contradiction_id, resolution_text, resolved_by, dismiss=True)
