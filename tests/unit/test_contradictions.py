"""Unit tests for contradiction detection and resolution."""

import math
from datetime import date

import pytest
from sqlalchemy import select
from uuid6 import uuid7

from evidence_core.core.exceptions import InvalidStateTransition, NotFound
from evidence_core.db.enums import ContradictionStatus, LedgerAction, RegimeTag, SourceTier
from evidence_core.db.models import Contradiction, ProvenanceLedgerEntry, Source
from evidence_core.services import (
    ContradictionService,
    IngestionTracker,
    ObservationStore,
    StewardshipService,
    relative_deviation,
)

pytestmark = pytest.mark.asyncio

JAN1 = date(2024, 1, 1)
VINTAGE = date(2024, 1, 5)
AS_OF = date(2024, 1, 10)


async def publish(store: ObservationStore, tracker: IngestionTracker, source: Source, value, regime=RegimeTag.IRG_ADEN):
    """One series of `source` carrying `value` at JAN1."""
    run = await tracker.start_run(source.id)
    series = await store.get_or_create_series("FX_RATE_PARALLEL", "YE", regime, source.id)
    observation = await store.put_observation(series.id, JAN1, value, VINTAGE, source.id, run.id)
    return series, observation


class TestRelativeDeviation:
    """Tests for the deviation measure."""

    def test_against_smaller_magnitude(self) -> None:
        assert relative_deviation(100, 140) == pytest.approx(0.4)
        assert relative_deviation(140, 100) == pytest.approx(0.4)

    def test_zero_cases(self) -> None:
        assert relative_deviation(0, 0) == 0.0
        assert math.isinf(relative_deviation(0, 5))


class TestDetect:
    """Tests for opening contradiction tickets."""

    async def test_disagreeing_authoritative_sources_open_one_ticket(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        _, a = await publish(store, tracker, source, 100)
        _, b = await publish(store, tracker, other_source, 140)
        service = ContradictionService(db_session)

        ticket = await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF, threshold=0.15)

        assert ticket is not None
        assert ticket.status == ContradictionStatus.OPEN
        assert set(ticket.observation_ids) == {str(a.id), str(b.id)}
        assert ticket.max_deviation == pytest.approx(0.4)
        assert ticket.threshold == 0.15

        again = await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF, threshold=0.15)
        assert again.id == ticket.id
        tickets = (await db_session.execute(select(Contradiction))).scalars().all()
        assert len(tickets) == 1

    async def test_detection_is_recorded_in_ledger(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)

        ticket = await ContradictionService(db_session).detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF)

        result = await db_session.execute(
            select(ProvenanceLedgerEntry).where(ProvenanceLedgerEntry.action == LedgerAction.VALIDATE)
        )
        entry = result.scalar_one()
        assert entry.output_refs == {"contradiction": [str(ticket.id)]}
        assert len(entry.input_refs["observation"]) == 2

    async def test_within_threshold_opens_nothing(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 110)

        assert await ContradictionService(db_session).detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF) is None

    async def test_low_tier_sources_are_ignored(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
    ) -> None:
        survey = await StewardshipService(db_session).register_source("SRC-009", "Bureau survey", tier=SourceTier.T3)
        await publish(store, tracker, source, 100)
        await publish(store, tracker, survey, 400)

        assert await ContradictionService(db_session).detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF) is None

    async def test_values_not_yet_known_are_ignored(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)

        early = await ContradictionService(db_session).detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=date(2024, 1, 4))
        assert early is None

    async def test_policy_threshold(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await StewardshipService(db_session).upsert_policy("daily_brief", max_variance_flag=0.5)
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)

        service = ContradictionService(db_session)
        assert await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF, content_type="daily_brief") is None

    async def test_sweep(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)

        found = await ContradictionService(db_session).detect_all(as_of=AS_OF)

        assert len(found) == 1
        assert found[0].indicator_code == "FX_RATE_PARALLEL"


class TestResolve:
    """Tests for closing tickets."""

    async def test_resolve_once(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        series_a, _ = await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)
        service = ContradictionService(db_session)
        ticket = await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF)

        assert [c.id for c in await service.open_contradictions(series_a.id)] == [ticket.id]

        resolution = await service.resolve(ticket.id, "Aden rate is the official one", "analyst")

        assert resolution.outcome == ContradictionStatus.RESOLVED
        assert ticket.status == ContradictionStatus.RESOLVED
        assert ticket.resolved_by == "analyst"
        assert await service.open_contradictions(series_a.id) == []

        with pytest.raises(InvalidStateTransition):
            await service.resolve(ticket.id, "second opinion", "analyst")
        with pytest.raises(InvalidStateTransition):
            await service.dismiss(ticket.id, "never mind", "analyst")

    async def test_resolved_set_reopens_as_new_ticket(
        self,
        db_session,
        store: ObservationStore,
        tracker: IngestionTracker,
        source: Source,
        other_source: Source,
    ) -> None:
        await publish(store, tracker, source, 100)
        await publish(store, tracker, other_source, 140)
        service = ContradictionService(db_session)
        first = await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF)
        await service.dismiss(first.id, "known methodology gap", "analyst")

        second = await service.detect("FX_RATE_PARALLEL", "YE", JAN1, as_of=AS_OF)

        assert first.status == ContradictionStatus.DISMISSED
        assert second.id != first.id
        assert second.status == ContradictionStatus.OPEN

    async def test_unknown_ticket(self, db_session) -> None:
        with pytest.raises(NotFound):
            await ContradictionService(db_session).resolve(uuid7(), "x", "analyst")
