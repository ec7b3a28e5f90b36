"""Unit tests for the eight-stage approval pipeline."""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import select
from uuid6 import uuid7

from evidence_core.core.exceptions import InvalidReference, InvalidStateTransition
from evidence_core.db.enums import (
    ApprovalResult,
    ApprovalStage,
    ContentStatus,
    LangCode,
    LedgerAction,
    PipelineState,
    RegimeTag,
)
from evidence_core.db.models import (
    ContentItem,
    IngestionRun,
    Observation,
    ProvenanceLedgerEntry,
    ScreeningEvent,
    Series,
    Source,
)
from evidence_core.services import (
    ApprovalPipeline,
    ContradictionService,
    IngestionTracker,
    MockComplianceClient,
    ObservationStore,
    ProvenanceLedger,
    ScreeningResult,
    StewardshipService,
)

pytestmark = pytest.mark.asyncio


class FixedVerdictClient(MockComplianceClient):
    """Answers every screening with the same verdict."""

    def __init__(self, verdict: ScreeningResult):
        super().__init__()
        self.verdict = verdict

    async def screen(self, text: str, lang: str, metadata: dict | None = None) -> ScreeningResult:
        self.calls.append(text)
        return self.verdict


TITLE_AR = "سعر الصرف الموازي"
BODY_AR = "ارتفع سعر الصرف في عدن خلال الأسبوع الأول من يناير."


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def observations(
    store: ObservationStore, series: Series, source: Source, run: IngestionRun
) -> list[Observation]:
    """Three observations to cite."""
    return [
        await store.put_observation(series.id, date(2024, 1, day), 1500 + day, date(2024, 1, 10), source.id, run.id)
        for day in (1, 2, 3)
    ]


@pytest.fixture
def pipeline(db_session, compliance: MockComplianceClient) -> ApprovalPipeline:
    return ApprovalPipeline(db_session, compliance=compliance)


async def make_item(
    pipeline: ApprovalPipeline,
    observations: list[Observation],
    arabic: bool = True,
    content_type: str = "daily_brief",
    body_en: str = "The parallel rate rose in Aden during the first week of January.",
) -> ContentItem:
    item = await pipeline.create_draft(
        content_type,
        title_en="Parallel exchange rate",
        body_en=body_en,
        title_ar=TITLE_AR if arabic else None,
        body_ar=BODY_AR if arabic else None,
        created_by="editor",
        claims=[
            {"claim_text": f"Rate on day {i + 1}", "observation_id": obs.id, "source_id": obs.source_id}
            for i, obs in enumerate(observations)
        ],
    )
    await pipeline.record_uniqueness_check(item.id, 0.1, compared_against=["brief-2023-12-31"], checker="minhash")
    return item


async def run_through(pipeline: ApprovalPipeline, item: ContentItem, stop_before: ApprovalStage | None = None) -> None:
    for stage in ApprovalStage.ordered():
        if stage == stop_before:
            return
        run = await pipeline.run_stage(item.id, stage)
        assert run.result in (ApprovalResult.PASS, ApprovalResult.SKIPPED), (stage, run.output)


# =============================================================================
# Authoring
# =============================================================================


class TestAuthoring:
    """Tests for drafts and claims."""

    async def test_create_draft_with_claims(self, pipeline: ApprovalPipeline, observations: list[Observation]) -> None:
        item = await make_item(pipeline, observations)

        assert item.status == ContentStatus.DRAFT
        assert item.review_round == 0
        assert len(item.evidence) == 3
        assert all(claim.is_cited for claim in item.evidence)

        status = await pipeline.current_stage(item.id)
        assert status.state == PipelineState.NOT_SUBMITTED
        assert status.stage is None

    async def test_claim_citing_unknown_observation(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        with pytest.raises(InvalidReference):
            await pipeline.add_claim(item.id, "Unsupported", observation_id=uuid7())

    async def test_claims_only_on_drafts(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id, actor="editor")

        with pytest.raises(InvalidStateTransition):
            await pipeline.add_claim(item.id, "Late claim", lang=LangCode.EN)


# =============================================================================
# Stage checks
# =============================================================================


class TestEvidenceStage:
    """Tests for citation coverage."""

    async def test_half_cited_fails_coverage(
        self, db_session, pipeline: ApprovalPipeline, observations: list[Observation]
    ) -> None:
        await StewardshipService(db_session).upsert_policy("daily_brief", min_citations=1, min_evidence_coverage=0.95)
        item = await pipeline.create_draft(
            "daily_brief",
            title_en="Parallel exchange rate",
            body_en="Rates diverged.",
            claims=[
                {"claim_text": "Aden rate was 1501", "observation_id": observations[0].id},
                {"claim_text": "Rates diverged sharply"},
            ],
        )
        await pipeline.submit_for_review(item.id)
        await pipeline.run_stage(item.id, ApprovalStage.DRAFTING)

        run = await pipeline.run_stage(item.id, ApprovalStage.EVIDENCE)

        assert run.result == ApprovalResult.FAIL
        assert run.score == pytest.approx(0.5)
        assert run.output["cited_claims"] == 1

        status = await pipeline.current_stage(item.id)
        assert status.stage == ApprovalStage.EVIDENCE
        assert status.state == PipelineState.BLOCKED

    async def test_too_few_claims_fails(self, pipeline: ApprovalPipeline, observations: list[Observation]) -> None:
        item = await make_item(pipeline, observations[:2])
        await pipeline.submit_for_review(item.id)
        await pipeline.run_stage(item.id, ApprovalStage.DRAFTING)

        run = await pipeline.run_stage(item.id, ApprovalStage.EVIDENCE)
        assert run.result == ApprovalResult.FAIL
        assert run.output["claims"] == 2


class TestStageOrder:
    """Tests for strict sequencing."""

    async def test_later_stage_cannot_run_first(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)

        with pytest.raises(InvalidStateTransition, match="DRAFTING"):
            await pipeline.run_stage(item.id, ApprovalStage.EVIDENCE)

    async def test_stages_need_review_status(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)

        with pytest.raises(InvalidStateTransition, match="UNDER_REVIEW"):
            await pipeline.run_stage(item.id, ApprovalStage.DRAFTING)

    async def test_earlier_stage_may_rerun(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.CONSISTENCY)

        rerun = await pipeline.run_stage(item.id, ApprovalStage.DRAFTING)

        assert rerun.attempt == 2
        assert (await pipeline.current_stage(item.id)).stage == ApprovalStage.CONSISTENCY

    async def test_placeholder_fails_drafting(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations, body_en="Rates [TBD] this week.")
        await pipeline.submit_for_review(item.id)

        run = await pipeline.run_stage(item.id, ApprovalStage.DRAFTING)
        assert run.result == ApprovalResult.FAIL
        assert run.output["placeholders"] is True


class TestConsistencyStage:
    """Tests for blocking on open contradictions."""

    async def test_open_contradiction_blocks_until_resolved(
        self,
        db_session,
        pipeline: ApprovalPipeline,
        observations: list[Observation],
        store: ObservationStore,
        tracker: IngestionTracker,
        other_source: Source,
    ) -> None:
        other_run = await tracker.start_run(other_source.id)
        rival = await store.get_or_create_series("FX_RATE_PARALLEL", "YE", RegimeTag.IRG_ADEN, other_source.id)
        await store.put_observation(rival.id, date(2024, 1, 1), 2500, date(2024, 1, 10), other_source.id, other_run.id)
        contradictions = ContradictionService(db_session)
        ticket = await contradictions.detect("FX_RATE_PARALLEL", "YE", date(2024, 1, 1), as_of=date(2024, 1, 15))
        assert ticket is not None

        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.CONSISTENCY)

        blocked = await pipeline.run_stage(item.id, ApprovalStage.CONSISTENCY)
        assert blocked.result == ApprovalResult.FAIL
        assert blocked.output["open_contradictions"] == [str(ticket.id)]
        assert (await pipeline.current_stage(item.id)).state == PipelineState.BLOCKED

        await contradictions.resolve(ticket.id, "Sanaa figure uses a different basket", "analyst")

        cleared = await pipeline.run_stage(item.id, ApprovalStage.CONSISTENCY)
        assert cleared.result == ApprovalResult.PASS


class TestSafetyStage:
    """Tests for compliance screening."""

    async def test_flagged_term_fails(self, db_session, observations) -> None:
        pipeline = ApprovalPipeline(db_session, compliance=MockComplianceClient({"incite": 0.9}))
        item = await make_item(pipeline, observations, body_en="Traders incite panic buying of dollars.")
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        run = await pipeline.run_stage(item.id, ApprovalStage.SAFETY)

        assert run.result == ApprovalResult.FAIL
        assert run.output["blocking_matches"][0]["term"] == "incite"

    async def test_low_risk_match_passes(self, db_session, observations) -> None:
        pipeline = ApprovalPipeline(db_session, compliance=MockComplianceClient({"rumour": 0.3}))
        item = await make_item(pipeline, observations, body_en="A rumour of devaluation moved the market.")
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        run = await pipeline.run_stage(item.id, ApprovalStage.SAFETY)
        assert run.result == ApprovalResult.PASS
        assert run.score == pytest.approx(0.3)

    async def test_failing_verdict_without_matches_fails(self, db_session, observations) -> None:
        client = FixedVerdictClient(ScreeningResult(passed=False, risk_score=0.95))
        pipeline = ApprovalPipeline(db_session, compliance=client)
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        run = await pipeline.run_stage(item.id, ApprovalStage.SAFETY)

        assert run.result == ApprovalResult.FAIL
        assert run.score == pytest.approx(0.95)
        assert run.output["blocking_matches"] == []
        assert [v["passed"] for v in run.output["verdicts"]] == [False, False]

    async def test_overall_risk_above_threshold_fails(self, db_session, observations) -> None:
        client = FixedVerdictClient(ScreeningResult(passed=True, risk_score=0.8))
        pipeline = ApprovalPipeline(db_session, compliance=client)
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        run = await pipeline.run_stage(item.id, ApprovalStage.SAFETY)

        assert run.result == ApprovalResult.FAIL
        assert run.output["verdicts"][0] == {"lang": "EN", "passed": True, "risk_score": 0.8}
        assert run.output["blocking_matches"] == []

    async def test_unavailable_screening_needs_human(self, db_session, observations) -> None:
        pipeline = ApprovalPipeline(db_session, compliance=MockComplianceClient(fail_with=ConnectionError("timeout")))
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        held = await pipeline.run_stage(item.id, ApprovalStage.SAFETY)

        assert held.result == ApprovalResult.NEEDS_HUMAN
        status = await pipeline.current_stage(item.id)
        assert status.stage == ApprovalStage.SAFETY
        assert status.state == PipelineState.NEEDS_HUMAN

        events = (await db_session.execute(select(ScreeningEvent))).scalars().all()
        assert len(events) == 1
        assert events[0].error is not None

        with pytest.raises(InvalidStateTransition, match="manual outcome"):
            await pipeline.run_stage(item.id, ApprovalStage.SAFETY)

        manual = await pipeline.record_manual_outcome(
            item.id, ApprovalStage.SAFETY, ApprovalResult.PASS, decided_by="compliance-officer", notes="Reviewed by hand"
        )

        assert manual.is_manual is True
        assert manual.attempt == 2
        assert (await pipeline.current_stage(item.id)).stage == ApprovalStage.AR_COPY

    async def test_manual_outcome_requires_hold(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)

        with pytest.raises(InvalidStateTransition):
            await pipeline.record_manual_outcome(item.id, ApprovalStage.DRAFTING, ApprovalResult.PASS, "editor")


class TestCopyAndStandardsStages:
    """Tests for the copy editors and the standards check."""

    async def test_missing_arabic_is_skipped_when_policy_allows(
        self, db_session, pipeline: ApprovalPipeline, observations
    ) -> None:
        await StewardshipService(db_session).upsert_policy("daily_brief", rules={"skippable_stages": ["AR_COPY"]})
        item = await make_item(pipeline, observations, arabic=False)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.AR_COPY)

        skipped = await pipeline.run_stage(item.id, ApprovalStage.AR_COPY)

        assert skipped.result == ApprovalResult.SKIPPED
        assert (await pipeline.current_stage(item.id)).stage == ApprovalStage.EN_COPY

    async def test_missing_arabic_fails_otherwise(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations, arabic=False)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.AR_COPY)

        run = await pipeline.run_stage(item.id, ApprovalStage.AR_COPY)
        assert run.result == ApprovalResult.FAIL

    async def test_banned_term_fails_standards(self, db_session, pipeline: ApprovalPipeline, observations) -> None:
        await StewardshipService(db_session).upsert_policy("daily_brief", rules={"banned_terms": ["collapse"]})
        item = await make_item(pipeline, observations, body_en="The rial faces collapse, traders say.")
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.STANDARDS)

        run = await pipeline.run_stage(item.id, ApprovalStage.STANDARDS)
        assert run.result == ApprovalResult.FAIL
        assert run.output["banned_terms"] == ["collapse"]

    async def test_too_similar_fails_standards(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.record_uniqueness_check(item.id, 0.8, checker="minhash")
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.STANDARDS)

        run = await pipeline.run_stage(item.id, ApprovalStage.STANDARDS)
        assert run.result == ApprovalResult.FAIL
        assert run.score == pytest.approx(0.8)


# =============================================================================
# Publication
# =============================================================================


class TestPublication:
    """Tests for the final stage and the content lifecycle."""

    async def test_full_pipeline_publishes(
        self, db_session, pipeline: ApprovalPipeline, compliance: MockComplianceClient, observations
    ) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id, actor="editor")

        await run_through(pipeline, item)

        assert item.status == ContentStatus.PUBLISHED
        assert item.published_at is not None
        assert len(item.evidence_set_hash) == 64
        assert len(compliance.calls) == 2  # EN and AR versions

        status = await pipeline.current_stage(item.id)
        assert status.state == PipelineState.PUBLISHED

        history = await pipeline.history(item.id)
        assert [r.stage for r in history] == ApprovalStage.ordered()

        result = await db_session.execute(
            select(ProvenanceLedgerEntry).where(ProvenanceLedgerEntry.action == LedgerAction.PUBLISH)
        )
        publish = result.scalar_one()
        assert publish.output_refs == {"content_item": [str(item.id)]}
        assert len(publish.input_refs["agent_run"]) == 8
        assert sorted(publish.input_refs["observation"]) == sorted(str(o.id) for o in observations)
        assert publish.agent_run_id == history[-1].id

    async def test_human_final_mode(self, db_session, pipeline: ApprovalPipeline, observations) -> None:
        await StewardshipService(db_session).upsert_policy("daily_brief", approval_mode="HUMAN_FINAL")
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.FINAL_APPROVAL)

        held = await pipeline.run_stage(item.id, ApprovalStage.FINAL_APPROVAL)
        assert held.result == ApprovalResult.NEEDS_HUMAN
        assert item.status == ContentStatus.UNDER_REVIEW

        await pipeline.record_manual_outcome(item.id, ApprovalStage.FINAL_APPROVAL, ApprovalResult.PASS, "chief-editor")
        assert item.status == ContentStatus.PUBLISHED

    async def test_withdraw_starts_new_round(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.SAFETY)

        await pipeline.withdraw(item.id, actor="editor", reason="New figures due")
        assert item.status == ContentStatus.DRAFT

        await pipeline.submit_for_review(item.id, actor="editor")
        assert item.review_round == 2

        status = await pipeline.current_stage(item.id)
        assert status.stage == ApprovalStage.DRAFTING
        assert status.state == PipelineState.IN_STAGE
        assert len(await pipeline.history(item.id)) == 3

    async def test_retract_and_archive(self, db_session, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item)

        await pipeline.retract(item.id, actor="chief-editor", reason="Source revised")
        assert item.status == ContentStatus.RETRACTED
        assert (await pipeline.current_stage(item.id)).state == PipelineState.CLOSED

        await pipeline.archive(item.id, actor="chief-editor")
        assert item.status == ContentStatus.ARCHIVED

        with pytest.raises(InvalidStateTransition):
            await pipeline.submit_for_review(item.id)

        trail = await StewardshipService(db_session).audit_trail("content_items", item.id)
        assert [entry.new_data["status"] for entry in trail] == ["UNDER_REVIEW", "PUBLISHED", "RETRACTED", "ARCHIVED"]

    async def test_published_lineage_reaches_every_cited_source(
        self,
        db_session,
        pipeline: ApprovalPipeline,
        tracker: IngestionTracker,
        observations,
        source: Source,
        other_source: Source,
    ) -> None:
        await tracker.start_run(other_source.id)
        never_pulled = await StewardshipService(db_session).register_source("SRC-003", "Hodeidah port authority")
        item = await make_item(pipeline, observations)
        await pipeline.add_claim(item.id, "The Sanaa bulletin reports a stable rate", source_id=other_source.id)
        await pipeline.add_claim(item.id, "Port fees were unchanged", source_id=never_pulled.id)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item)
        assert item.status == ContentStatus.PUBLISHED

        trace = await ProvenanceLedger(db_session).lineage(f"content_item:{item.id}")

        publish = next(entry for entry in trace if entry.action == LedgerAction.PUBLISH)
        assert str(never_pulled.id) in publish.input_refs["source"]
        ingested = {
            ref for entry in trace if entry.action == LedgerAction.INGEST for ref in entry.input_refs.get("source", [])
        }
        assert {str(source.id), str(other_source.id)} <= ingested

    async def test_failed_rerun_blocks_publication(self, pipeline: ApprovalPipeline, observations) -> None:
        item = await make_item(pipeline, observations)
        await pipeline.submit_for_review(item.id)
        await run_through(pipeline, item, stop_before=ApprovalStage.FINAL_APPROVAL)

        await pipeline.record_uniqueness_check(item.id, 0.8, checker="minhash")
        rerun = await pipeline.run_stage(item.id, ApprovalStage.STANDARDS)
        assert rerun.result == ApprovalResult.FAIL

        status = await pipeline.current_stage(item.id)
        assert status.stage == ApprovalStage.STANDARDS
        assert status.state == PipelineState.BLOCKED

        with pytest.raises(InvalidStateTransition, match="STANDARDS"):
            await pipeline.run_stage(item.id, ApprovalStage.FINAL_APPROVAL)
        assert item.status == ContentStatus.UNDER_REVIEW
        assert item.published_at is None
