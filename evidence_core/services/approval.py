"""
Approval pipeline.

Eight strictly sequential stages gate publication of a content item:

    DRAFTING -> EVIDENCE -> CONSISTENCY -> SAFETY -> AR_COPY -> EN_COPY
             -> STANDARDS -> FINAL_APPROVAL

Stages are data, not types: STAGE_VALIDATORS maps each ApprovalStage to an
async check returning a StageOutcome, and the pipeline drives them.

Rules:
- A stage may run only while the item is UNDER_REVIEW and every earlier
  stage is satisfied (latest run PASS, or SKIPPED for a stage the policy
  marks skippable). Earlier stages may be re-run.
- Every evaluation appends an AgentRun (history is never overwritten) and a
  VALIDATE ledger entry; the pipeline reads only the latest run per stage
  of the current review round.
- A NEEDS_HUMAN run holds the stage until record_manual_outcome.
- FINAL_APPROVAL passes only when every earlier stage is satisfied; its
  PASS publishes the item, freezes evidence_set_hash and records a PUBLISH
  ledger entry (inputs: all agent runs, cited observations and documents;
  output: the content item).
- Stage runs of one item are serialized by a row lock on the item.
"""

import functools
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.config import settings
from evidence_core.core.exceptions import ComplianceError, InvalidReference, InvalidStateTransition, NotFound
from evidence_core.core.logging import get_logger, log_context
from evidence_core.db.base import utcnow
from evidence_core.db.enums import (
    ApprovalResult,
    ApprovalStage,
    ContentStatus,
    ContentVisibility,
    LangCode,
    LedgerAction,
    PipelineState,
)
from evidence_core.db.models import (
    Agent,
    AgentRun,
    ApprovalPolicy,
    AuditAction,
    AuditLog,
    ContentEvidence,
    ContentItem,
    IngestionRun,
    Observation,
    ScreeningEvent,
    Source,
    UniquenessCheck,
    compute_evidence_set_hash,
)
from evidence_core.services.compliance import BaseComplianceClient, get_compliance_client
from evidence_core.services.contradictions import ContradictionService
from evidence_core.services.provenance import ProvenanceLedger, Ref
from evidence_core.services.stewardship import StewardshipService

logger = get_logger(__name__)


# =============================================================================
# Agent Registry
# =============================================================================

AGENT_DEFINITIONS: dict[ApprovalStage, tuple[str, str]] = {
    ApprovalStage.DRAFTING: ("Drafting Agent", "Checks the draft is complete and free of placeholders"),
    ApprovalStage.EVIDENCE: ("Evidence Agent", "Checks claim count and citation coverage"),
    ApprovalStage.CONSISTENCY: ("Consistency Agent", "Blocks on open contradictions of cited series"),
    ApprovalStage.SAFETY: ("Safety Agent", "Screens content with the compliance collaborator"),
    ApprovalStage.AR_COPY: ("Arabic Copy Editor", "Checks the Arabic version"),
    ApprovalStage.EN_COPY: ("English Copy Editor", "Checks the English version"),
    ApprovalStage.STANDARDS: ("Standards Agent", "Checks banned terms and uniqueness"),
    ApprovalStage.FINAL_APPROVAL: ("Final Approval Agent", "Confirms every earlier stage is satisfied"),
}

PLACEHOLDER_PATTERN = re.compile(r"lorem ipsum|\[(?:tbd|todo|placeholder)\]|\{\{.*?\}\}", re.IGNORECASE)
ARABIC_PATTERN = re.compile(r"[؀-ۿ]")


# =============================================================================
# Stage Outcomes and Context
# =============================================================================


@dataclass
class StageOutcome:
    """Result of one stage check."""

    result: ApprovalResult
    score: float | None = None
    output: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageStatus:
    """Where a content item stands in the pipeline."""

    content_item_id: uuid.UUID
    item_status: ContentStatus
    stage: ApprovalStage | None
    state: PipelineState
    latest_result: ApprovalResult | None = None


@dataclass
class StageContext:
    """Everything a stage check may read."""

    db: AsyncSession
    item: ContentItem
    policy: ApprovalPolicy
    latest_runs: dict[ApprovalStage, AgentRun]
    compliance: BaseComplianceClient

    def is_satisfied(self, stage: ApprovalStage) -> bool:
        return is_satisfied(self.latest_runs.get(stage), stage, self.policy)


StageValidator = Callable[[StageContext], Awaitable[StageOutcome]]


def is_satisfied(run: AgentRun | None, stage: ApprovalStage, policy: ApprovalPolicy) -> bool:
    """PASS, or SKIPPED for a stage the policy marks skippable."""
    if run is None:
        return False
    if run.result == ApprovalResult.PASS:
        return True
    return run.result == ApprovalResult.SKIPPED and stage in policy.skippable_stages


def _has_placeholder(*texts: str | None) -> bool:
    return any(t and PLACEHOLDER_PATTERN.search(t) for t in texts)


def _content_texts(item: ContentItem) -> list[str]:
    return [t for t in (item.title_en, item.body_en, item.title_ar, item.body_ar) if t]


# =============================================================================
# Stage Checks
# =============================================================================


async def check_drafting(ctx: StageContext) -> StageOutcome:
    """A complete title and body in at least one language, no placeholders."""
    languages = [
        lang.value for lang in LangCode if all(t and t.strip() for t in ctx.item.text_for(lang))
    ]
    placeholders = _has_placeholder(*_content_texts(ctx.item))
    passed = bool(languages) and not placeholders
    return StageOutcome(
        result=ApprovalResult.PASS if passed else ApprovalResult.FAIL,
        output={"complete_languages": languages, "placeholders": placeholders},
    )


async def check_evidence(ctx: StageContext) -> StageOutcome:
    """
    Claim count >= min_citations and coverage >= min_evidence_coverage.

    Coverage is the fraction of claims with at least one citation target.
    """
    claims = list(ctx.item.evidence)
    cited = sum(1 for claim in claims if claim.is_cited)
    coverage = cited / len(claims) if claims else 0.0

    enough_claims = len(claims) >= ctx.policy.min_citations
    enough_coverage = coverage >= ctx.policy.min_evidence_coverage
    return StageOutcome(
        result=ApprovalResult.PASS if enough_claims and enough_coverage else ApprovalResult.FAIL,
        score=coverage,
        output={
            "claims": len(claims),
            "cited_claims": cited,
            "coverage": coverage,
            "min_citations": ctx.policy.min_citations,
            "min_evidence_coverage": ctx.policy.min_evidence_coverage,
        },
    )


async def check_consistency(ctx: StageContext) -> StageOutcome:
    """Fail while any OPEN contradiction touches a series of a cited observation."""
    observation_ids = [c.observation_id for c in ctx.item.evidence if c.observation_id is not None]
    series_ids: list[uuid.UUID] = []
    if observation_ids:
        result = await ctx.db.execute(
            select(Observation.series_id).where(Observation.id.in_(observation_ids)).distinct()
        )
        series_ids = list(result.scalars().all())

    open_tickets = await ContradictionService(ctx.db).open_for_series(series_ids)
    return StageOutcome(
        result=ApprovalResult.FAIL if open_tickets else ApprovalResult.PASS,
        output={
            "cited_series": [str(s) for s in series_ids],
            "open_contradictions": [str(c.id) for c in open_tickets],
        },
    )


async def check_safety(ctx: StageContext) -> StageOutcome:
    """
    Screen each language version with the compliance collaborator.

    The stage fails when the collaborator's verdict is a fail, when its
    overall risk exceeds the threshold, or on any unresolved match above
    the threshold. An unreachable collaborator holds the stage for a human.
    """
    threshold = settings.compliance_risk_threshold
    blocking: list[dict[str, Any]] = []
    verdicts: list[dict[str, Any]] = []
    max_risk = 0.0

    async with ctx.compliance as client:
        for lang in LangCode:
            title, body = ctx.item.text_for(lang)
            text = "\n\n".join(t for t in (title, body) if t)
            if not text:
                continue
            try:
                screening = await client.screen(text, lang.value, {"content_item_id": str(ctx.item.id)})
            except ComplianceError as e:
                ctx.db.add(
                    ScreeningEvent(
                        content_item_id=ctx.item.id,
                        provider=client.provider().value,
                        error=str(e),
                    )
                )
                logger.warning("Compliance screening unavailable", content_item_id=str(ctx.item.id), error=str(e))
                return StageOutcome(result=ApprovalResult.NEEDS_HUMAN, output={"error": str(e), "lang": lang.value})

            ctx.db.add(
                ScreeningEvent(
                    content_item_id=ctx.item.id,
                    provider=client.provider().value,
                    passed=screening.passed,
                    risk_score=screening.risk_score,
                    matches=[m.to_dict() for m in screening.matches],
                )
            )
            max_risk = max(max_risk, screening.risk_score)
            verdicts.append({"lang": lang.value, "passed": screening.passed, "risk_score": screening.risk_score})
            blocking.extend({**m.to_dict(), "lang": lang.value} for m in screening.blocking_matches(threshold))

    rejected = [v for v in verdicts if not v["passed"] or v["risk_score"] > threshold]
    return StageOutcome(
        result=ApprovalResult.FAIL if blocking or rejected else ApprovalResult.PASS,
        score=max_risk,
        output={"risk_threshold": threshold, "verdicts": verdicts, "blocking_matches": blocking},
    )


async def check_copy(lang: LangCode, ctx: StageContext) -> StageOutcome:
    """
    The language version exists and reads as finished copy.

    A missing version is SKIPPED when the policy lets this stage be skipped.
    """
    stage = ApprovalStage.AR_COPY if lang == LangCode.AR else ApprovalStage.EN_COPY
    title, body = ctx.item.text_for(lang)
    if not (title and title.strip() and body and body.strip()):
        if stage in ctx.policy.skippable_stages:
            return StageOutcome(result=ApprovalResult.SKIPPED, output={"reason": f"no {lang.value} version"})
        return StageOutcome(result=ApprovalResult.FAIL, output={"reason": f"missing {lang.value} title or body"})

    problems = []
    if _has_placeholder(title, body):
        problems.append("placeholder text")
    if lang == LangCode.AR and not ARABIC_PATTERN.search(body):
        problems.append("body contains no Arabic script")
    return StageOutcome(
        result=ApprovalResult.FAIL if problems else ApprovalResult.PASS,
        output={"problems": problems},
    )


async def check_standards(ctx: StageContext) -> StageOutcome:
    """Banned terms, then the latest uniqueness check against max_similarity_score."""
    lowered = "\n".join(_content_texts(ctx.item)).lower()
    banned = [term for term in ctx.policy.banned_terms if term.lower() in lowered]
    if banned:
        return StageOutcome(result=ApprovalResult.FAIL, output={"banned_terms": banned})

    result = await ctx.db.execute(
        select(UniquenessCheck)
        .where(UniquenessCheck.content_item_id == ctx.item.id)
        .order_by(UniquenessCheck.created_at.desc(), UniquenessCheck.id.desc())
        .limit(1)
    )
    check = result.scalar_one_or_none()
    if check is None:
        return StageOutcome(result=ApprovalResult.NEEDS_HUMAN, output={"reason": "no uniqueness check recorded"})

    too_similar = check.similarity_score > ctx.policy.max_similarity_score
    return StageOutcome(
        result=ApprovalResult.FAIL if too_similar else ApprovalResult.PASS,
        score=check.similarity_score,
        output={
            "uniqueness_check_id": str(check.id),
            "similarity_score": check.similarity_score,
            "max_similarity_score": ctx.policy.max_similarity_score,
        },
    )


async def check_final(ctx: StageContext) -> StageOutcome:
    """Every earlier stage's latest run must be satisfied."""
    unsatisfied = [s.value for s in ApprovalStage.FINAL_APPROVAL.predecessors if not ctx.is_satisfied(s)]
    if unsatisfied:
        return StageOutcome(result=ApprovalResult.FAIL, output={"unsatisfied_stages": unsatisfied})
    if ctx.policy.approval_mode == "HUMAN_FINAL":
        return StageOutcome(result=ApprovalResult.NEEDS_HUMAN, output={"reason": "policy requires human sign-off"})
    return StageOutcome(result=ApprovalResult.PASS, output={"unsatisfied_stages": []})


STAGE_VALIDATORS: dict[ApprovalStage, StageValidator] = {
    ApprovalStage.DRAFTING: check_drafting,
    ApprovalStage.EVIDENCE: check_evidence,
    ApprovalStage.CONSISTENCY: check_consistency,
    ApprovalStage.SAFETY: check_safety,
    ApprovalStage.AR_COPY: functools.partial(check_copy, LangCode.AR),
    ApprovalStage.EN_COPY: functools.partial(check_copy, LangCode.EN),
    ApprovalStage.STANDARDS: check_standards,
    ApprovalStage.FINAL_APPROVAL: check_final,
}


# =============================================================================
# Pipeline
# =============================================================================


class ApprovalPipeline:
    """
    Drives content items through the eight approval stages.

    Usage:
        pipeline = ApprovalPipeline(db)
        await pipeline.submit_for_review(item.id, actor="editor")
        for stage in ApprovalStage.ordered():
            run = await pipeline.run_stage(item.id, stage)
            if run.result != ApprovalResult.PASS:
                break
        await db.commit()
    """

    def __init__(
        self,
        db: AsyncSession,
        compliance: BaseComplianceClient | None = None,
        validators: dict[ApprovalStage, StageValidator] | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            db: Database session
            compliance: Screening client for the Safety stage
                (defaults to get_compliance_client())
            validators: Stage table override
        """
        self.db = db
        self.compliance = compliance or get_compliance_client()
        self.validators = validators or STAGE_VALIDATORS
        self.ledger = ProvenanceLedger(db)
        self.stewardship = StewardshipService(db)

    # =========================================================================
    # Agent Registry
    # =========================================================================

    async def ensure_agents(self) -> list[Agent]:
        """Register any missing pipeline agent. Idempotent."""
        result = await self.db.execute(select(Agent))
        agents = {agent.stage: agent for agent in result.scalars().all()}

        for stage in ApprovalStage.ordered():
            if stage in agents:
                continue
            name, description = AGENT_DEFINITIONS[stage]
            agent = Agent(agent_key=stage.agent_key, stage=stage, name=name, description=description)
            try:
                async with self.db.begin_nested():
                    self.db.add(agent)
            except IntegrityError:
                found = await self.db.execute(select(Agent).where(Agent.stage == stage))
                agent = found.scalar_one()
            else:
                logger.info("Agent registered", agent_key=agent.agent_key)
            agents[stage] = agent

        return [agents[stage] for stage in ApprovalStage.ordered()]

    async def _agent_for(self, stage: ApprovalStage) -> Agent:
        result = await self.db.execute(select(Agent).where(Agent.stage == stage))
        agent = result.scalar_one_or_none()
        if agent is None:
            agent = {a.stage: a for a in await self.ensure_agents()}[stage]
        if not agent.active:
            raise InvalidStateTransition(f"Agent {agent.agent_key} for stage {stage.value} is inactive")
        return agent

    # =========================================================================
    # Content Authoring
    # =========================================================================

    async def create_draft(
        self,
        content_type: str,
        title_en: str | None = None,
        body_en: str | None = None,
        title_ar: str | None = None,
        body_ar: str | None = None,
        visibility: ContentVisibility = ContentVisibility.PUBLIC,
        created_by: str | None = None,
        claims: list[dict[str, Any]] | None = None,
    ) -> ContentItem:
        """Create a DRAFT content item, optionally with claims (see add_claim)."""
        item = ContentItem(
            content_type=content_type,
            title_en=title_en,
            body_en=body_en,
            title_ar=title_ar,
            body_ar=body_ar,
            visibility=visibility,
            status=ContentStatus.DRAFT,
            created_by=created_by,
            review_round=0,
            evidence=[],
        )
        self.db.add(item)
        await self.db.flush()
        for claim in claims or []:
            await self.add_claim(item.id, **claim)
        logger.info("Content draft created", content_item_id=str(item.id), content_type=content_type)
        return item

    async def add_claim(
        self,
        content_item_id: uuid.UUID,
        claim_text: str,
        lang: LangCode = LangCode.EN,
        source_id: uuid.UUID | None = None,
        observation_id: uuid.UUID | None = None,
        document_id: uuid.UUID | None = None,
        page_ref: str | None = None,
        url: str | None = None,
        extracted_quote: str | None = None,
    ) -> ContentEvidence:
        """
        Add a claim to a DRAFT item.

        Raises:
            NotFound: If the content item does not exist
            InvalidStateTransition: If the item is not a draft
            InvalidReference: If a cited source or observation does not exist
        """
        item = await self.get_item(content_item_id)
        if item.status != ContentStatus.DRAFT:
            raise InvalidStateTransition(f"Claims can only be added to DRAFT items; {item.id} is {item.status.value}")
        if source_id is not None and await self.db.get(Source, source_id) is None:
            raise InvalidReference(f"Source {source_id} does not exist")
        if observation_id is not None and await self.db.get(Observation, observation_id) is None:
            raise InvalidReference(f"Observation {observation_id} does not exist")

        claim = ContentEvidence(
            claim_text=claim_text,
            lang=lang,
            source_id=source_id,
            observation_id=observation_id,
            document_id=document_id,
            page_ref=page_ref,
            url=url,
            extracted_quote=extracted_quote,
        )
        item.evidence.append(claim)
        await self.db.flush()
        return claim

    async def record_uniqueness_check(
        self,
        content_item_id: uuid.UUID,
        similarity_score: float,
        compared_against: list[str] | None = None,
        checker: str | None = None,
    ) -> UniquenessCheck:
        """Store a similarity measurement supplied by the similarity collaborator."""
        await self.get_item(content_item_id)
        check = UniquenessCheck(
            content_item_id=content_item_id,
            similarity_score=similarity_score,
            compared_against=compared_against,
            checker=checker,
        )
        self.db.add(check)
        await self.db.flush()
        return check

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_item(self, content_item_id: uuid.UUID, for_update: bool = False) -> ContentItem:
        """
        Raises:
            NotFound: If no such content item exists
        """
        query = select(ContentItem).where(ContentItem.id == content_item_id)
        if for_update:
            query = query.with_for_update()
        item = (await self.db.execute(query)).scalar_one_or_none()
        if item is None:
            raise NotFound("content_item", content_item_id)
        return item

    async def latest_runs(self, item: ContentItem) -> dict[ApprovalStage, AgentRun]:
        """Latest AgentRun per stage within the item's current review round."""
        result = await self.db.execute(
            select(AgentRun)
            .where(AgentRun.content_item_id == item.id, AgentRun.review_round == item.review_round)
            .order_by(AgentRun.created_at, AgentRun.id)
        )
        latest: dict[ApprovalStage, AgentRun] = {}
        for run in result.scalars().all():
            latest[run.stage] = run
        return latest

    async def history(self, content_item_id: uuid.UUID) -> list[AgentRun]:
        """Every AgentRun of an item across all review rounds, oldest first."""
        result = await self.db.execute(
            select(AgentRun)
            .where(AgentRun.content_item_id == content_item_id)
            .order_by(AgentRun.created_at, AgentRun.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def _first_unsatisfied(latest: dict[ApprovalStage, AgentRun], policy: ApprovalPolicy) -> ApprovalStage | None:
        for stage in ApprovalStage.ordered():
            if not is_satisfied(latest.get(stage), stage, policy):
                return stage
        return None

    async def current_stage(self, content_item_id: uuid.UUID) -> StageStatus:
        """
        Where an item stands.

        stage is None for items that were never submitted (or went back to
        DRAFT) and for retracted/archived items.

        Raises:
            NotFound: If the content item does not exist
        """
        item = await self.get_item(content_item_id)
        if item.status == ContentStatus.DRAFT:
            return StageStatus(item.id, item.status, None, PipelineState.NOT_SUBMITTED)
        if item.status == ContentStatus.PUBLISHED:
            return StageStatus(
                item.id, item.status, ApprovalStage.FINAL_APPROVAL, PipelineState.PUBLISHED, ApprovalResult.PASS
            )
        if item.status != ContentStatus.UNDER_REVIEW:
            return StageStatus(item.id, item.status, None, PipelineState.CLOSED)

        policy = await self.stewardship.get_policy(item.content_type)
        latest = await self.latest_runs(item)
        stage = self._first_unsatisfied(latest, policy) or ApprovalStage.FINAL_APPROVAL
        run = latest.get(stage)

        if run is None:
            state = PipelineState.IN_STAGE
        elif run.result == ApprovalResult.NEEDS_HUMAN:
            state = PipelineState.NEEDS_HUMAN
        else:
            state = PipelineState.BLOCKED
        return StageStatus(item.id, item.status, stage, state, run.result if run else None)

    # =========================================================================
    # Stage Execution
    # =========================================================================

    async def run_stage(self, content_item_id: uuid.UUID, stage: ApprovalStage) -> AgentRun:
        """
        Evaluate one stage and append its AgentRun.

        Raises:
            NotFound: If the content item does not exist
            InvalidStateTransition: If the item is not UNDER_REVIEW, an
                earlier stage is not satisfied, or the stage awaits a
                manual outcome
        """
        with log_context(content_item_id=str(content_item_id), stage=stage.value):
            item = await self.get_item(content_item_id, for_update=True)
            if item.status != ContentStatus.UNDER_REVIEW:
                raise InvalidStateTransition(f"Content item {item.id} is {item.status.value}, not UNDER_REVIEW")

            policy = await self.stewardship.get_policy(item.content_type)
            latest = await self.latest_runs(item)
            self._check_enterable(stage, latest, policy)

            previous = latest.get(stage)
            if previous is not None and previous.result == ApprovalResult.NEEDS_HUMAN:
                raise InvalidStateTransition(f"Stage {stage.value} of {item.id} awaits a manual outcome")

            agent = await self._agent_for(stage)
            ctx = StageContext(db=self.db, item=item, policy=policy, latest_runs=latest, compliance=self.compliance)
            outcome = await self.validators[stage](ctx)

            run = await self._append_run(item, agent, stage, outcome)
            logger.info("Stage evaluated", result=outcome.result.value, attempt=run.attempt)

            if stage == ApprovalStage.FINAL_APPROVAL and outcome.result == ApprovalResult.PASS:
                await self._publish(item, policy, {**latest, stage: run})
            return run

    def _check_enterable(
        self,
        stage: ApprovalStage,
        latest: dict[ApprovalStage, AgentRun],
        policy: ApprovalPolicy,
    ) -> None:
        current = self._first_unsatisfied(latest, policy)
        if current is not None and stage.position > current.position:
            raise InvalidStateTransition(
                f"Cannot run {stage.value}: earlier stage {current.value} is not satisfied"
            )

    async def record_manual_outcome(
        self,
        content_item_id: uuid.UUID,
        stage: ApprovalStage,
        result: ApprovalResult,
        decided_by: str,
        notes: str | None = None,
    ) -> AgentRun:
        """
        Resolve a NEEDS_HUMAN hold with a human decision.

        Raises:
            NotFound: If the content item does not exist
            InvalidStateTransition: If the stage is not held for a human,
                the result is NEEDS_HUMAN, or SKIPPED is given for a stage
                the policy does not let be skipped
        """
        item = await self.get_item(content_item_id, for_update=True)
        if item.status != ContentStatus.UNDER_REVIEW:
            raise InvalidStateTransition(f"Content item {item.id} is {item.status.value}, not UNDER_REVIEW")

        policy = await self.stewardship.get_policy(item.content_type)
        latest = await self.latest_runs(item)
        held = latest.get(stage)
        if held is None or held.result != ApprovalResult.NEEDS_HUMAN:
            raise InvalidStateTransition(f"Stage {stage.value} of {item.id} is not awaiting a manual outcome")
        if result == ApprovalResult.NEEDS_HUMAN:
            raise InvalidStateTransition("A manual outcome must decide the stage")
        if result == ApprovalResult.SKIPPED and stage not in policy.skippable_stages:
            raise InvalidStateTransition(f"Stage {stage.value} is not skippable under policy {policy.content_type}")

        publishes = stage == ApprovalStage.FINAL_APPROVAL and result == ApprovalResult.PASS
        if publishes:
            unsatisfied = [s.value for s in stage.predecessors if not is_satisfied(latest.get(s), s, policy)]
            if unsatisfied:
                raise InvalidStateTransition(f"Cannot publish {item.id}: stages {unsatisfied} are not satisfied")

        agent = await self._agent_for(stage)
        outcome = StageOutcome(result=result, output={"manual": True, "replaces_run": str(held.id)})
        run = await self._append_run(item, agent, stage, outcome, decided_by=decided_by, notes=notes)
        logger.info("Manual outcome recorded", content_item_id=str(item.id), stage=stage.value, result=result.value)

        if publishes:
            await self._publish(item, policy, {**latest, stage: run})
        return run

    async def _append_run(
        self,
        item: ContentItem,
        agent: Agent,
        stage: ApprovalStage,
        outcome: StageOutcome,
        decided_by: str | None = None,
        notes: str | None = None,
    ) -> AgentRun:
        result = await self.db.execute(
            select(func.max(AgentRun.attempt)).where(
                AgentRun.content_item_id == item.id,
                AgentRun.agent_id == agent.id,
            )
        )
        attempt = (result.scalar_one_or_none() or 0) + 1

        run = AgentRun(
            content_item_id=item.id,
            agent_id=agent.id,
            stage=stage,
            attempt=attempt,
            review_round=item.review_round,
            result=outcome.result,
            score=outcome.score,
            output=outcome.output,
            is_manual=decided_by is not None,
            decided_by=decided_by,
            notes=notes,
        )
        self.db.add(run)
        await self.db.flush()

        await self.ledger.record(
            LedgerAction.VALIDATE,
            inputs=Ref.of("observation", self._cited_observations(item)),
            outputs=[Ref("agent_run", run.id)],
            parameters={
                "content_item_id": str(item.id),
                "stage": stage.value,
                "result": outcome.result.value,
                "review_round": item.review_round,
            },
            agent_run_id=run.id,
            recorded_by=decided_by or agent.agent_key,
        )
        return run

    @staticmethod
    def _cited_observations(item: ContentItem) -> list[uuid.UUID]:
        return sorted({c.observation_id for c in item.evidence if c.observation_id is not None}, key=str)

    async def _latest_ingestion_runs(self, source_ids: list[uuid.UUID]) -> list[uuid.UUID]:
        """Most recent ingestion run of each source; sources never pulled have none."""
        if not source_ids:
            return []
        result = await self.db.execute(
            select(IngestionRun.source_id, IngestionRun.id)
            .where(IngestionRun.source_id.in_(source_ids))
            .order_by(IngestionRun.started_at.desc(), IngestionRun.id.desc())
        )
        latest: dict[uuid.UUID, uuid.UUID] = {}
        for source_id, run_id in result.all():
            latest.setdefault(source_id, run_id)
        return sorted(latest.values(), key=str)

    async def _publish(
        self,
        item: ContentItem,
        policy: ApprovalPolicy,
        latest: dict[ApprovalStage, AgentRun],
    ) -> None:
        failing = [s.value for s in ApprovalStage.ordered() if not is_satisfied(latest.get(s), s, policy)]
        if failing:
            raise InvalidStateTransition(f"Cannot publish {item.id}: stages {failing} are not satisfied")

        before = {"status": item.status.value}
        item.status = ContentStatus.PUBLISHED
        item.published_at = utcnow()
        item.evidence_set_hash = compute_evidence_set_hash(list(item.evidence))
        await self.db.flush()

        runs = await self.history(item.id)
        documents = sorted({c.document_id for c in item.evidence if c.document_id is not None}, key=str)
        # Sources cited without an observation reach their INGEST entries through their latest run
        sources = sorted({c.source_id for c in item.evidence if c.source_id is not None}, key=str)
        await self.ledger.record(
            LedgerAction.PUBLISH,
            inputs=[
                *Ref.of("agent_run", [r.id for r in runs]),
                *Ref.of("observation", self._cited_observations(item)),
                *Ref.of("source", sources),
                *Ref.of("ingestion_run", await self._latest_ingestion_runs(sources)),
                *Ref.of("document", documents),
            ],
            outputs=[Ref("content_item", item.id)],
            parameters={"evidence_set_hash": item.evidence_set_hash, "review_round": item.review_round},
            agent_run_id=latest[ApprovalStage.FINAL_APPROVAL].id,
            recorded_by=ApprovalStage.FINAL_APPROVAL.agent_key,
        )
        self.db.add(
            AuditLog.create_update(
                "content_items",
                item.id,
                before,
                {"status": item.status.value, "evidence_set_hash": item.evidence_set_hash},
                actor=ApprovalStage.FINAL_APPROVAL.agent_key,
                action=AuditAction.STATUS_CHANGE,
            )
        )
        await self.db.flush()
        logger.info("Content published", content_item_id=str(item.id), evidence_set_hash=item.evidence_set_hash)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _transition(
        self,
        content_item_id: uuid.UUID,
        allowed_from: set[ContentStatus],
        target: ContentStatus,
        actor: str | None,
        reason: str | None,
    ) -> ContentItem:
        item = await self.get_item(content_item_id, for_update=True)
        if item.status not in allowed_from:
            raise InvalidStateTransition(
                f"Content item {item.id} cannot move from {item.status.value} to {target.value}"
            )
        before = {"status": item.status.value, "review_round": item.review_round}
        item.status = target
        if target == ContentStatus.UNDER_REVIEW:
            item.review_round += 1
        await self.db.flush()

        self.db.add(
            AuditLog.create_update(
                "content_items",
                item.id,
                before,
                {"status": target.value, "review_round": item.review_round},
                actor=actor,
                reason=reason,
                action=AuditAction.STATUS_CHANGE,
            )
        )
        await self.db.flush()
        logger.info("Content status changed", content_item_id=str(item.id), old=before["status"], new=target.value)
        return item

    async def submit_for_review(self, content_item_id: uuid.UUID, actor: str | None = None) -> ContentItem:
        """DRAFT -> UNDER_REVIEW; starts a new review round at DRAFTING."""
        await self.ensure_agents()
        return await self._transition(
            content_item_id, {ContentStatus.DRAFT}, ContentStatus.UNDER_REVIEW, actor, "submitted for review"
        )

    async def withdraw(self, content_item_id: uuid.UUID, actor: str | None = None, reason: str | None = None) -> ContentItem:
        """UNDER_REVIEW -> DRAFT. Agent runs of the round are kept."""
        return await self._transition(content_item_id, {ContentStatus.UNDER_REVIEW}, ContentStatus.DRAFT, actor, reason)

    async def retract(self, content_item_id: uuid.UUID, actor: str | None = None, reason: str | None = None) -> ContentItem:
        """PUBLISHED -> RETRACTED."""
        return await self._transition(
            content_item_id, {ContentStatus.PUBLISHED}, ContentStatus.RETRACTED, actor, reason
        )

    async def archive(self, content_item_id: uuid.UUID, actor: str | None = None, reason: str | None = None) -> ContentItem:
        """PUBLISHED or RETRACTED -> ARCHIVED."""
        return await self._transition(
            content_item_id,
            {ContentStatus.PUBLISHED, ContentStatus.RETRACTED},
            ContentStatus.ARCHIVED,
            actor,
            reason,
        )
