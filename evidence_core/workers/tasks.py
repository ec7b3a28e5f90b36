"""
Celery tasks for the approval pipeline and contradiction detection.

Each task bridges Celery's synchronous execution model with the async
services using asyncio.run(), on an engine created for that event loop.

Usage:
    # From API (dispatch to queue):
    from evidence_core.workers.tasks import advance_pipeline_task
    advance_pipeline_task.delay(str(content_item_id))

    # Start worker:
    celery -A evidence_core.workers.celery_app worker -l info -P solo -Q approvals,contradictions
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from evidence_core.core.config import settings
from evidence_core.core.logging import get_logger, log_context
from evidence_core.db.enums import ApprovalResult, ApprovalStage, ContentStatus, PipelineState
from evidence_core.services.approval import ApprovalPipeline
from evidence_core.services.contradictions import ContradictionService
from evidence_core.workers.celery_app import celery_app

logger = get_logger(__name__)

T = TypeVar("T")


async def _with_session(work: Callable[[AsyncSession], Awaitable[T]], db_url: str | None = None) -> T:
    """Run `work` in one committed transaction on a loop-local engine."""
    engine = create_async_engine(db_url or settings.db_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    try:
        async with session_factory() as db:
            try:
                result = await work(db)
                await db.commit()
                return result
            except Exception:
                await db.rollback()
                raise
    finally:
        await engine.dispose()


# =============================================================================
# Approval Pipeline
# =============================================================================


async def advance_pipeline(db: AsyncSession, content_item_id: UUID) -> dict[str, Any]:
    """
    Run stages from the current one until a stage does not pass.

    A BLOCKED current stage is re-evaluated once (its blocker may be gone,
    e.g. a resolved contradiction). Stops at the first FAIL or NEEDS_HUMAN
    result, and after publication.
    """
    pipeline = ApprovalPipeline(db)
    runs: list[dict[str, Any]] = []

    while True:
        status = await pipeline.current_stage(content_item_id)
        if status.state not in (PipelineState.IN_STAGE, PipelineState.BLOCKED) or status.stage is None:
            break
        run = await pipeline.run_stage(content_item_id, status.stage)
        runs.append({"stage": run.stage.value, "result": run.result.value, "attempt": run.attempt})
        if run.result not in (ApprovalResult.PASS, ApprovalResult.SKIPPED):
            break

    item = await pipeline.get_item(content_item_id)
    final = await pipeline.current_stage(content_item_id)
    return {
        "content_item_id": str(content_item_id),
        "status": item.status.value,
        "state": final.state.value,
        "stage": final.stage.value if final.stage else None,
        "published": item.status == ContentStatus.PUBLISHED,
        "runs": runs,
    }


@celery_app.task(
    name="evidence_core.workers.tasks.advance_pipeline_task",
    bind=True,
    max_retries=1,
    acks_late=True,
)
def advance_pipeline_task(self, content_item_id_str: str) -> dict:
    """
    Celery task: drive a content item through as many stages as pass.

    Args:
        content_item_id_str: Content item UUID as string (Celery requires
            JSON-serializable args)
    """
    content_item_id = UUID(content_item_id_str)
    with log_context(content_item_id=content_item_id_str, task_id=self.request.id):
        logger.info("Celery worker: advancing pipeline")
        result = asyncio.run(_with_session(lambda db: advance_pipeline(db, content_item_id)))
        logger.info("Celery worker: pipeline advanced", state=result["state"], runs=len(result["runs"]))
        return result


@celery_app.task(
    name="evidence_core.workers.tasks.run_stage_task",
    bind=True,
    acks_late=True,
)
def run_stage_task(self, content_item_id_str: str, stage: str) -> dict:
    """Celery task: evaluate one stage of one content item."""
    content_item_id = UUID(content_item_id_str)
    approval_stage = ApprovalStage(stage)

    async def _run(db: AsyncSession) -> dict:
        run = await ApprovalPipeline(db).run_stage(content_item_id, approval_stage)
        return {"agent_run_id": str(run.id), "stage": run.stage.value, "result": run.result.value}

    logger.info("Celery worker: running stage", content_item_id=content_item_id_str, stage=stage)
    return asyncio.run(_with_session(_run))


# =============================================================================
# Contradictions
# =============================================================================


@celery_app.task(
    name="evidence_core.workers.tasks.detect_contradictions_task",
    bind=True,
    acks_late=True,
)
def detect_contradictions_task(
    self,
    indicator_code: str,
    geo_code: str,
    obs_date: str,
    as_of: str | None = None,
    threshold: float | None = None,
) -> dict:
    """
    Celery task: check one (indicator, geo, obs_date) group.

    Dates are ISO strings.
    """

    async def _run(db: AsyncSession) -> dict:
        ticket = await ContradictionService(db).detect(
            indicator_code,
            geo_code,
            date.fromisoformat(obs_date),
            as_of=date.fromisoformat(as_of) if as_of else None,
            threshold=threshold,
        )
        return {"contradiction_id": str(ticket.id) if ticket else None}

    return asyncio.run(_with_session(_run))


@celery_app.task(
    name="evidence_core.workers.tasks.sweep_contradictions_task",
    bind=True,
    acks_late=True,
)
def sweep_contradictions_task(
    self,
    as_of: str | None = None,
    indicator_code: str | None = None,
) -> dict:
    """Celery task: sweep every group with two or more authoritative series."""

    async def _run(db: AsyncSession) -> dict:
        tickets = await ContradictionService(db).detect_all(
            as_of=date.fromisoformat(as_of) if as_of else None,
            indicator_code=indicator_code,
        )
        return {"open_contradictions": [str(t.id) for t in tickets]}

    logger.info("Celery worker: sweeping contradictions", as_of=as_of, indicator_code=indicator_code)
    result = asyncio.run(_with_session(_run))
    logger.info("Celery worker: sweep complete", open=len(result["open_contradictions"]))
    return result
