"""
Governed content and approval pipeline endpoints.

Architecture:
    POST /content                      -> DRAFT item with claims
    POST /content/{id}/submit          -> UNDER_REVIEW, new review round
    POST /content/{id}/stages/{stage}  -> evaluate one stage (synchronous)
    POST /content/{id}/advance         -> queue stage runs on the Celery worker
    GET  /content/{id}/stage           -> current stage and pipeline state
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.db.enums import ApprovalStage
from evidence_core.schemas import (
    AgentRunResponse,
    ClaimCreate,
    ClaimResponse,
    ContentCreate,
    ContentResponse,
    LifecycleRequest,
    ManualOutcomeRequest,
    StageStatusResponse,
    UniquenessCheckCreate,
    UniquenessCheckResponse,
)
from evidence_core.services import ApprovalPipeline

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Authoring
# =============================================================================


@router.post("", response_model=ContentResponse, status_code=status.HTTP_201_CREATED, summary="Create a draft")
async def create_draft(body: ContentCreate, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    claims = [claim.model_dump() for claim in body.claims]
    item = await ApprovalPipeline(db).create_draft(**body.model_dump(exclude={"claims"}), claims=claims)
    await db.commit()
    return ContentResponse.model_validate(item)


@router.get("/{content_item_id}", response_model=ContentResponse, summary="Get content item")
async def get_content(content_item_id: UUID, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    return ContentResponse.model_validate(await ApprovalPipeline(db).get_item(content_item_id))


@router.post(
    "/{content_item_id}/claims",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a claim to a draft",
)
async def add_claim(content_item_id: UUID, body: ClaimCreate, db: AsyncSession = Depends(get_db)) -> ClaimResponse:
    claim = await ApprovalPipeline(db).add_claim(content_item_id, **body.model_dump())
    await db.commit()
    return ClaimResponse.model_validate(claim)


@router.post(
    "/{content_item_id}/uniqueness-checks",
    response_model=UniquenessCheckResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a similarity measurement",
)
async def record_uniqueness_check(
    content_item_id: UUID,
    body: UniquenessCheckCreate,
    db: AsyncSession = Depends(get_db),
) -> UniquenessCheckResponse:
    check = await ApprovalPipeline(db).record_uniqueness_check(content_item_id, **body.model_dump())
    await db.commit()
    return UniquenessCheckResponse.model_validate(check)


# =============================================================================
# Pipeline
# =============================================================================


@router.get("/{content_item_id}/stage", response_model=StageStatusResponse, summary="Current stage")
async def current_stage(content_item_id: UUID, db: AsyncSession = Depends(get_db)) -> StageStatusResponse:
    return StageStatusResponse.model_validate(await ApprovalPipeline(db).current_stage(content_item_id))


@router.get("/{content_item_id}/runs", response_model=list[AgentRunResponse], summary="Stage run history")
async def stage_history(content_item_id: UUID, db: AsyncSession = Depends(get_db)) -> list[AgentRunResponse]:
    pipeline = ApprovalPipeline(db)
    await pipeline.get_item(content_item_id)
    return [AgentRunResponse.model_validate(r) for r in await pipeline.history(content_item_id)]


@router.post(
    "/{content_item_id}/stages/{stage}",
    response_model=AgentRunResponse,
    summary="Run a stage",
    description="Rejected with 409 when an earlier stage is not satisfied or the stage awaits a human.",
)
async def run_stage(
    content_item_id: UUID,
    stage: ApprovalStage,
    db: AsyncSession = Depends(get_db),
) -> AgentRunResponse:
    run = await ApprovalPipeline(db).run_stage(content_item_id, stage)
    await db.commit()
    return AgentRunResponse.model_validate(run)


@router.post(
    "/{content_item_id}/stages/{stage}/manual",
    response_model=AgentRunResponse,
    summary="Record a human decision",
)
async def record_manual_outcome(
    content_item_id: UUID,
    stage: ApprovalStage,
    body: ManualOutcomeRequest,
    db: AsyncSession = Depends(get_db),
) -> AgentRunResponse:
    run = await ApprovalPipeline(db).record_manual_outcome(
        content_item_id, stage, body.result, body.decided_by, notes=body.notes
    )
    await db.commit()
    return AgentRunResponse.model_validate(run)


@router.post(
    "/{content_item_id}/advance",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue the pipeline on the worker",
)
async def advance(content_item_id: UUID, db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    from evidence_core.workers.tasks import advance_pipeline_task

    await ApprovalPipeline(db).get_item(content_item_id)
    result = advance_pipeline_task.delay(str(content_item_id))
    logger.info("Pipeline advance queued", content_item_id=str(content_item_id), task_id=result.id)
    return {"content_item_id": str(content_item_id), "task_id": result.id}


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("/{content_item_id}/submit", response_model=ContentResponse, summary="Submit for review")
async def submit(content_item_id: UUID, body: LifecycleRequest, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    item = await ApprovalPipeline(db).submit_for_review(content_item_id, actor=body.actor)
    await db.commit()
    return ContentResponse.model_validate(item)


@router.post("/{content_item_id}/withdraw", response_model=ContentResponse, summary="Back to draft")
async def withdraw(content_item_id: UUID, body: LifecycleRequest, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    item = await ApprovalPipeline(db).withdraw(content_item_id, actor=body.actor, reason=body.reason)
    await db.commit()
    return ContentResponse.model_validate(item)


@router.post("/{content_item_id}/retract", response_model=ContentResponse, summary="Retract published content")
async def retract(content_item_id: UUID, body: LifecycleRequest, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    item = await ApprovalPipeline(db).retract(content_item_id, actor=body.actor, reason=body.reason)
    await db.commit()
    return ContentResponse.model_validate(item)


@router.post("/{content_item_id}/archive", response_model=ContentResponse, summary="Archive content")
async def archive(content_item_id: UUID, body: LifecycleRequest, db: AsyncSession = Depends(get_db)) -> ContentResponse:
    item = await ApprovalPipeline(db).archive(content_item_id, actor=body.actor, reason=body.reason)
    await db.commit()
    return ContentResponse.model_validate(item)
