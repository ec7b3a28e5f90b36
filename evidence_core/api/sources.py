"""Source registry, approval policy and audit trail endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.db.enums import SourceStatus, SourceTier
from evidence_core.db.models import Source
from evidence_core.schemas import (
    AuditLogResponse,
    DeactivateRequest,
    PaginatedResponse,
    PaginationParams,
    PolicyResponse,
    PolicyUpsert,
    SourceCreate,
    SourceResponse,
    SourceStatusUpdate,
    SourceTierUpdate,
)
from evidence_core.services import StewardshipService

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Sources
# =============================================================================


@router.post(
    "/sources",
    response_model=SourceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a source",
    description="Register an evidence provider. Registering an existing src_id returns it unchanged.",
)
async def register_source(
    body: SourceCreate,
    actor: str | None = Query(default=None, description="Steward performing the change"),
    db: AsyncSession = Depends(get_db),
) -> SourceResponse:
    source = await StewardshipService(db, actor=actor).register_source(**body.model_dump())
    await db.commit()
    return SourceResponse.model_validate(source)


@router.get(
    "/sources",
    response_model=PaginatedResponse[SourceResponse],
    summary="List sources",
)
async def list_sources(
    tier: SourceTier | None = Query(default=None, description="Filter by tier"),
    source_status: SourceStatus | None = Query(default=None, alias="status", description="Filter by status"),
    params: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[SourceResponse]:
    query = select(Source)
    if tier is not None:
        query = query.where(Source.tier == tier)
    if source_status is not None:
        query = query.where(Source.status == source_status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(query.order_by(Source.src_id).offset(params.offset).limit(params.page_size))
    items = [SourceResponse.model_validate(s) for s in result.scalars().all()]
    return PaginatedResponse.create(items=items, total=total, params=params)


@router.get("/sources/{source_id}", response_model=SourceResponse, summary="Get source")
async def get_source(source_id: UUID, db: AsyncSession = Depends(get_db)) -> SourceResponse:
    return SourceResponse.model_validate(await StewardshipService(db).get_source(source_id))


@router.put("/sources/{source_id}/tier", response_model=SourceResponse, summary="Change source tier")
async def set_source_tier(
    source_id: UUID,
    body: SourceTierUpdate,
    actor: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> SourceResponse:
    source = await StewardshipService(db, actor=actor).set_source_tier(source_id, body.tier, reason=body.reason)
    await db.commit()
    return SourceResponse.model_validate(source)


@router.put("/sources/{source_id}/status", response_model=SourceResponse, summary="Change source status")
async def set_source_status(
    source_id: UUID,
    body: SourceStatusUpdate,
    actor: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> SourceResponse:
    source = await StewardshipService(db, actor=actor).set_source_status(source_id, body.status, reason=body.reason)
    await db.commit()
    return SourceResponse.model_validate(source)


@router.post("/sources/{source_id}/deactivate", response_model=SourceResponse, summary="Deactivate source")
async def deactivate_source(
    source_id: UUID,
    body: DeactivateRequest,
    actor: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> SourceResponse:
    source = await StewardshipService(db, actor=actor).deactivate_source(source_id, reason=body.reason)
    await db.commit()
    return SourceResponse.model_validate(source)


@router.get(
    "/sources/{source_id}/audit",
    response_model=list[AuditLogResponse],
    summary="Audit trail of a source",
)
async def source_audit_trail(source_id: UUID, db: AsyncSession = Depends(get_db)) -> list[AuditLogResponse]:
    steward = StewardshipService(db)
    await steward.get_source(source_id)
    return [AuditLogResponse.model_validate(a) for a in await steward.audit_trail("sources", source_id)]


# =============================================================================
# Approval Policies
# =============================================================================


@router.get(
    "/policies/{content_type}",
    response_model=PolicyResponse,
    summary="Effective approval policy",
    description="The stored policy of a content type, or the configured defaults when none is stored.",
)
async def get_policy(content_type: str, db: AsyncSession = Depends(get_db)) -> PolicyResponse:
    return PolicyResponse.model_validate(await StewardshipService(db).get_policy(content_type))


@router.put("/policies/{content_type}", response_model=PolicyResponse, summary="Create or update a policy")
async def upsert_policy(
    content_type: str,
    body: PolicyUpsert,
    actor: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> PolicyResponse:
    try:
        policy = await StewardshipService(db, actor=actor).upsert_policy(
            content_type,
            approval_mode=body.approval_mode,
            rules=body.rules,
            reason=body.reason,
            **body.thresholds(),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    await db.commit()
    return PolicyResponse.model_validate(policy)
