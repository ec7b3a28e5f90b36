"""Contradiction detection and resolution endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.schemas import (
    ContradictionResponse,
    DetectRequest,
    ResolveRequest,
    SweepRequest,
    SweepResponse,
)
from evidence_core.services import ContradictionService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=list[ContradictionResponse],
    summary="Open contradictions",
    description="OPEN tickets, optionally only those implicating one series.",
)
async def open_contradictions(
    series_id: UUID | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[ContradictionResponse]:
    tickets = await ContradictionService(db).open_contradictions(series_id=series_id)
    return [ContradictionResponse.model_validate(c) for c in tickets]


@router.post(
    "/detect",
    response_model=ContradictionResponse,
    summary="Detect one group",
    description="Returns the open ticket for the group, or 204 when the sources agree.",
    responses={204: {"description": "No contradiction"}},
)
async def detect(body: DetectRequest, db: AsyncSession = Depends(get_db)) -> ContradictionResponse | Response:
    ticket = await ContradictionService(db).detect(**body.model_dump())
    await db.commit()
    if ticket is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return ContradictionResponse.model_validate(ticket)


@router.post("/sweep", response_model=SweepResponse, summary="Detect every group")
async def sweep(body: SweepRequest, db: AsyncSession = Depends(get_db)) -> SweepResponse:
    tickets = await ContradictionService(db).detect_all(**body.model_dump())
    await db.commit()
    return SweepResponse(
        contradictions=[ContradictionResponse.model_validate(c) for c in tickets],
        count=len(tickets),
    )


@router.get("/{contradiction_id}", response_model=ContradictionResponse, summary="Get contradiction")
async def get_contradiction(contradiction_id: UUID, db: AsyncSession = Depends(get_db)) -> ContradictionResponse:
    return ContradictionResponse.model_validate(await ContradictionService(db).get(contradiction_id))


@router.post(
    "/{contradiction_id}/resolve",
    response_model=ContradictionResponse,
    summary="Resolve or dismiss",
    description="Closing a ticket that is not OPEN is rejected with 409.",
)
async def resolve(
    contradiction_id: UUID,
    body: ResolveRequest,
    db: AsyncSession = Depends(get_db),
) -> ContradictionResponse:
    service = ContradictionService(db)
    await service.resolve(contradiction_id, body.resolution_text, body.resolved_by, dismiss=body.dismiss)
    await db.commit()
    return ContradictionResponse.model_validate(await service.get(contradiction_id))
