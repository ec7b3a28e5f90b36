"""
Series and observation endpoints.

Reads are point-in-time: `/as-of` answers "what was the value of this
series/date as known on a given day", `/latest` answers it for today.
Both return 404 when nothing was known yet.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.db.models import Observation
from evidence_core.schemas import (
    GapsResponse,
    ObservationCreate,
    ObservationResponse,
    SeriesCreate,
    SeriesResponse,
)
from evidence_core.services import ObservationStore

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================


def observation_or_404(observation: Observation | None, series_id: UUID, obs_date: date) -> ObservationResponse:
    if observation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No observation of series {series_id} at {obs_date} was known at that date",
        )
    return ObservationResponse.model_validate(observation)


# =============================================================================
# Series
# =============================================================================


@router.post(
    "",
    response_model=SeriesResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Get or create a series",
)
async def create_series(body: SeriesCreate, db: AsyncSession = Depends(get_db)) -> SeriesResponse:
    series = await ObservationStore(db).get_or_create_series(**body.model_dump())
    await db.commit()
    return SeriesResponse.model_validate(series)


@router.get("", response_model=list[SeriesResponse], summary="List series")
async def list_series(
    indicator_code: str | None = Query(default=None),
    geo_code: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> list[SeriesResponse]:
    series = await ObservationStore(db).list_series(indicator_code=indicator_code, geo_code=geo_code)
    return [SeriesResponse.model_validate(s) for s in series]


@router.get("/{series_id}", response_model=SeriesResponse, summary="Get series")
async def get_series(series_id: UUID, db: AsyncSession = Depends(get_db)) -> SeriesResponse:
    return SeriesResponse.model_validate(await ObservationStore(db).get_series(series_id))


# =============================================================================
# Observations
# =============================================================================


@router.post(
    "/{series_id}/observations",
    response_model=ObservationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Write an observation revision",
    description="Appends the next revision of (series, obs_date, vintage_date). Nothing is overwritten.",
)
async def put_observation(
    series_id: UUID,
    body: ObservationCreate,
    db: AsyncSession = Depends(get_db),
) -> ObservationResponse:
    observation = await ObservationStore(db).put_observation(series_id, **body.model_dump())
    await db.commit()
    return ObservationResponse.model_validate(observation)


@router.get("/{series_id}/observations/as-of", response_model=ObservationResponse, summary="Point-in-time value")
async def as_of(
    series_id: UUID,
    obs_date: date = Query(description="Date the value describes"),
    as_of_date: date = Query(description="Knowledge cutoff"),
    db: AsyncSession = Depends(get_db),
) -> ObservationResponse:
    store = ObservationStore(db)
    await store.get_series(series_id)
    return observation_or_404(await store.as_of(series_id, obs_date, as_of_date), series_id, obs_date)


@router.get("/{series_id}/observations/latest", response_model=ObservationResponse, summary="Latest known value")
async def latest(
    series_id: UUID,
    obs_date: date = Query(description="Date the value describes"),
    db: AsyncSession = Depends(get_db),
) -> ObservationResponse:
    store = ObservationStore(db)
    await store.get_series(series_id)
    return observation_or_404(await store.latest(series_id, obs_date), series_id, obs_date)


@router.get(
    "/{series_id}/observations/history",
    response_model=list[ObservationResponse],
    summary="Every version of one date",
)
async def history(
    series_id: UUID,
    obs_date: date = Query(description="Date the value describes"),
    db: AsyncSession = Depends(get_db),
) -> list[ObservationResponse]:
    store = ObservationStore(db)
    await store.get_series(series_id)
    return [ObservationResponse.model_validate(o) for o in await store.history(series_id, obs_date)]


@router.get("/{series_id}/gaps", response_model=GapsResponse, summary="Missing grid periods")
async def gaps(
    series_id: UUID,
    start: date = Query(),
    end: date = Query(),
    db: AsyncSession = Depends(get_db),
) -> GapsResponse:
    if start > end:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="start must not be after end")
    store = ObservationStore(db)
    series = await store.get_series(series_id)
    missing = await store.find_gaps(series_id, start, end)
    return GapsResponse(series_id=series_id, frequency=series.frequency, start=start, end=end, missing=missing)
