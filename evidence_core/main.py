"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from evidence_core.api import (
    approvals_router,
    contradictions_router,
    ingestion_router,
    lineage_router,
    observations_router,
    registry_router,
)
from evidence_core.core.config import settings
from evidence_core.core.exceptions import (
    AlreadySealed,
    ComplianceError,
    EngineError,
    EvidenceStorageError,
    InvalidReference,
    InvalidStateTransition,
    NotFound,
    WriteConflict,
)
from evidence_core.core.logging import get_logger, setup_logging
from evidence_core.db import dispose_engine
from evidence_core.schemas import ERROR_RESPONSES, ErrorResponse

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
VERSION = "0.1.0"

ROUTERS: list[tuple[APIRouter, str, str]] = [
    (registry_router, "/registry", "Registry"),
    (ingestion_router, "/ingestion", "Ingestion"),
    (observations_router, "/series", "Series"),
    (lineage_router, "/lineage", "Lineage"),
    (contradictions_router, "/contradictions", "Contradictions"),
    (approvals_router, "/content", "Content"),
]

DESCRIPTION = """\
Temporal evidence and governance engine.

- **Registry**: sources, approval policies and their audit trail
- **Ingestion**: runs and content-addressed raw evidence
- **Series**: versioned observations with point-in-time reads
- **Lineage**: provenance ledger and backward lineage tracing
- **Contradictions**: cross-source disagreement tickets
- **Content**: eight-stage approval pipeline for publication
"""

# Engine errors -> HTTP status; first match wins
ERROR_STATUS: list[tuple[type[EngineError], int]] = [
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidReference, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidStateTransition, status.HTTP_409_CONFLICT),
    (AlreadySealed, status.HTTP_409_CONFLICT),
    (WriteConflict, status.HTTP_409_CONFLICT),
    (EvidenceStorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ComplianceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("API starting", environment=settings.environment)
    yield
    await dispose_engine()


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render engine errors as ErrorResponse bodies."""
    code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    log = logger.warning if code < 500 else logger.error
    log("Request failed", path=request.url.path, error=type(exc).__name__, message=str(exc), status_code=code)

    details = None
    if isinstance(exc, WriteConflict):
        details = {"attempts": exc.attempts}
    elif isinstance(exc, NotFound):
        details = {"kind": exc.kind, "id": str(exc.ident)}
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(error=type(exc).__name__, message=str(exc), details=details).model_dump(),
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Evidence Core API",
        description=DESCRIPTION,
        version=VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(EngineError, engine_error_handler)

    for router, prefix, tag in ROUTERS:
        app.include_router(router, prefix=f"{API_PREFIX}{prefix}", tags=[tag], responses=ERROR_RESPONSES)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, str]:
        """Liveness probe; does not touch the database."""
        return {"status": "healthy", "version": VERSION}

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        return {"service": app.title, "version": VERSION, "docs": app.docs_url, "health": "/health"}

    return app


app = create_app()
