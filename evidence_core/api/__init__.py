"""API routers for the evidence and governance engine."""

from evidence_core.api.approvals import router as approvals_router
from evidence_core.api.contradictions import router as contradictions_router
from evidence_core.api.ingestion import router as ingestion_router
from evidence_core.api.lineage import router as lineage_router
from evidence_core.api.observations import router as observations_router
from evidence_core.api.sources import router as registry_router

__all__ = [
    "approvals_router",
    "contradictions_router",
    "ingestion_router",
    "lineage_router",
    "observations_router",
    "registry_router",
]
