"""
Workers module - Celery tasks for scheduler-facing triggers.

Architecture:
    FastAPI API / celery beat  ──dispatch──>  Redis Queue  ──consume──>  Celery Worker
                                                                            │
    PostgreSQL  <──stage runs, contradiction tickets, ledger entries────────┘

Start worker:
    celery -A evidence_core.workers.celery_app worker -l info -P solo -Q approvals,contradictions

The -P solo pool is required because tasks use asyncio.run() internally.
"""

from evidence_core.workers.celery_app import celery_app

__all__ = [
    "celery_app",
]
