"""
Celery app for the scheduler-facing workers.

Two queues: `approvals` runs approval pipeline stages one content item at
a time, `contradictions` runs detection and the nightly sweep.

    celery -A evidence_core.workers.celery_app worker -l info -P solo -Q approvals,contradictions
    celery -A evidence_core.workers.celery_app beat -l info

Tasks call asyncio.run() internally, hence the solo pool.
"""

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from evidence_core.core.config import settings

TASKS = "evidence_core.workers.tasks"

celery_app = Celery("evidence_core", broker=settings.celery_broker, backend=settings.celery_backend)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.celery_task_always_eager,
    task_track_started=True,
    # A stage run is recorded in the database; redelivery after a crash reruns it
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=60 * 60 * 24,
    task_queues=(Queue("approvals"), Queue("contradictions")),
    task_default_queue="approvals",
    task_routes={
        f"{TASKS}.advance_pipeline_task": {"queue": "approvals"},
        f"{TASKS}.run_stage_task": {"queue": "approvals"},
        f"{TASKS}.detect_contradictions_task": {"queue": "contradictions"},
        f"{TASKS}.sweep_contradictions_task": {"queue": "contradictions"},
    },
    beat_schedule={
        "sweep-contradictions-nightly": {
            "task": f"{TASKS}.sweep_contradictions_task",
            "schedule": crontab(hour=2, minute=0),
        },
    },
)

celery_app.autodiscover_tasks(["evidence_core.workers"])
