from __future__ import annotations

import os

from celery import Celery

BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", BROKER_URL)
RECONCILE_QUEUE = os.getenv("RECONCILE_QUEUE", "reconcile")

celery_app = Celery("exam_pipeline", broker=BROKER_URL, backend=RESULT_BACKEND, include=["exam_pipeline.task.reconcile"])

# Workers take one batch at a time.
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_routes={"exam_pipeline.reconcile.*": {"queue": RECONCILE_QUEUE}},
    task_default_queue=RECONCILE_QUEUE,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=int(os.getenv("RECONCILE_TASK_TIME_LIMIT", "3600")),
    result_expires=int(os.getenv("RECONCILE_RESULT_TTL", "86400")),
    task_always_eager=os.getenv("CELERY_TASK_ALWAYS_EAGER", "").lower() in {"1", "true", "yes"},
    task_eager_propagates=True,
)
