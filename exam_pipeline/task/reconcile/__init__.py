from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from celery_app import celery_app  # type: ignore
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.workflow.batch import run_batch_request
from exam_pipeline.workflow.events import LoggingObserver, RedisProgressObserver
from exam_pipeline.workflow.utils.request_models import BatchRequest, batch_settings
from exam_pipeline.workflow.utils.settings import default_settings

logger = get_logger(__name__)


@celery_app.task(name="exam_pipeline.reconcile.batch", bind=True)
def reconcile_batch_task(self, payload: Dict[str, Any], settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a reconciliation batch on a worker and return the report payload."""
    request = BatchRequest(**payload)
    cfg = batch_settings(request, default_settings(override=settings))
    logger.info("Worker picked up batch | job=%s task=%s papers=%s markschemes=%s", cfg.job_id, self.request.id, len(request.papers), len(request.markschemes))
    observers = [LoggingObserver(), RedisProgressObserver(cfg.progress_redis_url)]
    report = asyncio.run(run_batch_request(request, cfg, observers=observers))
    return report.to_payload()


__all__ = ["reconcile_batch_task"]
