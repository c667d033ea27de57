from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Iterable

from exam_pipeline.db.async_store import AsyncSQLAlchemyStore
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.workflow.access import Authorizer
from exam_pipeline.workflow.events import EventBus, Observer
from exam_pipeline.workflow.extraction import Extractor
from exam_pipeline.workflow.llm import LLMExamExtractor
from exam_pipeline.workflow.reconcile import ReconciliationEngine
from exam_pipeline.workflow.report import BatchReport
from exam_pipeline.workflow.utils.persistence import StoreQuestionSink, save_batch_report
from exam_pipeline.workflow.utils.request_models import BatchRequest

logger = get_logger(__name__)


class UnknownCatalogError(LookupError):
    pass


def build_extractor(settings: SimpleNamespace) -> LLMExamExtractor:
    extractor = LLMExamExtractor(
        api_key=settings.openai_api_key or None,
        model=settings.openai_model,
        ocr_dpi=settings.ocr_dpi,
        ocr_lang=settings.ocr_lang,
    )
    if not extractor.is_active:
        logger.warning("OpenAI key missing; every extraction attempt will fail | job=%s", settings.job_id)
    return extractor


async def run_batch_request(
    request: BatchRequest,
    settings: SimpleNamespace,
    *,
    extractor: Extractor | None = None,
    authorizer: Authorizer | None = None,
    observers: Iterable[Observer] = (),
) -> BatchReport:
    """Run one batch against the configured database and store its report."""
    job_id = settings.job_id
    store = AsyncSQLAlchemyStore(settings.db_url)
    await store.init_models()
    try:
        if request.catalog is not None:
            catalog = request.catalog.to_catalog()
        else:
            catalog = await store.load_catalog(request.catalog_id or "")
            if catalog is None:
                raise UnknownCatalogError(f"Unknown catalog {request.catalog_id!r}")

        sink = StoreQuestionSink(store, catalog_id=catalog.catalog_id, policy=settings.duplicate_policy)
        engine = ReconciliationEngine(
            extractor or build_extractor(settings),
            sink,
            authorizer=authorizer,
            events=EventBus(observers),
            settings=settings,
        )
        try:
            report = await engine.run_batch(
                [doc.to_document() for doc in request.papers],
                [doc.to_document() for doc in request.markschemes],
                catalog,
                principal=request.principal,
                job_id=job_id,
            )
        except asyncio.TimeoutError:
            await save_batch_report(store, job_id, {"jobId": job_id, "error": "timed out"}, status="timed_out")
            raise
        status = "completed" if report.success else "completed_with_failures"
        await save_batch_report(store, job_id, report.to_payload(), status=status)
        return report
    finally:
        await store.close()


__all__ = ["UnknownCatalogError", "build_extractor", "run_batch_request"]
