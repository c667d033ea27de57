from __future__ import annotations

from typing import Protocol

from exam_pipeline.db.async_store import AsyncSQLAlchemyStore
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import DuplicatePolicy, PersistResult, ReconciledQuestion
from exam_pipeline.workflow.keys import period_label

logger = get_logger(__name__)


class QuestionSink(Protocol):
    async def save(self, record: ReconciledQuestion, *, job_id: str | None = None) -> PersistResult:
        ...


class StoreQuestionSink:
    """Writes reconciled questions through :class:`AsyncSQLAlchemyStore`.

    Failures are logged and returned as a failed :class:`PersistResult`; ``save``
    does not raise.
    """

    def __init__(self, store: AsyncSQLAlchemyStore, *, catalog_id: str | None = None, policy: DuplicatePolicy | str = DuplicatePolicy.STORE_BOTH) -> None:
        self.store = store
        self.catalog_id = catalog_id
        self.policy = DuplicatePolicy.from_value(policy)

    async def save(self, record: ReconciledQuestion, *, job_id: str | None = None) -> PersistResult:
        question = record.question
        try:
            row_id = await self.store.save_question(
                storage_key=question.storage_key,
                join_key=question.join_key,
                paper_type_index=question.paper_type_index,
                topic_index=question.topic_index,
                question_number=question.record.number,
                question_text=question.record.text,
                summary=question.record.summary,
                objectives=record.objectives,
                paper_date=period_label(question.period),
                catalog_id=self.catalog_id,
                diagram=question.record.diagram,
                job_id=job_id,
                policy=self.policy,
            )
        except Exception as exc:
            logger.warning("Failed to persist question | job=%s key=%s policy=%s", job_id, question.storage_key, self.policy.value, exc_info=True)
            return PersistResult(storage_key=question.storage_key, ok=False, error=str(exc) or type(exc).__name__)
        logger.info("Persisted question | job=%s key=%s row=%s objectives=%s", job_id, question.storage_key, row_id, record.has_objectives)
        return PersistResult(storage_key=question.storage_key, ok=True, row_id=row_id)


async def save_batch_report(store: AsyncSQLAlchemyStore, job_id: str | None, report: dict, *, status: str = "completed") -> bool:
    if not job_id:
        return False
    try:
        await store.save_batch_report(job_id, report, status=status)
        logger.info("Stored batch report | job=%s status=%s", job_id, status)
        return True
    except Exception:
        logger.warning("Failed to store batch report | job=%s", job_id, exc_info=True)
        return False


__all__ = ["QuestionSink", "StoreQuestionSink", "save_batch_report"]
