from exam_pipeline.db.async_session import create_async_engine_and_session, normalize_db_url
from exam_pipeline.db.async_store import AsyncSQLAlchemyStore
from exam_pipeline.db.models import Base, BatchRun, PaperTypeRow, Question, TopicRow

__all__ = [
    "AsyncSQLAlchemyStore",
    "Base",
    "BatchRun",
    "PaperTypeRow",
    "Question",
    "TopicRow",
    "create_async_engine_and_session",
    "normalize_db_url",
]
