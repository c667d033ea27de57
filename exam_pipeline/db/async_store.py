from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import delete, select

from exam_pipeline.db.async_session import create_async_engine_and_session, normalize_db_url
from exam_pipeline.db.models import Base, BatchRun, PaperTypeRow, Question, TopicRow
from exam_pipeline.errors import DuplicateQuestionError
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog, DuplicatePolicy, PaperType

logger = get_logger(__name__)


def _question_to_dict(row: Question) -> Dict[str, Any]:
    return {
        "id": row.id,
        "catalog_id": row.catalog_id,
        "paper_type_index": row.paper_type_index,
        "topic_index": row.topic_index,
        "question_number": row.question_number,
        "question_text": row.question_text,
        "summary": row.summary,
        "solution_objectives": row.solution_objectives,
        "diagram": row.diagram,
        "paper_date": row.paper_date,
        "join_key": row.join_key,
        "storage_key": row.storage_key,
        "job_id": row.job_id,
    }


class AsyncSQLAlchemyStore:
    """Async SQLAlchemy persistence for catalogs, reconciled questions and batch reports."""

    def __init__(self, db_url: Union[str, Path]):
        self.db_url = normalize_db_url(db_url)
        self.engine, self.SessionLocal = create_async_engine_and_session(self.db_url)

    async def init_models(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # Catalog helpers
    async def save_catalog(self, catalog: Catalog) -> None:
        if not catalog.catalog_id:
            raise ValueError("catalog_id is required to persist a catalog.")
        async with self.SessionLocal() as session:
            existing = (await session.execute(select(PaperTypeRow.id).where(PaperTypeRow.catalog_id == catalog.catalog_id))).scalars().all()
            if existing:
                await session.execute(delete(TopicRow).where(TopicRow.paper_type_id.in_(existing)))
                await session.execute(delete(PaperTypeRow).where(PaperTypeRow.catalog_id == catalog.catalog_id))
            for position, paper_type in enumerate(catalog.paper_types):
                row = PaperTypeRow(catalog_id=catalog.catalog_id, position=position, name=paper_type.name)
                session.add(row)
                await session.flush()
                session.add_all([TopicRow(paper_type_id=row.id, position=idx, name=topic) for idx, topic in enumerate(paper_type.topics)])
            await session.commit()

    async def load_catalog(self, catalog_id: str) -> Optional[Catalog]:
        async with self.SessionLocal() as session:
            stmt = select(PaperTypeRow).where(PaperTypeRow.catalog_id == catalog_id).order_by(PaperTypeRow.position.asc())
            rows: Sequence[PaperTypeRow] = (await session.execute(stmt)).scalars().all()
            if not rows:
                return None
            paper_types: List[PaperType] = []
            for row in rows:
                topic_stmt = select(TopicRow.name).where(TopicRow.paper_type_id == row.id).order_by(TopicRow.position.asc())
                topics = (await session.execute(topic_stmt)).scalars().all()
                paper_types.append(PaperType(name=row.name, topics=tuple(topics)))
            return Catalog(paper_types=tuple(paper_types), catalog_id=catalog_id)

    # Question helpers
    async def save_question(
        self,
        *,
        storage_key: str,
        join_key: str,
        paper_type_index: int,
        topic_index: int,
        question_number: int,
        question_text: str,
        summary: str | None,
        objectives: Sequence[str] | None,
        paper_date: str,
        catalog_id: str | None = None,
        diagram: Any = None,
        job_id: str | None = None,
        policy: DuplicatePolicy = DuplicatePolicy.STORE_BOTH,
    ) -> int:
        """Write one question and return its row id, honouring the duplicate policy."""
        stored_objectives = list(objectives) if objectives is not None else None
        async with self.SessionLocal() as session:
            existing: Question | None = None
            if policy != DuplicatePolicy.STORE_BOTH:
                stmt = select(Question).where(Question.storage_key == storage_key, Question.catalog_id == catalog_id).order_by(Question.id.asc())
                existing = (await session.execute(stmt)).scalars().first()
            if existing is not None and policy == DuplicatePolicy.REJECT:
                raise DuplicateQuestionError(f"question {storage_key} already stored (row {existing.id})")
            if existing is not None:
                existing.question_text = question_text
                existing.summary = summary
                existing.solution_objectives = stored_objectives
                existing.diagram = diagram
                existing.paper_date = paper_date
                existing.job_id = job_id
                await session.commit()
                logger.info("Overwrote question | key=%s row=%s job=%s", storage_key, existing.id, job_id)
                return existing.id
            row = Question(
                catalog_id=catalog_id,
                paper_type_index=paper_type_index,
                topic_index=topic_index,
                question_number=question_number,
                question_text=question_text,
                summary=summary,
                solution_objectives=stored_objectives,
                diagram=diagram,
                paper_date=paper_date,
                join_key=join_key,
                storage_key=storage_key,
                job_id=job_id,
            )
            session.add(row)
            await session.commit()
            return row.id

    async def find_questions(self, storage_key: str, *, catalog_id: str | None = None) -> List[Dict[str, Any]]:
        async with self.SessionLocal() as session:
            stmt = select(Question).where(Question.storage_key == storage_key)
            if catalog_id is not None:
                stmt = stmt.where(Question.catalog_id == catalog_id)
            rows = (await session.execute(stmt.order_by(Question.id.asc()))).scalars().all()
            return [_question_to_dict(row) for row in rows]

    async def load_questions(self, *, catalog_id: str | None = None, job_id: str | None = None) -> List[Dict[str, Any]]:
        async with self.SessionLocal() as session:
            stmt = select(Question)
            if catalog_id is not None:
                stmt = stmt.where(Question.catalog_id == catalog_id)
            if job_id is not None:
                stmt = stmt.where(Question.job_id == job_id)
            rows = (await session.execute(stmt.order_by(Question.id.asc()))).scalars().all()
            return [_question_to_dict(row) for row in rows]

    # Batch reports
    async def save_batch_report(self, job_id: str, report: dict, *, status: str = "completed") -> None:
        if not job_id:
            return
        async with self.SessionLocal() as session:
            existing = await session.get(BatchRun, job_id)
            if existing:
                existing.report = report or {}
                existing.status = status
            else:
                session.add(BatchRun(job_id=job_id, report=report or {}, status=status))
            await session.commit()

    async def load_batch_report(self, job_id: str) -> Optional[Dict[str, Any]]:
        async with self.SessionLocal() as session:
            row = await session.get(BatchRun, job_id)
            if not row:
                return None
            return {"job_id": row.job_id, "status": row.status, "report": row.report or {}}
