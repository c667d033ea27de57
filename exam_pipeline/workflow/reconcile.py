"""Batch reconciliation of exam papers with their markschemes.

A batch runs in strict phases: every extraction task is launched at once and the
engine waits for all of them to settle before anything is resolved. Resolution,
keying and the join are then synchronous passes over immutable results, so the
join outcome depends only on the inputs and their order, never on which task
finished first. Reconciled questions are persisted one at a time and every
failure along the way ends up in the :class:`BatchReport` rather than aborting
the batch. Only authorization failures and the caller's timeout escape.
"""

from __future__ import annotations

import asyncio
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from exam_pipeline.errors import KeyBuildError
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import (
    Catalog,
    ExamDocument,
    ExtractionOutcome,
    JoinResult,
    MarkschemeExtraction,
    PaperExtraction,
    PersistResult,
    ReconciledQuestion,
    ResolutionDrop,
    ResolvedQuestion,
    ResolvedSolution,
    TaskKind,
)
from exam_pipeline.workflow.access import AllowAllAuthorizer, Authorizer
from exam_pipeline.workflow.catalog import CatalogResolver
from exam_pipeline.workflow.events import EventBus, EventKind
from exam_pipeline.workflow.extraction import ExtractionTaskRunner, Extractor
from exam_pipeline.workflow.keys import join_key, storage_key
from exam_pipeline.workflow.report import BatchReport, build_report
from exam_pipeline.workflow.utils.persistence import QuestionSink
from exam_pipeline.workflow.utils.settings import default_settings

logger = get_logger(__name__)


def resolve_paper(extraction: PaperExtraction, resolver: CatalogResolver, source: str) -> Tuple[List[ResolvedQuestion], List[ResolutionDrop]]:
    """Resolve one paper's labels and key its questions.

    Indexes reported by the extractor win over labels. An unknown paper type drops
    the whole paper; an unknown topic or a period without a month drops only the
    affected question.
    """
    paper_type_index = resolver.paper_type(extraction.paper_type_label, extraction.paper_type_index)
    if paper_type_index is None:
        reason = f"not in catalog; {len(extraction.questions)} questions dropped"
        return [], [ResolutionDrop(source=source, stage="paper type", label=extraction.paper_type_label, reason=reason)]

    resolved: List[ResolvedQuestion] = []
    drops: List[ResolutionDrop] = []
    for question in extraction.questions:
        topic_index = resolver.topic(paper_type_index, question.topic_label, question.topic_index)
        if topic_index is None:
            drops.append(ResolutionDrop(source=source, stage="topic", label=question.topic_label, reason=f"not in catalog (question {question.number})"))
            continue
        try:
            key = join_key(extraction.period, paper_type_index, question.number)
            resolved.append(
                ResolvedQuestion(
                    record=question,
                    paper_type_index=paper_type_index,
                    topic_index=topic_index,
                    period=extraction.period,
                    join_key=key,
                    storage_key=storage_key(key, topic_index),
                    source=source,
                )
            )
        except KeyBuildError as exc:
            drops.append(ResolutionDrop(source=source, stage="period", label=extraction.period.label, reason=f"cannot key question {question.number}: {exc}"))
    return resolved, drops


def resolve_markscheme(extraction: MarkschemeExtraction, resolver: CatalogResolver, source: str) -> Tuple[List[ResolvedSolution], List[ResolutionDrop]]:
    paper_type_index = resolver.paper_type(extraction.paper_type_label, extraction.paper_type_index)
    if paper_type_index is None:
        reason = f"not in catalog; {len(extraction.solutions)} solutions dropped"
        return [], [ResolutionDrop(source=source, stage="paper type", label=extraction.paper_type_label, reason=reason)]

    resolved: List[ResolvedSolution] = []
    drops: List[ResolutionDrop] = []
    for solution in extraction.solutions:
        try:
            key = join_key(extraction.period, paper_type_index, solution.number)
        except KeyBuildError as exc:
            drops.append(ResolutionDrop(source=source, stage="period", label=extraction.period.label, reason=f"cannot key solution {solution.number}: {exc}"))
            continue
        resolved.append(ResolvedSolution(record=solution, paper_type_index=paper_type_index, period=extraction.period, join_key=key, source=source))
    return resolved, drops


def join_records(questions: Sequence[ResolvedQuestion], solutions: Sequence[ResolvedSolution]) -> JoinResult:
    """Left outer join of questions onto solutions by join key.

    The first solution seen for a key wins. Questions without a solution are kept
    with ``objectives=None``; solutions whose key no question used are orphans.
    """
    index: Dict[str, ResolvedSolution] = {}
    for solution in solutions:
        index.setdefault(solution.join_key, solution)

    attached: set[str] = set()
    reconciled: List[ReconciledQuestion] = []
    for question in questions:
        solution = index.get(question.join_key)
        if solution is None:
            reconciled.append(ReconciledQuestion(question=question))
            continue
        attached.add(question.join_key)
        reconciled.append(ReconciledQuestion(question=question, objectives=tuple(solution.record.objectives)))

    orphans = [solution for solution in solutions if solution.join_key not in attached]
    return JoinResult(questions=reconciled, unmatched_solutions=orphans)


class ReconciliationEngine:
    """Runs a batch of paper and markscheme documents end to end."""

    def __init__(
        self,
        extractor: Extractor,
        sink: QuestionSink,
        *,
        authorizer: Authorizer | None = None,
        events: EventBus | None = None,
        settings: SimpleNamespace | None = None,
    ) -> None:
        self.settings = settings or default_settings()
        self.sink = sink
        self.authorizer = authorizer or AllowAllAuthorizer()
        self.events = events or EventBus()
        self.runner = ExtractionTaskRunner(
            extractor,
            max_attempts=int(getattr(self.settings, "max_attempts", 3)),
            retry_backoff=float(getattr(self.settings, "retry_backoff_seconds", 0.0) or 0.0),
            contract=getattr(self.settings, "date_contract", "content"),
            events=self.events,
        )

    async def run_batch(
        self,
        papers: Sequence[ExamDocument],
        markschemes: Sequence[ExamDocument],
        catalog: Catalog,
        *,
        principal: Any = None,
        job_id: str | None = None,
        timeout: float | None = None,
    ) -> BatchReport:
        job_id = job_id or str(uuid.uuid4())
        await self.authorizer.authorize(principal, catalog)

        limit = timeout if timeout is not None else getattr(self.settings, "batch_timeout_seconds", None)
        logger.info("Starting batch | job=%s papers=%s markschemes=%s catalog=%s timeout=%s", job_id, len(papers), len(markschemes), catalog.catalog_id, limit)
        try:
            if not limit:
                return await self._run(papers, markschemes, catalog, job_id)
            return await asyncio.wait_for(self._run(papers, markschemes, catalog, job_id), timeout=limit)
        except asyncio.TimeoutError:
            logger.error("Batch timed out; committed questions are kept | job=%s timeout=%ss", job_id, limit)
            raise
        finally:
            await self.events.drain()

    async def extract_all(self, papers: Sequence[ExamDocument], markschemes: Sequence[ExamDocument], catalog: Catalog, job_id: str) -> Tuple[List[ExtractionOutcome], List[ExtractionOutcome]]:
        paper_jobs = [self.runner.run(doc, catalog, TaskKind.PAPER, task_id=f"paper-{idx}", job_id=job_id) for idx, doc in enumerate(papers)]
        markscheme_jobs = [self.runner.run(doc, catalog, TaskKind.MARKSCHEME, task_id=f"markscheme-{idx}", job_id=job_id) for idx, doc in enumerate(markschemes)]
        settled = await asyncio.gather(*paper_jobs, *markscheme_jobs)
        return list(settled[: len(paper_jobs)]), list(settled[len(paper_jobs) :])

    def resolve(
        self,
        paper_outcomes: Sequence[ExtractionOutcome],
        markscheme_outcomes: Sequence[ExtractionOutcome],
        catalog: Catalog,
        job_id: Optional[str] = None,
    ) -> Tuple[List[ResolvedQuestion], List[ResolvedSolution], List[ResolutionDrop]]:
        resolver = CatalogResolver(catalog)
        questions: List[ResolvedQuestion] = []
        solutions: List[ResolvedSolution] = []
        drops: List[ResolutionDrop] = []

        for outcome in paper_outcomes:
            if not outcome.ok:
                continue
            resolved, dropped = resolve_paper(outcome.result, resolver, outcome.document.name)  # type: ignore[arg-type]
            questions.extend(resolved)
            drops.extend(dropped)
            for item in resolved:
                self.events.emit(EventKind.RECORD_RESOLVED, job_id=job_id, kind="question", doc=item.source, key=item.storage_key)

        for outcome in markscheme_outcomes:
            if not outcome.ok:
                continue
            resolved_solutions, dropped = resolve_markscheme(outcome.result, resolver, outcome.document.name)  # type: ignore[arg-type]
            solutions.extend(resolved_solutions)
            drops.extend(dropped)
            for solution in resolved_solutions:
                self.events.emit(EventKind.RECORD_RESOLVED, job_id=job_id, kind="solution", doc=solution.source, key=solution.join_key)

        for drop in drops:
            logger.warning("Dropped record | job=%s %s", job_id, drop.message)
            self.events.emit(EventKind.RECORD_DROPPED, job_id=job_id, doc=drop.source, stage=drop.stage, label=drop.label, reason=drop.reason)
        return questions, solutions, drops

    async def persist(self, questions: Sequence[ReconciledQuestion], job_id: str) -> List[Tuple[ReconciledQuestion, PersistResult]]:
        persisted: List[Tuple[ReconciledQuestion, PersistResult]] = []
        for record in questions:
            try:
                result = await self.sink.save(record, job_id=job_id)
            except Exception as exc:
                logger.warning("Question sink raised | job=%s key=%s", job_id, record.storage_key, exc_info=True)
                result = PersistResult(storage_key=record.storage_key, ok=False, error=str(exc) or type(exc).__name__)
            if result.ok:
                self.events.emit(EventKind.RECORD_PERSISTED, job_id=job_id, key=record.storage_key, objectives=record.has_objectives)
            else:
                self.events.emit(EventKind.PERSIST_FAILED, job_id=job_id, key=record.storage_key, error=result.error)
            persisted.append((record, result))
        return persisted

    async def _run(self, papers: Sequence[ExamDocument], markschemes: Sequence[ExamDocument], catalog: Catalog, job_id: str) -> BatchReport:
        paper_outcomes, markscheme_outcomes = await self.extract_all(papers, markschemes, catalog, job_id)
        questions, solutions, drops = self.resolve(paper_outcomes, markscheme_outcomes, catalog, job_id)

        joined = join_records(questions, solutions)
        matched = sum(1 for record in joined.questions if record.has_objectives)
        logger.info("Join completed | job=%s questions=%s matched=%s unmatched_solutions=%s", job_id, len(joined.questions), matched, len(joined.unmatched_solutions))
        self.events.emit(
            EventKind.JOIN_COMPLETED,
            job_id=job_id,
            questions=len(joined.questions),
            matched=matched,
            unmatched_questions=len(joined.questions) - matched,
            unmatched_solutions=len(joined.unmatched_solutions),
        )

        persisted = await self.persist(joined.questions, job_id)
        report = build_report(
            paper_outcomes=paper_outcomes,
            markscheme_outcomes=markscheme_outcomes,
            solutions=solutions,
            drops=drops,
            persisted=persisted,
            job_id=job_id,
        )
        logger.info(
            "Batch finished | job=%s success=%s papers=%s/%s markschemes=%s/%s saved=%s with_solutions=%s unmatched_solutions=%s",
            job_id,
            report.success,
            report.papers_processed,
            len(papers),
            report.markschemes_processed,
            len(markschemes),
            report.questions_saved,
            report.questions_with_solutions,
            report.unmatched_solutions,
        )
        self.events.emit(EventKind.BATCH_COMPLETED, job_id=job_id, success=report.success, saved=report.questions_saved)
        return report


__all__ = ["ReconciliationEngine", "join_records", "resolve_markscheme", "resolve_paper"]
