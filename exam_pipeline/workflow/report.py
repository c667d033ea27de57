from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from exam_pipeline.utils.types import (
    ExtractionOutcome,
    PersistResult,
    ReconciledQuestion,
    ResolutionDrop,
    ResolvedSolution,
)


class BatchReport(BaseModel):
    """Summary of one reconciliation batch; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = Field(..., description="True when no extraction task exhausted its retries")
    job_id: Optional[str] = Field(None, description="Batch job identifier")
    papers_processed: int = 0
    papers_failed: int = 0
    markschemes_processed: int = 0
    markschemes_failed: int = 0
    questions_extracted: int = 0
    questions_saved: int = 0
    questions_with_solutions: int = 0
    questions_without_solutions: int = 0
    unmatched_solutions: int = 0
    failed_papers: List[str] = Field(default_factory=list, description="'<document>: <last error>' per failed paper")
    failed_markschemes: List[str] = Field(default_factory=list, description="'<document>: <last error>' per failed markscheme")
    resolution_drops: int = 0
    dropped_records: List[str] = Field(default_factory=list)
    persistence_failures: int = 0
    failed_writes: List[str] = Field(default_factory=list)
    unmatched_solution_keys: List[str] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


def _split(outcomes: Iterable[ExtractionOutcome]) -> Tuple[int, List[str]]:
    processed = 0
    failed: List[str] = []
    for outcome in outcomes:
        if outcome.ok:
            processed += 1
        elif outcome.failure is not None:
            failed.append(outcome.failure.message)
    return processed, failed


def build_report(
    *,
    paper_outcomes: Sequence[ExtractionOutcome],
    markscheme_outcomes: Sequence[ExtractionOutcome],
    solutions: Sequence[ResolvedSolution],
    drops: Sequence[ResolutionDrop],
    persisted: Sequence[Tuple[ReconciledQuestion, PersistResult]],
    job_id: str | None = None,
) -> BatchReport:
    """Aggregate per-stage results into a report. Pure; performs no I/O."""
    papers_processed, failed_papers = _split(paper_outcomes)
    markschemes_processed, failed_markschemes = _split(markscheme_outcomes)
    questions_extracted = sum(len(outcome.result.questions) for outcome in paper_outcomes if outcome.ok)  # type: ignore[union-attr]

    saved = [question for question, result in persisted if result.ok]
    failed_writes = [f"{result.storage_key}: {result.error}" for _, result in persisted if not result.ok]
    with_solutions = sum(1 for question in saved if question.has_objectives)

    saved_keys = {question.join_key for question in saved}
    unmatched_keys: List[str] = []
    for solution in solutions:
        if solution.join_key not in saved_keys and solution.join_key not in unmatched_keys:
            unmatched_keys.append(solution.join_key)

    return BatchReport(
        success=not failed_papers and not failed_markschemes,
        job_id=job_id,
        papers_processed=papers_processed,
        papers_failed=len(failed_papers),
        markschemes_processed=markschemes_processed,
        markschemes_failed=len(failed_markschemes),
        questions_extracted=questions_extracted,
        questions_saved=len(saved),
        questions_with_solutions=with_solutions,
        questions_without_solutions=len(saved) - with_solutions,
        unmatched_solutions=len(unmatched_keys),
        failed_papers=failed_papers,
        failed_markschemes=failed_markschemes,
        resolution_drops=len(drops),
        dropped_records=[drop.message for drop in drops],
        persistence_failures=len(failed_writes),
        failed_writes=failed_writes,
        unmatched_solution_keys=unmatched_keys,
    )


__all__ = ["BatchReport", "build_report"]
