from __future__ import annotations

from exam_pipeline.errors import KeyBuildError
from exam_pipeline.utils.types import Period


def period_label(period: Period) -> str:
    """``YYYY-MM`` label stored alongside each question."""
    if period.month is None:
        raise KeyBuildError(f"period {period.year} has no month")
    return f"{period.year:04d}-{period.month:02d}"


def join_key(period: Period, paper_type_index: int, question_number: int) -> str:
    """Key shared by a question and its solution: ``YYYY-MM-<paperType>-<question>``."""
    if period.month is None:
        raise KeyBuildError(f"period {period.year} has no month; cannot key question {question_number}")
    if not 1 <= period.month <= 12:
        raise KeyBuildError(f"month {period.month} out of range")
    if paper_type_index < 0:
        raise KeyBuildError(f"negative paper type index {paper_type_index}")
    if question_number < 1:
        raise KeyBuildError(f"question number {question_number} must be positive")
    return f"{period_label(period)}-{paper_type_index}-{question_number}"


def storage_key(join_key_value: str, topic_index: int) -> str:
    if topic_index < 0:
        raise KeyBuildError(f"negative topic index {topic_index}")
    return f"{join_key_value}-{topic_index}"


__all__ = ["join_key", "period_label", "storage_key"]
