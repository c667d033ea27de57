from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol

from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from exam_pipeline.errors import ExtractionValidationError
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import (
    Catalog,
    ExamDocument,
    Extraction,
    ExtractionFailed,
    ExtractionOutcome,
    MarkschemeExtraction,
    PaperExtraction,
    Period,
    QuestionRecord,
    SolutionRecord,
    TaskKind,
)
from exam_pipeline.workflow.adapters import normalize_payload, period_from_filename
from exam_pipeline.workflow.events import EventBus, EventKind

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
YEAR_MIN = 1900
YEAR_MAX = 2100
OBJECTIVES_PLACEHOLDER = "Complete the question as per the markscheme"
SUMMARY_PREVIEW_CHARS = 100
RETRY_BACKOFF_MAX = 30.0


class DateContract(str, Enum):
    """How strictly the year must come back from the extractor.

    ``content``: the year must be read from the document body.
    ``filename``: the extractor may leave it null; it is then taken from the file name.
    """

    CONTENT = "content"
    FILENAME = "filename"

    @classmethod
    def from_value(cls, value: Optional[str | "DateContract"]) -> "DateContract":
        if isinstance(value, cls):
            return value
        normalized = (value or cls.CONTENT.value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.CONTENT


class Extractor(Protocol):
    async def extract(self, document: ExamDocument, catalog: Catalog, kind: TaskKind) -> Mapping[str, Any]:
        ...


def validate_period(raw: Mapping[str, Any], contract: DateContract, document_name: str) -> Period:
    year = raw.get("year")
    month = raw.get("month")
    day = raw.get("day")

    if contract == DateContract.FILENAME and (year is None or month is None):
        filename_year, filename_month = period_from_filename(document_name)
        year = year if year is not None else filename_year
        month = month if month is not None else filename_month
    if year is None:
        if contract == DateContract.CONTENT:
            raise ExtractionValidationError("Missing year")
        raise ExtractionValidationError(f"Missing year and none found in file name {document_name!r}")
    if not YEAR_MIN <= year <= YEAR_MAX:
        raise ExtractionValidationError(f"Invalid year: {year} (expected {YEAR_MIN}-{YEAR_MAX})")
    if month is not None and not 1 <= month <= 12:
        raise ExtractionValidationError(f"Invalid month: {month} (expected 1-12)")
    if day is not None and not 1 <= day <= 31:
        raise ExtractionValidationError(f"Invalid day: {day} (expected 1-31)")
    return Period(year=year, month=month, day=day)


def _valid_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 1 else None
    if isinstance(value, float) and value.is_integer() and value >= 1:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit() and int(value.strip()) >= 1:
        return int(value.strip())
    return None


def _repair_number(value: Any, position: int, document_name: str, what: str) -> int:
    number = _valid_number(value)
    if number is None:
        number = position + 1
        logger.warning("Repaired %s number | doc=%s position=%s raw=%r number=%s", what, document_name, position, value, number)
    return number


def _catalog_index(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


def _paper_type_label(payload: Mapping[str, Any]) -> str:
    label = (payload.get("paperTypeLabel") or "").strip()
    if not label:
        raise ExtractionValidationError("Missing paper type")
    return label


def validate_paper(payload: Mapping[str, Any], *, contract: DateContract, document_name: str) -> PaperExtraction:
    label = _paper_type_label(payload)
    period = validate_period(payload.get("period") or {}, contract, document_name)
    items = payload.get("questions") or []
    if not items:
        raise ExtractionValidationError("No questions extracted")

    questions: List[QuestionRecord] = []
    for position, item in enumerate(items):
        number = _repair_number(item.get("number"), position, document_name, "question")
        text = str(item.get("text") or "").strip()
        topic = str(item.get("topicLabel") or "").strip()
        summary = str(item.get("summary") or "").strip()
        if not summary:
            summary = f"Question about {topic}: {text[:SUMMARY_PREVIEW_CHARS]}..."
            logger.warning("Repaired question summary | doc=%s question=%s", document_name, number)
        questions.append(
            QuestionRecord(
                number=number,
                text=text,
                summary=summary,
                topic_label=topic,
                diagram=item.get("diagram"),
                topic_index=_catalog_index(item.get("topicIndex")),
            )
        )
    return PaperExtraction(paper_type_label=label, period=period, questions=questions, paper_type_index=_catalog_index(payload.get("paperTypeIndex")))


def _clean_objectives(raw: Any) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(objective).strip() for objective in raw if objective is not None and str(objective).strip()]


def validate_markscheme(payload: Mapping[str, Any], *, contract: DateContract, document_name: str) -> MarkschemeExtraction:
    label = _paper_type_label(payload)
    period = validate_period(payload.get("period") or {}, contract, document_name)
    items = payload.get("solutions") or []
    if not items:
        raise ExtractionValidationError("No solutions extracted")

    solutions: List[SolutionRecord] = []
    for position, item in enumerate(items):
        number = _repair_number(item.get("number"), position, document_name, "solution")
        objectives = _clean_objectives(item.get("objectives"))
        if not objectives:
            objectives = [OBJECTIVES_PLACEHOLDER]
            logger.warning("Repaired empty objectives | doc=%s solution=%s", document_name, number)
        solutions.append(SolutionRecord(number=number, objectives=objectives))
    return MarkschemeExtraction(paper_type_label=label, period=period, solutions=solutions, paper_type_index=_catalog_index(payload.get("paperTypeIndex")))


def _error_text(exc: BaseException | None) -> str:
    if exc is None:
        return "no attempt made"
    return str(exc) or type(exc).__name__


def _record_count(result: Extraction) -> int:
    if isinstance(result, PaperExtraction):
        return len(result.questions)
    return len(result.solutions)


class ExtractionTaskRunner:
    """Runs one extraction task with bounded retries and structural validation.

    Every attempt re-invokes the extractor for the whole document; an exception or a
    payload that fails validation counts as a failed attempt. Waits between attempts
    grow exponentially from ``retry_backoff`` seconds. After ``max_attempts`` the task
    settles as :class:`ExtractionFailed` instead of raising, so one bad document never
    takes its siblings down.
    """

    def __init__(
        self,
        extractor: Extractor,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff: float = 0.0,
        retry_backoff_max: float = RETRY_BACKOFF_MAX,
        contract: DateContract | str = DateContract.CONTENT,
        events: EventBus | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self.extractor = extractor
        self.max_attempts = max_attempts
        self.retry_backoff = max(0.0, float(retry_backoff))
        self.retry_backoff_max = max(0.0, float(retry_backoff_max))
        self.contract = DateContract.from_value(contract)
        self.events = events or EventBus()

    def validate(self, raw: Any, catalog: Catalog, document: ExamDocument, kind: TaskKind) -> Extraction:
        payload = normalize_payload(raw, catalog, kind)
        if kind == TaskKind.PAPER:
            return validate_paper(payload, contract=self.contract, document_name=document.name)
        return validate_markscheme(payload, contract=self.contract, document_name=document.name)

    def _retrying(self, job_id: str | None, base: Dict[str, Any]) -> AsyncRetrying:
        def announce_retry(state: RetryCallState) -> None:
            self.events.emit(EventKind.TASK_RETRIED, job_id=job_id, attempt=state.attempt_number, error=_error_text(state.outcome.exception()), **base)

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=self.retry_backoff_max),
            retry=retry_if_exception_type(Exception),
            before_sleep=announce_retry,
        )

    async def _attempt(self, document: ExamDocument, catalog: Catalog, kind: TaskKind, task_id: str, attempt: int) -> Extraction:
        try:
            raw = await self.extractor.extract(document, catalog, kind)
            return self.validate(raw, catalog, document, kind)
        except ExtractionValidationError as exc:
            logger.warning("Extraction rejected | task=%s doc=%s attempt=%s/%s error=%s", task_id, document.name, attempt, self.max_attempts, exc)
            raise
        except Exception:
            logger.warning("Extraction call failed | task=%s doc=%s attempt=%s/%s", task_id, document.name, attempt, self.max_attempts, exc_info=True)
            raise

    async def run(
        self,
        document: ExamDocument,
        catalog: Catalog,
        kind: TaskKind,
        *,
        task_id: str | None = None,
        job_id: str | None = None,
    ) -> ExtractionOutcome:
        task_id = task_id or f"{kind.value}-{uuid.uuid4().hex[:8]}"
        base: Dict[str, Any] = {"task": task_id, "kind": kind.value, "doc": document.name}
        self.events.emit(EventKind.TASK_STARTED, job_id=job_id, **base)

        try:
            async for attempt in self._retrying(job_id, base):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._attempt(document, catalog, kind, task_id, attempts)
        except RetryError as exc:
            last_error = _error_text(exc.last_attempt.exception())
            failure = ExtractionFailed(task_id=task_id, last_error=last_error, kind=kind, document_name=document.name, attempts=self.max_attempts)
            logger.error("Extraction failed | task=%s doc=%s attempts=%s error=%s", task_id, document.name, self.max_attempts, last_error)
            self.events.emit(EventKind.TASK_FAILED, job_id=job_id, attempts=self.max_attempts, error=last_error, **base)
            return ExtractionOutcome(task_id=task_id, kind=kind, document=document, failure=failure, attempts=self.max_attempts)

        logger.info("Extraction accepted | task=%s doc=%s attempt=%s records=%s", task_id, document.name, attempts, _record_count(result))
        self.events.emit(EventKind.TASK_SUCCEEDED, job_id=job_id, attempts=attempts, records=_record_count(result), **base)
        return ExtractionOutcome(task_id=task_id, kind=kind, document=document, result=result, attempts=attempts)


__all__ = [
    "DateContract",
    "ExtractionTaskRunner",
    "Extractor",
    "OBJECTIVES_PLACEHOLDER",
    "validate_markscheme",
    "validate_paper",
    "validate_period",
]
