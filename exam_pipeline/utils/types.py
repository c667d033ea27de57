from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union


class TaskKind(str, Enum):
    PAPER = "paper"
    MARKSCHEME = "markscheme"


@dataclass(frozen=True)
class Period:
    """Sitting date of a paper or markscheme. Month and day may be unknown."""

    year: int
    month: Optional[int] = None
    day: Optional[int] = None

    @property
    def label(self) -> str:
        if self.month is None:
            return f"{self.year:04d}"
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class QuestionRecord:
    """One extracted question, with sub-parts already merged."""

    number: int
    text: str
    summary: str
    topic_label: str
    diagram: Any = None
    topic_index: Optional[int] = None


@dataclass
class SolutionRecord:
    """Marking objectives extracted for one question number."""

    number: int
    objectives: List[str] = field(default_factory=list)


@dataclass
class PaperExtraction:
    paper_type_label: str
    period: Period
    questions: List[QuestionRecord] = field(default_factory=list)
    paper_type_index: Optional[int] = None


@dataclass
class MarkschemeExtraction:
    paper_type_label: str
    period: Period
    solutions: List[SolutionRecord] = field(default_factory=list)
    paper_type_index: Optional[int] = None


Extraction = Union[PaperExtraction, MarkschemeExtraction]


@dataclass(frozen=True)
class PaperType:
    name: str
    topics: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Catalog:
    """Ordered, immutable list of canonical paper types and their topics."""

    paper_types: Tuple[PaperType, ...] = ()
    catalog_id: Optional[str] = None

    @property
    def paper_type_names(self) -> List[str]:
        return [paper_type.name for paper_type in self.paper_types]

    def topic_names(self, paper_type_index: int) -> List[str]:
        if paper_type_index < 0 or paper_type_index >= len(self.paper_types):
            return []
        return list(self.paper_types[paper_type_index].topics)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Catalog":
        paper_types: List[PaperType] = []
        for item in data.get("paper_types") or data.get("paperTypes") or []:
            if isinstance(item, str):
                paper_types.append(PaperType(name=item))
                continue
            topics = tuple(str(topic) for topic in item.get("topics") or [])
            paper_types.append(PaperType(name=str(item.get("name", "")), topics=topics))
        catalog_id = data.get("catalog_id") or data.get("catalogId") or data.get("workspace_id")
        return cls(paper_types=tuple(paper_types), catalog_id=str(catalog_id) if catalog_id is not None else None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "catalog_id": self.catalog_id,
            "paper_types": [{"name": pt.name, "topics": list(pt.topics)} for pt in self.paper_types],
        }


@dataclass(frozen=True)
class ExamDocument:
    """Handle on one uploaded paper or markscheme.

    ``text`` short-circuits OCR when the caller already has the document text.
    """

    name: str
    path: Optional[Path] = None
    text: Optional[str] = None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ExamDocument":
        resolved = Path(path)
        return cls(name=resolved.name, path=resolved)


@dataclass(frozen=True)
class ExtractionFailed:
    """Terminal outcome of a task that exhausted its retry budget."""

    task_id: str
    last_error: str
    kind: TaskKind
    document_name: str
    attempts: int

    @property
    def message(self) -> str:
        return f"{self.document_name}: {self.last_error}"


@dataclass
class ExtractionOutcome:
    task_id: str
    kind: TaskKind
    document: ExamDocument
    result: Optional[Extraction] = None
    failure: Optional[ExtractionFailed] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.result is not None and self.failure is None


@dataclass(frozen=True)
class ResolvedQuestion:
    record: QuestionRecord
    paper_type_index: int
    topic_index: int
    period: Period
    join_key: str
    storage_key: str
    source: str


@dataclass(frozen=True)
class ResolvedSolution:
    record: SolutionRecord
    paper_type_index: int
    period: Period
    join_key: str
    source: str


@dataclass(frozen=True)
class ResolutionDrop:
    """A record (or a whole paper) removed before the join, with the reason."""

    source: str
    stage: str
    label: str
    reason: str

    @property
    def message(self) -> str:
        return f"{self.source}: {self.stage} '{self.label}' {self.reason}"


@dataclass(frozen=True)
class ReconciledQuestion:
    question: ResolvedQuestion
    objectives: Optional[Tuple[str, ...]] = None

    @property
    def has_objectives(self) -> bool:
        return self.objectives is not None

    @property
    def join_key(self) -> str:
        return self.question.join_key

    @property
    def storage_key(self) -> str:
        return self.question.storage_key


@dataclass
class JoinResult:
    questions: List[ReconciledQuestion] = field(default_factory=list)
    unmatched_solutions: List[ResolvedSolution] = field(default_factory=list)


@dataclass(frozen=True)
class PersistResult:
    storage_key: str
    ok: bool
    error: Optional[str] = None
    row_id: Optional[int] = None


@dataclass
class OCRPageResult:
    """Raw OCR output for a single PDF page."""

    page: int
    raw_text: str
    cleaned_text: str
    confidence: float


def join_texts(pages: Sequence[OCRPageResult]) -> str:
    return "\n\n".join(f"[Page {page.page}]\n{page.cleaned_text}" for page in pages if page.cleaned_text)


class DuplicatePolicy(str, Enum):
    """What the store does when a storage key already has a row."""

    STORE_BOTH = "store_both"
    REJECT = "reject"
    OVERWRITE = "overwrite"

    @classmethod
    def from_value(cls, value: Optional[str | "DuplicatePolicy"]) -> "DuplicatePolicy":
        if isinstance(value, cls):
            return value
        normalized = (value or cls.STORE_BOTH.value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown duplicate policy {value!r}; expected one of {[m.value for m in cls]}")
