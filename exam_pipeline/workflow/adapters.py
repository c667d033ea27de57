"""Normalize the upstream extraction formats into one canonical payload shape.

Extractors disagree on how they report the sitting and the paper type: some send a
``"YYYY-MM-P"`` paper identifier, others a paper type name plus a numeric or named
month, and topics arrive either by name or by catalog index. Everything downstream
(validation, resolution, keying) only ever sees::

    {"paperTypeLabel": str | None, "paperTypeIndex": int | None,
     "period": {"year": ..., "month": ..., "day": ...},
     "questions": [{"number", "text", "summary", "topicLabel", "topicIndex", "diagram"}]}

or the same envelope with ``"solutions": [{"number", "objectives"}]``. A reported
index is kept next to its label so resolution can use it without re-matching names.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from exam_pipeline.errors import ExtractionValidationError
from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog, TaskKind
from exam_pipeline.workflow.catalog import resolve_label

logger = get_logger(__name__)

MONTH_MAP: Dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

PAPER_IDENTIFIER_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])-([0-9])$")
SOLUTION_ID_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])-(\d+)-(\d+)$")
_NUMERIC_PERIOD_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2}|2100)[-_.](0?[1-9]|1[0-2])(?!\d)")
_YEAR_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2}|2100)(?!\d)")
_WORD_RE = re.compile(r"[a-z]+")


def parse_paper_identifier(identifier: str) -> Tuple[int, int, int]:
    """Split ``"2022-06-1"`` into ``(2022, 6, 1)``."""
    match = PAPER_IDENTIFIER_RE.match((identifier or "").strip())
    if not match:
        raise ExtractionValidationError(
            f'Invalid paper identifier "{identifier}": expected "YYYY-MM-P", e.g. "2022-06-1"'
        )
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def parse_solution_id(solution_id: str) -> Optional[Tuple[int, int, int, int]]:
    """Split ``"2022-06-1-3"`` into ``(year, month, paper_type_index, question_number)``."""
    match = SOLUTION_ID_RE.match((solution_id or "").strip())
    if not match:
        return None
    return tuple(int(group) for group in match.groups())  # type: ignore[return-value]


def period_from_filename(name: str) -> Tuple[Optional[int], Optional[int]]:
    """Best-effort ``(year, month)`` from names like ``physics_june_2022_p2.pdf``."""
    stem = Path(name).stem.lower()
    numeric = _NUMERIC_PERIOD_RE.search(stem)
    if numeric:
        return int(numeric.group(1)), int(numeric.group(2))
    year_match = _YEAR_RE.search(stem)
    year = int(year_match.group(1)) if year_match else None
    month = None
    for word in _WORD_RE.findall(stem):
        if word in MONTH_MAP:
            month = MONTH_MAP[word]
            break
    return year, month


def _coerce_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ExtractionValidationError(f"{field_name} must be a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ExtractionValidationError(f"{field_name} must be a number, got {value!r}")


def _coerce_month(value: Any) -> Optional[int]:
    if isinstance(value, str) and value.strip().lower() in MONTH_MAP:
        return MONTH_MAP[value.strip().lower()]
    return _coerce_int(value, "month")


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def _envelope(payload: Any, catalog: Catalog) -> Dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise ExtractionValidationError(f"extraction returned {type(payload).__name__}, expected an object")

    raw_period = payload.get("period") if isinstance(payload.get("period"), Mapping) else payload
    year = _coerce_int(_first(raw_period, "year"), "year")
    month = _coerce_month(_first(raw_period, "month"))
    day = _coerce_int(_first(raw_period, "day"), "day")

    paper_type_index = _coerce_int(_first(payload, "paperTypeIndex", "paper_type_index"), "paperTypeIndex")
    identifier = _first(payload, "paperIdentifier", "paper_identifier", "paperDate")
    if identifier is not None:
        id_year, id_month, id_index = parse_paper_identifier(str(identifier))
        year = year if year is not None else id_year
        month = month if month is not None else id_month
        paper_type_index = paper_type_index if paper_type_index is not None else id_index

    names = catalog.paper_type_names
    if paper_type_index is not None and not 0 <= paper_type_index < len(names):
        raise ExtractionValidationError(f"paper type index {paper_type_index} outside catalog range 0-{len(names) - 1}")

    label = _first(payload, "paperTypeLabel", "paperTypeName", "paperType", "paper_type")
    if label is None and paper_type_index is not None:
        label = names[paper_type_index]

    return {
        "paperTypeLabel": str(label).strip() if label is not None else None,
        "paperTypeIndex": paper_type_index,
        "period": {"year": year, "month": month, "day": day},
    }


def _topic(item: Mapping[str, Any], catalog: Catalog, paper_type_index: Optional[int]) -> Tuple[Optional[str], Optional[int]]:
    """Topic label and, when it fits the paper type's topic list, the reported topic index."""
    label = _first(item, "topicLabel", "topicName", "topic")
    raw_index = item.get("topicIndex")
    index = raw_index if isinstance(raw_index, int) and not isinstance(raw_index, bool) else None
    if index is not None:
        topics = catalog.topic_names(paper_type_index) if paper_type_index is not None else []
        if 0 <= index < len(topics):
            return (str(label) if label is not None else topics[index]), index
        logger.warning("Ignoring topic index outside catalog | index=%s paper_type=%s", index, paper_type_index)
    return (str(label) if label is not None else None), None


def normalize_paper_payload(payload: Any, catalog: Catalog) -> Dict[str, Any]:
    envelope = _envelope(payload, catalog)
    paper_type_index = envelope["paperTypeIndex"]
    if paper_type_index is None and envelope["paperTypeLabel"]:
        paper_type_index = resolve_label(envelope["paperTypeLabel"], catalog.paper_type_names)

    questions: List[Dict[str, Any]] = []
    raw_items = payload.get("questions")
    for position, item in enumerate(raw_items if isinstance(raw_items, list) else []):
        if not isinstance(item, Mapping):
            logger.warning("Skipping non-object question | position=%s value=%r", position, item)
            continue
        topic_label, topic_index = _topic(item, catalog, paper_type_index)
        questions.append(
            {
                "number": _first(item, "number", "questionNumber"),
                "text": _first(item, "text", "questionText"),
                "summary": _first(item, "summary"),
                "topicLabel": topic_label,
                "topicIndex": topic_index,
                "diagram": _first(item, "diagram", "diagramData"),
            }
        )
    envelope["questions"] = questions
    return envelope


def normalize_markscheme_payload(payload: Any, catalog: Catalog) -> Dict[str, Any]:
    envelope = _envelope(payload, catalog)
    period = envelope["period"]

    solutions: List[Dict[str, Any]] = []
    raw_items = payload.get("solutions")
    for position, item in enumerate(raw_items if isinstance(raw_items, list) else []):
        if not isinstance(item, Mapping):
            logger.warning("Skipping non-object solution | position=%s value=%r", position, item)
            continue
        number = _first(item, "number", "questionNumber")
        parsed_id = parse_solution_id(str(_first(item, "id", "solutionId", "questionId") or ""))
        if parsed_id:
            id_year, id_month, id_index, id_number = parsed_id
            number = number if number is not None else id_number
            if period["year"] is None:
                period["year"] = id_year
            if period["month"] is None:
                period["month"] = id_month
            if envelope["paperTypeIndex"] is None and 0 <= id_index < len(catalog.paper_types):
                envelope["paperTypeIndex"] = id_index
                if envelope["paperTypeLabel"] is None:
                    envelope["paperTypeLabel"] = catalog.paper_type_names[id_index]
        objectives = _first(item, "objectives", "solutionObjectives")
        if isinstance(objectives, str):
            objectives = [objectives]
        solutions.append({"number": number, "objectives": objectives})
    envelope["solutions"] = solutions
    return envelope


def normalize_payload(payload: Any, catalog: Catalog, kind: TaskKind) -> Dict[str, Any]:
    if kind == TaskKind.PAPER:
        return normalize_paper_payload(payload, catalog)
    return normalize_markscheme_payload(payload, catalog)


__all__ = [
    "MONTH_MAP",
    "normalize_markscheme_payload",
    "normalize_paper_payload",
    "normalize_payload",
    "parse_paper_identifier",
    "parse_solution_id",
    "period_from_filename",
]
