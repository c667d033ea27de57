from __future__ import annotations

from typing import Optional, Sequence

from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog

logger = get_logger(__name__)


def resolve_label(label: str | None, candidates: Sequence[str]) -> Optional[int]:
    """Return the index of the first candidate that contains, or is contained by, ``label``.

    Matching is case-insensitive on trimmed strings and follows catalog order, so
    earlier entries take precedence. ``None`` means the label is not in the catalog.
    """
    needle = (label or "").strip().lower()
    if not needle:
        return None
    for index, candidate in enumerate(candidates):
        name = (candidate or "").strip().lower()
        if not name:
            continue
        if needle in name or name in needle:
            return index
    return None


class CatalogResolver:
    """Resolves paper types and topics against one catalog.

    An index reported by the extractor is used as-is when it is inside the catalog;
    only free-text labels go through :func:`resolve_label`.
    """

    def __init__(self, catalog: Catalog) -> None:
        self.catalog = catalog
        self._paper_types = catalog.paper_type_names

    def paper_type(self, label: str | None, index: int | None = None) -> Optional[int]:
        if index is not None and 0 <= index < len(self._paper_types):
            return index
        resolved = resolve_label(label, self._paper_types)
        if resolved is None:
            logger.info("Paper type not in catalog | label=%r index=%s catalog=%s", label, index, self.catalog.catalog_id)
        return resolved

    def topic(self, paper_type_index: int, label: str | None, index: int | None = None) -> Optional[int]:
        topics = self.catalog.topic_names(paper_type_index)
        if index is not None and 0 <= index < len(topics):
            return index
        resolved = resolve_label(label, topics)
        if resolved is None:
            logger.info("Topic not in catalog | label=%r index=%s paper_type=%s", label, index, paper_type_index)
        return resolved


__all__ = ["CatalogResolver", "resolve_label"]
