from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Dict, Optional

from openai import OpenAI

from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import Catalog, ExamDocument, TaskKind
from exam_pipeline.workflow.documents import read_document_text

logger = get_logger(__name__)

MAX_DOCUMENT_CHARS = 60000

PAPER_PROMPT = (
    "TASK: Extract every question from a dated exam paper.\n"
    "PAPER TYPES (0-based index: name):\n{paper_types}\n"
    "TOPICS PER PAPER TYPE:\n{topics}\n"
    "Steps:\n"
    "1. Find the sitting year (4 digits) and month (1-12) in the paper header.\n"
    "2. Identify the paper type from the header; it must be one of the PAPER TYPES.\n"
    '3. Build paperIdentifier as "YYYY-MM-P" (zero-padded month, P = paper type index), e.g. "2022-06-1".\n'
    "4. For each main question (merge sub-parts 1a, 1b, 1(i) into question 1):\n"
    "   - questionNumber: the main number only\n"
    "   - questionText: the full text including all sub-parts\n"
    "   - summary: one sentence describing what is asked\n"
    "   - topicName: the closest topic from the list for this paper type\n"
    "Marking codes (M1, A1), mark allocations ([3]) and page numbers are not question numbers.\n"
    "Respond with strict JSON:\n"
    '{{"paperIdentifier": "2022-06-1", "paperTypeIndex": 1, "year": 2022, "month": 6,\n'
    ' "questions": [{{"questionNumber": 1, "questionText": "...", "summary": "...", "topicName": "..."}}]}}'
)

MARKSCHEME_PROMPT = (
    "TASK: Extract solutions from a dated markscheme.\n"
    "PAPER TYPES (0-based index: name):\n{paper_types}\n"
    "Steps:\n"
    "1. Find the year (4 digits) and month (1-12) in the document.\n"
    "2. Identify the paper type name from the header; it must match one of the PAPER TYPES.\n"
    "3. For each question, combine the marking objectives of all sub-parts under the main number.\n"
    "   Objectives must be specific and verifiable; split multi-step calculations into separate objectives.\n"
    "Marking codes (M1, A1, B1), mark allocations and page numbers are not question numbers.\n"
    "Respond with strict JSON:\n"
    '{{"paperTypeName": "...", "year": 2022, "month": 6,\n'
    ' "solutions": [{{"questionNumber": 1, "solutionObjectives": ["...", "..."]}}]}}'
)


def _extract_json(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        try:
            start = content.index("{")
            end = content.rindex("}")
            return json.loads(content[start : end + 1])
        except (ValueError, json.JSONDecodeError):
            logger.warning("Failed to parse JSON content: %s", content[:500])
            return {}


def _format_paper_types(catalog: Catalog) -> str:
    return "\n".join(f"{idx}: {name}" for idx, name in enumerate(catalog.paper_type_names)) or "(none)"


def _format_topics(catalog: Catalog) -> str:
    lines = []
    for idx, paper_type in enumerate(catalog.paper_types):
        topics = ", ".join(paper_type.topics) or "(none)"
        lines.append(f"{idx} ({paper_type.name}): {topics}")
    return "\n".join(lines) or "(none)"


class LLMExamExtractor:
    """OpenAI-backed extractor for exam papers and markschemes.

    If no API key is provided, it falls back to a dummy key and remains inactive;
    ``extract`` then raises, which the task runner records as a failed attempt.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        *,
        dummy_key: str = "sk-dummy",
        ocr_dpi: int = 300,
        ocr_lang: str = "eng",
    ) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", dummy_key)
        self.model = model
        self.dummy_key = dummy_key
        self.ocr_dpi = ocr_dpi
        self.ocr_lang = ocr_lang
        self._client: Optional[OpenAI] = None
        if self.api_key and self.api_key != self.dummy_key:
            self._client = OpenAI(api_key=self.api_key)

    @property
    def is_active(self) -> bool:
        return self._client is not None

    def build_prompt(self, catalog: Catalog, kind: TaskKind) -> str:
        if kind == TaskKind.PAPER:
            return PAPER_PROMPT.format(paper_types=_format_paper_types(catalog), topics=_format_topics(catalog))
        return MARKSCHEME_PROMPT.format(paper_types=_format_paper_types(catalog))

    def extract_sync(self, document: ExamDocument, catalog: Catalog, kind: TaskKind) -> Dict[str, Any]:
        if not self.is_active:
            raise RuntimeError("LLM client is not configured with a valid API key.")
        text = read_document_text(document, dpi=self.ocr_dpi, lang=self.ocr_lang)
        if not text.strip():
            raise ValueError(f"No text recovered from {document.name}")

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                temperature=0.1,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": self.build_prompt(catalog, kind)},
                    {"role": "user", "content": f"File: {document.name}\n\n{text[:MAX_DOCUMENT_CHARS]}"},
                ],
            )
        except Exception as exc:
            raise RuntimeError(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content or "{}"
        data = _extract_json(content)
        logger.info("LLM extraction | doc=%s kind=%s keys=%s", document.name, kind.value, sorted(data) if isinstance(data, dict) else type(data).__name__)
        return data

    async def extract(self, document: ExamDocument, catalog: Catalog, kind: TaskKind) -> Dict[str, Any]:
        return await asyncio.to_thread(self.extract_sync, document, catalog, kind)


__all__ = ["LLMExamExtractor", "MARKSCHEME_PROMPT", "PAPER_PROMPT"]
