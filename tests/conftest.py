import asyncio
import pathlib
import sys
from typing import Any, Dict, List

import pytest

# Ensure the repository root is on the path for direct test runs.
REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from exam_pipeline.utils.types import Catalog, ExamDocument, PaperType, PersistResult, ReconciledQuestion
from exam_pipeline.workflow.utils.settings import default_settings


class ScriptedExtractor:
    """Returns canned payloads per document name; exceptions in the script are raised."""

    def __init__(self, script: Dict[str, Any], delays: Dict[str, float] | None = None) -> None:
        self.script = {name: list(value) if isinstance(value, list) else [value] for name, value in script.items()}
        self.delays = delays or {}
        self.calls: List[str] = []

    async def extract(self, document, catalog, kind):
        self.calls.append(document.name)
        delay = self.delays.get(document.name)
        if delay:
            await asyncio.sleep(delay)
        responses = self.script[document.name]
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class MemorySink:
    def __init__(self, fail_keys=(), raise_keys=()) -> None:
        self.saved: List[ReconciledQuestion] = []
        self.fail_keys = set(fail_keys)
        self.raise_keys = set(raise_keys)

    async def save(self, record, *, job_id=None):
        if record.storage_key in self.raise_keys:
            raise RuntimeError("disk full")
        if record.storage_key in self.fail_keys:
            return PersistResult(storage_key=record.storage_key, ok=False, error="constraint failed")
        self.saved.append(record)
        return PersistResult(storage_key=record.storage_key, ok=True, row_id=len(self.saved))

    def by_key(self):
        return {record.storage_key: record for record in self.saved}


def paper_payload(questions, *, label="Paper 2", year=2022, month=6, **extra):
    payload = {"paperTypeLabel": label, "period": {"year": year, "month": month}, "questions": questions}
    payload.update(extra)
    return payload


def markscheme_payload(solutions, *, label="Paper 2", year=2022, month=6, **extra):
    payload = {"paperTypeLabel": label, "period": {"year": year, "month": month}, "solutions": solutions}
    payload.update(extra)
    return payload


def question(number, topic="Waves", text=None, summary="Summary"):
    return {"number": number, "text": text or f"Question {number} text", "summary": summary, "topicLabel": topic}


def doc(name):
    return ExamDocument(name=name, text="")


@pytest.fixture
def catalog():
    return Catalog(
        paper_types=(
            PaperType(name="Paper 1", topics=("Algebra", "Geometry")),
            PaperType(name="Paper 2", topics=("Forces", "Energy", "Waves")),
        ),
        catalog_id="physics",
    )


@pytest.fixture
def settings():
    return default_settings(
        override={
            "retry_backoff_seconds": 0,
            "batch_timeout_seconds": None,
            "max_attempts": 3,
            "date_contract": "content",
            "duplicate_policy": "store_both",
        }
    )
