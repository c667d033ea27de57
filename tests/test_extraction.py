import asyncio
import time

import pytest

from conftest import ScriptedExtractor, doc, markscheme_payload, paper_payload, question
from exam_pipeline.utils.types import ExamDocument, Period, TaskKind
from exam_pipeline.workflow.events import EventBus, EventCollector, EventKind
from exam_pipeline.workflow.extraction import OBJECTIVES_PLACEHOLDER, DateContract, ExtractionTaskRunner


def run(runner, document, catalog, kind=TaskKind.PAPER):
    return asyncio.run(runner.run(document, catalog, kind, task_id="t-1"))


def test_valid_paper_is_accepted_on_first_attempt(catalog):
    extractor = ScriptedExtractor({"p.pdf": paper_payload([question(1), question(2, topic="Forces")])})

    outcome = run(ExtractionTaskRunner(extractor), doc("p.pdf"), catalog)

    assert outcome.ok
    assert outcome.attempts == 1
    assert outcome.result.paper_type_label == "Paper 2"
    assert outcome.result.period == Period(2022, 6)
    assert [q.number for q in outcome.result.questions] == [1, 2]


def test_collaborator_error_is_retried(catalog):
    collector = EventCollector()
    extractor = ScriptedExtractor({"p.pdf": [RuntimeError("quota exceeded"), paper_payload([question(1)])]})
    runner = ExtractionTaskRunner(extractor, events=EventBus([collector]))

    outcome = run(runner, doc("p.pdf"), catalog)

    assert outcome.ok
    assert outcome.attempts == 2
    assert collector.kinds() == [EventKind.TASK_STARTED, EventKind.TASK_RETRIED, EventKind.TASK_SUCCEEDED]


def test_retries_are_bounded_and_last_error_is_kept(catalog):
    extractor = ScriptedExtractor({"p.pdf": [RuntimeError("timeout"), paper_payload([question(1)], month=13)]})

    outcome = run(ExtractionTaskRunner(extractor), doc("p.pdf"), catalog)

    assert not outcome.ok
    assert extractor.calls == ["p.pdf"] * 3
    assert outcome.failure.attempts == 3
    assert outcome.failure.task_id == "t-1"
    assert outcome.failure.last_error == "Invalid month: 13 (expected 1-12)"
    assert outcome.failure.message == "p.pdf: Invalid month: 13 (expected 1-12)"


@pytest.mark.parametrize(
    "payload, error",
    [
        (paper_payload([]), "No questions extracted"),
        (paper_payload([question(1)], year=1899), "Invalid year: 1899 (expected 1900-2100)"),
        (paper_payload([question(1)], year=None), "Missing year"),
        (paper_payload([question(1)], label="  "), "Missing paper type"),
        (paper_payload([question(1)], period={"year": 2022, "month": 6, "day": 32}), "Invalid day: 32 (expected 1-31)"),
    ],
)
def test_structural_failures_exhaust_the_task(catalog, payload, error):
    outcome = run(ExtractionTaskRunner(ScriptedExtractor({"p.pdf": payload}), max_attempts=2), doc("p.pdf"), catalog)

    assert outcome.failure is not None
    assert outcome.failure.last_error == error
    assert outcome.attempts == 2


def test_malformed_questions_are_repaired_not_rejected(catalog):
    payload = paper_payload(
        [
            {"number": "abc", "text": "A wave travels along a string.", "topicLabel": "Waves"},
            {"number": 0, "text": "x" * 150, "summary": "", "topicLabel": "Forces"},
        ]
    )

    outcome = run(ExtractionTaskRunner(ScriptedExtractor({"p.pdf": payload})), doc("p.pdf"), catalog)

    first, second = outcome.result.questions
    assert (first.number, second.number) == (1, 2)
    assert first.summary == "Question about Waves: A wave travels along a string...."
    assert second.summary == f"Question about Forces: {'x' * 100}..."


def test_empty_objectives_get_the_placeholder(catalog):
    payload = markscheme_payload([{"number": 1, "objectives": []}, {"number": 2, "objectives": ["  ", 4.5]}])

    outcome = run(ExtractionTaskRunner(ScriptedExtractor({"ms.pdf": payload})), doc("ms.pdf"), catalog, TaskKind.MARKSCHEME)

    first, second = outcome.result.solutions
    assert first.objectives == [OBJECTIVES_PLACEHOLDER]
    assert second.objectives == ["4.5"]


def test_filename_contract_takes_the_year_from_the_file_name(catalog):
    payload = paper_payload([question(1)], year=None, month=None)
    document = ExamDocument(name="physics_june_2022_paper2.pdf", text="")

    content = run(ExtractionTaskRunner(ScriptedExtractor({document.name: payload}), max_attempts=1), document, catalog)
    filename = run(
        ExtractionTaskRunner(ScriptedExtractor({document.name: payload}), max_attempts=1, contract=DateContract.FILENAME),
        document,
        catalog,
    )

    assert content.failure.last_error == "Missing year"
    assert filename.result.period == Period(2022, 6)


def test_filename_contract_still_range_checks(catalog):
    payload = paper_payload([question(1)], year=2500)
    runner = ExtractionTaskRunner(ScriptedExtractor({"p.pdf": payload}), max_attempts=1, contract="filename")

    assert run(runner, doc("p.pdf"), catalog).failure.last_error == "Invalid year: 2500 (expected 1900-2100)"


def test_at_least_one_attempt_is_required(catalog):
    with pytest.raises(ValueError):
        ExtractionTaskRunner(ScriptedExtractor({}), max_attempts=0)


def test_waits_between_attempts_grow_from_the_backoff(catalog):
    collector = EventCollector()
    extractor = ScriptedExtractor({"p.pdf": [RuntimeError("timeout"), RuntimeError("timeout"), paper_payload([question(1)])]})
    runner = ExtractionTaskRunner(extractor, retry_backoff=0.01, events=EventBus([collector]))

    started = time.monotonic()
    outcome = run(runner, doc("p.pdf"), catalog)
    elapsed = time.monotonic() - started

    assert outcome.ok
    assert outcome.attempts == 3
    assert [event.payload["attempt"] for event in collector.of_kind(EventKind.TASK_RETRIED)] == [1, 2]
    # 0.01s then 0.02s
    assert elapsed >= 0.025
