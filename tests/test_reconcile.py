import asyncio
import logging

import pytest

from conftest import MemorySink, ScriptedExtractor, doc, markscheme_payload, paper_payload, question
from exam_pipeline.errors import AuthorizationError
from exam_pipeline.utils.types import Catalog, PaperType
from exam_pipeline.workflow.access import CreatorAuthorizer
from exam_pipeline.workflow.events import EventBus, EventCollector, EventKind
from exam_pipeline.workflow.reconcile import ReconciliationEngine

OBJECTIVES = ["Use v = f * lambda", "Substitute f = 50 Hz", "v = 25 m/s"]


def run_batch(extractor, sink, catalog, settings, papers, markschemes, **kwargs):
    engine_kwargs = {key: kwargs.pop(key) for key in ("authorizer", "events") if key in kwargs}
    engine = ReconciliationEngine(extractor, sink, settings=settings, **engine_kwargs)
    return asyncio.run(engine.run_batch([doc(name) for name in papers], [doc(name) for name in markschemes], catalog, **kwargs))


def test_question_is_joined_with_its_solution(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p2.pdf": paper_payload([question(3, topic="Waves")]),
            "p2_ms.pdf": markscheme_payload([{"number": 3, "objectives": OBJECTIVES}]),
        }
    )
    sink = MemorySink()

    report = run_batch(extractor, sink, catalog, settings, ["p2.pdf"], ["p2_ms.pdf"], job_id="job-1")

    (saved,) = sink.saved
    assert saved.join_key == "2022-06-1-3"
    assert saved.storage_key == "2022-06-1-3-2"
    assert saved.objectives == tuple(OBJECTIVES)
    assert report.success
    assert report.job_id == "job-1"
    assert report.questions_extracted == 1
    assert report.questions_saved == 1
    assert report.questions_with_solutions == 1
    assert report.questions_without_solutions == 0
    assert report.unmatched_solutions == 0


def test_question_without_markscheme_is_still_saved(catalog, settings):
    extractor = ScriptedExtractor({"p2.pdf": paper_payload([question(3)])})
    sink = MemorySink()

    report = run_batch(extractor, sink, catalog, settings, ["p2.pdf"], [])

    assert sink.saved[0].objectives is None
    assert report.success
    assert report.questions_saved == 1
    assert report.questions_without_solutions == 1


def test_unresolvable_topic_drops_only_that_question(catalog, settings, caplog):
    extractor = ScriptedExtractor({"p2.pdf": paper_payload([question(1, topic="Quantum Foam"), question(2, topic="Energy")])})
    sink = MemorySink()

    with caplog.at_level(logging.WARNING):
        report = run_batch(extractor, sink, catalog, settings, ["p2.pdf"], [])

    assert list(sink.by_key()) == ["2022-06-1-2-1"]
    assert report.success
    assert report.questions_extracted == 2
    assert report.questions_saved == 1
    assert report.resolution_drops == 1
    assert "Quantum Foam" in report.dropped_records[0]
    assert "Quantum Foam" in caplog.text


def test_unknown_paper_type_drops_the_whole_paper(catalog, settings):
    extractor = ScriptedExtractor({"p9.pdf": paper_payload([question(1), question(2)], label="Paper 9")})

    report = run_batch(extractor, MemorySink(), catalog, settings, ["p9.pdf"], [])

    assert report.success
    assert report.papers_processed == 1
    assert report.questions_saved == 0
    assert report.resolution_drops == 1


def test_failed_task_does_not_abort_siblings(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "bad.pdf": RuntimeError("boom"),
            "good.pdf": paper_payload([question(1)]),
            "good_ms.pdf": markscheme_payload([{"number": 1, "objectives": ["a"]}]),
        }
    )
    sink = MemorySink()

    report = run_batch(extractor, sink, catalog, settings, ["bad.pdf", "good.pdf"], ["good_ms.pdf"])

    assert not report.success
    assert report.papers_processed == 1
    assert report.papers_failed == 1
    assert report.failed_papers == ["bad.pdf: boom"]
    assert report.markschemes_processed == 1
    assert report.questions_with_solutions == 1
    assert extractor.calls.count("bad.pdf") == 3


def test_first_markscheme_in_input_order_wins_regardless_of_completion(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p.pdf": paper_payload([question(1)]),
            "slow_ms.pdf": markscheme_payload([{"number": 1, "objectives": ["from slow"]}]),
            "fast_ms.pdf": markscheme_payload([{"number": 1, "objectives": ["from fast"]}]),
        },
        delays={"slow_ms.pdf": 0.05},
    )
    sink = MemorySink()

    report = run_batch(extractor, sink, catalog, settings, ["p.pdf"], ["slow_ms.pdf", "fast_ms.pdf"])

    assert sink.saved[0].objectives == ("from slow",)
    assert report.unmatched_solutions == 0


def test_orphan_solutions_are_counted_once(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p.pdf": paper_payload([question(1), question(2, topic="Forces")]),
            "ms.pdf": markscheme_payload([{"number": 1, "objectives": ["a"]}, {"number": 9, "objectives": ["b"]}]),
            "ms_copy.pdf": markscheme_payload([{"number": 9, "objectives": ["c"]}]),
        }
    )

    report = run_batch(extractor, MemorySink(), catalog, settings, ["p.pdf"], ["ms.pdf", "ms_copy.pdf"])

    assert report.unmatched_solutions == 1
    assert report.unmatched_solution_keys == ["2022-06-1-9"]
    assert report.questions_with_solutions + report.questions_without_solutions == report.questions_saved == 2


def test_persistence_failures_are_absorbed(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p.pdf": paper_payload([question(1), question(2), question(3)]),
            "ms.pdf": markscheme_payload([{"number": 2, "objectives": ["a"]}]),
        }
    )
    sink = MemorySink(fail_keys={"2022-06-1-2-2"}, raise_keys={"2022-06-1-3-2"})

    report = run_batch(extractor, sink, catalog, settings, ["p.pdf"], ["ms.pdf"])

    assert list(sink.by_key()) == ["2022-06-1-1-2"]
    assert report.success
    assert report.questions_saved == 1
    assert report.persistence_failures == 2
    assert report.failed_writes == ["2022-06-1-2-2: constraint failed", "2022-06-1-3-2: disk full"]
    # The solution's only question was never saved, so it counts as unmatched.
    assert report.unmatched_solutions == 1


def test_markscheme_without_month_cannot_be_keyed(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p.pdf": paper_payload([question(1)]),
            "ms.pdf": markscheme_payload([{"number": 1, "objectives": ["a"]}], month=None),
        }
    )

    report = run_batch(extractor, MemorySink(), catalog, settings, ["p.pdf"], ["ms.pdf"])

    assert report.success
    assert report.questions_without_solutions == 1
    assert report.resolution_drops == 1
    assert report.unmatched_solutions == 0


def test_authorization_failure_happens_before_any_task(catalog, settings):
    extractor = ScriptedExtractor({"p.pdf": paper_payload([question(1)])})

    with pytest.raises(AuthorizationError):
        run_batch(
            extractor,
            MemorySink(),
            catalog,
            settings,
            ["p.pdf"],
            [],
            principal="student-7",
            authorizer=CreatorAuthorizer({"physics": ["teacher-1"]}),
        )

    assert extractor.calls == []


def test_creator_is_authorized(catalog, settings):
    extractor = ScriptedExtractor({"p.pdf": paper_payload([question(1)])})

    report = run_batch(
        extractor,
        MemorySink(),
        catalog,
        settings,
        ["p.pdf"],
        [],
        principal="teacher-1",
        authorizer=CreatorAuthorizer({"physics": ["teacher-1"]}),
    )

    assert report.questions_saved == 1


def test_caller_timeout_propagates(catalog, settings):
    extractor = ScriptedExtractor({"p.pdf": paper_payload([question(1)])}, delays={"p.pdf": 1.0})
    sink = MemorySink()

    with pytest.raises(asyncio.TimeoutError):
        run_batch(extractor, sink, catalog, settings, ["p.pdf"], [], timeout=0.05)

    assert sink.saved == []


def test_events_trace_the_batch(catalog, settings):
    collector = EventCollector()
    extractor = ScriptedExtractor(
        {
            "p.pdf": paper_payload([question(1), question(2, topic="Quantum Foam")]),
            "ms.pdf": markscheme_payload([{"number": 1, "objectives": ["a"]}]),
        }
    )

    run_batch(extractor, MemorySink(), catalog, settings, ["p.pdf"], ["ms.pdf"], events=EventBus([collector]), job_id="job-9")

    kinds = collector.kinds()
    assert kinds.count(EventKind.TASK_STARTED) == 2
    assert kinds.count(EventKind.RECORD_DROPPED) == 1
    assert kinds.count(EventKind.RECORD_PERSISTED) == 1
    assert kinds[-1] == EventKind.BATCH_COMPLETED
    (join,) = collector.of_kind(EventKind.JOIN_COMPLETED)
    assert join.payload["matched"] == 1
    assert all(event.job_id == "job-9" for event in collector.events)


def test_reported_indexes_are_not_rematched_by_name(settings):
    # "Paper 1" is a substring of "Paper 10" and "Forces" of "Forces and Motion".
    paper_types = [PaperType(name=f"Paper {n}") for n in range(1, 10)]
    paper_types.append(PaperType(name="Paper 10", topics=("Forces", "Forces and Motion")))
    catalog = Catalog(paper_types=tuple(paper_types), catalog_id="physics")
    extractor = ScriptedExtractor(
        {
            "p10.pdf": {
                "paperIdentifier": "2022-06-9",
                "paperTypeIndex": 9,
                "questions": [{"questionNumber": 3, "questionText": "A trolley...", "summary": "Momentum", "topicIndex": 1}],
            },
            "p10_ms.pdf": {"solutions": [{"id": "2022-06-9-3", "objectives": ["p = m * v"]}]},
        }
    )
    sink = MemorySink()

    report = run_batch(extractor, sink, catalog, settings, ["p10.pdf"], ["p10_ms.pdf"])

    (saved,) = sink.saved
    assert saved.question.paper_type_index == 9
    assert saved.question.topic_index == 1
    assert saved.join_key == "2022-06-9-3"
    assert saved.storage_key == "2022-06-9-3-1"
    assert saved.objectives == ("p = m * v",)
    assert report.unmatched_solutions == 0


def test_labels_without_indexes_still_resolve_by_name(catalog, settings):
    extractor = ScriptedExtractor(
        {
            "p2.pdf": paper_payload([question(5, topic="energy")], label="paper 2"),
            "p2_ms.pdf": markscheme_payload([{"number": 5, "objectives": ["E = m * g * h"]}], label="PAPER 2"),
        }
    )
    sink = MemorySink()

    run_batch(extractor, sink, catalog, settings, ["p2.pdf"], ["p2_ms.pdf"])

    assert sink.by_key()["2022-06-1-5-1"].objectives == ("E = m * g * h",)
