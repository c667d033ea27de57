import pytest

from exam_pipeline.utils.types import Catalog
from exam_pipeline.workflow.catalog import CatalogResolver, resolve_label


def test_label_contained_in_candidate_resolves():
    assert resolve_label("mechanics", ["Paper 1", "Paper 2: Mechanics"]) == 1


def test_unknown_label_is_not_found():
    assert resolve_label("Paper 9", ["Paper 1", "Paper 2: Mechanics"]) is None


def test_candidate_contained_in_label_resolves_case_insensitively():
    assert resolve_label("PAPER 2: MECHANICS (Higher tier)", ["Paper 1", "Paper 2: Mechanics"]) == 1


def test_first_catalog_entry_wins():
    # "paper 10" contains "paper 1", so the earlier entry takes precedence.
    assert resolve_label("Paper 10", ["Paper 1", "Paper 10"]) == 0


@pytest.mark.parametrize("label", ["", "   ", None])
def test_blank_labels_never_resolve(label):
    assert resolve_label(label, ["Paper 1"]) is None


def test_blank_candidates_are_skipped():
    assert resolve_label("Waves", ["", "  ", "Waves"]) == 2


def test_topics_resolve_within_their_paper_type(catalog):
    resolver = CatalogResolver(catalog)

    assert resolver.paper_type("paper 2") == 1
    assert resolver.topic(1, "waves and optics") == 2
    assert resolver.topic(1, "Quantum Foam") is None
    assert resolver.topic(1, "Waves") == 2
    assert resolver.topic(0, "Waves") is None
    assert resolver.topic(5, "Waves") is None


def test_catalog_from_dict_accepts_names_and_objects():
    catalog = Catalog.from_dict({"catalogId": "ws-1", "paperTypes": ["Paper 1", {"name": "Paper 2", "topics": ["Forces"]}]})

    assert catalog.catalog_id == "ws-1"
    assert catalog.paper_type_names == ["Paper 1", "Paper 2"]
    assert catalog.topic_names(1) == ["Forces"]
    assert catalog.topic_names(0) == []


def test_reported_index_wins_over_label_matching(catalog):
    resolver = CatalogResolver(catalog)

    assert resolver.paper_type("Paper", 1) == 1
    assert resolver.paper_type("Paper 2", 7) == 1
    assert resolver.topic(1, "Forces", 2) == 2
    assert resolver.topic(1, "Energy", 9) == 1
