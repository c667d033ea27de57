import pytest

from exam_pipeline.errors import KeyBuildError
from exam_pipeline.utils.types import Period
from exam_pipeline.workflow.keys import join_key, period_label, storage_key


def test_join_key_zero_pads_month():
    assert join_key(Period(2022, 6), 1, 3) == "2022-06-1-3"


def test_storage_key_appends_topic_index():
    assert storage_key(join_key(Period(2022, 6), 1, 3), 2) == "2022-06-1-3-2"


def test_keys_are_idempotent():
    period = Period(2023, 11, 4)
    assert join_key(period, 0, 7) == join_key(Period(2023, 11, 4), 0, 7)


@pytest.mark.parametrize(
    "period, paper_type_index, number",
    [
        (Period(2021, 6), 1, 3),
        (Period(2022, 5), 1, 3),
        (Period(2022, 6), 0, 3),
        (Period(2022, 6), 1, 4),
    ],
)
def test_changing_any_input_changes_the_key(period, paper_type_index, number):
    assert join_key(period, paper_type_index, number) != "2022-06-1-3"


def test_day_does_not_affect_the_key():
    assert join_key(Period(2022, 6, 14), 1, 3) == join_key(Period(2022, 6), 1, 3)


def test_missing_month_cannot_be_keyed():
    with pytest.raises(KeyBuildError):
        join_key(Period(2022), 1, 3)
    with pytest.raises(KeyBuildError):
        period_label(Period(2022))


def test_period_label():
    assert period_label(Period(2022, 1)) == "2022-01"
    assert Period(2022).label == "2022"
