import pytest

from site_agent.booking import HISTORY_LIMIT, AttemptOutcome, BookingPlan, reduce_group_size


@pytest.mark.parametrize(
    "size, expected",
    [(10, 5), (6, 5), (5, 2), (3, 2), (2, 1), (1, None)],
)
def test_reduce_group_size(size: int, expected) -> None:
    assert reduce_group_size(size) == expected


def test_reduction_sequence_from_ten() -> None:
    sizes = [10]
    while (smaller := reduce_group_size(sizes[-1])) is not None:
        sizes.append(smaller)
    assert sizes == [10, 5, 2, 1]


def test_plan_without_group_size_books_once_without_filter() -> None:
    plan = BookingPlan.for_group(None)

    assert plan.target == 1
    assert plan.uses_filter is False
    assert plan.filter_pending is False
    assert plan.record_success("09:30") == 0
    assert plan.completed


def test_failure_shrinks_group_and_requests_filter() -> None:
    plan = BookingPlan.for_group(10)
    plan.filter_pending = False

    assert plan.record_failure(AttemptOutcome.NO_TIME) is True
    assert plan.group_size == 5
    assert plan.filter_pending is True


def test_failure_at_one_keeps_size() -> None:
    plan = BookingPlan.for_group(1)
    assert plan.record_failure(AttemptOutcome.CONFIRM_MISSING) is False
    assert plan.group_size == 1


def test_partial_success_caps_group_to_remaining() -> None:
    plan = BookingPlan.for_group(7)
    plan.record_failure(AttemptOutcome.NO_TIME)  # 7 -> 5
    plan.filter_pending = False

    assert plan.record_success() == 2
    assert plan.group_size == 2
    assert plan.filter_pending is True
    assert plan.booked == 5

    assert plan.record_success() == 0
    assert plan.completed
    assert plan.booked == 7


def test_history_is_bounded() -> None:
    plan = BookingPlan.for_group(1)
    for _ in range(HISTORY_LIMIT + 5):
        plan.record_failure(AttemptOutcome.NO_TIME)
    assert len(plan.recent()) == HISTORY_LIMIT
