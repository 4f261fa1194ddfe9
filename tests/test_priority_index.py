from datetime import datetime, timedelta, timezone

import pytest

from app.jobs.models import JobPriority
from app.jobs.priority_index import PriorityIndex

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def at(seconds):
    return T0 + timedelta(seconds=seconds)


class TestOrdering:

    def test_higher_priority_first(self):
        index = PriorityIndex()
        index.push("low", JobPriority.LOW, at(0))
        index.push("normal", JobPriority.NORMAL, at(1))
        index.push("high", JobPriority.HIGH, at(2))
        index.push("urgent", JobPriority.URGENT, at(3))

        assert index.peek(4) == ["urgent", "high", "normal", "low"]
        assert [index.pop() for _ in range(4)] == ["urgent", "high", "normal", "low"]
        assert index.pop() is None

    def test_fifo_within_tier(self):
        index = PriorityIndex()
        index.push("a", JobPriority.NORMAL, at(0))
        index.push("b", JobPriority.NORMAL, at(1))
        assert index.pop() == "a"
        assert index.pop() == "b"

    def test_identical_timestamps_keep_insertion_order(self):
        index = PriorityIndex()
        for name in "abc":
            index.push(name, JobPriority.HIGH, at(0))
        assert index.peek(3) == ["a", "b", "c"]

    def test_later_enqueue_goes_to_back_of_tier(self):
        index = PriorityIndex()
        index.push("a", JobPriority.NORMAL, at(0))
        index.push("b", JobPriority.NORMAL, at(1))
        index.push("retry", JobPriority.NORMAL, at(5))
        index.push("urgent", JobPriority.URGENT, at(6))
        assert index.peek(4) == ["urgent", "a", "b", "retry"]


class TestPositions:

    def test_positions_are_one_based_ranks(self):
        index = PriorityIndex()
        index.push("a", JobPriority.NORMAL, at(0))
        index.push("b", JobPriority.LOW, at(1))
        index.push("c", JobPriority.HIGH, at(2))

        assert index.position("c") == 1
        assert index.position("a") == 2
        assert index.position("b") == 3
        assert index.position("missing") == 0

    def test_remove_keeps_relative_order(self):
        index = PriorityIndex()
        for i, name in enumerate("abcd"):
            index.push(name, JobPriority.NORMAL, at(i))

        assert index.remove("b") is True
        assert index.remove("b") is False
        assert "b" not in index
        assert len(index) == 3
        assert index.peek(3) == ["a", "c", "d"]
        assert index.position("d") == 3

    def test_tier_counts(self):
        index = PriorityIndex()
        index.push("a", JobPriority.NORMAL, at(0))
        index.push("b", JobPriority.NORMAL, at(1))
        index.push("c", JobPriority.URGENT, at(2))
        index.remove("a")

        counts = index.tier_counts()
        assert counts[JobPriority.NORMAL] == 1
        assert counts[JobPriority.URGENT] == 1
        assert counts[JobPriority.LOW] == 0
        assert counts[JobPriority.HIGH] == 0


def test_duplicate_push_rejected():
    index = PriorityIndex()
    index.push("a", JobPriority.NORMAL, at(0))
    with pytest.raises(KeyError):
        index.push("a", JobPriority.HIGH, at(1))
