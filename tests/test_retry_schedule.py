"""Tests for retry backoff and the retry heap."""

from __future__ import annotations

import pytest

from policy_tracker.services.retry_schedule import (
    MAX_JITTER_SECONDS,
    RetrySchedule,
    compute_retry_delay,
    default_jitter,
)


@pytest.mark.parametrize(
    ("attempts", "expected"),
    [(1, 10.0), (2, 20.0), (3, 40.0)],
)
def test_compute_retry_delay_doubles_per_attempt(attempts: int, expected: float) -> None:
    assert compute_retry_delay(attempts, 10.0, lambda: 0.0) == expected


def test_compute_retry_delay_adds_jitter() -> None:
    assert compute_retry_delay(1, 2.0, lambda: 0.5) == 2.5


def test_default_jitter_is_bounded() -> None:
    for _ in range(50):
        assert 0.0 <= default_jitter() <= MAX_JITTER_SECONDS


def test_pop_due_returns_earliest_first() -> None:
    schedule = RetrySchedule()
    schedule.push("late", 30.0)
    schedule.push("early", 10.0)
    schedule.push("middle", 20.0)

    assert schedule.next_due() == 10.0
    assert schedule.pop_due(20.0) == ["early", "middle"]
    assert len(schedule) == 1
    assert "late" in schedule
    assert schedule.pop_due(25.0) == []


def test_push_replaces_previous_entry() -> None:
    schedule = RetrySchedule()
    schedule.push("task", 5.0)
    schedule.push("task", 50.0)

    assert len(schedule) == 1
    assert schedule.pop_due(10.0) == []
    assert schedule.next_due() == 50.0


def test_clear_empties_schedule() -> None:
    schedule = RetrySchedule()
    schedule.push("a", 1.0)
    schedule.clear()

    assert len(schedule) == 0
    assert schedule.next_due() is None
