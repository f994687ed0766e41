"""Delayed-retry bookkeeping for task queues.

Retries are kept in a min-heap keyed by the time they become eligible again,
so the pending backlog can be inspected and released without waiting on the
wall clock.
"""

from __future__ import annotations

import heapq
import itertools
import math
import random
from collections.abc import Callable
from typing import Final, NamedTuple

MAX_JITTER_SECONDS: Final[float] = 1.0


class ScheduledRetry(NamedTuple):
    """Heap entry: when ``task_id`` may run again."""

    due_at: float
    sequence: int
    task_id: str


def default_jitter() -> float:
    return random.uniform(0.0, MAX_JITTER_SECONDS)


def compute_retry_delay(
    attempts: int,
    base_delay: float,
    jitter_provider: Callable[[], float] | None = None,
) -> float:
    """Exponential backoff with additive jitter.

    Args:
        attempts: Attempts made so far (1 after the first failure)
        base_delay: Delay in seconds for the first retry
        jitter_provider: Returns extra seconds to add; defaults to [0, 1)

    Returns:
        Delay in seconds before the task becomes eligible again

    Example:
        >>> compute_retry_delay(3, 10.0, lambda: 0.0)
        40.0
    """
    jitter = (jitter_provider or default_jitter)()
    return base_delay * math.pow(2.0, max(attempts - 1, 0)) + max(0.0, jitter)


class RetrySchedule:
    """Min-heap of tasks waiting out their backoff."""

    def __init__(self) -> None:
        self._heap: list[ScheduledRetry] = []
        self._live: dict[str, ScheduledRetry] = {}
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._live

    def push(self, task_id: str, due_at: float) -> None:
        """Schedule ``task_id``; rescheduling replaces the previous entry."""

        entry = ScheduledRetry(due_at, next(self._counter), task_id)
        self._live[task_id] = entry
        heapq.heappush(self._heap, entry)

    def next_due(self) -> float | None:
        self._drop_stale()
        return self._heap[0].due_at if self._heap else None

    def pop_due(self, now: float) -> list[str]:
        """Remove and return every task id whose delay has elapsed, earliest first."""

        released: list[str] = []
        while True:
            self._drop_stale()
            if not self._heap or self._heap[0].due_at > now:
                break
            entry = heapq.heappop(self._heap)
            del self._live[entry.task_id]
            released.append(entry.task_id)
        return released

    def entries(self) -> list[ScheduledRetry]:
        return sorted(self._live.values())

    def clear(self) -> None:
        self._heap.clear()
        self._live.clear()

    def _drop_stale(self) -> None:
        while self._heap and self._live.get(self._heap[0].task_id) != self._heap[0]:
            heapq.heappop(self._heap)


__all__ = [
    "MAX_JITTER_SECONDS",
    "RetrySchedule",
    "ScheduledRetry",
    "compute_retry_delay",
    "default_jitter",
]
