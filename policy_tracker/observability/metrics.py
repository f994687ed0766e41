"""Prometheus metrics for task queue observability."""

from __future__ import annotations

import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from policy_tracker.config.logging_config import get_logger

logger = get_logger(__name__)

TASKS_SUBMITTED_TOTAL: Final[Counter] = Counter(
    "queue_tasks_submitted_total",
    "Total number of tasks added to a queue",
    labelnames=("queue", "task_type"),
)

TASK_BATCHES_SUBMITTED_TOTAL: Final[Counter] = Counter(
    "queue_task_batches_submitted_total",
    "Total number of task batches added to a queue",
    labelnames=("queue",),
)

TASKS_COMPLETED_TOTAL: Final[Counter] = Counter(
    "queue_tasks_completed_total",
    "Total number of tasks completed successfully",
    labelnames=("queue", "task_type"),
)

TASKS_FAILED_TOTAL: Final[Counter] = Counter(
    "queue_tasks_failed_total",
    "Total number of tasks that failed terminally",
    labelnames=("queue", "task_type"),
)

TASK_RETRIES_TOTAL: Final[Counter] = Counter(
    "queue_task_retries_total",
    "Total number of retries scheduled after a failed attempt",
    labelnames=("queue", "task_type"),
)

TASK_DURATION_SECONDS: Final[Histogram] = Histogram(
    "queue_task_duration_seconds",
    "Duration of a single task attempt in seconds",
    labelnames=("queue", "task_type"),
)

STATE_SAVES_TOTAL: Final[Counter] = Counter(
    "queue_state_saves_total",
    "Total number of queue snapshot writes",
    labelnames=("queue", "outcome"),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False
DEFAULT_METRICS_PORT: Final[int] = 9000


def ensure_metrics_exporter(port: int = DEFAULT_METRICS_PORT) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


__all__ = [
    "DEFAULT_METRICS_PORT",
    "STATE_SAVES_TOTAL",
    "TASKS_COMPLETED_TOTAL",
    "TASKS_FAILED_TOTAL",
    "TASKS_SUBMITTED_TOTAL",
    "TASK_BATCHES_SUBMITTED_TOTAL",
    "TASK_DURATION_SECONDS",
    "TASK_RETRIES_TOTAL",
    "ensure_metrics_exporter",
]
