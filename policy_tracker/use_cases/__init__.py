"""Use case package exports."""

from policy_tracker.use_cases.queue_coordinator import (
    QueueCoordinator,
    verify_handler_coverage,
)
from policy_tracker.use_cases.task_handlers import build_handler_table

__all__ = [
    "QueueCoordinator",
    "build_handler_table",
    "verify_handler_coverage",
]
