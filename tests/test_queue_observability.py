from __future__ import annotations

import asyncio
from typing import Any

import structlog
from prometheus_client import REGISTRY
from structlog.testing import capture_logs

from policy_tracker.adapters.task_queue_inprocess import InProcessTaskQueue
from policy_tracker.domain.task_queue import Task, TaskType
from tests.conftest import fast_options, no_jitter


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_retry_and_failure_emit_logs_and_metrics() -> None:
    labels = {"queue": "observed", "task_type": TaskType.EXTRACT_IMPACTS.value}
    retries_before = _sample("queue_task_retries_total", **labels)
    failed_before = _sample("queue_tasks_failed_total", **labels)
    submitted_before = _sample("queue_tasks_submitted_total", **labels)

    async def scenario() -> None:
        async def broken(payload: dict[str, Any], task: Task) -> None:
            raise RuntimeError("extractor down")

        queue = InProcessTaskQueue(
            fast_options(name="observed", max_retries=1), jitter_provider=no_jitter
        )
        queue.register_handlers({TaskType.EXTRACT_IMPACTS: broken})
        queue.add_task(TaskType.EXTRACT_IMPACTS, {})
        await queue.wait_until_idle(timeout=2)
        await queue.cleanup()

    with capture_logs() as logs:
        asyncio.run(scenario())

    events = [entry["event"] for entry in logs]
    assert "task_added" in events
    assert "task_retry_scheduled" in events
    assert "task_failed" in events
    failed = next(entry for entry in logs if entry["event"] == "task_failed")
    assert failed["log_level"] == "error"
    assert failed["attempts"] == 2
    assert failed["queue"] == "observed"

    assert _sample("queue_task_retries_total", **labels) == retries_before + 1
    assert _sample("queue_tasks_failed_total", **labels) == failed_before + 1
    assert _sample("queue_tasks_submitted_total", **labels) == submitted_before + 1


def test_handlers_run_with_task_log_context() -> None:
    seen: list[dict[str, Any]] = []

    def blocking(payload: dict[str, Any], task: Task) -> None:
        seen.append(structlog.contextvars.get_contextvars())

    async def scenario() -> str:
        queue = InProcessTaskQueue(fast_options(name="ctx"), jitter_provider=no_jitter)
        queue.register_handlers({TaskType.EXPORT_DOCUMENT: blocking})
        task_id = queue.add_task(TaskType.EXPORT_DOCUMENT, {})
        await queue.wait_until_idle(timeout=2)
        await queue.cleanup()
        return task_id

    task_id = asyncio.run(scenario())

    assert seen == [
        {"queue": "ctx", "task_id": task_id, "task_type": "export_document"}
    ]
    assert structlog.contextvars.get_contextvars() == {}
