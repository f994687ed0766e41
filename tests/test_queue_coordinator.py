"""Tests for the queue coordinator."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from policy_tracker.domain.exceptions import (
    ConfigurationError,
    QueueNotInitializedError,
    UnknownQueueError,
)
from policy_tracker.domain.models import ImpactLevel
from policy_tracker.domain.task_queue import (
    CoordinatorConfig,
    QueueName,
    QueueStatus,
    Task,
    TaskStatus,
    TaskType,
)
from policy_tracker.services.document_exporter import JsonDocumentExporter
from policy_tracker.services.document_extractor import PatternDocumentExtractor
from policy_tracker.use_cases.queue_coordinator import (
    QueueCoordinator,
    verify_handler_coverage,
)
from policy_tracker.use_cases.task_handlers import build_handler_table
from tests.conftest import (
    FakeAnalysisProvider,
    RecordingSink,
    fast_options,
    make_document,
    no_jitter,
)


def _config(tmp_path: Path, *, write_back_results: bool = True) -> CoordinatorConfig:
    return CoordinatorConfig(
        state_dir=tmp_path / "state",
        export_dir=tmp_path / "exports",
        queues={name: fast_options(name.value) for name in QueueName},
        write_back_results=write_back_results,
    )


def _coordinator(
    tmp_path: Path,
    provider: FakeAnalysisProvider,
    sink: RecordingSink | None,
    *,
    write_back_results: bool = True,
) -> QueueCoordinator:
    return QueueCoordinator(
        _config(tmp_path, write_back_results=write_back_results),
        analysis_provider=provider,
        result_sink=sink,
        jitter_provider=no_jitter,
    )


def test_high_priority_document_jumps_the_batch(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    """D1 at priority 10 runs before a batch of D2 and D3 at priority 0."""

    async def scenario() -> list[Task]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        coordinator.submit_analysis_batch([make_document(2), make_document(3)])
        coordinator.submit_analysis(make_document(1), priority=10)

        assert await coordinator.wait_until_idle(timeout=5)
        details = coordinator.get_queue(QueueName.ANALYSIS).get_queue_details()
        await coordinator.cleanup()
        return details.completed

    completed = asyncio.run(scenario())

    assert provider.calls == ["2025-00001", "2025-00002", "2025-00003"]
    assert len(completed) == 3
    assert all(task.status is TaskStatus.COMPLETED for task in completed)
    assert [doc_id for doc_id, _ in sink.saved] == [1, 2, 3]
    assert completed[0].result["written"] is True
    assert completed[0].result["analysis"]["impact_level"] == ImpactLevel.MEDIUM.value


def test_transient_provider_failure_is_retried(
    tmp_path: Path, sink: RecordingSink
) -> None:
    provider = FakeAnalysisProvider(failures={"2025-00007": 2})

    async def scenario() -> Task | None:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        task_id = coordinator.submit_analysis(make_document(7))
        await coordinator.wait_until_idle(timeout=5)
        await coordinator.cleanup()
        return coordinator.get_queue("analysis").get_task(task_id)

    task = asyncio.run(scenario())

    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert task.attempts == 3
    assert provider.calls == ["2025-00007"] * 3
    assert len(sink.saved) == 1


def test_calls_before_initialize_raise(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    coordinator = _coordinator(tmp_path, provider, sink)

    assert coordinator.initialized is False
    with pytest.raises(QueueNotInitializedError):
        coordinator.submit_analysis(make_document(1))
    with pytest.raises(QueueNotInitializedError):
        coordinator.get_queue_stats()


def test_unknown_queue_name_raises(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> None:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        with pytest.raises(UnknownQueueError):
            coordinator.get_queue("notifications")
        await coordinator.cleanup()

    asyncio.run(scenario())


def test_initialize_is_idempotent(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> bool:
        coordinator = _coordinator(tmp_path, provider, sink)
        await asyncio.gather(coordinator.initialize(), coordinator.start())
        queue = coordinator.get_queue(QueueName.EXPORT)
        await coordinator.initialize()
        same = coordinator.get_queue(QueueName.EXPORT) is queue
        await coordinator.cleanup()
        return same

    assert asyncio.run(scenario()) is True


def test_every_queue_gets_only_its_routed_handlers(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> dict[str, frozenset[TaskType]]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        registered = {
            name.value: coordinator.get_queue(name).registered_task_types()
            for name in QueueName
        }
        await coordinator.cleanup()
        return registered

    registered = asyncio.run(scenario())

    assert registered["analysis"] == {
        TaskType.ANALYZE_DOCUMENT,
        TaskType.SUMMARIZE_DOCUMENT,
        TaskType.CATEGORIZE_DOCUMENT,
    }
    assert registered["extraction"] == {
        TaskType.EXTRACT_DATES,
        TaskType.EXTRACT_REQUIREMENTS,
        TaskType.EXTRACT_IMPACTS,
    }
    assert registered["export"] == {
        TaskType.EXPORT_DOCUMENT,
        TaskType.EXPORT_COLLECTION,
    }


def test_verify_handler_coverage_lists_missing_types(tmp_path: Path) -> None:
    handlers = build_handler_table(
        analysis_provider=FakeAnalysisProvider(),
        extractor=PatternDocumentExtractor(),
        exporter=JsonDocumentExporter(tmp_path),
    )
    verify_handler_coverage(handlers)

    del handlers[TaskType.EXPORT_COLLECTION]
    with pytest.raises(ConfigurationError, match="export_collection: no handler"):
        verify_handler_coverage(handlers)


def test_write_back_without_sink_is_rejected(
    tmp_path: Path, provider: FakeAnalysisProvider
) -> None:
    coordinator = _coordinator(tmp_path, provider, None)

    with pytest.raises(ConfigurationError):
        asyncio.run(coordinator.initialize())
    assert coordinator.initialized is False


def test_missing_queue_profile_is_rejected(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    config = CoordinatorConfig(
        state_dir=tmp_path,
        export_dir=tmp_path,
        queues={QueueName.ANALYSIS: fast_options("analysis")},
    )
    coordinator = QueueCoordinator(config, analysis_provider=provider, result_sink=sink)

    with pytest.raises(ConfigurationError, match="extraction"):
        asyncio.run(coordinator.initialize())


def test_write_back_disabled_keeps_result_in_task(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> Task | None:
        coordinator = _coordinator(tmp_path, provider, sink, write_back_results=False)
        await coordinator.initialize()
        task_id = coordinator.submit_analysis(make_document(4))
        await coordinator.wait_until_idle(timeout=5)
        await coordinator.cleanup()
        return coordinator.get_queue(QueueName.ANALYSIS).get_task(task_id)

    task = asyncio.run(scenario())

    assert task is not None
    assert task.result["written"] is False
    assert task.result["analysis"]["summary"] == "Summary of Executive Order 4"
    assert sink.saved == []


def test_batch_tasks_carry_batch_metadata(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> list[Task]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        queue = coordinator.get_queue(QueueName.ANALYSIS)
        queue.pause_queue()
        ids = coordinator.submit_analysis_batch(
            [make_document(1), make_document(2)], batch_id="batch-fixed", priority=3
        )
        tasks = [queue.get_task(task_id) for task_id in ids]
        await coordinator.cleanup()
        return [task for task in tasks if task is not None]

    tasks = asyncio.run(scenario())

    assert len(tasks) == 2
    assert all(task.metadata == {"batch_id": "batch-fixed", "batch_size": 2} for task in tasks)
    assert all(task.priority == 3 for task in tasks)
    assert [task.payload["document_id"] for task in tasks] == [1, 2]


def test_empty_batch_submits_nothing(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> list[str]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        ids = coordinator.submit_analysis_batch([])
        await coordinator.cleanup()
        return ids

    assert asyncio.run(scenario()) == []


def test_extraction_fans_out_one_task_per_kind(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> list[Task]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        coordinator.submit_extraction(make_document(5))
        await coordinator.wait_until_idle(timeout=5)
        details = coordinator.get_queue(QueueName.EXTRACTION).get_queue_details()
        await coordinator.cleanup()
        return details.completed

    completed = asyncio.run(scenario())
    by_kind = {task.result["kind"]: task.result for task in completed}

    assert set(by_kind) == {"dates", "requirements", "impacts"}
    assert any(
        item["item_type"] == "relative_deadline" for item in by_kind["dates"]["items"]
    )
    assert any(
        item["item_type"] == "reporting" for item in by_kind["requirements"]["items"]
    )
    assert provider.calls == []


def test_export_tasks_write_files(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> list[Task]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        coordinator.submit_export(make_document(8))
        coordinator.submit_collection_export(
            "Higher Ed Orders", [make_document(8), make_document(9)]
        )
        await coordinator.wait_until_idle(timeout=5)
        details = coordinator.get_queue(QueueName.EXPORT).get_queue_details()
        await coordinator.cleanup()
        return details.completed

    completed = asyncio.run(scenario())

    assert len(completed) == 2
    collection = json.loads(
        (tmp_path / "exports" / "Higher_Ed_Orders.json").read_text(encoding="utf-8")
    )
    assert collection["count"] == 2
    assert (tmp_path / "exports" / "documents" / "2025-00008.json").exists()


def test_summary_and_categorization_tasks(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def scenario() -> dict[TaskType, object]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        coordinator.submit_summary(make_document(3))
        coordinator.submit_categorization(make_document(3))
        await coordinator.wait_until_idle(timeout=5)
        completed = coordinator.get_queue(QueueName.ANALYSIS).get_queue_details().completed
        await coordinator.cleanup()
        return {task.type: task.result for task in completed}

    results = asyncio.run(scenario())

    assert results[TaskType.SUMMARIZE_DOCUMENT] == {
        "document_id": 3,
        "summary": "Summary of Executive Order 3",
    }
    assert results[TaskType.CATEGORIZE_DOCUMENT] == {
        "document_id": 3,
        "categories": ["Education", "Research"],
    }
    assert sink.saved == []


def test_stop_persists_pending_work_for_next_start(
    tmp_path: Path, provider: FakeAnalysisProvider, sink: RecordingSink
) -> None:
    async def first_run() -> None:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        coordinator.get_queue(QueueName.ANALYSIS).pause_queue()
        coordinator.submit_analysis(make_document(11))
        await coordinator.stop()

    async def second_run() -> tuple[QueueStatus, int]:
        coordinator = _coordinator(tmp_path, provider, sink)
        await coordinator.initialize()
        await coordinator.wait_until_idle(timeout=5)
        stats = coordinator.get_queue_stats()["analysis"]
        await coordinator.cleanup()
        return stats.status, stats.completed

    asyncio.run(first_run())
    assert provider.calls == []

    status, completed = asyncio.run(second_run())

    assert status is QueueStatus.IDLE
    assert completed == 1
    assert provider.calls == ["2025-00011"]
