from __future__ import annotations

"""Queue every unanalyzed policy document for AI analysis and wait for the results."""

import argparse
import asyncio
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Final
from uuid import uuid4

sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from policy_tracker.adapters.llm_client import OpenAIAnalysisProvider
from policy_tracker.adapters.sqlite_repository import SQLiteDocumentRepository
from policy_tracker.config.logging_config import bind_context, clear_context, get_logger
from policy_tracker.config.settings import Settings, get_settings
from policy_tracker.domain.exceptions import PolicyTrackerError
from policy_tracker.domain.models import PolicyDocument
from policy_tracker.domain.task_queue import QueueName, QueueStats
from policy_tracker.observability.metrics import ensure_metrics_exporter
from policy_tracker.use_cases.queue_coordinator import QueueCoordinator
from scripts import pipeline_runtime

logger = get_logger(__name__)

FIRST_BATCH_PRIORITY: Final[int] = 10
DEFAULT_BATCH_PRIORITY: Final[int] = 0
DEFAULT_BATCH_SIZE: Final[int] = 10
DEFAULT_STATS_INTERVAL_SECONDS: Final[float] = 5.0
DEFAULT_MAX_RUNTIME_SECONDS: Final[float] = 24 * 60 * 60


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Queue unanalyzed policy documents for AI analysis"
    )
    parser.add_argument(
        "batch_size",
        nargs="?",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help="Documents per submitted batch",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of documents to queue (default: all)",
    )
    parser.add_argument(
        "--stats-interval-seconds",
        type=float,
        default=DEFAULT_STATS_INTERVAL_SECONDS,
        help="Seconds between queue statistics log lines",
    )
    parser.add_argument(
        "--max-runtime-seconds",
        type=float,
        default=DEFAULT_MAX_RUNTIME_SECONDS,
        help="Stop after this many seconds even if work remains",
    )
    parser.add_argument(
        "--exit-when-done",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Exit once every queue is drained",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port",
    )
    args = parser.parse_args(argv)
    if args.batch_size < 1:
        parser.error("batch_size must be positive")
    return args


def build_batches(
    documents: Sequence[PolicyDocument], batch_size: int
) -> list[list[PolicyDocument]]:
    """Split documents into consecutive batches of at most ``batch_size``.

    Example:
        >>> [len(batch) for batch in build_batches(list(range(5)), 2)]
        [2, 2, 1]
    """
    return [
        list(documents[start : start + batch_size])
        for start in range(0, len(documents), batch_size)
    ]


def queue_is_drained(stats: QueueStats) -> bool:
    return stats.pending == 0 and stats.processing == 0 and stats.active_workers == 0


def log_queue_stats(coordinator: QueueCoordinator) -> dict[str, QueueStats]:
    all_stats = coordinator.get_queue_stats()
    for name, stats in all_stats.items():
        logger.info(
            "queue_stats",
            queue=name,
            status=stats.status.value,
            pending=stats.pending,
            processing=stats.processing,
            retrying=stats.retrying,
            completed=stats.completed,
            failed=stats.failed,
        )
    return all_stats


async def monitor_until_done(
    coordinator: QueueCoordinator,
    controller: pipeline_runtime.ShutdownSignal,
    *,
    stats_interval_seconds: float,
    max_runtime_seconds: float,
    exit_when_done: bool,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Log stats periodically until the queues drain, time runs out or a signal arrives.

    Returns:
        Stop reason: ``completed``, ``max_runtime`` or ``signal``
    """
    deadline = clock() + max_runtime_seconds
    while True:
        all_stats = log_queue_stats(coordinator)
        if exit_when_done and all(queue_is_drained(s) for s in all_stats.values()):
            return "completed"

        remaining = deadline - clock()
        if remaining <= 0:
            return "max_runtime"

        if await controller.wait(min(stats_interval_seconds, remaining)):
            return "signal"


def _already_queued_ids(coordinator: QueueCoordinator) -> set[str]:
    details = coordinator.get_queue(QueueName.ANALYSIS).get_queue_details()
    return {
        str(task.payload.get("document_id"))
        for task in [*details.pending, *details.processing]
    }


async def run(args: argparse.Namespace, settings: Settings) -> int:
    repository = SQLiteDocumentRepository(settings.db_path)
    provider = OpenAIAnalysisProvider(
        api_key=_extract_secret(settings.openai_api_key),
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout_seconds,
        prompt_file=settings.llm_prompt_file,
    )
    coordinator = QueueCoordinator(
        settings.coordinator_config(),
        analysis_provider=provider,
        result_sink=repository,
    )

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)
    bind_context(run_id=uuid4().hex[:8])

    try:
        await coordinator.initialize()
    except PolicyTrackerError:
        logger.exception("queue_coordinator_start_failed")
        clear_context()
        return 1

    baseline = coordinator.get_queue_stats()[QueueName.ANALYSIS.value]
    attempted = 0
    reason = "completed"
    try:
        candidates = await asyncio.to_thread(
            repository.fetch_documents_needing_analysis, args.limit
        )
        queued = _already_queued_ids(coordinator)
        documents = [doc for doc in candidates if str(doc.id) not in queued]

        for index, batch in enumerate(build_batches(documents, args.batch_size)):
            priority = FIRST_BATCH_PRIORITY if index == 0 else DEFAULT_BATCH_PRIORITY
            coordinator.submit_analysis_batch(batch, priority=priority)
            attempted += len(batch)

        logger.info(
            "analysis_run_started",
            candidates=len(candidates),
            submitted=attempted,
            recovered=baseline.pending,
            batch_size=args.batch_size,
        )

        reason = await monitor_until_done(
            coordinator,
            controller,
            stats_interval_seconds=args.stats_interval_seconds,
            max_runtime_seconds=args.max_runtime_seconds,
            exit_when_done=args.exit_when_done,
        )
    finally:
        final = coordinator.get_queue_stats()[QueueName.ANALYSIS.value]
        await coordinator.stop()

    logger.info(
        "analysis_run_finished",
        reason=reason,
        attempted=attempted,
        completed=final.completed - baseline.completed,
        failed=final.failed - baseline.failed,
        remaining=final.pending + final.processing,
    )
    clear_context()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = get_settings()
    except (PydanticValidationError, ValueError) as exc:
        logger.error("settings_load_failed", error=str(exc))
        return 1

    pipeline_runtime.initialize_logging(
        settings, json_logs=args.json_logs or settings.log_json
    )

    metrics_port = args.metrics_port or settings.metrics_port
    if metrics_port:
        ensure_metrics_exporter(metrics_port)

    try:
        return asyncio.run(run(args, settings))
    except PolicyTrackerError:
        logger.exception("analysis_run_failed")
        return 1


def _extract_secret(secret: SecretStr) -> str:
    value = secret.get_secret_value()
    if not value:
        msg = "Secret value is empty"
        raise ValueError(msg)
    return value


if __name__ == "__main__":
    raise SystemExit(main())
