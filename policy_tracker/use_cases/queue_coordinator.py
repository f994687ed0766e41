"""Queue coordinator: owns the named queues and their handler bindings.

Callers submit documents through typed methods; the coordinator snapshots
the payload, routes it to the owning queue and manages the start/stop
lifecycle of every queue.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any
from uuid import uuid4

from policy_tracker.adapters.json_state_store import JsonQueueStateStore
from policy_tracker.adapters.task_queue_inprocess import InProcessTaskQueue, TaskHandler
from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import (
    ConfigurationError,
    QueueNotInitializedError,
    UnknownQueueError,
)
from policy_tracker.domain.models import (
    EXTRACTION_TASK_TYPES,
    PAYLOAD_MODELS,
    CollectionExportPayload,
    DocumentPayload,
    ExtractionKind,
    PolicyDocument,
)
from policy_tracker.domain.task_queue import (
    DEFAULT_PRIORITY,
    TASK_QUEUE_ROUTES,
    CoordinatorConfig,
    QueueName,
    QueueStats,
    TaskSpec,
    TaskType,
)
from policy_tracker.ports.analysis_provider import AnalysisProviderPort
from policy_tracker.ports.document_repository import AnalysisResultSink
from policy_tracker.ports.queue_state_store import QueueStateStorePort
from policy_tracker.services.document_exporter import JsonDocumentExporter
from policy_tracker.services.document_extractor import PatternDocumentExtractor
from policy_tracker.use_cases.task_handlers import build_handler_table

logger = get_logger(__name__)


def verify_handler_coverage(handlers: Mapping[TaskType, TaskHandler]) -> None:
    """Ensure every task type is routed, has a payload model and a handler.

    Raises:
        ConfigurationError: Listing every incomplete task type
    """
    problems: list[str] = []
    for task_type in TaskType:
        if task_type not in TASK_QUEUE_ROUTES:
            problems.append(f"{task_type.value}: no queue route")
        if task_type not in PAYLOAD_MODELS:
            problems.append(f"{task_type.value}: no payload model")
        if task_type not in handlers:
            problems.append(f"{task_type.value}: no handler")
    if problems:
        raise ConfigurationError("Incomplete task wiring: " + "; ".join(problems))


class QueueCoordinator:
    """Single owner of the analysis, extraction and export queues."""

    def __init__(
        self,
        config: CoordinatorConfig,
        *,
        analysis_provider: AnalysisProviderPort,
        extractor: PatternDocumentExtractor | None = None,
        exporter: JsonDocumentExporter | None = None,
        result_sink: AnalysisResultSink | None = None,
        state_store: QueueStateStorePort | None = None,
        clock: Callable[[], float] | None = None,
        jitter_provider: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._analysis_provider = analysis_provider
        self._extractor = extractor or PatternDocumentExtractor()
        self._exporter = exporter or JsonDocumentExporter(config.export_dir)
        self._result_sink = result_sink
        self._state_store = state_store or JsonQueueStateStore(config.state_dir)
        self._clock = clock or time.monotonic
        self._jitter_provider = jitter_provider

        self._queues: dict[QueueName, InProcessTaskQueue] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    # Lifecycle --------------------------------------------------------

    async def initialize(self) -> None:
        """Create the queues, bind handlers and recover persisted work.

        Safe to call more than once; later calls are no-ops.

        Raises:
            ConfigurationError: When task wiring is incomplete, a routed queue
                has no profile, or write-back is enabled without a sink
        """
        async with self._init_lock:
            if self._initialized:
                return

            if self._config.write_back_results and self._result_sink is None:
                raise ConfigurationError(
                    "write_back_results is enabled but no result sink was provided"
                )

            handlers = build_handler_table(
                analysis_provider=self._analysis_provider,
                extractor=self._extractor,
                exporter=self._exporter,
                result_sink=self._result_sink,
                write_back_results=self._config.write_back_results,
            )
            verify_handler_coverage(handlers)

            missing = sorted(
                {name.value for name in TASK_QUEUE_ROUTES.values()}
                - {QueueName(name).value for name in self._config.queues}
            )
            if missing:
                raise ConfigurationError(f"No queue profile for: {', '.join(missing)}")

            queues: dict[QueueName, InProcessTaskQueue] = {}
            for raw_name, options in self._config.queues.items():
                name = QueueName(raw_name)
                if options.name != name.value:
                    options = options.model_copy(update={"name": name.value})
                queue = InProcessTaskQueue(
                    options,
                    state_store=self._state_store,
                    clock=self._clock,
                    jitter_provider=self._jitter_provider,
                )
                queue.register_handlers(
                    {
                        task_type: handlers[task_type]
                        for task_type, route in TASK_QUEUE_ROUTES.items()
                        if route is name
                    }
                )
                queues[name] = queue

            for queue in queues.values():
                await queue.load_queue_state()
                queue.start()

            self._queues = queues
            self._initialized = True

            for queue in queues.values():
                if queue.pending_count:
                    queue.process_queue()

            logger.info(
                "queue_coordinator_initialized",
                queues=[name.value for name in queues],
                write_back_results=self._config.write_back_results,
            )

    async def start(self) -> None:
        await self.initialize()

    async def save_queue_states(self) -> None:
        self._require_initialized()
        await asyncio.gather(
            *(queue.save_queue_state() for queue in self._queues.values())
        )

    async def cleanup(self) -> None:
        """Stop timers and write a final snapshot for every queue."""

        self._require_initialized()
        await asyncio.gather(*(queue.cleanup() for queue in self._queues.values()))
        logger.info("queue_coordinator_cleaned_up")

    async def stop(self) -> None:
        """Pause every queue, cancel running workers and persist final state.

        Interrupted tasks remain in the processing set of the last snapshot
        and run again on the next start.
        """
        self._require_initialized()
        for queue in self._queues.values():
            queue.pause_queue()
        await asyncio.gather(
            *(queue.cleanup(cancel_workers=True) for queue in self._queues.values())
        )
        logger.info("queue_coordinator_stopped")

    async def wait_until_idle(self, timeout: float | None = None) -> bool:
        self._require_initialized()
        results = await asyncio.gather(
            *(queue.wait_until_idle(timeout) for queue in self._queues.values())
        )
        return all(results)

    # Submission -------------------------------------------------------

    def submit_analysis(
        self,
        document: PolicyDocument,
        *,
        priority: int = DEFAULT_PRIORITY,
        max_retries: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        return self._submit(
            TaskType.ANALYZE_DOCUMENT,
            DocumentPayload.from_document(document),
            priority=priority,
            max_retries=max_retries,
            metadata=metadata,
        )

    def submit_analysis_batch(
        self,
        documents: Sequence[PolicyDocument],
        *,
        batch_id: str | None = None,
        priority: int = DEFAULT_PRIORITY,
        max_retries: int | None = None,
    ) -> list[str]:
        """Queue one analysis task per document as a single batch.

        Every task carries ``batch_id`` and ``batch_size`` metadata.
        """
        if not documents:
            return []

        batch_id = batch_id or f"batch-{uuid4().hex[:12]}"
        metadata = {"batch_id": batch_id, "batch_size": len(documents)}
        specs = [
            TaskSpec(
                task_type=TaskType.ANALYZE_DOCUMENT,
                payload=DocumentPayload.from_document(document),
                priority=priority,
                max_retries=max_retries,
                metadata=dict(metadata),
            )
            for document in documents
        ]
        task_ids = self._queue_for(TaskType.ANALYZE_DOCUMENT).add_tasks(specs)
        logger.info(
            "analysis_batch_submitted",
            batch_id=batch_id,
            batch_size=len(documents),
            priority=priority,
        )
        return task_ids

    def submit_summary(
        self, document: PolicyDocument, *, priority: int = DEFAULT_PRIORITY
    ) -> str:
        return self._submit(
            TaskType.SUMMARIZE_DOCUMENT,
            DocumentPayload.from_document(document),
            priority=priority,
        )

    def submit_categorization(
        self, document: PolicyDocument, *, priority: int = DEFAULT_PRIORITY
    ) -> str:
        return self._submit(
            TaskType.CATEGORIZE_DOCUMENT,
            DocumentPayload.from_document(document),
            priority=priority,
        )

    def submit_extraction(
        self,
        document: PolicyDocument,
        kinds: Iterable[ExtractionKind | str] | None = None,
        *,
        priority: int = DEFAULT_PRIORITY,
    ) -> list[str]:
        """Queue one extraction task per requested kind (all kinds by default)."""

        selected = [ExtractionKind(kind) for kind in (kinds or list(ExtractionKind))]
        payload = DocumentPayload.from_document(document)
        specs = [
            TaskSpec(
                task_type=EXTRACTION_TASK_TYPES[kind],
                payload=payload,
                priority=priority,
            )
            for kind in selected
        ]
        return self._queue_for(TaskType.EXTRACT_DATES).add_tasks(specs)

    def submit_export(
        self, document: PolicyDocument, *, priority: int = DEFAULT_PRIORITY
    ) -> str:
        return self._submit(
            TaskType.EXPORT_DOCUMENT,
            DocumentPayload.from_document(document),
            priority=priority,
        )

    def submit_collection_export(
        self,
        collection_name: str,
        documents: Sequence[PolicyDocument],
        *,
        priority: int = DEFAULT_PRIORITY,
    ) -> str:
        payload = CollectionExportPayload(
            collection_name=collection_name,
            documents=[DocumentPayload.from_document(doc) for doc in documents],
        )
        return self._submit(TaskType.EXPORT_COLLECTION, payload, priority=priority)

    # Access -----------------------------------------------------------

    def get_queue(self, name: QueueName | str) -> InProcessTaskQueue:
        """Return the queue called ``name``.

        Raises:
            QueueNotInitializedError: Before ``initialize()``
            UnknownQueueError: For a name the coordinator does not own
        """
        self._require_initialized()
        try:
            return self._queues[QueueName(name)]
        except (ValueError, KeyError) as exc:
            raise UnknownQueueError(f"Unknown queue: {name}") from exc

    def get_queue_stats(self) -> dict[str, QueueStats]:
        self._require_initialized()
        return {name.value: queue.get_stats() for name, queue in self._queues.items()}

    def _queue_for(self, task_type: TaskType) -> InProcessTaskQueue:
        return self.get_queue(TASK_QUEUE_ROUTES[task_type])

    def _submit(
        self,
        task_type: TaskType,
        payload: DocumentPayload | CollectionExportPayload,
        *,
        priority: int = DEFAULT_PRIORITY,
        max_retries: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        return self._queue_for(task_type).add_task(
            task_type,
            payload,
            priority=priority,
            max_retries=max_retries,
            metadata=metadata,
        )

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise QueueNotInitializedError(
                "QueueCoordinator.initialize() must be awaited first"
            )


__all__ = ["QueueCoordinator", "verify_handler_coverage"]
