"""In-process priority task queue running on the asyncio event loop.

Each instance owns one named queue: pending tasks sorted by priority, a pool
of worker coroutines capped by ``concurrency``, exponential-backoff retries
and a JSON snapshot that survives restarts. All task-set mutations happen on
the event loop thread, so the collections need no locking.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import itertools
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, TypeAlias

from pydantic import BaseModel

from policy_tracker.config.logging_config import get_logger, task_context
from policy_tracker.domain.exceptions import (
    ConfigurationError,
    DuplicateTaskError,
    RepositoryError,
)
from policy_tracker.domain.task_queue import (
    DEFAULT_PRIORITY,
    HISTORY_LIMIT,
    QueueDetails,
    QueueOptions,
    QueueSnapshot,
    QueueStats,
    QueueStatus,
    Task,
    TaskError,
    TaskSpec,
    TaskStatus,
    TaskType,
    utc_now,
)
from policy_tracker.observability.metrics import (
    STATE_SAVES_TOTAL,
    TASK_BATCHES_SUBMITTED_TOTAL,
    TASK_DURATION_SECONDS,
    TASK_RETRIES_TOTAL,
    TASKS_COMPLETED_TOTAL,
    TASKS_FAILED_TOTAL,
    TASKS_SUBMITTED_TOTAL,
)
from policy_tracker.ports.queue_state_store import QueueStateStorePort
from policy_tracker.services.retry_schedule import RetrySchedule, compute_retry_delay

logger = get_logger(__name__)

TaskHandler: TypeAlias = Callable[[dict[str, Any], Task], Any | Awaitable[Any]]
"""Receives a private copy of the payload plus the task; returns a result or raises."""


class InProcessTaskQueue:
    """Persistent, prioritized, concurrency-bounded queue for one workload."""

    def __init__(
        self,
        options: QueueOptions,
        *,
        state_store: QueueStateStorePort | None = None,
        clock: Callable[[], float] = time.monotonic,
        jitter_provider: Callable[[], float] | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._options = options
        self._state_store = state_store
        self._clock = clock
        self._jitter_provider = jitter_provider

        self._pending: list[Task] = []
        self._processing: dict[str, Task] = {}
        self._completed: deque[Task] = deque(maxlen=history_limit)
        self._failed: deque[Task] = deque(maxlen=history_limit)
        self._submitted_total = 0
        self._completed_total = 0
        self._failed_total = 0

        self._status = QueueStatus.IDLE
        self._handlers: dict[TaskType, TaskHandler] = {}
        self._retries = RetrySchedule()

        self._active_workers = 0
        self._worker_ids = itertools.count()
        self._workers: set[asyncio.Task[None]] = set()
        self._background_saves: set[asyncio.Task[None]] = set()
        self._autosave_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._retry_wakeup = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._save_lock = asyncio.Lock()
        self._closing = False

        logger.info(
            "task_queue_initialized",
            queue=self.name,
            concurrency=options.concurrency,
            throttle_delay_seconds=options.throttle_delay_seconds,
            retry_delay_seconds=options.retry_delay_seconds,
            max_retries=options.max_retries,
        )

    # Properties -------------------------------------------------------

    @property
    def name(self) -> str:
        return self._options.name

    @property
    def options(self) -> QueueOptions:
        return self._options

    @property
    def status(self) -> QueueStatus:
        return self._status

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # Submission -------------------------------------------------------

    def add_task(
        self,
        task_type: TaskType | str,
        payload: BaseModel | Mapping[str, Any],
        *,
        priority: int = DEFAULT_PRIORITY,
        max_retries: int | None = None,
        metadata: Mapping[str, Any] | None = None,
        task_id: str | None = None,
    ) -> str:
        """Queue a task and return its id. Never blocks.

        Must be called from inside the running event loop: an idle queue
        starts its workers immediately.
        """

        spec = TaskSpec(
            task_type=TaskType(task_type),
            payload=payload,
            priority=priority,
            max_retries=max_retries,
            metadata=dict(metadata or {}),
            task_id=task_id,
        )
        self._check_new_ids([spec])
        task = self._enqueue(spec)
        self._sort_pending()

        TASKS_SUBMITTED_TOTAL.labels(queue=self.name, task_type=task.type.value).inc()
        logger.info(
            "task_added",
            queue=self.name,
            task_id=task.id,
            task_type=task.type.value,
            priority=task.priority,
        )

        self._kick()
        return task.id

    def add_tasks(self, specs: Iterable[TaskSpec]) -> list[str]:
        """Queue several tasks as one batch and return their ids in order."""

        specs = list(specs)
        if not specs:
            return []

        self._check_new_ids(specs)
        tasks = [self._enqueue(spec) for spec in specs]
        self._sort_pending()

        TASK_BATCHES_SUBMITTED_TOTAL.labels(queue=self.name).inc()
        for task in tasks:
            TASKS_SUBMITTED_TOTAL.labels(
                queue=self.name, task_type=task.type.value
            ).inc()
        logger.info(
            "tasks_batch_added",
            queue=self.name,
            count=len(tasks),
            pending=len(self._pending),
        )

        self._kick()
        return [task.id for task in tasks]

    def register_handlers(self, handlers: Mapping[TaskType | str, TaskHandler]) -> None:
        """Merge handler bindings; later registrations win."""

        for task_type, handler in handlers.items():
            self._handlers[TaskType(task_type)] = handler
        logger.info(
            "task_handlers_registered",
            queue=self.name,
            task_types=sorted(TaskType(key).value for key in handlers),
        )

    def registered_task_types(self) -> frozenset[TaskType]:
        return frozenset(self._handlers)

    # Processing -------------------------------------------------------

    def start(self) -> None:
        """Start the autosave timer and the retry scheduler."""

        self._closing = False
        loop = asyncio.get_running_loop()
        interval = self._options.save_interval_seconds
        if self._state_store is not None and interval > 0:
            if self._autosave_task is None or self._autosave_task.done():
                self._autosave_task = loop.create_task(
                    self._autosave_loop(interval), name=f"{self.name}-autosave"
                )
        self._ensure_retry_loop()

    def process_queue(self) -> None:
        """Start workers for the pending backlog unless already running or paused."""

        if self._status in (QueueStatus.PROCESSING, QueueStatus.PAUSED):
            return

        if not self._pending:
            self._status = QueueStatus.IDLE
            return

        self._status = QueueStatus.PROCESSING
        # Workers still finishing tasks from before a pause count against the cap.
        free = max(self._options.concurrency - self._active_workers, 0)
        worker_count = min(free, len(self._pending))
        logger.info(
            "queue_processing_started",
            queue=self.name,
            workers=worker_count,
            pending=len(self._pending),
        )
        self._spawn_workers(worker_count)

    def pause_queue(self) -> None:
        """Stop dequeuing new tasks; running tasks are allowed to finish."""

        if self._status in (QueueStatus.PROCESSING, QueueStatus.IDLE):
            self._status = QueueStatus.PAUSED
            logger.info("queue_paused", queue=self.name)

    def resume_queue(self) -> None:
        if self._status is not QueueStatus.PAUSED:
            return

        self._status = QueueStatus.IDLE
        logger.info("queue_resumed", queue=self.name)
        self._retry_wakeup.set()
        self.release_due_retries()
        self.process_queue()

    def release_due_retries(self, now: float | None = None) -> int:
        """Move tasks whose backoff has elapsed back into pending.

        Returns:
            Number of tasks released
        """

        if self._status is QueueStatus.PAUSED:
            return 0

        current = self._clock() if now is None else now
        released = 0
        for task_id in self._retries.pop_due(current):
            task = self._processing.pop(task_id, None)
            if task is None:
                continue
            task.status = TaskStatus.PENDING
            self._pending.append(task)
            released += 1

        if released:
            self._sort_pending()
            logger.info("retries_released", queue=self.name, count=released)
            self._kick()
        return released

    async def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Wait until no task is pending, running or waiting to retry.

        Returns:
            False when ``timeout`` elapsed first
        """

        try:
            await asyncio.wait_for(self._drained.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # Introspection ----------------------------------------------------

    def get_stats(self) -> QueueStats:
        retrying = sum(
            1 for task in self._processing.values() if task.status is TaskStatus.RETRYING
        )
        return QueueStats(
            name=self.name,
            status=self._status,
            pending=len(self._pending),
            processing=len(self._processing),
            retrying=retrying,
            completed=self._completed_total,
            failed=self._failed_total,
            active_workers=self._active_workers,
            scheduled_retries=len(self._retries),
            total_submitted=self._submitted_total,
            total_throughput=self._completed_total + self._failed_total,
            concurrency=self._options.concurrency,
        )

    def get_queue_details(self) -> QueueDetails:
        return QueueDetails(
            stats=self.get_stats(),
            pending=_copy_tasks(self._pending),
            processing=_copy_tasks(self._processing.values()),
            completed=_copy_tasks(self._completed),
            failed=_copy_tasks(self._failed),
            scheduled_retries=[
                (entry.task_id, entry.due_at) for entry in self._retries.entries()
            ],
        )

    def get_task(self, task_id: str) -> Task | None:
        if task_id in self._processing:
            return self._processing[task_id].model_copy(deep=True)
        for collection in (self._pending, self._completed, self._failed):
            for task in collection:
                if task.id == task_id:
                    return task.model_copy(deep=True)
        return None

    # Persistence ------------------------------------------------------

    async def save_queue_state(self) -> None:
        """Write a snapshot; concurrent callers are serialized."""

        if self._state_store is None:
            return

        async with self._save_lock:
            snapshot = self._snapshot()
            try:
                await asyncio.to_thread(self._state_store.write, snapshot)
            except RepositoryError:
                STATE_SAVES_TOTAL.labels(queue=self.name, outcome="error").inc()
                logger.exception("queue_state_save_failed", queue=self.name)
                return

        STATE_SAVES_TOTAL.labels(queue=self.name, outcome="ok").inc()
        logger.debug("queue_state_saved", queue=self.name)

    async def load_queue_state(self) -> bool:
        """Restore a saved snapshot.

        Tasks that were running when the snapshot was written are returned to
        pending: an interrupted task runs again (at-least-once).

        Returns:
            True when a snapshot was found and loaded
        """

        if self._state_store is None:
            return False

        try:
            snapshot = await asyncio.to_thread(self._state_store.read, self.name)
        except RepositoryError:
            logger.exception("queue_state_load_failed", queue=self.name)
            return False

        if snapshot is None:
            logger.info("queue_state_not_found", queue=self.name)
            return False

        known_ids = (
            {task.id for task in self._pending}
            | set(self._processing)
            | {task.id for task in self._completed}
            | {task.id for task in self._failed}
        )
        restored = 0
        recovered = 0
        for task in snapshot.tasks:
            if task.id in known_ids:
                continue
            task.status = TaskStatus.PENDING
            self._pending.append(task)
            restored += 1
        for task in snapshot.processing_tasks:
            if task.id in known_ids:
                continue
            if task.status is TaskStatus.PROCESSING:
                # The interrupted attempt never reported an outcome.
                task.attempts = max(task.attempts - 1, 0)
            task.status = TaskStatus.PENDING
            self._pending.append(task)
            recovered += 1
        self._sort_pending()

        completed = [t for t in snapshot.completed_tasks if t.id not in known_ids]
        failed = [t for t in snapshot.failed_tasks if t.id not in known_ids]
        self._completed.extend(completed)
        self._failed.extend(failed)
        self._completed_total += len(completed)
        self._failed_total += len(failed)
        # Only tasks actually taken from the snapshot count as submitted.
        self._submitted_total += restored + recovered + len(completed) + len(failed)
        self._update_drained()

        logger.info(
            "queue_state_loaded",
            queue=self.name,
            pending=len(self._pending),
            recovered=recovered,
            completed=len(completed),
            failed=len(failed),
        )
        return True

    async def clear_queue(self) -> None:
        """Drop every task and history entry, then persist the empty state."""

        self._pending.clear()
        self._processing.clear()
        self._completed.clear()
        self._failed.clear()
        self._retries.clear()
        self._submitted_total = 0
        self._completed_total = 0
        self._failed_total = 0
        if self._status is not QueueStatus.PAUSED:
            self._status = QueueStatus.IDLE
        self._update_drained()
        logger.info("queue_cleared", queue=self.name)
        await self.save_queue_state()

    async def cleanup(self, *, cancel_workers: bool = False) -> None:
        """Stop timers (and optionally workers), then write a final snapshot."""

        self._closing = True
        timers = [task for task in (self._autosave_task, self._retry_task) if task]
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._autosave_task = None
        self._retry_task = None

        if cancel_workers and self._workers:
            workers = list(self._workers)
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if self._background_saves:
            await asyncio.gather(*self._background_saves, return_exceptions=True)

        await self.save_queue_state()
        logger.info("queue_cleaned_up", queue=self.name)

    # Internal helpers -------------------------------------------------

    def _check_new_ids(self, specs: list[TaskSpec]) -> None:
        existing = {task.id for task in self._pending} | set(self._processing)
        for spec in specs:
            if spec.task_id is None:
                continue
            if spec.task_id in existing:
                raise DuplicateTaskError(spec.task_id)
            existing.add(spec.task_id)

    def _enqueue(self, spec: TaskSpec) -> Task:
        fields: dict[str, Any] = {
            "type": TaskType(spec.task_type),
            "payload": _snapshot_payload(spec.payload),
            "priority": spec.priority,
            "max_retries": (
                self._options.max_retries
                if spec.max_retries is None
                else spec.max_retries
            ),
            "metadata": copy.deepcopy(spec.metadata),
        }
        if spec.task_id is not None:
            fields["id"] = spec.task_id
        task = Task(**fields)

        self._pending.append(task)
        self._submitted_total += 1
        self._drained.clear()
        return task

    def _sort_pending(self) -> None:
        # list.sort is stable: equal priorities keep submission order.
        self._pending.sort(key=lambda task: -task.priority)

    def _kick(self) -> None:
        if self._status in (QueueStatus.IDLE, QueueStatus.ERROR):
            self.process_queue()
        elif self._status is QueueStatus.PROCESSING:
            # Work arriving while busy may use free worker slots.
            free = self._options.concurrency - self._active_workers
            self._spawn_workers(min(free, len(self._pending)))

    def _spawn_workers(self, count: int) -> None:
        loop = asyncio.get_running_loop()
        for _ in range(max(count, 0)):
            worker_id = next(self._worker_ids)
            self._active_workers += 1
            worker = loop.create_task(
                self._run_worker(worker_id), name=f"{self.name}-worker-{worker_id}"
            )
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    def _update_drained(self) -> None:
        if not self._pending and not self._processing and self._active_workers == 0:
            self._drained.set()
        else:
            self._drained.clear()

    async def _run_worker(self, worker_id: int) -> None:
        logger.debug("worker_started", queue=self.name, worker_id=worker_id)
        try:
            while self._pending and self._status is QueueStatus.PROCESSING:
                task = self._pending.pop(0)
                task.status = TaskStatus.PROCESSING
                task.attempts += 1
                task.last_attempt_at = utc_now()
                self._processing[task.id] = task

                logger.debug(
                    "worker_task_started",
                    queue=self.name,
                    worker_id=worker_id,
                    task_id=task.id,
                    task_type=task.type.value,
                    attempts=task.attempts,
                )
                await self._process_task(task, worker_id)
        except Exception:  # noqa: BLE001
            self._status = QueueStatus.ERROR
            logger.exception("worker_crashed", queue=self.name, worker_id=worker_id)
        finally:
            self._active_workers -= 1
            logger.debug("worker_stopped", queue=self.name, worker_id=worker_id)
            if self._active_workers == 0:
                if self._status is QueueStatus.PROCESSING:
                    self._status = QueueStatus.IDLE
                    logger.info("queue_idle", queue=self.name)
                self._update_drained()
                self._schedule_save()

    async def _process_task(self, task: Task, worker_id: int) -> None:
        started = time.perf_counter()
        try:
            result = await self._execute(task)
        except Exception as exc:  # noqa: BLE001
            TASK_DURATION_SECONDS.labels(
                queue=self.name, task_type=task.type.value
            ).observe(time.perf_counter() - started)
            await self._handle_failure(task, exc, worker_id)
            return

        duration = time.perf_counter() - started
        TASK_DURATION_SECONDS.labels(queue=self.name, task_type=task.type.value).observe(
            duration
        )

        task.status = TaskStatus.COMPLETED
        task.result = _jsonable(result)
        task.completed_at = utc_now()
        self._processing.pop(task.id, None)
        self._completed.append(task)
        self._completed_total += 1

        TASKS_COMPLETED_TOTAL.labels(queue=self.name, task_type=task.type.value).inc()
        logger.info(
            "task_completed",
            queue=self.name,
            worker_id=worker_id,
            task_id=task.id,
            task_type=task.type.value,
            attempts=task.attempts,
            duration_seconds=round(duration, 3),
        )

        await self.save_queue_state()

        throttle = self._options.throttle_delay_seconds
        if throttle > 0:
            await asyncio.sleep(throttle)

    async def _execute(self, task: Task) -> Any:
        handler = self._handlers.get(task.type)
        if handler is None:
            raise ConfigurationError(
                f"No handler registered for task type: {task.type.value}"
            )

        payload = copy.deepcopy(task.payload)
        view = task.model_copy(deep=True)
        with task_context(self.name, task.id, task.type.value):
            if inspect.iscoroutinefunction(handler):
                return await handler(payload, view)

            # Blocking handlers must not stall the other workers on the loop.
            result = await asyncio.to_thread(handler, payload, view)
            if inspect.isawaitable(result):
                return await result
            return result

    async def _handle_failure(
        self, task: Task, exc: Exception, worker_id: int
    ) -> None:
        retryable = not isinstance(exc, ConfigurationError)
        task.error = TaskError.from_exception(exc, retryable=retryable)

        if retryable and task.attempts <= task.max_retries:
            task.status = TaskStatus.RETRYING
            delay = compute_retry_delay(
                task.attempts,
                self._options.retry_delay_seconds,
                self._jitter_provider,
            )
            self._retries.push(task.id, self._clock() + delay)
            TASK_RETRIES_TOTAL.labels(queue=self.name, task_type=task.type.value).inc()
            logger.warning(
                "task_retry_scheduled",
                queue=self.name,
                worker_id=worker_id,
                task_id=task.id,
                task_type=task.type.value,
                attempts=task.attempts,
                max_retries=task.max_retries,
                delay_seconds=round(delay, 3),
                error=task.error.message,
            )
            self._retry_wakeup.set()
            self._ensure_retry_loop()
            return

        task.status = TaskStatus.FAILED
        task.failed_at = utc_now()
        self._processing.pop(task.id, None)
        self._failed.append(task)
        self._failed_total += 1

        TASKS_FAILED_TOTAL.labels(queue=self.name, task_type=task.type.value).inc()
        logger.error(
            "task_failed",
            queue=self.name,
            worker_id=worker_id,
            task_id=task.id,
            task_type=task.type.value,
            attempts=task.attempts,
            retryable=retryable,
            error=task.error.message,
        )

        await self.save_queue_state()

    def _ensure_retry_loop(self) -> None:
        if self._closing:
            return
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.get_running_loop().create_task(
                self._retry_loop(), name=f"{self.name}-retries"
            )

    async def _retry_loop(self) -> None:
        while True:
            self._retry_wakeup.clear()
            self.release_due_retries()

            next_due = self._retries.next_due()
            timeout: float | None = None
            if next_due is not None and self._status is not QueueStatus.PAUSED:
                timeout = max(0.0, next_due - self._clock())

            try:
                await asyncio.wait_for(self._retry_wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.save_queue_state()

    def _schedule_save(self) -> None:
        if self._closing or self._state_store is None:
            return
        save = asyncio.get_running_loop().create_task(self.save_queue_state())
        self._background_saves.add(save)
        save.add_done_callback(self._background_saves.discard)

    def _snapshot(self) -> QueueSnapshot:
        return QueueSnapshot(
            options=self._options.model_copy(),
            tasks=_copy_tasks(self._pending),
            processing_tasks=_copy_tasks(self._processing.values()),
            completed_tasks=_copy_tasks(self._completed),
            failed_tasks=_copy_tasks(self._failed),
            saved_at=int(time.time() * 1000),
        )


def _copy_tasks(tasks: Iterable[Task]) -> list[Task]:
    return [task.model_copy(deep=True) for task in tasks]


def _snapshot_payload(payload: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    return copy.deepcopy(dict(payload))


def _jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_jsonable(item) for item in result]
    if isinstance(result, dict):
        return {key: _jsonable(value) for key, value in result.items()}
    return result


__all__ = ["InProcessTaskQueue", "TaskHandler"]
