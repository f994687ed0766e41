"""Domain models and helpers for task queue operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Final
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_PRIORITY: Final[int] = 0
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_DELAY_SECONDS: Final[float] = 5.0
DEFAULT_THROTTLE_DELAY_SECONDS: Final[float] = 1.0
DEFAULT_SAVE_INTERVAL_SECONDS: Final[float] = 10.0
HISTORY_LIMIT: Final[int] = 100


class TaskType(StrEnum):
    """Closed set of task variants; each one is routed to exactly one queue."""

    ANALYZE_DOCUMENT = "analyze_document"
    SUMMARIZE_DOCUMENT = "summarize_document"
    CATEGORIZE_DOCUMENT = "categorize_document"
    EXTRACT_DATES = "extract_dates"
    EXTRACT_REQUIREMENTS = "extract_requirements"
    EXTRACT_IMPACTS = "extract_impacts"
    EXPORT_DOCUMENT = "export_document"
    EXPORT_COLLECTION = "export_collection"


class QueueName(StrEnum):
    """Named queues owned by the coordinator."""

    ANALYSIS = "analysis"
    EXTRACTION = "extraction"
    EXPORT = "export"


TASK_QUEUE_ROUTES: Final[dict[TaskType, QueueName]] = {
    TaskType.ANALYZE_DOCUMENT: QueueName.ANALYSIS,
    TaskType.SUMMARIZE_DOCUMENT: QueueName.ANALYSIS,
    TaskType.CATEGORIZE_DOCUMENT: QueueName.ANALYSIS,
    TaskType.EXTRACT_DATES: QueueName.EXTRACTION,
    TaskType.EXTRACT_REQUIREMENTS: QueueName.EXTRACTION,
    TaskType.EXTRACT_IMPACTS: QueueName.EXTRACTION,
    TaskType.EXPORT_DOCUMENT: QueueName.EXPORT,
    TaskType.EXPORT_COLLECTION: QueueName.EXPORT,
}


class TaskStatus(StrEnum):
    """Processing lifecycle states for queued tasks."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class QueueStatus(StrEnum):
    """Run state of a single queue."""

    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_task_id() -> str:
    return str(uuid4())


class _CamelModel(BaseModel):
    """Base for models persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskError(_CamelModel):
    """Last failure recorded for a task."""

    message: str
    error_type: str
    occurred_at: datetime = Field(default_factory=utc_now)
    retryable: bool = True

    @classmethod
    def from_exception(cls, exc: BaseException, *, retryable: bool) -> TaskError:
        return cls(
            message=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            retryable=retryable,
        )


class Task(_CamelModel):
    """Unit of deferred work tracked by a queue."""

    id: str = Field(default_factory=new_task_id)
    type: TaskType
    payload: dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    priority: int = DEFAULT_PRIORITY
    attempts: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    added_at: datetime = Field(default_factory=utc_now)
    last_attempt_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    error: TaskError | None = None
    result: Any = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("added_at", "last_attempt_at", "completed_at", "failed_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 0:
            msg = "max_retries must be non-negative"
            raise ValueError(msg)
        return value


class QueueOptions(_CamelModel):
    """Configuration for one named queue."""

    name: str
    concurrency: int = Field(default=1, ge=1)
    throttle_delay_seconds: float = Field(default=DEFAULT_THROTTLE_DELAY_SECONDS, ge=0)
    retry_delay_seconds: float = Field(default=DEFAULT_RETRY_DELAY_SECONDS, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    save_interval_seconds: float = Field(default=DEFAULT_SAVE_INTERVAL_SECONDS, ge=0)


def default_queue_profiles() -> dict[QueueName, QueueOptions]:
    """Workload profiles for the built-in queues.

    Analysis calls a rate-limited external service, so it runs narrow and
    spaced out. Export is local file I/O and runs wide.
    """

    return {
        QueueName.ANALYSIS: QueueOptions(
            name=QueueName.ANALYSIS.value,
            concurrency=2,
            throttle_delay_seconds=3.0,
            retry_delay_seconds=10.0,
            max_retries=3,
        ),
        QueueName.EXTRACTION: QueueOptions(
            name=QueueName.EXTRACTION.value,
            concurrency=4,
            throttle_delay_seconds=0.5,
        ),
        QueueName.EXPORT: QueueOptions(
            name=QueueName.EXPORT.value,
            concurrency=5,
            throttle_delay_seconds=0.1,
        ),
    }


class CoordinatorConfig(BaseModel):
    """Owner-supplied configuration for the queue coordinator."""

    state_dir: Path = Path("queue_state")
    export_dir: Path = Path("exports")
    queues: dict[QueueName, QueueOptions] = Field(default_factory=default_queue_profiles)
    write_back_results: bool = True


@dataclass(slots=True)
class TaskSpec:
    """Single entry for ``add_tasks`` batches."""

    task_type: TaskType
    payload: BaseModel | dict[str, Any]
    priority: int = DEFAULT_PRIORITY
    max_retries: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None


class QueueStats(BaseModel):
    """Point-in-time counters for a queue."""

    name: str
    status: QueueStatus
    pending: int
    processing: int
    retrying: int
    completed: int
    failed: int
    active_workers: int
    scheduled_retries: int
    total_submitted: int
    total_throughput: int
    concurrency: int


class QueueDetails(BaseModel):
    """Full read-only view of a queue's task sets."""

    stats: QueueStats
    pending: list[Task]
    processing: list[Task]
    completed: list[Task]
    failed: list[Task]
    scheduled_retries: list[tuple[str, float]]


class QueueSnapshot(_CamelModel):
    """On-disk representation of a queue."""

    options: QueueOptions
    tasks: list[Task] = Field(default_factory=list)
    processing_tasks: list[Task] = Field(default_factory=list)
    completed_tasks: list[Task] = Field(default_factory=list)
    failed_tasks: list[Task] = Field(default_factory=list)
    saved_at: int = 0


__all__ = [
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_PRIORITY",
    "HISTORY_LIMIT",
    "TASK_QUEUE_ROUTES",
    "CoordinatorConfig",
    "QueueDetails",
    "QueueName",
    "QueueOptions",
    "QueueSnapshot",
    "QueueStats",
    "QueueStatus",
    "Task",
    "TaskError",
    "TaskSpec",
    "TaskStatus",
    "TaskType",
    "default_queue_profiles",
    "new_task_id",
    "utc_now",
]
