"""Custom exception hierarchy for the policy tracker.

Following error taxonomy: retryable, non-retryable, configuration, queue usage.
"""


class PolicyTrackerError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(PolicyTrackerError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(PolicyTrackerError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class ConfigurationError(NonRetryableError):
    """Wiring errors such as a task type without a registered handler.

    The task queue fails these immediately instead of retrying them.
    """

    pass


class RateLimitError(RetryableError):
    """API rate limit exceeded."""

    def __init__(self, retry_after: int | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")


class AnalysisProviderError(RetryableError):
    """Analysis service communication errors."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass


class TaskQueueError(PolicyTrackerError):
    """Misuse of the task queue API."""

    pass


class DuplicateTaskError(TaskQueueError):
    """A caller-supplied task id is already queued or running."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task already queued: {task_id}")


class UnknownQueueError(TaskQueueError):
    """The coordinator does not own a queue with the requested name."""

    pass


class QueueNotInitializedError(TaskQueueError):
    """The coordinator was used before ``initialize()``."""

    pass
