"""Port definition for queue snapshot persistence."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from policy_tracker.domain.task_queue import QueueSnapshot


@runtime_checkable
class QueueStateStorePort(Protocol):
    """Reads and writes one snapshot per named queue."""

    def path_for(self, queue_name: str) -> Path:
        """Location of the snapshot for ``queue_name``."""

    def read(self, queue_name: str) -> QueueSnapshot | None:
        """Return the stored snapshot, or ``None`` when nothing was saved."""

    def write(self, snapshot: QueueSnapshot) -> None:
        """Replace the stored snapshot for ``snapshot.options.name``."""


__all__ = ["QueueStateStorePort"]
