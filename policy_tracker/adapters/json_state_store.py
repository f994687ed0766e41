"""JSON file persistence for queue snapshots.

One file per queue at ``<state_dir>/<name>_queue.json``. Writes go through a
sibling temp file and a rename so a crash mid-write leaves the previous
snapshot intact.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Final

from pydantic import ValidationError as PydanticValidationError

from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import RepositoryError
from policy_tracker.domain.task_queue import QueueSnapshot
from policy_tracker.ports.queue_state_store import QueueStateStorePort

logger = get_logger(__name__)

_FILE_SUFFIX: Final[str] = "_queue.json"


class JsonQueueStateStore(QueueStateStorePort):
    """Stores queue snapshots as pretty-printed JSON documents."""

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def path_for(self, queue_name: str) -> Path:
        return self._state_dir / f"{queue_name}{_FILE_SUFFIX}"

    def read(self, queue_name: str) -> QueueSnapshot | None:
        path = self.path_for(queue_name)
        if not path.exists():
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return QueueSnapshot.model_validate(raw)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
            raise RepositoryError(
                f"Failed to read queue state from {path}: {exc}"
            ) from exc

    def write(self, snapshot: QueueSnapshot) -> None:
        path = self.path_for(snapshot.options.name)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = snapshot.model_dump(mode="json", by_alias=True)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise RepositoryError(
                f"Failed to write queue state to {path}: {exc}"
            ) from exc

        logger.debug(
            "queue_state_written",
            queue=snapshot.options.name,
            path=str(path),
            pending=len(snapshot.tasks),
        )


__all__ = ["JsonQueueStateStore"]
