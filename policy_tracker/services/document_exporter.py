"""JSON export of documents and named document collections."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Final

from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import RepositoryError
from policy_tracker.domain.models import (
    CollectionExportPayload,
    DocumentPayload,
    ExportResult,
)
from policy_tracker.domain.task_queue import utc_now

logger = get_logger(__name__)

DOCUMENTS_SUBDIR: Final[str] = "documents"

UNSAFE_FILENAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")
"""Characters replaced when turning document numbers into file names."""


def safe_filename(value: str) -> str:
    """Reduce ``value`` to a portable file stem.

    Example:
        >>> safe_filename("EO 14151 / DEI")
        'EO_14151_DEI'
    """
    cleaned = UNSAFE_FILENAME_PATTERN.sub("_", value.strip()).strip("._")
    return cleaned or "untitled"


class JsonDocumentExporter:
    """Writes export artifacts under a fixed directory."""

    def __init__(self, export_dir: Path | str) -> None:
        self._export_dir = Path(export_dir)

    @property
    def export_dir(self) -> Path:
        return self._export_dir

    def export_document(self, payload: DocumentPayload) -> ExportResult:
        path = (
            self._export_dir
            / DOCUMENTS_SUBDIR
            / f"{safe_filename(payload.document_number)}.json"
        )
        self._write_json(path, _document_record(payload))
        logger.info(
            "document_exported",
            document_id=payload.document_id,
            path=str(path),
        )
        return ExportResult(export_path=str(path), item_count=1)

    def export_collection(self, payload: CollectionExportPayload) -> ExportResult:
        path = self._export_dir / f"{safe_filename(payload.collection_name)}.json"
        body = {
            "collection": payload.collection_name,
            "exportedAt": utc_now().isoformat(),
            "count": len(payload.documents),
            "documents": [_document_record(doc) for doc in payload.documents],
        }
        self._write_json(path, body)
        logger.info(
            "collection_exported",
            collection=payload.collection_name,
            count=len(payload.documents),
            path=str(path),
        )
        return ExportResult(export_path=str(path), item_count=len(payload.documents))

    def _write_json(self, path: Path, body: dict[str, Any]) -> None:
        tmp = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(body, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise RepositoryError(f"Failed to write export {path}: {exc}") from exc


def _document_record(payload: DocumentPayload) -> dict[str, Any]:
    return {
        "id": payload.document_id,
        "documentNumber": payload.document_number,
        "title": payload.title,
        "signingDate": payload.signing_date.isoformat() if payload.signing_date else None,
        "president": payload.president,
        "url": payload.url,
        "fullText": payload.full_text,
    }


__all__ = ["DOCUMENTS_SUBDIR", "JsonDocumentExporter", "safe_filename"]
