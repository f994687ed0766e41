"""Tests for JSON document export."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from policy_tracker.domain.exceptions import RepositoryError
from policy_tracker.domain.models import CollectionExportPayload, DocumentPayload
from policy_tracker.services.document_exporter import JsonDocumentExporter, safe_filename
from tests.conftest import make_document


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("EO 14151 / DEI", "EO_14151_DEI"),
        ("2025-01234", "2025-01234"),
        ("  ../../etc  ", "etc"),
        ("///", "untitled"),
    ],
)
def test_safe_filename(raw: str, expected: str) -> None:
    assert safe_filename(raw) == expected


def test_export_document_writes_camel_case_record(tmp_path: Path) -> None:
    exporter = JsonDocumentExporter(tmp_path)
    payload = DocumentPayload.from_document(make_document(12))

    result = exporter.export_document(payload)

    path = Path(result.export_path)
    assert path == tmp_path / "documents" / "2025-00012.json"
    assert result.item_count == 1
    record = json.loads(path.read_text(encoding="utf-8"))
    assert record["documentNumber"] == "2025-00012"
    assert record["signingDate"] == "2025-01-20"
    assert record["id"] == 12


def test_export_collection(tmp_path: Path) -> None:
    exporter = JsonDocumentExporter(tmp_path / "exports")
    payload = CollectionExportPayload(
        collection_name="Q1 Orders",
        documents=[DocumentPayload.from_document(make_document(n)) for n in (1, 2, 3)],
    )

    result = exporter.export_collection(payload)

    body = json.loads(Path(result.export_path).read_text(encoding="utf-8"))
    assert result.item_count == 3
    assert body["collection"] == "Q1 Orders"
    assert body["count"] == 3
    assert [doc["documentNumber"] for doc in body["documents"]] == [
        "2025-00001",
        "2025-00002",
        "2025-00003",
    ]
    assert "exportedAt" in body


def test_write_failure_raises_repository_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file", encoding="utf-8")
    exporter = JsonDocumentExporter(blocker)

    with pytest.raises(RepositoryError):
        exporter.export_document(DocumentPayload.from_document(make_document(1)))
