"""Tests for task handler wiring."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from policy_tracker.domain.exceptions import ConfigurationError
from policy_tracker.domain.models import CollectionExportPayload, DocumentPayload
from policy_tracker.domain.task_queue import Task, TaskType
from policy_tracker.services.document_exporter import JsonDocumentExporter
from policy_tracker.services.document_extractor import PatternDocumentExtractor
from policy_tracker.use_cases.task_handlers import build_handler_table, parse_payload
from tests.conftest import FakeAnalysisProvider, RecordingSink, make_document


def test_parse_payload_returns_registered_model() -> None:
    payload = DocumentPayload.from_document(make_document(1)).model_dump(mode="json")

    parsed = parse_payload(TaskType.SUMMARIZE_DOCUMENT, payload)

    assert isinstance(parsed, DocumentPayload)
    assert parsed.document_number == "2025-00001"


def test_parse_payload_rejects_invalid_payload() -> None:
    with pytest.raises(ConfigurationError, match="export_collection"):
        parse_payload(TaskType.EXPORT_COLLECTION, {"collection_name": ""})


def test_collection_payload_accepted() -> None:
    parsed = parse_payload(
        TaskType.EXPORT_COLLECTION, {"collection_name": "all", "documents": []}
    )

    assert isinstance(parsed, CollectionExportPayload)


def test_analyze_handler_writes_back(tmp_path: Path) -> None:
    sink = RecordingSink()
    handlers = build_handler_table(
        analysis_provider=FakeAnalysisProvider(),
        extractor=PatternDocumentExtractor(),
        exporter=JsonDocumentExporter(tmp_path),
        result_sink=sink,
    )
    payload = DocumentPayload.from_document(make_document(6)).model_dump(mode="json")
    task = Task(type=TaskType.ANALYZE_DOCUMENT, payload=payload)

    result = asyncio.run(handlers[TaskType.ANALYZE_DOCUMENT](payload, task))

    assert result["written"] is True
    assert result["document_number"] == "2025-00006"
    assert sink.saved[0][0] == 6


def test_provider_errors_propagate(tmp_path: Path, mocker: MockerFixture) -> None:
    provider = mocker.Mock()
    provider.generate_analysis.side_effect = TimeoutError("provider timed out")
    handlers = build_handler_table(
        analysis_provider=provider,
        extractor=PatternDocumentExtractor(),
        exporter=JsonDocumentExporter(tmp_path),
        write_back_results=False,
    )
    payload = DocumentPayload.from_document(make_document(6)).model_dump(mode="json")
    task = Task(type=TaskType.ANALYZE_DOCUMENT, payload=payload)

    with pytest.raises(TimeoutError):
        asyncio.run(handlers[TaskType.ANALYZE_DOCUMENT](payload, task))


def test_handler_rejects_malformed_payload(tmp_path: Path) -> None:
    handlers = build_handler_table(
        analysis_provider=FakeAnalysisProvider(),
        extractor=PatternDocumentExtractor(),
        exporter=JsonDocumentExporter(tmp_path),
    )
    task = Task(type=TaskType.EXTRACT_DATES, payload={"title": "no number"})

    with pytest.raises(ConfigurationError):
        asyncio.run(handlers[TaskType.EXTRACT_DATES](task.payload, task))
