"""Handlers bound to each task type.

A handler validates its payload, calls one collaborator off the event loop
and returns a JSON-serializable result. Collaborator errors propagate so the
queue can decide whether to retry.
"""

from __future__ import annotations

import asyncio
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from policy_tracker.adapters.task_queue_inprocess import TaskHandler
from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import ConfigurationError
from policy_tracker.domain.models import (
    PAYLOAD_MODELS,
    CollectionExportPayload,
    DocumentPayload,
    ExtractionKind,
)
from policy_tracker.domain.task_queue import Task, TaskType
from policy_tracker.ports.analysis_provider import AnalysisProviderPort
from policy_tracker.ports.document_repository import AnalysisResultSink
from policy_tracker.services.document_exporter import JsonDocumentExporter
from policy_tracker.services.document_extractor import PatternDocumentExtractor

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

_EXTRACTION_KINDS: dict[TaskType, ExtractionKind] = {
    TaskType.EXTRACT_DATES: ExtractionKind.DATES,
    TaskType.EXTRACT_REQUIREMENTS: ExtractionKind.REQUIREMENTS,
    TaskType.EXTRACT_IMPACTS: ExtractionKind.IMPACTS,
}


def parse_payload(task_type: TaskType, payload: dict[str, Any]) -> BaseModel:
    """Validate ``payload`` against the model registered for ``task_type``.

    Raises:
        ConfigurationError: When the payload does not match its schema
    """
    model = PAYLOAD_MODELS.get(task_type)
    if model is None:
        raise ConfigurationError(f"No payload model for task type: {task_type.value}")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            f"Invalid payload for {task_type.value}: {exc.error_count()} error(s)"
        ) from exc


def _typed(task: Task, payload: dict[str, Any], model: type[PayloadT]) -> PayloadT:
    parsed = parse_payload(task.type, payload)
    if not isinstance(parsed, model):
        raise ConfigurationError(
            f"Payload for {task.type.value} is not a {model.__name__}"
        )
    return parsed


def build_handler_table(
    *,
    analysis_provider: AnalysisProviderPort,
    extractor: PatternDocumentExtractor,
    exporter: JsonDocumentExporter,
    result_sink: AnalysisResultSink | None = None,
    write_back_results: bool = True,
) -> dict[TaskType, TaskHandler]:
    """Bind collaborators into one handler per task type."""

    async def analyze_document(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        doc = _typed(task, payload, DocumentPayload)
        analysis = await asyncio.to_thread(
            analysis_provider.generate_analysis, doc.to_document()
        )

        written = False
        if write_back_results and result_sink is not None:
            await asyncio.to_thread(result_sink.save_analysis, doc.document_id, analysis)
            written = True
        else:
            logger.info(
                "analysis_write_back_skipped",
                task_id=task.id,
                document_id=doc.document_id,
            )

        logger.info(
            "document_analyzed",
            task_id=task.id,
            document_id=doc.document_id,
            impact_level=analysis.impact_level.value,
            written=written,
        )
        return {
            "document_id": doc.document_id,
            "document_number": doc.document_number,
            "analysis": analysis.model_dump(mode="json"),
            "written": written,
        }

    async def summarize_document(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        doc = _typed(task, payload, DocumentPayload)
        summary = await asyncio.to_thread(analysis_provider.summarize, doc.to_document())
        return {"document_id": doc.document_id, "summary": summary}

    async def categorize_document(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        doc = _typed(task, payload, DocumentPayload)
        categories = await asyncio.to_thread(
            analysis_provider.categorize, doc.to_document()
        )
        return {"document_id": doc.document_id, "categories": list(categories)}

    async def extract(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        doc = _typed(task, payload, DocumentPayload)
        kind = _EXTRACTION_KINDS[task.type]
        result = await asyncio.to_thread(extractor.extract, kind, doc.full_text)
        logger.debug(
            "document_extracted",
            task_id=task.id,
            document_id=doc.document_id,
            kind=kind.value,
            items=len(result.items),
        )
        return {"document_id": doc.document_id, **result.model_dump(mode="json")}

    async def export_document(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        doc = _typed(task, payload, DocumentPayload)
        result = await asyncio.to_thread(exporter.export_document, doc)
        return result.model_dump(mode="json")

    async def export_collection(payload: dict[str, Any], task: Task) -> dict[str, Any]:
        collection = _typed(task, payload, CollectionExportPayload)
        result = await asyncio.to_thread(exporter.export_collection, collection)
        return result.model_dump(mode="json")

    return {
        TaskType.ANALYZE_DOCUMENT: analyze_document,
        TaskType.SUMMARIZE_DOCUMENT: summarize_document,
        TaskType.CATEGORIZE_DOCUMENT: categorize_document,
        TaskType.EXTRACT_DATES: extract,
        TaskType.EXTRACT_REQUIREMENTS: extract,
        TaskType.EXTRACT_IMPACTS: extract,
        TaskType.EXPORT_DOCUMENT: export_document,
        TaskType.EXPORT_COLLECTION: export_collection,
    }


__all__ = ["build_handler_table", "parse_payload"]
