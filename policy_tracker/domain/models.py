"""Domain models for the policy tracker.

All models use Pydantic v2 for validation and serialization.
"""

from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Any, Final

from pydantic import BaseModel, Field, field_validator

from policy_tracker.domain.task_queue import TaskType

MAX_CATEGORIES: Final[int] = 10
MAX_IMPACT_AREAS: Final[int] = 7


class ImpactLevel(StrEnum):
    """Severity assigned to a policy document by analysis."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class PolicyDocument(BaseModel):
    """Policy document (e.g. an executive order) tracked by the system."""

    id: int | str
    document_number: str
    title: str
    full_text: str = ""
    signing_date: date | None = None
    publication_date: date | None = None
    president: str | None = None
    url: str | None = None
    summary: str | None = None
    impact_level: ImpactLevel | None = None


class DocumentAnalysis(BaseModel):
    """Structured compliance analysis produced for a document."""

    summary: str
    executive_brief: str = ""
    comprehensive_analysis: str = ""
    impact_level: ImpactLevel
    categories: list[str] = Field(default_factory=list)
    institution_impact_areas: list[str] = Field(default_factory=list)

    @field_validator("impact_level", mode="before")
    @classmethod
    def _normalize_impact_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @field_validator("categories")
    @classmethod
    def _limit_categories(cls, value: list[str]) -> list[str]:
        return value[:MAX_CATEGORIES]

    @field_validator("institution_impact_areas")
    @classmethod
    def _limit_impact_areas(cls, value: list[str]) -> list[str]:
        return value[:MAX_IMPACT_AREAS]


# === Task payloads ===


class DocumentPayload(BaseModel):
    """Stable snapshot of the document fields handlers need."""

    document_id: int | str
    document_number: str
    title: str
    full_text: str = ""
    signing_date: date | None = None
    president: str | None = None
    url: str | None = None

    @classmethod
    def from_document(cls, document: PolicyDocument) -> DocumentPayload:
        return cls(
            document_id=document.id,
            document_number=document.document_number,
            title=document.title,
            full_text=document.full_text,
            signing_date=document.signing_date or document.publication_date,
            president=document.president,
            url=document.url,
        )

    def to_document(self) -> PolicyDocument:
        return PolicyDocument(
            id=self.document_id,
            document_number=self.document_number,
            title=self.title,
            full_text=self.full_text,
            signing_date=self.signing_date,
            president=self.president,
            url=self.url,
        )


class CollectionExportPayload(BaseModel):
    """Payload for exporting a named collection of documents."""

    collection_name: str = Field(min_length=1)
    documents: list[DocumentPayload] = Field(default_factory=list)


PAYLOAD_MODELS: Final[dict[TaskType, type[BaseModel]]] = {
    TaskType.ANALYZE_DOCUMENT: DocumentPayload,
    TaskType.SUMMARIZE_DOCUMENT: DocumentPayload,
    TaskType.CATEGORIZE_DOCUMENT: DocumentPayload,
    TaskType.EXTRACT_DATES: DocumentPayload,
    TaskType.EXTRACT_REQUIREMENTS: DocumentPayload,
    TaskType.EXTRACT_IMPACTS: DocumentPayload,
    TaskType.EXPORT_DOCUMENT: DocumentPayload,
    TaskType.EXPORT_COLLECTION: CollectionExportPayload,
}


# === Extraction / export results ===


class ExtractionKind(StrEnum):
    """Kinds of structured information pulled out of document text."""

    DATES = "dates"
    REQUIREMENTS = "requirements"
    IMPACTS = "impacts"


EXTRACTION_TASK_TYPES: Final[dict[ExtractionKind, TaskType]] = {
    ExtractionKind.DATES: TaskType.EXTRACT_DATES,
    ExtractionKind.REQUIREMENTS: TaskType.EXTRACT_REQUIREMENTS,
    ExtractionKind.IMPACTS: TaskType.EXTRACT_IMPACTS,
}


class ExtractedItem(BaseModel):
    """Single extracted fact with its supporting evidence."""

    item_type: str
    value: str
    evidence: str
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractionResult(BaseModel):
    """Output of one extraction pass over a document."""

    kind: ExtractionKind
    items: list[ExtractedItem] = Field(default_factory=list)
    confidence: float = 0.0


class ExportResult(BaseModel):
    """Location and size of an exported artifact."""

    export_path: str
    item_count: int


__all__ = [
    "EXTRACTION_TASK_TYPES",
    "PAYLOAD_MODELS",
    "CollectionExportPayload",
    "DocumentAnalysis",
    "DocumentPayload",
    "ExportResult",
    "ExtractedItem",
    "ExtractionKind",
    "ExtractionResult",
    "ImpactLevel",
    "PolicyDocument",
]
