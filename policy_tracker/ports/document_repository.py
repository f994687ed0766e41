"""Port definitions for document storage."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from policy_tracker.domain.models import DocumentAnalysis, PolicyDocument


@runtime_checkable
class AnalysisResultSink(Protocol):
    """Destination for completed analyses."""

    def save_analysis(
        self, document_id: int | str, analysis: DocumentAnalysis
    ) -> None:
        """Persist ``analysis`` for the given document."""


@runtime_checkable
class DocumentRepositoryPort(AnalysisResultSink, Protocol):
    """Storage queries used by the analysis driver."""

    def upsert_documents(self, documents: list[PolicyDocument]) -> int:
        """Insert or update documents and return the number written."""

    def get_document(self, document_id: int | str) -> PolicyDocument | None:
        """Return a single document or ``None`` when missing."""

    def fetch_documents_needing_analysis(
        self, limit: int | None = None
    ) -> list[PolicyDocument]:
        """Return documents that have not been analyzed yet."""


__all__ = ["AnalysisResultSink", "DocumentRepositoryPort"]
