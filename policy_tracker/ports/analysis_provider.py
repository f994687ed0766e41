"""Port definition for the external analysis service."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from policy_tracker.domain.models import DocumentAnalysis, PolicyDocument


@runtime_checkable
class AnalysisProviderPort(Protocol):
    """Interface implemented by AI analysis adapters."""

    def generate_analysis(self, document: PolicyDocument) -> DocumentAnalysis:
        """Produce a full compliance analysis for ``document``.

        Raises:
            RateLimitError: When the service throttles the request.
            AnalysisProviderError: On transient service failures.
            ValidationError: When the response cannot be parsed.
        """

    def summarize(self, document: PolicyDocument) -> str:
        """Return a short plain-language summary of ``document``."""

    def categorize(self, document: PolicyDocument) -> list[str]:
        """Return the policy categories that apply to ``document``."""


__all__ = ["AnalysisProviderPort"]
