"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from policy_tracker.adapters.json_state_store import JsonQueueStateStore
from policy_tracker.domain.models import DocumentAnalysis, ImpactLevel, PolicyDocument
from policy_tracker.domain.task_queue import QueueOptions


def fast_options(name: str = "test", **overrides: Any) -> QueueOptions:
    """Queue options with every delay disabled."""

    values: dict[str, Any] = {
        "name": name,
        "concurrency": 1,
        "throttle_delay_seconds": 0.0,
        "retry_delay_seconds": 0.0,
        "max_retries": 3,
        "save_interval_seconds": 0.0,
    }
    values.update(overrides)
    return QueueOptions(**values)


def no_jitter() -> float:
    return 0.0


async def wait_for_condition(
    predicate: Callable[[], bool], timeout: float = 2.0
) -> None:
    """Yield to the event loop until ``predicate`` holds."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


def make_document(number: int, **overrides: Any) -> PolicyDocument:
    values: dict[str, Any] = {
        "id": number,
        "document_number": f"2025-{number:05d}",
        "title": f"Executive Order {number}",
        "full_text": "Agencies shall submit a report within 90 days of this order.",
        "signing_date": date(2025, 1, 20),
        "president": "Test President",
        "url": f"https://example.gov/documents/{number}",
    }
    values.update(overrides)
    return PolicyDocument(**values)


class FakeAnalysisProvider:
    """Records calls and returns canned analyses; optionally fails first calls."""

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        self.calls: list[str] = []
        self._failures = dict(failures or {})

    def _maybe_fail(self, document: PolicyDocument) -> None:
        self.calls.append(document.document_number)
        remaining = self._failures.get(document.document_number, 0)
        if remaining:
            self._failures[document.document_number] = remaining - 1
            raise RuntimeError(f"transient failure for {document.document_number}")

    def generate_analysis(self, document: PolicyDocument) -> DocumentAnalysis:
        self._maybe_fail(document)
        return DocumentAnalysis(
            summary=f"Summary of {document.title}",
            executive_brief="Brief",
            comprehensive_analysis="Analysis",
            impact_level=ImpactLevel.MEDIUM,
            categories=["Education"],
            institution_impact_areas=["Research Funding"],
        )

    def summarize(self, document: PolicyDocument) -> str:
        self._maybe_fail(document)
        return f"Summary of {document.title}"

    def categorize(self, document: PolicyDocument) -> list[str]:
        self._maybe_fail(document)
        return ["Education", "Research"]


class RecordingSink:
    def __init__(self) -> None:
        self.saved: list[tuple[int | str, DocumentAnalysis]] = []

    def save_analysis(self, document_id: int | str, analysis: DocumentAnalysis) -> None:
        self.saved.append((document_id, analysis))


@pytest.fixture
def state_store(tmp_path: Path) -> JsonQueueStateStore:
    return JsonQueueStateStore(tmp_path / "queue_state")


@pytest.fixture
def provider() -> FakeAnalysisProvider:
    return FakeAnalysisProvider()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
