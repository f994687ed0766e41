"""OpenAI adapter for policy document analysis.

Implements AnalysisProviderPort using chat completions in JSON mode.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml
from openai import APIError, OpenAI
from openai import RateLimitError as OpenAIRateLimitError
from pydantic import ValidationError as PydanticValidationError

from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import (
    AnalysisProviderError,
    RateLimitError,
    ValidationError,
)
from policy_tracker.domain.models import DocumentAnalysis, PolicyDocument
from policy_tracker.ports.analysis_provider import AnalysisProviderPort

logger = get_logger(__name__)

DEFAULT_PROMPT_PATH: Final[Path] = Path("config/prompts/analysis.yaml")
DEFAULT_MODEL: Final[str] = "gpt-4o-mini"

FULL_TEXT_PROMPT_CHARS: Final[int] = 12_000
"""Maximum characters of document text sent with a request."""


@dataclass(frozen=True)
class PromptFileData:
    """Loaded prompt payload with metadata."""

    content: str
    version: str | None
    checksum: str
    path: Path


@dataclass
class _PromptCacheEntry:
    mtime: float
    data: PromptFileData


_PROMPT_CACHE: dict[Path, _PromptCacheEntry] = {}


def load_prompt_from_file(file_path: str | Path) -> PromptFileData:
    """Load a system prompt, caching by modification time.

    YAML prompts must carry ``version`` and ``system`` strings; any other
    file is read verbatim with no version.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a YAML prompt file has invalid structure
    """

    raw_path = Path(file_path).expanduser()
    path = raw_path if raw_path.is_absolute() else (Path.cwd() / raw_path).resolve()

    if not path.exists():
        repo_root = Path(__file__).resolve().parents[2]
        alt_path = (repo_root / raw_path).resolve()
        if alt_path.exists():
            path = alt_path
        else:
            raise FileNotFoundError(f"Prompt file not found: {file_path}")

    stat_result = path.stat()
    cache_entry = _PROMPT_CACHE.get(path)
    if cache_entry and cache_entry.mtime == stat_result.st_mtime:
        return cache_entry.data

    version: str | None
    if path.suffix.lower() in {".yaml", ".yml"}:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(parsed, dict):
            raise ValueError(f"Prompt YAML must be a mapping: {path}")

        version = parsed.get("version")
        if not isinstance(version, str):
            raise ValueError(f"Prompt YAML missing 'version' string: {path}")

        system_prompt = parsed.get("system")
        if not isinstance(system_prompt, str):
            raise ValueError(f"Prompt YAML missing 'system' string: {path}")
    else:
        system_prompt = path.read_text(encoding="utf-8")
        version = None

    prompt_data = PromptFileData(
        content=system_prompt,
        version=version,
        checksum=hashlib.sha256(system_prompt.encode("utf-8")).hexdigest(),
        path=path,
    )
    _PROMPT_CACHE[path] = _PromptCacheEntry(mtime=stat_result.st_mtime, data=prompt_data)
    return prompt_data


class OpenAIAnalysisProvider(AnalysisProviderPort):
    """Analysis provider backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.2,
        timeout: int = 60,
        prompt_file: str | Path = DEFAULT_PROMPT_PATH,
    ) -> None:
        """Initialize the provider.

        Args:
            api_key: OpenAI API key
            model: Model name
            temperature: Sampling temperature
            timeout: Request timeout in seconds
            prompt_file: Path to the YAML system prompt
        """
        self.client = OpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature

        prompt = load_prompt_from_file(prompt_file)
        self.system_prompt = prompt.content
        self.prompt_version = prompt.version

        logger.info(
            "analysis_prompt_ready",
            prompt_hash=prompt.checksum,
            prompt_version=prompt.version,
            prompt_path=str(prompt.path),
            model=model,
        )

    def generate_analysis(self, document: PolicyDocument) -> DocumentAnalysis:
        data = self._complete(
            document, "Produce the full analysis.", operation="analysis"
        )
        try:
            return DocumentAnalysis.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Analysis response validation failed: {exc}") from exc

    def summarize(self, document: PolicyDocument) -> str:
        data = self._complete(document, "Return only the summary.", operation="summary")
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise ValidationError("Summary response missing 'summary' string")
        return summary.strip()

    def categorize(self, document: PolicyDocument) -> list[str]:
        data = self._complete(
            document, "Return only the categories.", operation="categories"
        )
        categories = data.get("categories")
        if not isinstance(categories, list) or not all(
            isinstance(item, str) for item in categories
        ):
            raise ValidationError("Categories response missing 'categories' list")
        return categories

    def _build_prompt(self, document: PolicyDocument, instruction: str) -> str:
        signed = document.signing_date or document.publication_date
        parts = [
            f"Title: {document.title}",
            f"Document Number: {document.document_number}",
            f"President: {document.president}" if document.president else "",
            f"Date: {signed.isoformat()}" if signed else "",
            (
                f"\nFull text:\n{document.full_text[:FULL_TEXT_PROMPT_CHARS]}"
                if document.full_text
                else ""
            ),
            f"\n{instruction}",
        ]
        return "\n".join(part for part in parts if part)

    def _complete(
        self, document: PolicyDocument, instruction: str, *, operation: str
    ) -> dict[str, Any]:
        start_time = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": self._build_prompt(document, instruction)},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIRateLimitError as exc:
            retry_after = _retry_after_seconds(exc)
            logger.warning(
                "analysis_rate_limited",
                document_number=document.document_number,
                operation=operation,
                retry_after=retry_after,
            )
            raise RateLimitError(retry_after=retry_after) from exc
        except APIError as exc:
            logger.warning(
                "analysis_api_error",
                document_number=document.document_number,
                operation=operation,
                error=str(exc),
            )
            raise AnalysisProviderError(f"OpenAI API error: {exc}") from exc

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        content = response.choices[0].message.content
        if not content:
            raise ValidationError("Empty response from analysis model")

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON from analysis model: {exc}") from exc
        if not isinstance(data, dict):
            raise ValidationError("Analysis model response must be a JSON object")

        usage = response.usage
        logger.info(
            "analysis_call_completed",
            document_number=document.document_number,
            operation=operation,
            model=self.model,
            latency_ms=latency_ms,
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
        )
        return data


def _retry_after_seconds(exc: OpenAIRateLimitError) -> int | None:
    header = exc.response.headers.get("retry-after")
    if header is None:
        return None
    try:
        return int(float(header))
    except ValueError:
        return None


__all__ = [
    "DEFAULT_PROMPT_PATH",
    "OpenAIAnalysisProvider",
    "PromptFileData",
    "load_prompt_from_file",
]
