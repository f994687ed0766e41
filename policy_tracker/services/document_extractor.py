"""Pattern-based extraction of dates, requirements and impact areas.

Works on the raw document text only, so extraction tasks never touch the
rate-limited analysis service.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Final

from policy_tracker.domain.models import ExtractedItem, ExtractionKind, ExtractionResult

_DATE: Final[str] = (
    r"(?:[A-Z][a-z]+\.?\s+\d{1,2},?\s+\d{4}"
    r"|\d{1,2}\s+[A-Z][a-z]+\.?\s+\d{4}"
    r"|\d{1,2}/\d{1,2}/\d{4})"
)

EFFECTIVE_DATE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"\b(?:effective|takes effect|in effect)\b[^.]{{0,30}}?(?P<date>{_DATE})",
    flags=re.IGNORECASE,
)
"""Pattern to match effective dates (e.g., "effective on January 15, 2025")."""

DEADLINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"\b(?:deadline|due|no later than|not later than|prior to|by)\b[^.]{{0,30}}?(?P<date>{_DATE})",
    flags=re.IGNORECASE,
)
"""Pattern to match explicit deadlines (e.g., "no later than March 1, 2025")."""

DATE_RANGE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"\b(?:from|between)\s+(?P<start>{_DATE})\s+(?:to|through|until|and)\s+(?P<end>{_DATE})",
    flags=re.IGNORECASE,
)
"""Pattern to match date ranges (e.g., "from May 1, 2025 through June 30, 2025")."""

RELATIVE_DEADLINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:within|after|following|not later than|no later than|by)\s+"
    r"(?P<amount>\d+)\s+(?P<unit>day|week|month|year)s?\s+"
    r"(?:of|after|from|following)(?:\s+the\s+date\s+of)?\s+"
    r"(?P<anchor>this order|publication|issuance)",
    flags=re.IGNORECASE,
)
"""Pattern to match deadlines relative to the order (e.g., "within 90 days of this order")."""

FISCAL_YEAR_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:fiscal\s+year|FY)\s*(?P<year>20\d{2})\b", flags=re.IGNORECASE
)
"""Pattern to match fiscal years (e.g., "fiscal year 2026", "FY2026")."""

REQUIREMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:shall|must|(?:is|are) required to|(?:is|are) directed to)\b",
    flags=re.IGNORECASE,
)
"""Pattern to match obligation language in a sentence."""

REPORTING_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:report|submit|certify|notify)\w*\b", flags=re.IGNORECASE
)

SENTENCE_SPLIT_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?<=[.;!?])\s+")

_DATE_FORMATS: Final[tuple[str, ...]] = (
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%m/%d/%Y",
)

# Institution impact areas and the vocabulary that signals them.
IMPACT_KEYWORDS: Final[dict[str, tuple[str, ...]]] = {
    "Research Funding": ("grant", "grants", "research", "federal funding", "appropriation"),
    "Student Aid & Higher Education Finance": (
        "student aid",
        "financial aid",
        "student loan",
        "student loans",
        "tuition",
        "pell",
    ),
    "Administrative Compliance": ("compliance", "reporting", "regulation", "certify", "audit"),
    "Workforce & Employment Policy": ("employee", "employees", "workforce", "hiring", "personnel"),
    "Public-Private Partnerships": ("partnership", "partnerships", "private sector", "industry"),
    "Institutional Accessibility": ("accessibility", "disability", "admissions", "access"),
    "Academic Freedom & Curriculum": ("curriculum", "academic freedom", "instruction", "speech"),
}

EVIDENCE_MAX_CHARS: Final[int] = 300

_EFFECTIVE_CONFIDENCE: Final[float] = 0.9
_DEADLINE_CONFIDENCE: Final[float] = 0.85
_RANGE_CONFIDENCE: Final[float] = 0.8
_RELATIVE_CONFIDENCE: Final[float] = 0.75
_FISCAL_YEAR_CONFIDENCE: Final[float] = 0.85
_REQUIREMENT_CONFIDENCE: Final[float] = 0.7
_REPORTING_CONFIDENCE: Final[float] = 0.8


def parse_date(value: str) -> str | None:
    """Parse a date phrase into ISO format.

    Example:
        >>> parse_date("Jan. 20, 2025")
        '2025-01-20'
    """
    cleaned = " ".join(value.replace(",", " ").replace(".", " ").split())
    if "/" in value:
        cleaned = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def split_sentences(text: str) -> list[str]:
    return [part.strip() for part in SENTENCE_SPLIT_PATTERN.split(text) if part.strip()]


def _evidence(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= EVIDENCE_MAX_CHARS:
        return text
    return text[: EVIDENCE_MAX_CHARS - 3] + "..."


class PatternDocumentExtractor:
    """Extracts structured facts from policy text with regular expressions."""

    def extract(self, kind: ExtractionKind | str, text: str) -> ExtractionResult:
        kind = ExtractionKind(kind)
        if not text or not text.strip():
            return ExtractionResult(kind=kind)

        if kind is ExtractionKind.DATES:
            items = self.extract_dates(text)
        elif kind is ExtractionKind.REQUIREMENTS:
            items = self.extract_requirements(text)
        else:
            items = self.extract_impacts(text)

        confidence = (
            round(sum(item.confidence for item in items) / len(items), 3)
            if items
            else 0.0
        )
        return ExtractionResult(kind=kind, items=items, confidence=confidence)

    def extract_dates(self, text: str) -> list[ExtractedItem]:
        items: list[ExtractedItem] = []
        seen: set[tuple[str, str]] = set()

        def _add(item_type: str, value: str | None, evidence: str, confidence: float) -> None:
            if value is None or (item_type, value) in seen:
                return
            seen.add((item_type, value))
            items.append(
                ExtractedItem(
                    item_type=item_type,
                    value=value,
                    evidence=_evidence(evidence),
                    confidence=confidence,
                )
            )

        for match in EFFECTIVE_DATE_PATTERN.finditer(text):
            _add(
                "effective_date",
                parse_date(match.group("date")),
                match.group(0),
                _EFFECTIVE_CONFIDENCE,
            )

        for match in DEADLINE_PATTERN.finditer(text):
            _add(
                "deadline",
                parse_date(match.group("date")),
                match.group(0),
                _DEADLINE_CONFIDENCE,
            )

        for match in DATE_RANGE_PATTERN.finditer(text):
            start = parse_date(match.group("start"))
            end = parse_date(match.group("end"))
            if start and end:
                _add("date_range", f"{start}/{end}", match.group(0), _RANGE_CONFIDENCE)

        for match in RELATIVE_DEADLINE_PATTERN.finditer(text):
            amount = int(match.group("amount"))
            unit = match.group("unit").lower()
            anchor = match.group("anchor").lower()
            value = f"{amount} {unit}{'s' if amount != 1 else ''} after {anchor}"
            _add("relative_deadline", value, match.group(0), _RELATIVE_CONFIDENCE)

        for match in FISCAL_YEAR_PATTERN.finditer(text):
            _add(
                "fiscal_year",
                f"FY{match.group('year')}",
                match.group(0),
                _FISCAL_YEAR_CONFIDENCE,
            )

        return items

    def extract_requirements(self, text: str) -> list[ExtractedItem]:
        items: list[ExtractedItem] = []
        for sentence in split_sentences(text):
            if not REQUIREMENT_PATTERN.search(sentence):
                continue
            is_reporting = bool(REPORTING_PATTERN.search(sentence))
            items.append(
                ExtractedItem(
                    item_type="reporting" if is_reporting else "obligation",
                    value=_evidence(sentence),
                    evidence=_evidence(sentence),
                    confidence=(
                        _REPORTING_CONFIDENCE if is_reporting else _REQUIREMENT_CONFIDENCE
                    ),
                )
            )
        return items

    def extract_impacts(self, text: str) -> list[ExtractedItem]:
        sentences = split_sentences(text)
        items: list[ExtractedItem] = []
        for area, keywords in IMPACT_KEYWORDS.items():
            pattern = re.compile(
                r"\b(?:" + "|".join(re.escape(word) for word in keywords) + r")\b",
                flags=re.IGNORECASE,
            )
            hits = pattern.findall(text)
            if not hits:
                continue
            evidence = next((s for s in sentences if pattern.search(s)), hits[0])
            items.append(
                ExtractedItem(
                    item_type="impact_area",
                    value=area,
                    evidence=_evidence(evidence),
                    confidence=min(0.5 + 0.1 * len(hits), 0.95),
                )
            )
        items.sort(key=lambda item: item.confidence, reverse=True)
        return items


__all__ = [
    "IMPACT_KEYWORDS",
    "PatternDocumentExtractor",
    "parse_date",
    "split_sentences",
]
