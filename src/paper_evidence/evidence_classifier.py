"""Numeric evidence classification.

Separates genuine metrics from reference indices, citation years, section
ordinals and bibliographic furniture. Rules are checked top to bottom and the
first match wins, so overlapping cues resolve deterministically:

1. value inside a bracketed reference marker    -> reference_index
2. year with citation wording                   -> citation_year
3. part of a temporal-delta or scale phrase     -> potential_metric
4. section/figure/table/chapter reference       -> structural
5. bibliographic cue (DOI, volume, license...)  -> bibliographic
6. structural enumeration without metric signal -> structural
7. metric keyword or unit present               -> potential_metric, else structural
"""
from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import NumericEvidenceItem
from .numeric_patterns import TEMPORAL_DELTA_PATTERN, looks_like_year, matches_strong_pattern

CATEGORY_POTENTIAL_METRIC = "potential_metric"
CATEGORY_BIBLIOGRAPHIC = "bibliographic"
CATEGORY_STRUCTURAL = "structural"
CATEGORY_CITATION_YEAR = "citation_year"
CATEGORY_REFERENCE_INDEX = "reference_index"

CATEGORY_ORDER = (
    CATEGORY_POTENTIAL_METRIC,
    CATEGORY_STRUCTURAL,
    CATEGORY_BIBLIOGRAPHIC,
    CATEGORY_CITATION_YEAR,
    CATEGORY_REFERENCE_INDEX,
)

CATEGORY_LABELS = {
    CATEGORY_POTENTIAL_METRIC: "Potential metrics",
    CATEGORY_STRUCTURAL: "Structural",
    CATEGORY_BIBLIOGRAPHIC: "Bibliographic",
    CATEGORY_CITATION_YEAR: "Citation years",
    CATEGORY_REFERENCE_INDEX: "Reference indices",
}

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
_CONFIDENCE_RANK = {CONFIDENCE_LOW: 0, CONFIDENCE_MEDIUM: 1, CONFIDENCE_HIGH: 2}

DEFAULT_SNIPPET_CHARS = 180

REFERENCE_INDEX_PATTERN = re.compile(r"\[(\d{1,3})\]")
METRIC_SIGNAL_PATTERN = re.compile(
    r"%|\bms\b|\bseconds?\b|\bminutes?\b|\bhours?\b|\brate\b|\bcount\b|\bn=\s*\d+|"
    r"\baccuracy\b|\bprecision\b|\brecall\b|\bf1\b|\bauc\b|\blatency\b|"
    r"\bimprov(?:e|ed|ement)\b|\breduc(?:e|ed|tion)\b|\bincreas(?:e|ed)\b|"
    r"\bdecreas(?:e|ed)\b|\bbaseline\b|\bversus\b",
    re.IGNORECASE,
)
STRUCTURAL_ENUMERATION_PATTERN = re.compile(
    r"\b(?:main side effects?|critical areas?|separate teams?|references?|sections?|"
    r"chapters?|categories?|components?)\b",
    re.IGNORECASE,
)
SECTION_REFERENCE_PATTERN = re.compile(
    r"\b(?:section|chapter|page|figure|table|appendix|introduction|challenges?|"
    r"solutions?|ethical|conclusion)\b|§\s*\d+(?:\.\d+)?",
    re.IGNORECASE,
)
BIBLIOGRAPHIC_CUE_PATTERN = re.compile(
    r"doi|issn|ssrn|arxiv|world journal|volume|issue|pages?|copyright|received|"
    r"accepted|revised|creative commons|license",
    re.IGNORECASE,
)
CITATION_CUE_PATTERN = re.compile(
    r"et al\.|\(|\)|references?|journal|copyright|received|accepted|revised",
    re.IGNORECASE,
)
PERCENT_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\s*%")


# =============================================================================
# Classification
# =============================================================================

def classify_numeric_evidence(value: float, context_snippet: str | None) -> str:
    """Assign one of the five evidence categories to a value in context."""
    text = (context_snippet or "").lower()

    for match in REFERENCE_INDEX_PATTERN.finditer(text):
        if math.isclose(float(match.group(1)), value):
            return CATEGORY_REFERENCE_INDEX

    if looks_like_year(value) and CITATION_CUE_PATTERN.search(text):
        return CATEGORY_CITATION_YEAR

    if matches_strong_pattern(value, text):
        return CATEGORY_POTENTIAL_METRIC

    if SECTION_REFERENCE_PATTERN.search(text):
        return CATEGORY_STRUCTURAL

    if BIBLIOGRAPHIC_CUE_PATTERN.search(text):
        return CATEGORY_BIBLIOGRAPHIC

    has_metric = bool(METRIC_SIGNAL_PATTERN.search(text))
    if STRUCTURAL_ENUMERATION_PATTERN.search(text) and not has_metric:
        return CATEGORY_STRUCTURAL

    return CATEGORY_POTENTIAL_METRIC if has_metric else CATEGORY_STRUCTURAL


def evidence_confidence(category: str, context_snippet: str | None) -> str:
    """high/medium/low; anything that is not a metric is low."""
    if category != CATEGORY_POTENTIAL_METRIC:
        return CONFIDENCE_LOW
    text = context_snippet or ""
    if TEMPORAL_DELTA_PATTERN.search(text) or PERCENT_PATTERN.search(text):
        return CONFIDENCE_HIGH
    return CONFIDENCE_MEDIUM


def classify_evidence(items: Iterable[NumericEvidenceItem]) -> list[NumericEvidenceItem]:
    """Fill category and confidence on each item, in place; returns the list."""
    classified = []
    for item in items:
        item.category = classify_numeric_evidence(item.value, item.context_snippet)
        item.confidence = evidence_confidence(item.category, item.context_snippet)
        classified.append(item)
    return classified


def trim_context_snippet(snippet: str, max_chars: int = DEFAULT_SNIPPET_CHARS) -> str:
    """Tidy a snippet for display and cut it at a word or clause boundary.

    Drops a leading sentence tail or clipped word and a trailing clipped
    word, then truncates with an ellipsis.
    """
    clean = " ".join(snippet.split())
    clean = re.sub(r"^[a-z]{1,4}\.\s+", "", clean)
    clean = re.sub(r"^[a-z]{3,}(?=,\s+[A-Z])", "", clean)
    clean = re.sub(r"^[-–,:;\s]+", "", clean).strip()

    if re.match(r"^[a-z][a-z'-]*\s", clean):
        first_space = clean.find(" ")
        if 0 < first_space < 20:
            clean = clean[first_space + 1:].strip()

    if re.search(r"[a-zA-Z]$", clean):
        last_space = clean.rfind(" ")
        if last_space > len(clean) - 24:
            clean = clean[:last_space].strip()

    if len(clean) <= max_chars:
        return clean
    sliced = clean[:max_chars - 1]
    boundary = max(sliced.rfind("."), sliced.rfind(";"), sliced.rfind(","), sliced.rfind(" "))
    stable = sliced[:boundary].strip() if boundary > 40 else sliced.strip()
    return f"{stable}…"


# =============================================================================
# Aggregation and reporting
# =============================================================================

@dataclass
class AggregatedEvidence:
    """All occurrences of one value within one category."""
    value: float
    category: str
    confidence: str
    occurrences: int = 1
    snippets: list[str] = field(default_factory=list)
    file_names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "category": self.category,
            "confidence": self.confidence,
            "occurrences": self.occurrences,
            "snippets": self.snippets,
            "file_names": self.file_names,
        }


def aggregate_evidence(
    items: Iterable[tuple[NumericEvidenceItem, str | None]],
    max_snippets: int = 3,
) -> list[AggregatedEvidence]:
    """Merge classified (item, file name) pairs by (category, value).

    Keeps the highest confidence seen and up to ``max_snippets`` distinct
    snippets per value.
    """
    merged: dict[tuple[str, float], AggregatedEvidence] = {}
    for item, file_name in items:
        if not math.isfinite(item.value):
            continue
        snippet = trim_context_snippet(item.context_snippet or "(no snippet available)")
        category = item.category or classify_numeric_evidence(item.value, snippet)
        confidence = item.confidence or evidence_confidence(category, snippet)
        key = (category, item.value)

        existing = merged.get(key)
        if existing is None:
            merged[key] = AggregatedEvidence(
                value=item.value,
                category=category,
                confidence=confidence,
                snippets=[snippet],
                file_names=[file_name] if file_name else [],
            )
            continue

        existing.occurrences += 1
        if _CONFIDENCE_RANK[confidence] > _CONFIDENCE_RANK[existing.confidence]:
            existing.confidence = confidence
        if snippet not in existing.snippets and len(existing.snippets) < max_snippets:
            existing.snippets.append(snippet)
        if file_name and file_name not in existing.file_names:
            existing.file_names.append(file_name)

    return list(merged.values())


def evidence_class(rows: list[AggregatedEvidence]) -> str:
    metrics = sum(1 for r in rows if r.category == CATEGORY_POTENTIAL_METRIC)
    if metrics == 0:
        return "bibliographic/structural only"
    return "mixed" if metrics < len(rows) else "metric-bearing"


def format_value(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{round(value, 6):g}"


def _evidence_line(row: AggregatedEvidence) -> str:
    return f"- {format_value(row.value)}: {' | '.join(row.snippets)} ({row.confidence} confidence)"


def build_evidence_report(
    rows: list[AggregatedEvidence],
    file_names: list[str] | None = None,
    warnings: list[str] | None = None,
    per_category: int = 8,
) -> str:
    """Markdown report listing numbers by category and the claim-eligible ones."""
    lines = ["## Numbers with context"]
    if file_names:
        lines.append("Source files:")
        lines.extend(f"- {name}" for name in file_names)

    if not rows:
        lines.append(CATEGORY_LABELS[CATEGORY_POTENTIAL_METRIC])
        lines.append("- NONE: insufficient extractable numeric evidence")
    else:
        for category in CATEGORY_ORDER:
            bucket = [r for r in rows if r.category == category][:per_category]
            if not bucket:
                continue
            lines.append(f"### {CATEGORY_LABELS[category]}")
            lines.extend(_evidence_line(r) for r in bucket)

    if warnings:
        lines.append("Extraction warnings:")
        lines.extend(f"- {w}" for w in warnings[:3])

    eligible = [r for r in rows if r.category == CATEGORY_POTENTIAL_METRIC]
    lines.append("")
    lines.append("## Claim-eligible numerics")
    lines.append(f"Evidence class: {evidence_class(rows)}")
    if eligible:
        eligible.sort(key=lambda r: r.occurrences, reverse=True)
        lines.extend(_evidence_line(r) for r in eligible[:6])
    else:
        lines.append("NONE")

    return "\n".join(lines).strip()
