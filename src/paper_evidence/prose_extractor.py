"""Numeric evidence mining from running text.

Used when tables yield too few numeric rows. Several pattern families
propose (value, snippet) candidates; noise rules drop years, ordinals,
citation fragments and bibliographic furniture; the survivors are scored and
split into a "strong" lane (metric wording nearby) and a "weak" lane (plain
numbers without bibliographic cues). The strong lane is used when it has
enough members, otherwise the weak lane, otherwise nothing.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import (
    LANE_NONE,
    LANE_STRONG,
    LANE_WEAK,
    ProseProvenance,
    ScientificDataPoint,
)
from .numeric_patterns import (
    NUMBER_WORD_PATTERN,
    WORD_NUMBERS,
    find_scale_quantities,
    find_temporal_deltas,
    looks_like_year,
)

logger = logging.getLogger(__name__)

PROSE_EXTRACTION_VERSION = "2.2.0"

PROSE_X_NAME = "prose_index"
PROSE_Y_NAME = "prose_metric"
PROSE_Y_NAME_WEAK = "prose_metric_weak"

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------
DEFAULT_SNIPPET_RADIUS = 80
DEFAULT_MIN_SNIPPET_LENGTH = 24
DEFAULT_MAX_CANDIDATES = 120
DEFAULT_STRONG_CAP = 80
DEFAULT_WEAK_CAP = 40
MIN_LANE_SIZE = 2
MAX_BARE_MAGNITUDE = 1_000_000
SMALL_ORDINAL_MAX = 12
DEDUP_DECIMALS = 4

METRIC_KEYWORD_SCORE = 4
UNIT_SCORE = 1
BIBLIOGRAPHIC_SCORE = -5

# Candidate families
FAMILY_RANGE = "range"
FAMILY_RATIO = "ratio"
FAMILY_TEMPORAL = "temporal_delta"
FAMILY_SCALE = "scale_quantifier"
FAMILY_BARE = "bare_number"
FAMILY_WORD = "number_word"

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------
_NUM = r"-?\d+(?:\.\d+)?"

RANGE_PATTERN = re.compile(rf"(?<![\w.])({_NUM})\s*(?:-|–|—|to)\s*({_NUM})(?![\w.]*\d)")
RATIO_PATTERN = re.compile(rf"(?<![\w.])({_NUM})\s*/\s*({_NUM})\b")
BARE_PATTERN = re.compile(
    r"(\b(?:p|r|f1|auc|accuracy|precision|recall|latency|loss|rmse|mae|mape)\s*[:=]?\s*)?"
    rf"(?<![\w.])({_NUM})(\s*%)?",
    re.IGNORECASE,
)

METRIC_KEYWORD_PATTERN = re.compile(
    r"\b(?:accuracy|precision|recall|f1|auc|latency|ms|seconds?|error|loss|rmse|mae|mape|"
    r"improv\w*|reduc\w*|increas\w*|decreas\w*|baseline|compared|outperform\w*|performance)\b",
    re.IGNORECASE,
)
UNIT_PATTERN = re.compile(r"%|\b(?:ms|sec|seconds?|minutes?|hours?)\b", re.IGNORECASE)
ORDINAL_UNIT_PATTERN = re.compile(r"%|±|\b(?:ms|sec|seconds?|minutes?|hours?|x)\b", re.IGNORECASE)
BIBLIOGRAPHIC_PATTERN = re.compile(
    r"\b(?:journal|doi|issn|volume|issue|pages?|copyright|license|received|revised|accepted|"
    r"publication\s+history|creativecommons|corresponding\s+author)\b|author\(s\)",
    re.IGNORECASE,
)
CITATION_PATTERN = re.compile(
    r"\breferences?\b|\[\d+\]|\(\d{4}\)|\bet\s+al\.|\bavailable\s+at\b|\bssrn\b|\bresearchgate\b|"
    r"\bvol\.|\bno\.|\bpp\.|\bconference\b|\bproceedings\b|\bjournal\b|\bdoi\b",
    re.IGNORECASE,
)
SECTION_PATTERN = re.compile(
    r"\b(?:section|introduction|background|methodology|methods|results|discussion|"
    r"conclusion|chapter|part\s+\d+)\b",
    re.IGNORECASE,
)
BROKEN_FRAGMENT_PATTERN = re.compile(r"[\"'\-\s\d.\[\]()]+")

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ProseCandidate:
    """A numeric value proposed from running text."""
    value: float
    snippet: str
    family: str
    unit: str | None = None
    score: int = 0
    bibliographic: bool = False
    citation: bool = False


@dataclass
class ProseExtractionResult:
    """Outcome of lane selection over one text."""
    lane: str
    selected: list[ProseCandidate]
    strong_count: int
    weak_count: int
    candidate_count: int

    @property
    def y_name(self) -> str:
        return PROSE_Y_NAME_WEAK if self.lane == LANE_WEAK else PROSE_Y_NAME

    def to_data_points(
        self, ingestion_id: str | None = None, version: int = 1
    ) -> list[ScientificDataPoint]:
        """Selected candidates as data points indexed 1..n along x."""
        if self.lane == LANE_NONE:
            return []
        points = []
        for index, candidate in enumerate(self.selected, start=1):
            points.append(ScientificDataPoint(
                x_name=PROSE_X_NAME,
                y_name=self.y_name,
                x_value=float(index),
                y_value=candidate.value,
                unit_y=candidate.unit,
                provenance=ProseProvenance(
                    lane=self.lane,
                    context_snippet=candidate.snippet,
                    extraction_version=PROSE_EXTRACTION_VERSION,
                ),
                metadata={"family": candidate.family, "score": candidate.score},
                ingestion_id=ingestion_id,
                ingestion_version=version,
            ))
        return points


def context_snippet(text: str, start: int, end: int, radius: int = DEFAULT_SNIPPET_RADIUS) -> str:
    """Whitespace-collapsed window of ``radius`` characters around a match."""
    window = text[max(0, start - radius):end + radius]
    return _WHITESPACE.sub(" ", window).strip()


def score_candidate(snippet: str) -> int:
    score = 0
    if METRIC_KEYWORD_PATTERN.search(snippet):
        score += METRIC_KEYWORD_SCORE
    if UNIT_PATTERN.search(snippet):
        score += UNIT_SCORE
    if BIBLIOGRAPHIC_PATTERN.search(snippet):
        score += BIBLIOGRAPHIC_SCORE
    return score


class ProseNumericExtractor:
    """Candidate generation, noise suppression and lane selection."""

    def __init__(
        self,
        *,
        snippet_radius: int = DEFAULT_SNIPPET_RADIUS,
        min_snippet_length: int = DEFAULT_MIN_SNIPPET_LENGTH,
        max_candidates: int = DEFAULT_MAX_CANDIDATES,
        strong_cap: int = DEFAULT_STRONG_CAP,
        weak_cap: int = DEFAULT_WEAK_CAP,
    ):
        self.snippet_radius = snippet_radius
        self.min_snippet_length = min_snippet_length
        self.max_candidates = max_candidates
        self.strong_cap = strong_cap
        self.weak_cap = weak_cap

    @classmethod
    def from_config(cls, config) -> ProseNumericExtractor:
        return cls(
            snippet_radius=config.prose_snippet_radius,
            min_snippet_length=config.prose_min_snippet_length,
            max_candidates=config.prose_max_candidates,
            strong_cap=config.prose_strong_cap,
            weak_cap=config.prose_weak_cap,
        )

    # -------------------------------------------------------------------------
    # Candidate generation
    # -------------------------------------------------------------------------

    def generate_candidates(self, text: str) -> list[ProseCandidate]:
        """All raw candidates from every pattern family, before filtering."""
        candidates: list[ProseCandidate] = []

        def add(value: float, start: int, end: int, family: str, unit: str | None = None) -> None:
            snippet = context_snippet(text, start, end, self.snippet_radius)
            candidates.append(ProseCandidate(value=value, snippet=snippet, family=family, unit=unit))

        for m in RANGE_PATTERN.finditer(text):
            a, b = float(m.group(1)), float(m.group(2))
            values = [a, b]
            if not (looks_like_year(a) or looks_like_year(b)):
                values.append((a + b) / 2)
            for value in values:
                add(value, m.start(), m.end(), FAMILY_RANGE)

        for m in RATIO_PATTERN.finditer(text):
            for value in (float(m.group(1)), float(m.group(2))):
                add(value, m.start(), m.end(), FAMILY_RATIO)

        for delta in find_temporal_deltas(text):
            add(delta.before, delta.start, delta.end, FAMILY_TEMPORAL, delta.before_unit)
            add(delta.after, delta.start, delta.end, FAMILY_TEMPORAL, delta.after_unit)

        for quantity in find_scale_quantities(text):
            add(quantity.value, quantity.start, quantity.end, FAMILY_SCALE)

        for m in BARE_PATTERN.finditer(text):
            unit = "%" if m.group(3) else None
            add(float(m.group(2)), m.start(2), m.end(), FAMILY_BARE, unit)

        for m in NUMBER_WORD_PATTERN.finditer(text):
            add(float(WORD_NUMBERS[m.group(1).lower()]), m.start(), m.end(), FAMILY_WORD)

        return candidates

    def is_noise(self, candidate: ProseCandidate) -> bool:
        """Apply the suppression rules; True means drop the candidate."""
        value, snippet = candidate.value, candidate.snippet
        exempt = candidate.family in (FAMILY_TEMPORAL, FAMILY_SCALE)
        has_metric = bool(METRIC_KEYWORD_PATTERN.search(snippet))

        if candidate.family != FAMILY_SCALE and looks_like_year(value):
            return True
        if candidate.family != FAMILY_SCALE and abs(value) > MAX_BARE_MAGNITUDE:
            return True
        if len(snippet) < self.min_snippet_length or BROKEN_FRAGMENT_PATTERN.fullmatch(snippet):
            return True
        if CITATION_PATTERN.search(snippet) and not (has_metric or UNIT_PATTERN.search(snippet)):
            return True
        if SECTION_PATTERN.search(snippet) and not has_metric:
            return True
        if (
            not exempt
            and float(value).is_integer()
            and 1 <= value <= SMALL_ORDINAL_MAX
            and not (has_metric or ORDINAL_UNIT_PATTERN.search(snippet))
        ):
            return True
        return False

    def find_candidates(self, text: str) -> list[ProseCandidate]:
        """Filtered, de-duplicated and scored candidates in discovery order."""
        seen: set[float] = set()
        kept: list[ProseCandidate] = []
        for candidate in self.generate_candidates(text):
            if self.is_noise(candidate):
                continue
            key = round(candidate.value, DEDUP_DECIMALS)
            if key in seen:
                continue
            seen.add(key)
            candidate.score = score_candidate(candidate.snippet)
            candidate.bibliographic = bool(BIBLIOGRAPHIC_PATTERN.search(candidate.snippet))
            candidate.citation = bool(CITATION_PATTERN.search(candidate.snippet))
            kept.append(candidate)
            if len(kept) >= self.max_candidates:
                break
        return kept

    # -------------------------------------------------------------------------
    # Lane selection
    # -------------------------------------------------------------------------

    def extract(self, text: str) -> ProseExtractionResult:
        """Mine text and pick the evidence lane."""
        candidates = self.find_candidates(text)
        ranked = sorted(candidates, key=lambda c: c.score, reverse=True)

        strong = [c for c in ranked if c.score > 0][:self.strong_cap]
        weak = [
            c for c in ranked
            if c.score <= 0 and not c.bibliographic and not c.citation
        ][:self.weak_cap]

        if len(strong) >= MIN_LANE_SIZE:
            lane, selected = LANE_STRONG, strong
        elif len(weak) >= MIN_LANE_SIZE:
            lane, selected = LANE_WEAK, weak
        else:
            lane, selected = LANE_NONE, []

        logger.debug(
            f"Prose mining: {len(candidates)} candidates, {len(strong)} strong, "
            f"{len(weak)} weak, lane={lane}"
        )
        return ProseExtractionResult(
            lane=lane,
            selected=selected,
            strong_count=len(strong),
            weak_count=len(weak),
            candidate_count=len(candidates),
        )
