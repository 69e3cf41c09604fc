"""Number-word, temporal-delta and scale-quantifier patterns.

Shared by the prose extractor (candidate generation) and the evidence
classifier (precedence rule for strong quantitative phrasing).
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass

WORD_NUMBERS: dict[str, int] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19, "twenty": 20,
}

SCALE_MULTIPLIERS: dict[str, float] = {
    "thousand": 1e3,
    "million": 1e6,
    "billion": 1e9,
    "trillion": 1e12,
    "petabyte": 1e15,
}

YEAR_MIN = 1900
YEAR_MAX = 2100

# Longest words first so "seventeen" is not cut short by "seven"
_WORDS = "|".join(sorted(WORD_NUMBERS, key=len, reverse=True))
NUMBER_TOKEN = rf"\d+(?:\.\d+)?|{_WORDS}"
_TIME_UNIT = r"seconds?|minutes?|hours?|days?"

TEMPORAL_DELTA_PATTERN = re.compile(
    rf"\b({NUMBER_TOKEN})\s+({_TIME_UNIT})\s+(?:to|->|→)\s+({NUMBER_TOKEN})\s+({_TIME_UNIT})\b",
    re.IGNORECASE,
)

SCALE_PATTERN = re.compile(
    rf"(?:\b({NUMBER_TOKEN})\s*)?\b(thousands?|millions?|billions?|trillions?|petabytes?)\b"
    r"(?:\s+of\s+(?:events?|records?|requests?|transactions?|data))?",
    re.IGNORECASE,
)

NUMBER_WORD_PATTERN = re.compile(rf"\b({_WORDS})\b", re.IGNORECASE)


@dataclass
class TemporalDelta:
    """A before/after duration pair such as "three hours to fifteen minutes"."""
    before: float
    before_unit: str
    after: float
    after_unit: str
    start: int
    end: int


@dataclass
class ScaleQuantity:
    """A magnitude phrase such as "two billion events"."""
    value: float
    base: float
    word: str
    start: int
    end: int


def parse_number_token(token: str) -> float | None:
    """Parse a digit string or number word (one..twenty)."""
    token = token.strip().lower()
    if token in WORD_NUMBERS:
        return float(WORD_NUMBERS[token])
    try:
        return float(token)
    except ValueError:
        return None


def looks_like_year(value: float) -> bool:
    return float(value).is_integer() and YEAR_MIN <= value <= YEAR_MAX


def find_temporal_deltas(text: str) -> list[TemporalDelta]:
    deltas = []
    for match in TEMPORAL_DELTA_PATTERN.finditer(text):
        before = parse_number_token(match.group(1))
        after = parse_number_token(match.group(3))
        if before is None or after is None:
            continue
        deltas.append(TemporalDelta(
            before=before,
            before_unit=match.group(2).lower(),
            after=after,
            after_unit=match.group(4).lower(),
            start=match.start(),
            end=match.end(),
        ))
    return deltas


def find_scale_quantities(text: str) -> list[ScaleQuantity]:
    quantities = []
    for match in SCALE_PATTERN.finditer(text):
        base = parse_number_token(match.group(1)) if match.group(1) else 1.0
        if base is None:
            continue
        word = match.group(2).lower()
        multiplier = SCALE_MULTIPLIERS[word.rstrip("s")]
        quantities.append(ScaleQuantity(
            value=base * multiplier,
            base=base,
            word=word,
            start=match.start(),
            end=match.end(),
        ))
    return quantities


def matches_strong_pattern(value: float, text: str) -> bool:
    """True if value is produced by a temporal-delta or scale phrase in text."""
    for delta in find_temporal_deltas(text):
        if math.isclose(value, delta.before) or math.isclose(value, delta.after):
            return True
    for quantity in find_scale_quantities(text):
        if math.isclose(value, quantity.value):
            return True
    return False
