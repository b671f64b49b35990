"""
Plate text validation, normalization and confidence scoring.

Pure functions with no infrastructure dependencies. Two patterns are
recognized: the strict national format (two letters, two digits, three
letters, e.g. AB12CDE) and a generic 5-8 character alphanumeric format.

Example:
    >>> try_match_plate("ab12 cde", 67).formatted
    'AB12 CDE'
    >>> score_plate_confidence("AB12CDE", 67)
    85.0
"""

import math
import re
from dataclasses import dataclass
from typing import Any

NATIONAL_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z]{3}$")
GENERIC_PATTERN = re.compile(r"^[A-Z0-9]{5,8}$")

NATIONAL_BONUS = 18.0
GENERIC_BONUS = 5.0

MIN_PLATE_LENGTH = 5

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class PlateMatch:
    """
    Result of matching raw text against the plate patterns.

    Attributes:
        raw: Text as recognized.
        normalized: Uppercase alphanumeric form.
        formatted: Display form.
        is_high_confidence: True for the strict national pattern.
        base_confidence: Confidence supplied by the recognizer.
    """

    raw: str
    normalized: str
    formatted: str
    is_high_confidence: bool
    base_confidence: float


def normalize_plate(text: str) -> str:
    """Strip everything but ASCII letters and digits, then uppercase."""
    if not text:
        return ""
    return _NON_ALNUM.sub("", text).upper()


def format_plate(text: str) -> str:
    """
    Display form of a plate.

    Seven and eight character plates get a space after the fourth
    character; other lengths are returned normalized.
    """
    normalized = normalize_plate(text)
    if len(normalized) in (7, 8):
        return f"{normalized[:4]} {normalized[4:]}"
    return normalized


def is_likely_plate(text: str) -> bool:
    """Check if text looks like a plate under either pattern."""
    normalized = normalize_plate(text)
    if len(normalized) < MIN_PLATE_LENGTH:
        return False
    if NATIONAL_PATTERN.match(normalized):
        return True
    return GENERIC_PATTERN.match(normalized) is not None


def score_plate_confidence(text: str, base_confidence: Any) -> float:
    """
    Add the pattern bonus to a base confidence and clamp to [0, 100].

    Args:
        text: Plate text (normalized or raw).
        base_confidence: Recognizer confidence; non-numeric counts as 0.

    Returns:
        float: Adjusted confidence.
    """
    normalized = normalize_plate(text)
    bonus = 0.0
    if NATIONAL_PATTERN.match(normalized):
        bonus = NATIONAL_BONUS
    elif GENERIC_PATTERN.match(normalized):
        bonus = GENERIC_BONUS
    return max(0.0, min(100.0, _to_confidence(base_confidence) + bonus))


def try_match_plate(text: Any, base_confidence: Any) -> PlateMatch | None:
    """
    Match text against the plate patterns.

    Returns:
        PlateMatch, or None if the text is not a likely plate.
    """
    if not text or not isinstance(text, str):
        return None
    if not is_likely_plate(text):
        return None
    normalized = normalize_plate(text)
    return PlateMatch(
        raw=text,
        normalized=normalized,
        formatted=format_plate(normalized),
        is_high_confidence=NATIONAL_PATTERN.match(normalized) is not None,
        base_confidence=_to_confidence(base_confidence),
    )


def _to_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
