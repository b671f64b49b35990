"""
Assembly of Detection records from recognized words.

Both recognition paths produce `RecognitionWord`s in pixel space; this
module matches them against the plate patterns, converts boxes to
fractions of the frame and keeps one Detection per plate.
"""

import itertools
import math
import time
from collections.abc import Sequence
from typing import Any

from passingplates.domain.models import (
    Detection,
    DetectionSource,
    FractionalBox,
    RecognitionWord,
)
from passingplates.domain.plate_matcher import score_plate_confidence, try_match_plate

_detection_counter = itertools.count()


def current_millis() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def words_to_detections(
    words: Sequence[RecognitionWord] | None,
    image_width: Any,
    image_height: Any,
    source: DetectionSource,
    captured_at: int | None = None,
) -> list[Detection]:
    """
    Convert recognized words into deduplicated, scored Detections.

    Args:
        words: List or tuple of recognized words with pixel boxes.
        image_width: Frame width in pixels.
        image_height: Frame height in pixels.
        source: Origin of the frame.
        captured_at: Capture timestamp (epoch ms); defaults to now.

    Returns:
        list: At most one Detection per normalized plate, highest confidence
        first. Empty for missing or invalid input; never raises.
    """
    width = _finite(image_width)
    height = _finite(image_height)
    if not isinstance(words, (list, tuple)) or width <= 0 or height <= 0:
        return []

    timestamp = captured_at if captured_at is not None else current_millis()
    best: dict[str, Detection] = {}

    for word in words:
        if not isinstance(word, RecognitionWord) or not isinstance(word.text, str):
            continue
        match = try_match_plate(word.text, word.confidence)
        if match is None:
            continue

        coords = tuple(word.bbox) if word.bbox else ()
        if len(coords) != 4:
            coords = (0, 0, 0, 0)
        x0, y0, x1, y1 = (_finite(v) for v in coords)
        candidate = Detection(
            id=f"{match.normalized}-{timestamp}-{next(_detection_counter)}",
            plate=match.normalized,
            formatted_plate=match.formatted,
            confidence=score_plate_confidence(match.normalized, word.confidence),
            source=source,
            captured_at=timestamp,
            bbox=FractionalBox(
                left=max(0.0, x0) / width,
                top=max(0.0, y0) / height,
                width=max(0.0, x1 - x0) / width,
                height=max(0.0, y1 - y0) / height,
            ),
        )

        existing = best.get(match.normalized)
        if existing is None or candidate.confidence > existing.confidence:
            best[match.normalized] = candidate

    return sorted(best.values(), key=lambda d: d.confidence, reverse=True)


def _finite(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0
