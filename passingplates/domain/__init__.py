"""Domain layer package - plate rules and core models."""

from passingplates.domain.detections import words_to_detections
from passingplates.domain.models import (
    CaptureState,
    Detection,
    DetectionSource,
    EngineState,
    FractionalBox,
    PixelBox,
    RecognitionWord,
    SightingRecord,
    SightingStats,
)
from passingplates.domain.plate_matcher import (
    PlateMatch,
    format_plate,
    is_likely_plate,
    normalize_plate,
    score_plate_confidence,
    try_match_plate,
)

__all__ = [
    # Models
    "CaptureState",
    "Detection",
    "DetectionSource",
    "EngineState",
    "FractionalBox",
    "PixelBox",
    "RecognitionWord",
    "SightingRecord",
    "SightingStats",
    # Plate matcher
    "PlateMatch",
    "format_plate",
    "is_likely_plate",
    "normalize_plate",
    "score_plate_confidence",
    "try_match_plate",
    # Assembler
    "words_to_detections",
]
