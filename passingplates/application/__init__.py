"""Application layer package - use cases and services."""

from passingplates.application.capture_controller import (
    CaptureController,
    CaptureStatus,
    normalize_progress,
)
from passingplates.application.recognition_engine import RecognitionEngineSelector
from passingplates.application.sighting_store import SightingStore, compute_stats

__all__ = [
    "CaptureController",
    "CaptureStatus",
    "RecognitionEngineSelector",
    "SightingStore",
    "compute_stats",
    "normalize_progress",
]
