"""
Domain models for the PassingPlates recognition pipeline.

These are pure domain objects with no infrastructure dependencies.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple


class DetectionSource(str, Enum):
    """Where the analysed image came from."""

    CAMERA = "camera"
    UPLOAD = "upload"


class EngineState(str, Enum):
    """Lifecycle of a recognition engine or OCR worker."""

    NOT_STARTED = "not_started"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class CaptureState(str, Enum):
    """States of the camera capture controller."""

    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting-permission"
    INITIALIZING = "initializing"
    READY = "ready"
    SCANNING = "scanning"
    PROCESSING = "processing"
    ERROR = "error"


class PixelBox(NamedTuple):
    """
    Axis-aligned box in frame pixel space.

    Origin at top-left; (x1, y1) is the bottom-right corner.
    """

    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        """Width of the box."""
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        """Height of the box."""
        return self.y1 - self.y0


class FractionalBox(NamedTuple):
    """Box expressed as fractions (0..1) of the frame dimensions."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class RecognitionWord:
    """
    Text recognized by either inference path, before plate matching.

    Attributes:
        text: Raw recognized text.
        confidence: Score in 0..100.
        bbox: Location of the text in pixel space.
    """

    text: str
    confidence: float
    bbox: PixelBox


@dataclass(frozen=True)
class Detection:
    """
    One recognized-plate observation tied to a frame.

    Attributes:
        id: Unique identifier within the process.
        plate: Normalized plate text (unique key of a sighting).
        formatted_plate: Display form of the plate.
        confidence: Final confidence in [0, 100].
        source: Camera frame or uploaded still.
        captured_at: Capture time in epoch milliseconds.
        bbox: Fractional bounding box.
    """

    id: str
    plate: str
    formatted_plate: str
    confidence: float
    source: DetectionSource
    captured_at: int
    bbox: FractionalBox


@dataclass
class SightingRecord:
    """
    Aggregated history of one plate.

    Created on the first Detection of a plate and updated on every later one.
    """

    plate: str
    formatted_plate: str
    count: int
    first_seen: int
    last_seen: int
    last_confidence: float
    last_source: DetectionSource

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the persisted (camelCase) field names."""
        return {
            "plate": self.plate,
            "formattedPlate": self.formatted_plate,
            "count": self.count,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "lastConfidence": self.last_confidence,
            "lastSource": self.last_source.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SightingRecord":
        """
        Rebuild a record from its persisted form.

        Missing or malformed numbers fall back to 0 and an unknown source
        falls back to camera, so an old snapshot never blocks loading.
        """
        try:
            source = DetectionSource(data.get("lastSource") or "camera")
        except ValueError:
            source = DetectionSource.CAMERA
        plate = str(data.get("plate") or "")
        return cls(
            plate=plate,
            formatted_plate=str(data.get("formattedPlate") or plate),
            count=int(_as_number(data.get("count"))),
            first_seen=int(_as_number(data.get("firstSeen"))),
            last_seen=int(_as_number(data.get("lastSeen"))),
            last_confidence=float(_as_number(data.get("lastConfidence"))),
            last_source=source,
        )

    def copy(self) -> "SightingRecord":
        """Independent copy handed out to listeners and callers."""
        return SightingRecord(
            plate=self.plate,
            formatted_plate=self.formatted_plate,
            count=self.count,
            first_seen=self.first_seen,
            last_seen=self.last_seen,
            last_confidence=self.last_confidence,
            last_source=self.last_source,
        )


@dataclass(frozen=True)
class SightingStats:
    """Summary of the sighting history."""

    unique_plates: int = 0
    total_sightings: int = 0
    most_seen_plate: SightingRecord | None = None
    recent_plate: SightingRecord | None = None


def _as_number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number
