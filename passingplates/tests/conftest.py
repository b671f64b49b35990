"""
Pytest configuration and fixtures.

Provides shared fixtures for testing including:
- Settings pointed at temporary directories
- Fake inference sessions, OCR readers and camera streams
- Domain object factories
- Sample images
"""

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import cv2
import numpy as np
import pytest

from passingplates.core.config import Settings
from passingplates.core.events import StatusEvent
from passingplates.domain.models import Detection, DetectionSource, FractionalBox
from passingplates.infrastructure.assets.loader import AssetFetcher
from passingplates.infrastructure.camera.opencv_stream import CameraStream, CameraStreamProvider
from passingplates.infrastructure.db.repository import InMemoryKeyValueStore
from passingplates.infrastructure.ml.ocr import OCRFallbackEngine
from passingplates.infrastructure.ml.ocr_loader import create_ocr_loader

PLATE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_"

RECOGNIZER_CONFIG_TEXT = f"""
# plate recognizer
max_plate_slots: 9
alphabet: '{PLATE_ALPHABET}'
pad_char: '_'
img_height: 70
img_width: 140
image_color_mode: 'grayscale'
"""


class FakeSession:
    """Inference session stand-in with a scripted output."""

    def __init__(self, input_shape: list[Any], output: Callable[[dict], Any] | Any):
        self.input_shape = input_shape
        self.output = output
        self.feeds: list[dict] = []

    def get_inputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="input", shape=self.input_shape)]

    def get_outputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="output")]

    def run(self, output_names: list[str], feeds: dict) -> list[Any]:
        self.feeds.append({k: np.array(v, copy=True) for k, v in feeds.items()})
        if callable(self.output):
            return [self.output(feeds)]
        return [self.output]


class FakeStream(CameraStream):
    """Camera stream returning the same frame until stopped."""

    def __init__(self, frame: np.ndarray | None):
        self.frame = frame
        self.stopped = False

    @property
    def active(self) -> bool:
        return not self.stopped

    async def read(self) -> np.ndarray | None:
        return None if self.stopped else self.frame

    async def stop(self) -> None:
        self.stopped = True


class FakeProvider(CameraStreamProvider):
    """Provider handing out one FakeStream, or raising a given error."""

    def __init__(self, frame: np.ndarray | None = None, error: Exception | None = None):
        self.frame = frame if frame is not None else np.zeros((480, 640, 3), dtype=np.uint8)
        self.error = error
        self.streams: list[FakeStream] = []

    async def open(self) -> CameraStream:
        if self.error is not None:
            raise self.error
        stream = FakeStream(self.frame)
        self.streams.append(stream)
        return stream


def one_hot_plate(text: str, score: float = 0.9, pad_score: float = 0.99) -> np.ndarray:
    """Recognizer output spelling `text` padded to nine slots."""
    padded = text.ljust(9, "_")
    output = np.zeros((1, 9, len(PLATE_ALPHABET)), dtype=np.float32)
    for slot, char in enumerate(padded):
        output[0, slot, PLATE_ALPHABET.index(char)] = pad_score if char == "_" else score
    return output


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and the working directory."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        model_bundle_dir=str(tmp_path / "fastalpr"),
        ocr_bundle_dir=str(tmp_path / "easyocr"),
        ocr_cache_dir=str(tmp_path / "cache"),
        runtime_prefer_gpu=False,
        ocr_use_gpu=True,
        ocr_force_watchdog=False,
        ocr_race_timeout_seconds=0.05,
        ocr_worker_timeout_seconds=1.0,
        capture_interval_seconds=60.0,
    )


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    """Empty in-memory key/value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def make_detection() -> Callable[..., Detection]:
    """Factory for Detections."""

    def factory(
        plate: str = "AB12CDE",
        confidence: float = 88.0,
        captured_at: int = 1_700_000_000_000,
        source: DetectionSource = DetectionSource.CAMERA,
    ) -> Detection:
        return Detection(
            id=f"{plate}-{captured_at}-0",
            plate=plate,
            formatted_plate=f"{plate[:4]} {plate[4:]}" if len(plate) in (7, 8) else plate,
            confidence=confidence,
            source=source,
            captured_at=captured_at,
            bbox=FractionalBox(0.1, 0.2, 0.3, 0.1),
        )

    return factory


@pytest.fixture
def status_log() -> tuple[list[StatusEvent], Callable[[StatusEvent], None]]:
    """Collects status events in order."""
    events: list[StatusEvent] = []
    return events, events.append


@pytest.fixture
def sample_frame() -> np.ndarray:
    """Blank 640x480 BGR frame."""
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def sample_image_bytes() -> bytes:
    """JPEG bytes of a frame with a white plate-like rectangle."""
    img = np.zeros((480, 640, 3), dtype=np.uint8)
    cv2.rectangle(img, (100, 150), (300, 200), (255, 255, 255), -1)
    _, buffer = cv2.imencode(".jpg", img)
    return buffer.tobytes()


PLATE_WORD = ([[10, 20], [110, 20], [110, 60], [10, 60]], "AB12CDE", 0.67)


class FakeReader:
    """EasyOCR reader stand-in."""

    def __init__(self, results: list | None = None, lang_list: list[str] | None = None):
        self.results = [PLATE_WORD] if results is None else results
        self.lang_list = ["en"] if lang_list is None else lang_list
        self.calls = 0

    def readtext(self, image: np.ndarray) -> list:
        self.calls += 1
        return self.results


def fake_easyocr_importer(name: str) -> SimpleNamespace:
    """Importer returning a module that looks like easyocr."""
    assert name == "easyocr"
    return SimpleNamespace(Reader=FakeReader)


@pytest.fixture
def ocr_bundle(settings) -> str:
    """Bundled OCR model directory with every required file present."""
    bundle = Path(settings.ocr_bundle_dir)
    bundle.mkdir(parents=True, exist_ok=True)
    for name in settings.ocr_model_files:
        (bundle / name).write_bytes(b"weights")
    return str(bundle)


@pytest.fixture
def make_ocr_engine(settings) -> Callable[..., OCRFallbackEngine]:
    """Factory for OCR engines backed by a scripted reader factory."""

    def factory(reader_factory: Callable[..., Any] | None = None) -> OCRFallbackEngine:
        loader = create_ocr_loader(settings, fetcher=AssetFetcher(), importer=fake_easyocr_importer)
        return OCRFallbackEngine(
            settings,
            loader=loader,
            reader_factory=reader_factory or (lambda backend, options: FakeReader()),
        )

    return factory
