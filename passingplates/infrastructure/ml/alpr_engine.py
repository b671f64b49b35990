"""
Neural plate detection and recognition.

Two ONNX models work in sequence: a detector finds plate boxes in a
letterboxed frame, a recognizer reads a fixed number of character slots
from each box. This module owns preprocessing, output decoding and
confidence fusion; tensor arithmetic is left to the inference runtime.
All inference runs outside the event loop via threadpool.
"""

import asyncio
import math
import threading
from dataclasses import dataclass
from typing import Any, NamedTuple

import cv2
import numpy as np
from fastapi.concurrency import run_in_threadpool

from passingplates.core.config import Settings, get_settings
from passingplates.core.events import EngineStatus, StatusCallback, StatusEvent, notify
from passingplates.core.lazy import AsyncOnce
from passingplates.core.logging import get_logger
from passingplates.domain.detections import words_to_detections
from passingplates.domain.models import (
    Detection,
    DetectionSource,
    EngineState,
    PixelBox,
    RecognitionWord,
)
from passingplates.infrastructure.assets.loader import (
    AssetFetcher,
    SourceResolver,
    build_candidate_list,
    fetch_with_fallback,
)
from passingplates.infrastructure.ml.alpr_config import AlprConfig
from passingplates.infrastructure.ml.runtime_loader import (
    LoadedRuntime,
    RuntimeSource,
    create_runtime_loader,
)

logger = get_logger(__name__)

DETECTION_WEIGHT = 0.6
RECOGNITION_WEIGHT = 0.4
BOX_EXPANSION_X = 0.1
BOX_EXPANSION_Y = 0.2
LETTERBOX_FILL = 114
DEFAULT_DETECTOR_SIZE = 384
DETECTION_ROW_SIZE = 7
MIN_BOX_SIZE = 1.0


class InferenceError(Exception):
    """Raised when a whole frame could not be run through the models."""

    user_message = "Plate recognition failed for this frame"


@dataclass(frozen=True)
class LetterboxResult:
    """
    Detector input plus the mapping back to frame coordinates.

    Attributes:
        tensor: Float32 NCHW tensor in [0, 1].
        scale: Frame-to-canvas scale factor.
        padding: (x, y) offset of the frame inside the canvas.
    """

    tensor: np.ndarray
    scale: float
    padding: tuple[float, float]


class CandidateBox(NamedTuple):
    """Detector box in frame pixels with its score."""

    x0: float
    y0: float
    x1: float
    y1: float
    score: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def combine_confidence(detection_score: float, recognition_score: float) -> float:
    """
    Blend detector and recognizer scores into one 0-100 confidence.

    Non-finite scores count as 0.
    """
    detection = detection_score * 100 if math.isfinite(detection_score) else 0.0
    recognition = recognition_score * 100 if math.isfinite(recognition_score) else 0.0
    combined = detection * DETECTION_WEIGHT + recognition * RECOGNITION_WEIGHT
    return _clamp(combined, 0.0, 100.0)


def decode_detections(
    output: Any,
    scale: float,
    padding: tuple[float, float],
    frame_width: int,
    frame_height: int,
    threshold: float,
) -> list[CandidateBox]:
    """
    Decode end-to-end detector output into expanded frame-space boxes.

    Rows are (batch, x1, y1, x2, y2, class, score) in canvas coordinates.
    Rows under the threshold or with a near-zero area are dropped;
    survivors are widened by 10% and heightened by 20%, clamped to the frame.

    Args:
        output: Raw detector output tensor.
        scale: Letterbox scale factor.
        padding: Letterbox (x, y) offset.
        frame_width: Original frame width.
        frame_height: Original frame height.
        threshold: Minimum detector score.

    Returns:
        list: Candidate boxes in detector order.

    Raises:
        InferenceError: If the output cannot be read as detection rows.
    """
    data = np.asarray(output, dtype=np.float32)
    if data.size == 0:
        return []
    if data.ndim >= 2:
        rows = data.reshape(-1, data.shape[-1])
    elif data.size % DETECTION_ROW_SIZE == 0:
        rows = data.reshape(-1, DETECTION_ROW_SIZE)
    else:
        raise InferenceError(f"Unexpected detector output of {data.size} values")
    if rows.shape[1] < DETECTION_ROW_SIZE:
        raise InferenceError(f"Detector rows have {rows.shape[1]} values, expected 7")
    if scale <= 0:
        return []

    pad_x, pad_y = padding
    scores = rows[:, 6]
    keep = np.isfinite(scores) & (scores >= threshold)

    boxes = []
    for row in rows[keep]:
        x1 = (float(row[1]) - pad_x) / scale
        y1 = (float(row[2]) - pad_y) / scale
        x2 = (float(row[3]) - pad_x) / scale
        y2 = (float(row[4]) - pad_y) / scale

        left = _clamp(min(x1, x2), 0, frame_width)
        right = _clamp(max(x1, x2), 0, frame_width)
        top = _clamp(min(y1, y2), 0, frame_height)
        bottom = _clamp(max(y1, y2), 0, frame_height)

        width = right - left
        height = bottom - top
        if width <= MIN_BOX_SIZE or height <= MIN_BOX_SIZE:
            continue

        expand_x = width * BOX_EXPANSION_X / 2
        expand_y = height * BOX_EXPANSION_Y / 2
        boxes.append(
            CandidateBox(
                x0=_clamp(left - expand_x, 0, frame_width),
                y0=_clamp(top - expand_y, 0, frame_height),
                x1=_clamp(right + expand_x, 0, frame_width),
                y1=_clamp(bottom + expand_y, 0, frame_height),
                score=float(row[6]),
            )
        )
    return boxes


def decode_recognition_output(output: Any, config: AlprConfig) -> list[tuple[str, list[float]]]:
    """
    Pick the most probable character in every slot.

    Returns:
        list: One (text, per-slot scores) pair per batch entry; empty when
        the config has no alphabet or slot count.
    """
    if not config.is_usable:
        return []
    data = np.asarray(output, dtype=np.float32).reshape(-1)
    stride = config.max_plate_slots * config.vocabulary_size
    batch = data.size // stride
    if batch == 0:
        return []

    probabilities = data[: batch * stride].reshape(
        batch, config.max_plate_slots, config.vocabulary_size
    )
    best = probabilities.argmax(axis=2)
    scores = probabilities.max(axis=2)
    return [
        ("".join(config.alphabet[i] for i in indices), slot_scores.tolist())
        for indices, slot_scores in zip(best, scores)
    ]


def _input_dim(shape: Any, index: int, default: int) -> int:
    try:
        value = shape[index]
    except (IndexError, TypeError):
        return default
    return value if isinstance(value, int) and value > 0 else default


class NeuralAlprEngine:
    """
    Detector + recognizer pair with reusable preprocessing buffers.

    Buffers are sized once here and reused for every frame, so frames are
    processed one at a time.

    Example:
        engine = NeuralAlprEngine(detector, recognizer, config)
        detections = await engine.process(frame, DetectionSource.CAMERA)
    """

    def __init__(
        self,
        detection_session: Any,
        recognition_session: Any,
        config: AlprConfig,
        detection_threshold: float = 0.4,
        recognition_threshold: float = 0.35,
    ):
        """
        Initialize engine.

        Args:
            detection_session: Inference session of the plate detector.
            recognition_session: Inference session of the character recognizer.
            config: Decoded recognizer config.
            detection_threshold: Minimum detector score.
            recognition_threshold: Minimum mean character score.
        """
        self.detection_session = detection_session
        self.recognition_session = recognition_session
        self.config = config
        self.detection_threshold = detection_threshold
        self.recognition_threshold = recognition_threshold

        detection_input = detection_session.get_inputs()[0]
        self._detection_input_name = detection_input.name
        self._detection_output_name = detection_session.get_outputs()[0].name
        self._recognition_input_name = recognition_session.get_inputs()[0].name
        self._recognition_output_name = recognition_session.get_outputs()[0].name

        target_height = _input_dim(detection_input.shape, 2, DEFAULT_DETECTOR_SIZE)
        target_width = _input_dim(detection_input.shape, 3, DEFAULT_DETECTOR_SIZE)

        self._letterbox = np.full((target_height, target_width, 3), LETTERBOX_FILL, dtype=np.uint8)
        self._detection_tensor = np.empty((1, 3, target_height, target_width), dtype=np.float32)
        self._recognition_tensor = np.empty(
            (1, config.img_height, config.img_width, config.channels),
            dtype=np.uint8,
        )
        self._lock = threading.Lock()

    @property
    def detector_size(self) -> tuple[int, int]:
        """Detector input (width, height)."""
        height, width = self._letterbox.shape[:2]
        return width, height

    def preprocess_detection(self, frame: np.ndarray) -> LetterboxResult | None:
        """
        Letterbox a BGR frame into the detector input tensor.

        Returns:
            LetterboxResult, or None for a frame without pixels.
        """
        height, width = frame.shape[:2]
        if not width or not height:
            return None

        target_width, target_height = self.detector_size
        scale = min(target_width / width, target_height / height)
        new_width = max(1, round(width * scale))
        new_height = max(1, round(height * scale))
        pad_x = (target_width - new_width) // 2
        pad_y = (target_height - new_height) // 2

        resized = cv2.resize(_to_bgr(frame), (new_width, new_height), interpolation=cv2.INTER_LINEAR)
        self._letterbox.fill(LETTERBOX_FILL)
        self._letterbox[pad_y : pad_y + new_height, pad_x : pad_x + new_width] = resized

        # BGR HWC uint8 -> RGB CHW float32
        np.divide(
            self._letterbox[:, :, ::-1].transpose(2, 0, 1),
            255.0,
            out=self._detection_tensor[0],
        )
        return LetterboxResult(
            tensor=self._detection_tensor,
            scale=scale,
            padding=(float(pad_x), float(pad_y)),
        )

    def build_recognition_tensor(self, frame: np.ndarray, box: CandidateBox) -> np.ndarray | None:
        """
        Crop a box and convert it to the recognizer's uint8 NHWC input.

        Returns:
            The shared input tensor, or None if the crop is empty.
        """
        frame_height, frame_width = frame.shape[:2]
        x0 = int(_clamp(math.floor(box.x0), 0, frame_width))
        y0 = int(_clamp(math.floor(box.y0), 0, frame_height))
        x1 = int(_clamp(math.ceil(box.x1), 0, frame_width))
        y1 = int(_clamp(math.ceil(box.y1), 0, frame_height))
        if x1 - x0 < 1 or y1 - y0 < 1:
            return None

        crop = _to_bgr(frame)[y0:y1, x0:x1]
        resized = cv2.resize(
            crop,
            (self.config.img_width, self.config.img_height),
            interpolation=cv2.INTER_LINEAR,
        )
        if self.config.channels == 1:
            # Luminance weighting 0.299 R + 0.587 G + 0.114 B
            self._recognition_tensor[0, :, :, 0] = cv2.cvtColor(resized, cv2.COLOR_BGR2GRAY)
        else:
            self._recognition_tensor[0] = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
        return self._recognition_tensor

    def recognise_candidate(self, frame: np.ndarray, box: CandidateBox) -> tuple[str, float] | None:
        """
        Read the characters inside one candidate box.

        Returns:
            (text, mean slot score), or None when nothing readable is found
            or the mean score is under the recognition threshold.
        """
        tensor = self.build_recognition_tensor(frame, box)
        if tensor is None:
            return None

        outputs = self.recognition_session.run(
            [self._recognition_output_name],
            {self._recognition_input_name: tensor},
        )
        decoded = decode_recognition_output(outputs[0], self.config)
        if not decoded or not decoded[0][0]:
            return None

        text, slot_scores = decoded[0]
        pad_char = self.config.pad_char
        cleaned = text.replace("\0", "").replace(pad_char, "").strip()
        if not cleaned:
            return None

        meaningful = [
            score for char, score in zip(text, slot_scores) if char and char != pad_char
        ]
        average = sum(meaningful) / len(meaningful) if meaningful else 0.0
        if not math.isfinite(average) or average < self.recognition_threshold:
            return None
        return cleaned, average

    def detect(self, frame: np.ndarray) -> list[CandidateBox]:
        """Run the detector and decode its boxes."""
        letterbox = self.preprocess_detection(frame)
        if letterbox is None:
            return []
        outputs = self.detection_session.run(
            [self._detection_output_name],
            {self._detection_input_name: letterbox.tensor},
        )
        height, width = frame.shape[:2]
        return decode_detections(
            outputs[0],
            letterbox.scale,
            letterbox.padding,
            width,
            height,
            self.detection_threshold,
        )

    def recognise_frame(self, frame: np.ndarray) -> list[RecognitionWord]:
        """
        Detect and read every plate in a frame.

        Blocking. A failing candidate is logged and skipped; detector
        failures propagate.
        """
        with self._lock:
            candidates = self.detect(frame)
            words = []
            for candidate in candidates:
                try:
                    recognition = self.recognise_candidate(frame, candidate)
                except Exception as e:
                    logger.warning(
                        "candidate_recognition_failed",
                        score=candidate.score,
                        error=str(e),
                    )
                    continue
                if recognition is None:
                    continue

                text, average = recognition
                words.append(
                    RecognitionWord(
                        text=text,
                        confidence=combine_confidence(candidate.score, average),
                        bbox=PixelBox(candidate.x0, candidate.y0, candidate.x1, candidate.y1),
                    )
                )

        logger.debug("frame_recognised", candidates=len(candidates), words=len(words))
        return words

    async def process(
        self,
        frame: np.ndarray | None,
        source: DetectionSource,
        on_status: StatusCallback | None = None,
    ) -> list[Detection]:
        """
        Run one frame through both models.

        Emits processing, then ready once the frame is done, whatever the
        outcome.

        Args:
            frame: BGR image; None or an empty frame yields no detections.
            source: Origin of the frame.
            on_status: Optional status callback.

        Returns:
            list: Detections for the frame.

        Raises:
            InferenceError: If preprocessing or the detector failed.
        """
        if frame is None or frame.ndim < 2 or not frame.shape[0] or not frame.shape[1]:
            return []

        height, width = frame.shape[:2]
        notify(on_status, StatusEvent(EngineStatus.PROCESSING))
        try:
            words = await run_in_threadpool(self.recognise_frame, frame)
        except Exception as e:
            logger.error("neural_frame_failed", error=str(e))
            notify(on_status, StatusEvent(EngineStatus.READY))
            raise InferenceError(f"Neural inference failed: {e}") from e

        detections = words_to_detections(words, width, height, source)
        notify(on_status, StatusEvent(EngineStatus.READY))
        return detections


def _to_bgr(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    return frame


class NeuralAlprService:
    """
    Lazily builds and owns the neural engine.

    The engine is created once on first use; concurrent callers share the
    pending initialization. A failed initialization is forgotten so the
    next call starts over.

    Example:
        service = NeuralAlprService(settings)
        detections = await service.analyze(frame, DetectionSource.UPLOAD)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        runtime_loader: SourceResolver[RuntimeSource, LoadedRuntime] | None = None,
        fetcher: AssetFetcher | None = None,
    ):
        self.settings = settings or get_settings()
        self.runtime_loader = runtime_loader or create_runtime_loader(self.settings)
        self.fetcher = fetcher or AssetFetcher(timeout=self.settings.asset_fetch_timeout_seconds)
        self._once: AsyncOnce[NeuralAlprEngine] = AsyncOnce()
        self._state = EngineState.NOT_STARTED

    @property
    def state(self) -> EngineState:
        """Current lifecycle state."""
        return self._state

    def asset_candidates(self) -> dict[str, list[str]]:
        """Ranked locations for the detector, recognizer and config."""
        s = self.settings
        return {
            "detector": build_candidate_list(
                s.model_bundle_dir, s.detector_model_urls, s.model_base_urls, s.detector_model_filename
            ),
            "recognizer": build_candidate_list(
                s.model_bundle_dir, s.recognizer_model_urls, s.model_base_urls, s.recognizer_model_filename
            ),
            "config": build_candidate_list(
                s.model_bundle_dir, s.recognizer_config_urls, s.model_base_urls, s.recognizer_config_filename
            ),
        }

    async def ensure(self, on_status: StatusCallback | None = None) -> NeuralAlprEngine:
        """
        Return the engine, building it on first use.

        Raises:
            AssetLoadError: If the runtime or a model asset is unavailable.
        """
        return await self._once.get(lambda: self._initialize(on_status))

    async def _initialize(self, on_status: StatusCallback | None) -> NeuralAlprEngine:
        self._state = EngineState.LOADING
        try:
            engine = await self._build(on_status)
        except Exception as e:
            self._state = EngineState.ERROR
            logger.error("neural_engine_init_failed", error=str(e))
            raise
        self._state = EngineState.READY
        logger.info("neural_engine_ready")
        return engine

    async def _build(self, on_status: StatusCallback | None) -> NeuralAlprEngine:
        def report(message: str, progress: float) -> None:
            notify(on_status, StatusEvent(EngineStatus.LOADING, message, progress))

        report("Loading inference runtime", 0.05)
        runtime = await self.runtime_loader.resolve(on_status)
        report("Inference runtime ready", 0.1)

        candidates = self.asset_candidates()

        async def fetch_detector() -> bytes:
            report("Fetching detector model", 0.15)
            return await fetch_with_fallback(
                candidates["detector"], self.fetcher.fetch_bytes, "detector model", on_status
            )

        async def fetch_recognizer() -> bytes:
            report("Fetching recognizer model", 0.25)
            return await fetch_with_fallback(
                candidates["recognizer"], self.fetcher.fetch_bytes, "recognizer model", on_status
            )

        async def fetch_config() -> str:
            report("Loading recognizer config", 0.3)
            return await fetch_with_fallback(
                candidates["config"], self.fetcher.fetch_text, "recognizer config", on_status
            )

        detector_bytes, recognizer_bytes, config_text = await asyncio.gather(
            fetch_detector(),
            fetch_recognizer(),
            fetch_config(),
        )

        config = AlprConfig.from_text(config_text)
        if not config.is_usable:
            raise ValueError("Recognizer config lacks an alphabet or slot count")

        threads = self.settings.runtime_max_threads
        report("Initialising detector", 0.4)
        detection_session = await run_in_threadpool(runtime.create_session, detector_bytes, threads)

        report("Initialising recognizer", 0.6)
        recognition_session = await run_in_threadpool(
            runtime.create_session, recognizer_bytes, threads
        )

        engine = NeuralAlprEngine(
            detection_session,
            recognition_session,
            config,
            detection_threshold=self.settings.detection_confidence_threshold,
            recognition_threshold=self.settings.recognition_confidence_threshold,
        )
        notify(on_status, StatusEvent(EngineStatus.READY, "ALPR ready", 1.0))
        return engine

    async def analyze(
        self,
        frame: np.ndarray | None,
        source: DetectionSource,
        on_status: StatusCallback | None = None,
    ) -> list[Detection]:
        """
        Ensure the engine and run one frame through it.

        Raises:
            AssetLoadError: If the engine cannot be built.
            InferenceError: If the frame could not be processed.
        """
        engine = await self.ensure(on_status)
        return await engine.process(frame, source, on_status)

    def reset(self) -> None:
        """Drop the engine so the next call rebuilds it (tests only)."""
        self._once.reset()
        self._state = EngineState.NOT_STARTED
