"""
Recognition engine selection.

The neural engine is always tried first. The first time it fails, during
initialization or on a frame, the selector switches to the OCR fallback
for the rest of the process. There is no automatic way back.
"""

import numpy as np

from passingplates.core.events import EngineStatus, StatusCallback, StatusEvent, notify
from passingplates.core.logging import get_logger
from passingplates.domain.detections import words_to_detections
from passingplates.domain.models import Detection, DetectionSource
from passingplates.infrastructure.ml.alpr_engine import NeuralAlprService
from passingplates.infrastructure.ml.ocr import OCRFallbackEngine

logger = get_logger(__name__)

NEURAL_ENGINE = "neural"
OCR_ENGINE = "ocr"


class RecognitionEngineSelector:
    """
    One-way switch between the neural engine and the OCR fallback.

    Example:
        selector = RecognitionEngineSelector(neural, ocr)
        detections = await selector.analyze_frame(frame, DetectionSource.CAMERA)
    """

    def __init__(self, neural: NeuralAlprService, ocr: OCRFallbackEngine):
        """
        Initialize selector.

        Args:
            neural: Neural engine service (primary path).
            ocr: OCR fallback engine.
        """
        self.neural = neural
        self.ocr = ocr
        self._fallback_active = False

    @property
    def fallback_active(self) -> bool:
        """True once the OCR fallback has taken over."""
        return self._fallback_active

    @property
    def active_engine(self) -> str:
        """Name of the engine new frames are routed to."""
        return OCR_ENGINE if self._fallback_active else NEURAL_ENGINE

    def _activate_fallback(self, on_status: StatusCallback | None, error: Exception) -> None:
        self._fallback_active = True
        logger.warning("ocr_fallback_activated", error=str(error))
        notify(
            on_status,
            StatusEvent(EngineStatus.LOADING, "Falling back to OCR", 0.2),
        )

    async def ensure_recognition_engine(self, on_status: StatusCallback | None = None) -> str:
        """
        Make sure an engine is ready.

        Returns:
            str: "neural" or "ocr".

        Raises:
            AssetLoadError: If the OCR fallback cannot be created either.
        """
        if not self._fallback_active:
            try:
                await self.neural.ensure(on_status)
                return NEURAL_ENGINE
            except Exception as e:
                self._activate_fallback(on_status, e)

        await self.ocr.ensure_worker(on_status)
        return OCR_ENGINE

    async def analyze_frame(
        self,
        frame: np.ndarray | None,
        source: DetectionSource,
        on_status: StatusCallback | None = None,
    ) -> list[Detection]:
        """
        Recognize plates in one frame.

        A neural failure switches to OCR and the same frame is analysed
        again by the fallback.

        Args:
            frame: BGR image.
            source: Origin of the frame.
            on_status: Optional status callback.

        Returns:
            list: Detections, highest confidence first.
        """
        if not self._fallback_active:
            try:
                return await self.neural.analyze(frame, source, on_status)
            except Exception as e:
                self._activate_fallback(on_status, e)

        return await self._run_ocr(frame, source, on_status)

    async def _run_ocr(
        self,
        frame: np.ndarray | None,
        source: DetectionSource,
        on_status: StatusCallback | None,
    ) -> list[Detection]:
        if frame is None or frame.ndim < 2 or not frame.shape[0] or not frame.shape[1]:
            return []
        words = await self.ocr.recognize(frame, on_status)
        height, width = frame.shape[:2]
        return words_to_detections(words, width, height, source)

    def engine_states(self) -> dict[str, str]:
        """Lifecycle state of both engines."""
        return {
            NEURAL_ENGINE: self.neural.state.value,
            OCR_ENGINE: self.ocr.state.value,
        }

    def reset(self) -> None:
        """Clear the fallback flag (tests only)."""
        self._fallback_active = False
