"""
General-purpose OCR fallback built on EasyOCR.

Owns a single lazily created reader (the "worker"). Creation is slow and
can stall on accelerated backends, so it runs under a watchdog: on Apple
platforms a short race window starts a CPU-only attempt if the first one
has not finished, elsewhere one attempt gets a long bound. If a source
cannot produce a working reader, the whole sequence is repeated against
the next OCR source.
"""

import asyncio
import platform
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import numpy as np
import torch
from fastapi.concurrency import run_in_threadpool

from passingplates.core.config import Settings, get_settings
from passingplates.core.events import EngineStatus, StatusCallback, StatusEvent, notify
from passingplates.core.lazy import AsyncOnce
from passingplates.core.logging import get_logger
from passingplates.domain.models import EngineState, PixelBox, RecognitionWord
from passingplates.infrastructure.assets.loader import AssetLoadError, SourceResolver
from passingplates.infrastructure.ml.ocr_loader import (
    OCRAssetSource,
    OCRBackend,
    create_ocr_loader,
)

logger = get_logger(__name__)

WARMUP_IMAGE_SIZE = 32


class OCRError(Exception):
    """Raised when OCR extraction fails."""

    user_message = "Text recognition failed"


class WorkerTimeoutError(Exception):
    """Raised when reader creation exceeds its watchdog."""

    user_message = "The OCR engine took too long to start"


@dataclass(frozen=True)
class ReaderOptions:
    """Arguments for one reader creation attempt."""

    languages: tuple[str, ...]
    gpu: bool
    model_dir: str
    download_enabled: bool


ReaderFactory = Callable[[OCRBackend, ReaderOptions], Any]


def create_easyocr_reader(backend: OCRBackend, options: ReaderOptions) -> Any:
    """Build an `easyocr.Reader` (blocking)."""
    return backend.module.Reader(
        list(options.languages),
        gpu=options.gpu,
        model_storage_directory=options.model_dir,
        download_enabled=options.download_enabled,
        verbose=False,
    )


def should_race_worker_creation(force: bool | None = None) -> bool:
    """
    Check if reader creation should race a watchdog.

    Apple platforms can stall while setting up the accelerated backend.
    """
    if force is not None:
        return force
    return platform.system() == "Darwin"


READER_MODEL_ATTRIBUTES = ("detector", "recognizer")


def release_reader(reader: Any) -> None:
    """
    Tear down a reader.

    EasyOCR has no close call, so the detector and recognizer networks are
    detached from the reader and the accelerator cache is emptied.
    """
    for name in READER_MODEL_ATTRIBUTES:
        if hasattr(reader, name):
            setattr(reader, name, None)
    if torch.cuda.is_available():
        torch.cuda.empty_cache()


def to_recognition_word(result: Any) -> RecognitionWord | None:
    """
    Convert an EasyOCR `(points, text, score)` tuple.

    Returns:
        RecognitionWord with a 0-100 confidence and an axis-aligned box,
        or None for a malformed entry.
    """
    try:
        points, text, score = result
        xs = [float(p[0]) for p in points]
        ys = [float(p[1]) for p in points]
        confidence = float(score) * 100
    except (TypeError, ValueError, IndexError):
        return None
    if not isinstance(text, str) or not xs or not ys:
        return None
    return RecognitionWord(
        text=text,
        confidence=max(0.0, min(100.0, confidence)),
        bbox=PixelBox(min(xs), min(ys), max(xs), max(ys)),
    )


class OCRFallbackEngine:
    """
    Lazily created EasyOCR reader with watchdog and source fallback.

    Concurrent callers of `ensure_worker()` share one pending creation.

    Example:
        engine = OCRFallbackEngine(settings)
        words = await engine.recognize(frame, on_status)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        loader: SourceResolver[OCRAssetSource, OCRBackend] | None = None,
        reader_factory: ReaderFactory | None = None,
    ):
        """
        Initialize the engine.

        Args:
            settings: Application settings.
            loader: Resolver for OCR sources.
            reader_factory: Blocking reader constructor (replaced in tests).
        """
        self.settings = settings or get_settings()
        self.loader = loader or create_ocr_loader(self.settings)
        self._reader_factory = reader_factory or create_easyocr_reader
        self._once: AsyncOnce[Any] = AsyncOnce()
        self._reader: Any = None
        self._state = EngineState.NOT_STARTED

    @property
    def state(self) -> EngineState:
        """Worker lifecycle state."""
        return self._state

    @property
    def languages(self) -> tuple[str, ...]:
        """Configured language codes."""
        return tuple(self.settings.ocr_languages)

    async def ensure_worker(self, on_status: StatusCallback | None = None) -> Any:
        """
        Return the reader, creating it on first use.

        Raises:
            AssetLoadError: If no source produced a working reader.
        """
        already_ready = self._once.ready
        reader = await self._once.get(lambda: self._initialize(on_status))
        if already_ready:
            notify(on_status, StatusEvent(EngineStatus.READY))
        return reader

    async def _initialize(self, on_status: StatusCallback | None) -> Any:
        self._state = EngineState.LOADING
        notify(on_status, StatusEvent(EngineStatus.LOADING, "Preparing OCR engine", 0.0))
        try:
            reader = await self._create_from_sources(on_status)
        except Exception as e:
            self._state = EngineState.ERROR
            logger.error("ocr_worker_init_failed", error=str(e))
            raise
        self._reader = reader
        self._state = EngineState.READY
        logger.info("ocr_worker_ready", languages=list(self.languages))
        notify(on_status, StatusEvent(EngineStatus.READY))
        return reader

    async def _create_from_sources(self, on_status: StatusCallback | None) -> Any:
        first = await self.loader.resolve(on_status)
        sources = self.loader.fallback_sources()
        failures: list[tuple[str, str]] = []

        for index, source in enumerate(sources):
            label = self.loader.describe(source)
            try:
                backend = first if index == 0 else await self.loader.attempt_source(source)
                reader = await self._create_worker(backend, on_status)
                await self._load_stages(reader, on_status)
                return reader
            except Exception as e:
                reason = str(e) or type(e).__name__
                failures.append((label, reason))
                logger.warning("ocr_worker_source_failed", source=label, error=reason)
                if index < len(sources) - 1:
                    notify(
                        on_status,
                        StatusEvent(
                            EngineStatus.LOADING,
                            "Retrying OCR engine download from an alternate source",
                            0.18,
                        ),
                    )

        raise AssetLoadError("OCR engine", failures)

    async def _create_worker(self, backend: OCRBackend, on_status: StatusCallback | None) -> Any:
        options = ReaderOptions(
            languages=self.languages,
            gpu=self.settings.ocr_use_gpu,
            model_dir=backend.source.model_dir,
            download_enabled=backend.source.download_enabled,
        )
        limit = self.settings.ocr_worker_timeout_seconds

        if not should_race_worker_creation(self.settings.ocr_force_watchdog):
            return await self._await_reader(self._spawn(backend, options), limit)

        try:
            return await self._await_reader(
                self._spawn(backend, options),
                self.settings.ocr_race_timeout_seconds,
            )
        except WorkerTimeoutError:
            logger.warning(
                "ocr_worker_creation_stalled",
                timeout=self.settings.ocr_race_timeout_seconds,
            )

        notify(
            on_status,
            StatusEvent(EngineStatus.LOADING, "Retrying OCR engine without acceleration", 0.2),
        )
        return await self._await_reader(self._spawn(backend, replace(options, gpu=False)), limit)

    def _spawn(self, backend: OCRBackend, options: ReaderOptions) -> "asyncio.Future[Any]":
        return asyncio.ensure_future(run_in_threadpool(self._reader_factory, backend, options))

    async def _await_reader(self, task: "asyncio.Future[Any]", timeout: float) -> Any:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            return task.result()
        task.add_done_callback(self._discard_late_reader)
        raise WorkerTimeoutError(f"OCR reader creation exceeded {timeout:g}s")

    def _discard_late_reader(self, task: "asyncio.Future[Any]") -> None:
        if task.cancelled() or task.exception() is not None:
            return
        release_reader(task.result())
        logger.info("ocr_late_worker_discarded")

    async def _load_stages(self, reader: Any, on_status: StatusCallback | None) -> None:
        notify(on_status, StatusEvent(EngineStatus.LOADING, "Loading OCR engine", 0.4))
        if not callable(getattr(reader, "readtext", None)):
            raise OCRError("OCR reader cannot recognise text")

        notify(on_status, StatusEvent(EngineStatus.LOADING, "Loading language data", 0.6))
        loaded = getattr(reader, "lang_list", None)
        if loaded is not None:
            missing = [lang for lang in self.languages if lang not in loaded]
            if missing:
                raise OCRError(f"OCR language data missing: {', '.join(missing)}")

        notify(on_status, StatusEvent(EngineStatus.LOADING, "Initializing OCR", 0.8))
        blank = np.zeros((WARMUP_IMAGE_SIZE, WARMUP_IMAGE_SIZE, 3), dtype=np.uint8)
        await run_in_threadpool(reader.readtext, blank)

    async def recognize(
        self,
        image: np.ndarray,
        on_status: StatusCallback | None = None,
    ) -> list[RecognitionWord]:
        """
        Recognize every word in an image.

        Args:
            image: BGR frame or still.
            on_status: Optional status callback.

        Returns:
            list: Words with pixel boxes and 0-100 confidences.

        Raises:
            AssetLoadError: If the reader cannot be created.
            OCRError: If recognition fails.
        """
        reader = await self.ensure_worker(on_status)
        notify(on_status, StatusEvent(EngineStatus.PROCESSING))
        try:
            results = await run_in_threadpool(reader.readtext, image)
        except Exception as e:
            logger.error("ocr_failed", error=str(e))
            notify(on_status, StatusEvent(EngineStatus.READY))
            raise OCRError(f"OCR extraction failed: {e}") from e
        notify(on_status, StatusEvent(EngineStatus.READY))

        words = [word for word in map(to_recognition_word, results or []) if word]
        logger.debug("ocr_complete", words=len(words))
        return words

    def terminate_worker(self) -> None:
        """Release the reader; the next call creates a new one."""
        reader, self._reader = self._reader, None
        self._once.reset()
        self._state = EngineState.NOT_STARTED
        if reader is not None:
            release_reader(reader)
            logger.info("ocr_worker_terminated")
