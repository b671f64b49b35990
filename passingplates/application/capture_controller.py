"""
Live camera capture loop.

Opens a camera stream, brings a recognition engine up and then analyses
one frame every few seconds. Ticks never overlap: a tick that fires while
the previous frame is still being processed does nothing. Stopping clears
the timer and releases the camera; frames already being analysed finish
in the background and their results are dropped.
"""

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from passingplates.application.recognition_engine import RecognitionEngineSelector
from passingplates.core.events import EngineStatus, StatusCallback, StatusEvent, user_message
from passingplates.core.logging import get_logger, set_correlation_id
from passingplates.domain.models import CaptureState, Detection, DetectionSource
from passingplates.infrastructure.camera.opencv_stream import (
    CameraStream,
    CameraStreamProvider,
    VideoSink,
)

logger = get_logger(__name__)

INITIAL_PROGRESS = 0.1


@dataclass(frozen=True)
class CaptureStatus:
    """State change of the capture controller."""

    state: CaptureState
    message: str | None = None
    progress: float | None = None


CaptureStatusCallback = Callable[[CaptureStatus], None]
DetectionsCallback = Callable[[list[Detection]], Awaitable[Any] | None]


def normalize_progress(value: Any) -> float | None:
    """
    Map a progress value to [0, 1].

    Values in 0..1 are kept, values up to 100 are read as percentages,
    negatives become 0 and anything larger becomes 1. Non-numeric input
    gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    if 0 <= numeric <= 1:
        return numeric
    if 0 <= numeric <= 100:
        return numeric / 100
    return 0.0 if numeric < 0 else 1.0


class CaptureController:
    """
    Periodic frame capture driving the recognition engine selector.

    Status sequence for one session: requesting-permission, initializing
    (with non-decreasing progress), ready, scanning, then alternating
    processing/scanning for each analysed frame.

    Example:
        controller = CaptureController(selector, OpenCVCameraProvider(0),
                                       on_detections=store.add_detections)
        await controller.start()
        ...
        await controller.stop()
    """

    def __init__(
        self,
        selector: RecognitionEngineSelector,
        provider: CameraStreamProvider | None,
        on_detections: DetectionsCallback | None = None,
        on_status: CaptureStatusCallback | None = None,
        on_worker_state: StatusCallback | None = None,
        sink: VideoSink | None = None,
        interval_seconds: float = 3.5,
    ):
        """
        Initialize controller.

        Args:
            selector: Recognition engine selector.
            provider: Camera stream provider; None means no camera support.
            on_detections: Receives each frame's detections (may be async).
            on_status: Receives controller state changes.
            on_worker_state: Receives raw engine status events.
            sink: Optional preview sink for the live stream.
            interval_seconds: Delay between captures.
        """
        self.selector = selector
        self.provider = provider
        self.on_detections = on_detections
        self.on_status = on_status
        self.on_worker_state = on_worker_state
        self.sink = sink
        self.interval_seconds = interval_seconds

        self._stream: CameraStream | None = None
        self._interval_task: asyncio.Task[None] | None = None
        self._tick_tasks: set[asyncio.Task[None]] = set()
        self._processing = False
        self._active = False
        self._progress = 0.0
        self._session = 0
        self._status = CaptureStatus(CaptureState.IDLE)

    @property
    def status(self) -> CaptureStatus:
        """Last published status."""
        return self._status

    @property
    def processing(self) -> bool:
        """True while a frame is being analysed."""
        return self._processing

    def is_active(self) -> bool:
        """True while a session runs with an open stream."""
        return self._active and self._stream is not None

    def _update_status(
        self,
        state: CaptureState,
        message: str | None = None,
        progress: float | None = None,
    ) -> None:
        self._status = CaptureStatus(state, message, progress)
        if self.on_status is None:
            return
        try:
            self.on_status(self._status)
        except Exception as e:
            logger.error("capture_status_listener_failed", state=state.value, error=str(e))

    def _emit_worker_state(self, event: StatusEvent) -> None:
        if self.on_worker_state is None:
            return
        try:
            self.on_worker_state(event)
        except Exception as e:
            logger.error("worker_state_listener_failed", error=str(e))

    def _report_loading(self, event: StatusEvent) -> None:
        progress = normalize_progress(event.progress)
        if progress is not None:
            self._progress = max(self._progress, progress)
        self._update_status(CaptureState.INITIALIZING, event.message, self._progress)

    def _start_relay(self, session: int) -> StatusCallback:
        def relay(event: StatusEvent) -> None:
            if session != self._session:
                return
            self._emit_worker_state(event)
            if event.status == EngineStatus.LOADING:
                self._report_loading(event)
            elif event.status == EngineStatus.READY:
                self._progress = 1.0
                self._update_status(CaptureState.READY)

        return relay

    def _capture_relay(self, session: int) -> StatusCallback:
        def relay(event: StatusEvent) -> None:
            if session != self._session:
                return
            self._emit_worker_state(event)
            if event.status == EngineStatus.PROCESSING:
                self._update_status(CaptureState.PROCESSING)
            elif event.status == EngineStatus.READY:
                self._update_status(CaptureState.SCANNING)
            elif event.status == EngineStatus.LOADING:
                self._report_loading(event)

        return relay

    async def start(self) -> None:
        """
        Open the camera, prepare an engine and begin periodic capture.

        Does nothing while a session is already active. Any failure ends
        in an error status followed by a silent stop.
        """
        if self._active:
            return
        if self.provider is None:
            self._update_status(CaptureState.ERROR, "Camera access is not supported")
            return

        self._active = True
        self._session += 1
        session = self._session
        set_correlation_id()
        logger.info("capture_starting", interval=self.interval_seconds)
        self._update_status(CaptureState.REQUESTING_PERMISSION)

        try:
            stream = await self.provider.open()
            if session != self._session:
                await stream.stop()
                return
            self._stream = stream
            if self.sink is not None:
                self.sink.attach(stream)

            self._progress = INITIAL_PROGRESS
            self._update_status(CaptureState.INITIALIZING, progress=self._progress)
            engine = await self.selector.ensure_recognition_engine(self._start_relay(session))
            if session != self._session:
                return

            self._update_status(CaptureState.SCANNING)
            logger.info("capture_started", engine=engine)
            self._interval_task = asyncio.create_task(self._run_interval(session))
            await self.capture_frame()
        except Exception as e:
            message = user_message(e, "Unable to access camera")
            logger.error("capture_start_failed", error=str(e))
            self._emit_worker_state(StatusEvent(EngineStatus.ERROR, message))
            self._update_status(CaptureState.ERROR, message)
            await self.stop(silent=True)

    async def _run_interval(self, session: int) -> None:
        while session == self._session:
            await asyncio.sleep(self.interval_seconds)
            if session != self._session:
                break
            task = asyncio.create_task(self.capture_frame())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def capture_frame(self) -> None:
        """
        Analyse the current frame once.

        No-op without a stream or while another frame is in flight.
        Failures are logged and reported as worker errors.
        """
        stream = self._stream
        if stream is None or self._processing:
            return

        session = self._session
        self._processing = True
        try:
            frame = await stream.read()
            if frame is None or session != self._session:
                return
            detections = await self.selector.analyze_frame(
                frame,
                DetectionSource.CAMERA,
                self._capture_relay(session),
            )
            if session != self._session:
                logger.debug("capture_result_dropped", detections=len(detections))
                return
            if self.on_detections is not None:
                result = self.on_detections(detections)
                if inspect.isawaitable(result):
                    await result
        except Exception as e:
            logger.error("capture_frame_failed", error=str(e))
            self._emit_worker_state(
                StatusEvent(EngineStatus.ERROR, user_message(e, "Failed to process camera frame"))
            )
        finally:
            if session == self._session:
                self._processing = False

    async def stop(self, silent: bool = False) -> None:
        """
        End the session and release the camera.

        Args:
            silent: Skip the idle notification (error and shutdown paths).
        """
        self._session += 1
        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None
        self._processing = False
        self._active = False
        self._progress = 0.0

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                await stream.stop()
            except Exception as e:
                logger.warning("camera_stop_failed", error=str(e))
        if self.sink is not None:
            try:
                self.sink.detach()
            except Exception as e:
                logger.warning("video_sink_detach_failed", error=str(e))

        logger.info("capture_stopped", silent=silent)
        if not silent:
            self._update_status(CaptureState.IDLE)
