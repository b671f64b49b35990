"""
Camera stream abstraction and its OpenCV implementation.

The capture controller only sees `CameraStreamProvider` / `CameraStream`
/ `VideoSink`, so tests can drive it with fake frames. OpenCV calls are
blocking and run in the threadpool.
"""

from abc import ABC, abstractmethod
from typing import Any

import cv2
import numpy as np
from fastapi.concurrency import run_in_threadpool

from passingplates.core.logging import get_logger

logger = get_logger(__name__)


class CameraPermissionError(Exception):
    """Raised when the camera is unavailable, unsupported or denied."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or "Unable to access the camera"


class CameraStream(ABC):
    """A live stream of frames."""

    @abstractmethod
    async def read(self) -> np.ndarray | None:
        """
        Grab the current frame.

        Returns:
            BGR frame, or None if no frame is available right now.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Stop the stream and release the device."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """True while the stream can deliver frames."""


class CameraStreamProvider(ABC):
    """Opens camera streams."""

    @abstractmethod
    async def open(self) -> CameraStream:
        """
        Open a stream.

        Raises:
            CameraPermissionError: If the camera cannot be opened.
        """


class VideoSink(ABC):
    """Receives the live stream for preview."""

    @abstractmethod
    def attach(self, stream: CameraStream) -> None:
        """Start showing a stream."""

    @abstractmethod
    def detach(self) -> None:
        """Stop showing the current stream."""


class OpenCVCameraStream(CameraStream):
    """
    Stream backed by `cv2.VideoCapture`.

    Example:
        stream = OpenCVCameraStream(capture)
        frame = await stream.read()
    """

    def __init__(self, capture: Any, source: int | str):
        self._capture = capture
        self.source = source

    @property
    def active(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    async def read(self) -> np.ndarray | None:
        if not self.active:
            return None
        ok, frame = await run_in_threadpool(self._capture.read)
        if not ok or frame is None:
            logger.debug("camera_frame_unavailable", source=str(self.source))
            return None
        return frame

    async def stop(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            await run_in_threadpool(capture.release)
            logger.info("camera_released", source=str(self.source))


class OpenCVCameraProvider(CameraStreamProvider):
    """
    Opens an OpenCV capture device or stream URL.

    Args:
        source: Device index or stream URL.
        width: Requested frame width.
        height: Requested frame height.
    """

    def __init__(self, source: int | str = 0, width: int | None = None, height: int | None = None):
        self.source = source
        self.width = width
        self.height = height

    def _open_capture(self) -> Any:
        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            capture.release()
            raise CameraPermissionError(f"Cannot open camera source {self.source!r}")

        if self.width and self.height:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        # Keep only the latest frame
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        return capture

    async def open(self) -> CameraStream:
        capture = await run_in_threadpool(self._open_capture)
        logger.info(
            "camera_opened",
            source=str(self.source),
            width=int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        return OpenCVCameraStream(capture, self.source)
