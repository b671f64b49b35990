"""
Unit tests for the OpenCV camera adapter.
"""

from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from passingplates.infrastructure.camera.opencv_stream import (
    CameraPermissionError,
    OpenCVCameraProvider,
    OpenCVCameraStream,
)

VIDEO_CAPTURE = "passingplates.infrastructure.camera.opencv_stream.cv2.VideoCapture"


@pytest.fixture
def capture():
    capture = MagicMock()
    capture.isOpened.return_value = True
    capture.get.return_value = 640.0
    capture.read.return_value = (True, np.zeros((480, 640, 3), dtype=np.uint8))
    return capture


class TestOpenCVCameraProvider:
    """Tests for OpenCVCameraProvider."""

    @pytest.mark.asyncio
    async def test_open_configures_capture(self, capture):
        with patch(VIDEO_CAPTURE, return_value=capture) as video_capture:
            stream = await OpenCVCameraProvider(0, width=1280, height=720).open()

        video_capture.assert_called_once_with(0)
        capture.set.assert_any_call(cv2.CAP_PROP_FRAME_WIDTH, 1280)
        capture.set.assert_any_call(cv2.CAP_PROP_FRAME_HEIGHT, 720)
        capture.set.assert_any_call(cv2.CAP_PROP_BUFFERSIZE, 1)
        assert stream.active is True

    @pytest.mark.asyncio
    async def test_unavailable_camera(self, capture):
        capture.isOpened.return_value = False

        with patch(VIDEO_CAPTURE, return_value=capture):
            with pytest.raises(CameraPermissionError) as exc_info:
                await OpenCVCameraProvider("rtsp://camera.local/stream").open()

        assert exc_info.value.user_message == "Unable to access the camera"
        capture.release.assert_called_once()


class TestOpenCVCameraStream:
    """Tests for OpenCVCameraStream."""

    @pytest.mark.asyncio
    async def test_read_frame(self, capture):
        frame = await OpenCVCameraStream(capture, 0).read()

        assert frame.shape == (480, 640, 3)

    @pytest.mark.asyncio
    async def test_failed_grab(self, capture):
        capture.read.return_value = (False, None)

        assert await OpenCVCameraStream(capture, 0).read() is None

    @pytest.mark.asyncio
    async def test_stop_releases_once(self, capture):
        stream = OpenCVCameraStream(capture, 0)

        await stream.stop()
        await stream.stop()

        capture.release.assert_called_once()
        assert stream.active is False
        assert await stream.read() is None
