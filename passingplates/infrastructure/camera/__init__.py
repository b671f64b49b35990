"""Camera infrastructure package."""

from passingplates.infrastructure.camera.opencv_stream import (
    CameraPermissionError,
    CameraStream,
    CameraStreamProvider,
    OpenCVCameraProvider,
    OpenCVCameraStream,
    VideoSink,
)

__all__ = [
    "CameraPermissionError",
    "CameraStream",
    "CameraStreamProvider",
    "OpenCVCameraProvider",
    "OpenCVCameraStream",
    "VideoSink",
]
