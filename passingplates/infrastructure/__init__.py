"""Infrastructure layer package."""

from passingplates.infrastructure.assets import AssetFetcher, AssetLoadError, SourceResolver
from passingplates.infrastructure.camera import (
    CameraPermissionError,
    CameraStreamProvider,
    OpenCVCameraProvider,
)
from passingplates.infrastructure.db import (
    InMemoryKeyValueStore,
    KeyValueStore,
    SqlKeyValueStore,
    close_db,
    init_db,
)
from passingplates.infrastructure.ml import (
    InferenceError,
    NeuralAlprService,
    OCRError,
    OCRFallbackEngine,
    WorkerTimeoutError,
)

__all__ = [
    # Assets
    "AssetFetcher",
    "AssetLoadError",
    "SourceResolver",
    # Camera
    "CameraPermissionError",
    "CameraStreamProvider",
    "OpenCVCameraProvider",
    # Database
    "KeyValueStore",
    "SqlKeyValueStore",
    "InMemoryKeyValueStore",
    "init_db",
    "close_db",
    # ML
    "InferenceError",
    "NeuralAlprService",
    "OCRError",
    "OCRFallbackEngine",
    "WorkerTimeoutError",
]
