"""ML infrastructure package."""

from passingplates.infrastructure.ml.alpr_config import AlprConfig, parse_config_text
from passingplates.infrastructure.ml.alpr_engine import (
    CandidateBox,
    InferenceError,
    NeuralAlprEngine,
    NeuralAlprService,
    combine_confidence,
    decode_detections,
    decode_recognition_output,
)
from passingplates.infrastructure.ml.ocr import (
    OCRError,
    OCRFallbackEngine,
    WorkerTimeoutError,
    should_race_worker_creation,
)
from passingplates.infrastructure.ml.ocr_loader import (
    OCRAssetSource,
    OCRBackend,
    build_ocr_sources,
    create_ocr_loader,
)
from passingplates.infrastructure.ml.runtime_loader import (
    LoadedRuntime,
    RuntimeSource,
    build_runtime_sources,
    create_runtime_loader,
)

__all__ = [
    # Runtime
    "LoadedRuntime",
    "RuntimeSource",
    "build_runtime_sources",
    "create_runtime_loader",
    # Neural engine
    "AlprConfig",
    "CandidateBox",
    "InferenceError",
    "NeuralAlprEngine",
    "NeuralAlprService",
    "combine_confidence",
    "decode_detections",
    "decode_recognition_output",
    "parse_config_text",
    # OCR
    "OCRAssetSource",
    "OCRBackend",
    "OCRError",
    "OCRFallbackEngine",
    "WorkerTimeoutError",
    "build_ocr_sources",
    "create_ocr_loader",
    "should_race_worker_creation",
]
