"""
Core configuration module for the PassingPlates recognition service.

Uses Pydantic Settings for environment-based configuration with validation.
Every value can be overridden via environment variables or the .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    List-valued settings accept JSON arrays, e.g.
    MODEL_BASE_URLS='["https://mirror.example/fastalpr/"]'.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./passingplates.db",
        description="Async SQLAlchemy connection string for the sighting history",
    )

    # Neural model assets
    model_bundle_dir: str = Field(
        default="./vendor/fastalpr",
        description="Bundled directory holding detector, recognizer and config files",
    )
    model_base_urls: list[str] = Field(
        default_factory=list,
        description="Remote mirror base URLs, tried in order after the bundle",
    )
    detector_model_urls: list[str] = Field(
        default_factory=list,
        description="Explicit detector model locations",
    )
    recognizer_model_urls: list[str] = Field(
        default_factory=list,
        description="Explicit recognizer model locations",
    )
    recognizer_config_urls: list[str] = Field(
        default_factory=list,
        description="Explicit recognizer config locations",
    )
    detector_model_filename: str = Field(
        default="yolo-v9-t-384-license-plates-end2end.onnx",
    )
    recognizer_model_filename: str = Field(
        default="global_mobile_vit_v2_ocr.onnx",
    )
    recognizer_config_filename: str = Field(
        default="global_mobile_vit_v2_ocr_config.yaml",
    )
    asset_fetch_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Per-request timeout for remote asset downloads",
    )

    # Inference runtime
    runtime_module: str = Field(
        default="onnxruntime",
        description="Importable inference runtime exposing InferenceSession",
    )
    runtime_prefer_gpu: bool = Field(
        default=True,
        description="Try the CUDA execution provider before the CPU one",
    )
    runtime_max_threads: int = Field(
        default=4,
        ge=1,
        description="Upper bound for intra-op inference threads",
    )

    # Thresholds
    detection_confidence_threshold: float = Field(
        default=0.40,
        ge=0.0,
        le=1.0,
        description="Minimum detector score to keep a plate box",
    )
    recognition_confidence_threshold: float = Field(
        default=0.35,
        ge=0.0,
        le=1.0,
        description="Minimum mean character score to keep a recognized plate",
    )

    # OCR fallback
    ocr_languages: list[str] = Field(
        default_factory=lambda: ["en"],
        description="EasyOCR language codes",
    )
    ocr_bundle_dir: str = Field(
        default="./vendor/easyocr",
        description="Bundled EasyOCR model directory (offline source)",
    )
    ocr_cache_dir: str = Field(
        default="./.cache/easyocr",
        description="Directory receiving downloaded EasyOCR models",
    )
    ocr_mirror_base_urls: list[str] = Field(
        default_factory=list,
        description="Mirrors serving {base}{model}.zip archives",
    )
    ocr_model_files: list[str] = Field(
        default_factory=lambda: ["craft_mlt_25k.pth", "english_g2.pth"],
        description="Model files a source must provide",
    )
    ocr_use_gpu: bool = Field(
        default=True,
        description="Request accelerated reader creation on the first attempt",
    )
    ocr_race_timeout_seconds: float = Field(
        default=8.0,
        gt=0.0,
        description="Watchdog before the alternate reader attempt starts",
    )
    ocr_worker_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        description="Upper bound for a single reader creation attempt",
    )
    ocr_force_watchdog: bool | None = Field(
        default=None,
        description="Override the platform heuristic for the creation race",
    )

    # Camera
    camera_source: str = Field(
        default="0",
        description="OpenCV capture device index or stream URL",
    )
    camera_width: int = Field(default=1280, ge=1)
    camera_height: int = Field(default=720, ge=1)
    capture_interval_seconds: float = Field(
        default=3.5,
        gt=0.0,
        description="Delay between periodic frame captures",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure the database URL names an async driver."""
        scheme = v.split("://", 1)[0]
        if "+" not in scheme:
            raise ValueError(
                "Database URL must name an async driver, e.g. sqlite+aiosqlite://"
            )
        return v

    @property
    def camera_device(self) -> int | str:
        """Capture source as OpenCV expects it (index or URL)."""
        source = self.camera_source.strip()
        return int(source) if source.isdigit() else source


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the lifetime of the application.

    Returns:
        Settings: Application configuration instance.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()
