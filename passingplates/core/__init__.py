"""Core configuration and utilities package."""

from passingplates.core.config import Settings, get_settings
from passingplates.core.events import (
    EngineStatus,
    StatusCallback,
    StatusEvent,
    notify,
    user_message,
)
from passingplates.core.lazy import AsyncOnce
from passingplates.core.logging import get_logger, set_correlation_id, setup_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Logging
    "get_logger",
    "set_correlation_id",
    "setup_logging",
    # Events
    "EngineStatus",
    "StatusCallback",
    "StatusEvent",
    "notify",
    "user_message",
    # Lazy init
    "AsyncOnce",
]
