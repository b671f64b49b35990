"""
Typed status events shared by the recognition pipeline.

Pipeline stages push `StatusEvent`s into a callback; consumers decide what
to do with them. A failing listener never breaks the stage that notified it.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from passingplates.core.logging import get_logger

logger = get_logger(__name__)


class EngineStatus(str, Enum):
    """Status reported by an engine while loading or processing."""

    LOADING = "loading"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class StatusEvent:
    """
    One status notification.

    Attributes:
        status: Engine status.
        message: Optional human-readable description.
        progress: Optional loading progress, normally in [0, 1].
    """

    status: EngineStatus
    message: str | None = None
    progress: float | None = None


StatusCallback = Callable[[StatusEvent], None]


def notify(callback: StatusCallback | None, event: StatusEvent | None) -> None:
    """Deliver an event to a callback, logging listener failures."""
    if callback is None or event is None:
        return
    try:
        callback(event)
    except Exception as e:
        logger.error("status_listener_failed", status=event.status.value, error=str(e))


def user_message(error: BaseException, default: str) -> str:
    """
    Human-readable text for an error.

    Errors raised by this package carry a `user_message`; anything else is
    reported with the given default so raw exceptions never reach a status sink.
    """
    message = getattr(error, "user_message", None)
    if isinstance(message, str) and message.strip():
        return message
    return default
