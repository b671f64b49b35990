"""
Camera capture API routes.

Starting the capture loop can take a long time (engine download and
warm-up), so `start` returns immediately and progress is polled through
the status endpoint.
"""

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from passingplates.api.deps import Capture, Services
from passingplates.core.logging import get_logger
from passingplates.domain.models import CaptureState

logger = get_logger(__name__)

router = APIRouter(prefix="/capture", tags=["capture"])


class CaptureStatusResponse(BaseModel):
    """Current state of the capture loop."""

    state: CaptureState
    active: bool
    message: str | None = None
    progress: float | None = Field(default=None, ge=0.0, le=1.0)
    engine: str
    fallback_active: bool


def _status_response(services) -> CaptureStatusResponse:
    capture = services.capture
    current = capture.status
    return CaptureStatusResponse(
        state=current.state,
        active=capture.is_active(),
        message=current.message,
        progress=current.progress,
        engine=services.selector.active_engine,
        fallback_active=services.selector.fallback_active,
    )


@router.get(
    "",
    response_model=CaptureStatusResponse,
    summary="Capture status",
)
async def capture_status(services: Services) -> CaptureStatusResponse:
    """Return the state of the capture loop."""
    return _status_response(services)


@router.post(
    "/start",
    response_model=CaptureStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start camera capture",
)
async def start_capture(services: Services) -> CaptureStatusResponse:
    """Open the camera and begin periodic recognition in the background."""
    if not services.capture.is_active():
        services.spawn(services.capture.start())
        logger.info("capture_start_requested")
    return _status_response(services)


@router.post(
    "/stop",
    response_model=CaptureStatusResponse,
    summary="Stop camera capture",
)
async def stop_capture(capture: Capture, services: Services) -> CaptureStatusResponse:
    """Stop the capture loop and release the camera."""
    await capture.stop()
    return _status_response(services)
