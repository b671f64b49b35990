"""
FastAPI dependencies for dependency injection.

Long-lived services are built once in the application lifespan and kept
on `app.state.services`; route handlers receive them through the
Annotated aliases below.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from passingplates.application.capture_controller import CaptureController
from passingplates.application.recognition_engine import RecognitionEngineSelector
from passingplates.application.sighting_store import SightingStore
from passingplates.core.config import Settings


@dataclass
class AppServices:
    """Service objects shared by every request."""

    settings: Settings
    selector: RecognitionEngineSelector
    store: SightingStore
    capture: CaptureController
    background_tasks: set[asyncio.Task[None]] = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task[None]:
        """Run a coroutine in the background, keeping a reference to it."""
        task = asyncio.create_task(coro)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task


def get_services(request: Request) -> AppServices:
    """
    Dependency returning the application services.

    Raises:
        HTTPException: 503 if the application has not finished starting.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting",
        )
    return services


Services = Annotated[AppServices, Depends(get_services)]


def get_selector(services: Services) -> RecognitionEngineSelector:
    """Dependency to get the recognition engine selector."""
    return services.selector


def get_store(services: Services) -> SightingStore:
    """Dependency to get the sighting store."""
    return services.store


def get_capture(services: Services) -> CaptureController:
    """Dependency to get the capture controller."""
    return services.capture


# Type aliases for cleaner route signatures
Selector = Annotated[RecognitionEngineSelector, Depends(get_selector)]
Store = Annotated[SightingStore, Depends(get_store)]
Capture = Annotated[CaptureController, Depends(get_capture)]
