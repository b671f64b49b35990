"""
FastAPI application entry point.

Configures the application with:
- Lifespan handlers for database setup and service construction
- CORS middleware
- Correlation ID middleware
- Health and readiness probes
- API routes
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from passingplates.api import api_router
from passingplates.api.deps import AppServices
from passingplates.application.capture_controller import CaptureController
from passingplates.application.recognition_engine import RecognitionEngineSelector
from passingplates.application.sighting_store import SightingStore
from passingplates.core.config import Settings, get_settings
from passingplates.core.logging import (
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from passingplates.infrastructure.camera.opencv_stream import OpenCVCameraProvider
from passingplates.infrastructure.db.repository import KeyValueStore, SqlKeyValueStore
from passingplates.infrastructure.db.session import close_db, get_session_factory, init_db
from passingplates.infrastructure.ml.alpr_engine import NeuralAlprService
from passingplates.infrastructure.ml.ocr import OCRFallbackEngine

# Initialize logging
setup_logging()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = "1.0.0"


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    engines: dict[str, str]
    active_engine: str
    fallback_active: bool


def build_services(settings: Settings, kv: KeyValueStore) -> AppServices:
    """
    Wire the long-lived services together.

    Args:
        settings: Application settings.
        kv: Persistence backend for the sighting history.

    Returns:
        AppServices: Services shared by every request.
    """
    selector = RecognitionEngineSelector(
        NeuralAlprService(settings),
        OCRFallbackEngine(settings),
    )
    store = SightingStore(kv)
    capture = CaptureController(
        selector,
        OpenCVCameraProvider(
            settings.camera_device,
            width=settings.camera_width,
            height=settings.camera_height,
        ),
        on_detections=store.add_detections,
        interval_seconds=settings.capture_interval_seconds,
    )
    return AppServices(settings=settings, selector=selector, store=store, capture=capture)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown tasks:
    - Startup: initialize DB, build services, restore sighting history
    - Shutdown: stop capture, release the OCR reader, close connections
    """
    logger.info("application_starting")
    owns_database = getattr(app.state, "services", None) is None

    try:
        if owns_database:
            await init_db()
            logger.info("database_initialized")
            app.state.services = build_services(
                get_settings(),
                SqlKeyValueStore(get_session_factory()),
            )
        await app.state.services.store.load()
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")
    services: AppServices = app.state.services
    await services.capture.stop(silent=True)
    services.selector.ocr.terminate_worker()
    if owns_database:
        await close_db()
    logger.info("application_shutdown_complete")


def create_app(services: AppServices | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Prebuilt services (tests); built in the lifespan if None.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="PassingPlates",
        description="Licence plate recognition and sighting history",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.services = services

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to each request."""
        set_correlation_id(request.headers.get("X-Correlation-ID"))
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = get_correlation_id()
        return response

    # Health check endpoints
    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
    )
    async def health_check() -> HealthResponse:
        """
        Basic liveness probe.

        Returns 200 if the application is running.
        """
        return HealthResponse(status="healthy")

    @app.get(
        "/ready",
        response_model=ReadinessResponse,
        tags=["health"],
    )
    async def readiness_check(request: Request) -> ReadinessResponse:
        """
        Readiness probe.

        Returns 200 once the services are built and the active engine has
        not failed; engines load lazily, so "not_started" still counts as
        ready.
        """
        services: AppServices | None = request.app.state.services
        if services is None:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "starting"},
            )

        selector = services.selector
        engines = selector.engine_states()
        all_ready = engines[selector.active_engine] != "error"
        response = ReadinessResponse(
            status="ready" if all_ready else "not_ready",
            engines=engines,
            active_engine=selector.active_engine,
            fallback_active=selector.fallback_active,
        )

        if not all_ready:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=response.model_dump(),
            )

        return response

    # Include API routes
    app.include_router(api_router)

    return app


# Create app instance
app = create_app()
