"""API routes package."""

from fastapi import APIRouter

from passingplates.api.routes import capture, recognitions, sightings

# Main API router
api_router = APIRouter(prefix="/api/v1")

# Include route modules
api_router.include_router(recognitions.router)
api_router.include_router(sightings.router)
api_router.include_router(capture.router)
