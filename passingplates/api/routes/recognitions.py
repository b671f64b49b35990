"""
Still-image recognition API routes.

Uploaded images go through the same engine selector as camera frames and
their detections are added to the sighting history.
"""

from typing import Annotated

import cv2
import numpy as np
from fastapi import APIRouter, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from passingplates.api.deps import Selector, Store
from passingplates.core.events import user_message
from passingplates.core.logging import get_logger
from passingplates.domain.models import Detection, DetectionSource

logger = get_logger(__name__)

router = APIRouter(prefix="/recognitions", tags=["recognitions"])


class BoundingBoxResponse(BaseModel):
    """Plate location as fractions of the image size."""

    left: float
    top: float
    width: float
    height: float


class DetectionResponse(BaseModel):
    """One recognized plate."""

    id: str
    plate: str = Field(description="Normalized plate text", examples=["AB12CDE"])
    formatted_plate: str = Field(description="Display form", examples=["AB12 CDE"])
    confidence: float = Field(ge=0.0, le=100.0, examples=[85.0])
    source: DetectionSource
    captured_at: int = Field(description="Capture time in epoch milliseconds")
    bbox: BoundingBoxResponse

    @classmethod
    def from_domain(cls, detection: Detection) -> "DetectionResponse":
        return cls(
            id=detection.id,
            plate=detection.plate,
            formatted_plate=detection.formatted_plate,
            confidence=detection.confidence,
            source=detection.source,
            captured_at=detection.captured_at,
            bbox=BoundingBoxResponse(**detection.bbox._asdict()),
        )


class RecognitionResponse(BaseModel):
    """Result of analysing one uploaded image."""

    engine: str = Field(description="Engine that handled the image", examples=["neural"])
    count: int
    detections: list[DetectionResponse]


def _decode_image(image_bytes: bytes) -> np.ndarray | None:
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    return cv2.imdecode(buffer, cv2.IMREAD_COLOR)


@router.post(
    "",
    response_model=RecognitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Recognize plates in an image",
    responses={
        400: {"description": "Invalid or unreadable image"},
        503: {"description": "No recognition engine could be loaded"},
    },
)
async def recognize_image(
    image: Annotated[UploadFile, File(description="Still image containing vehicle plates")],
    selector: Selector,
    store: Store,
) -> RecognitionResponse:
    """Detect and read every plate in an uploaded image."""
    if not image.content_type or not image.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Please upload an image.",
        )

    image_bytes = await image.read()
    if len(image_bytes) == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty image file",
        )

    frame = await run_in_threadpool(_decode_image, image_bytes)
    if frame is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Could not decode image",
        )

    try:
        detections = await selector.analyze_frame(frame, DetectionSource.UPLOAD)
    except Exception as e:
        logger.error("upload_recognition_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=user_message(e, "Plate recognition is unavailable"),
        ) from e

    await store.add_detections(detections)
    logger.info(
        "upload_recognised",
        engine=selector.active_engine,
        detections=len(detections),
    )
    return RecognitionResponse(
        engine=selector.active_engine,
        count=len(detections),
        detections=[DetectionResponse.from_domain(d) for d in detections],
    )
