"""
Sighting history API routes.
"""

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from passingplates.api.deps import Store
from passingplates.domain.models import DetectionSource, SightingRecord, SightingStats

router = APIRouter(prefix="/sightings", tags=["sightings"])


class SightingResponse(BaseModel):
    """Aggregated history of one plate."""

    plate: str
    formatted_plate: str
    count: int
    first_seen: int
    last_seen: int
    last_confidence: float
    last_source: DetectionSource

    @classmethod
    def from_domain(cls, record: SightingRecord) -> "SightingResponse":
        return cls(
            plate=record.plate,
            formatted_plate=record.formatted_plate,
            count=record.count,
            first_seen=record.first_seen,
            last_seen=record.last_seen,
            last_confidence=record.last_confidence,
            last_source=record.last_source,
        )


class SightingStatsResponse(BaseModel):
    """Summary over the whole history."""

    unique_plates: int
    total_sightings: int
    most_seen_plate: SightingResponse | None = None
    recent_plate: SightingResponse | None = None

    @classmethod
    def from_domain(cls, stats: SightingStats) -> "SightingStatsResponse":
        return cls(
            unique_plates=stats.unique_plates,
            total_sightings=stats.total_sightings,
            most_seen_plate=(
                SightingResponse.from_domain(stats.most_seen_plate)
                if stats.most_seen_plate
                else None
            ),
            recent_plate=(
                SightingResponse.from_domain(stats.recent_plate) if stats.recent_plate else None
            ),
        )


class SightingListResponse(BaseModel):
    """All sightings, most recent first."""

    records: list[SightingResponse]
    stats: SightingStatsResponse


@router.get(
    "",
    response_model=SightingListResponse,
    summary="List sightings",
)
async def list_sightings(store: Store) -> SightingListResponse:
    """Return every sighting record with summary statistics."""
    return SightingListResponse(
        records=[SightingResponse.from_domain(r) for r in store.get_records()],
        stats=SightingStatsResponse.from_domain(store.get_stats()),
    )


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear sighting history",
)
async def clear_sightings(store: Store) -> Response:
    """Delete every sighting record."""
    await store.reset()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
