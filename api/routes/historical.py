"""Historical archive endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_archive
from historical_archive.archive import HistoricalArchive
from historical_archive.models import ArchiveStats, HistoricalSearchResult


router = APIRouter()


class SearchRequest(BaseModel):
    trip_ids: List[str] = Field(..., description="Trip ids to look up")


@router.post("/search", response_model=HistoricalSearchResult)
async def search_trips(
    request: SearchRequest,
    archive: HistoricalArchive = Depends(get_archive),
) -> HistoricalSearchResult:
    """Which of these trips were seen in earlier weeks, and with which driver."""
    return await archive.search(request.trip_ids)


@router.get("/stats", response_model=ArchiveStats)
async def archive_stats(archive: HistoricalArchive = Depends(get_archive)) -> ArchiveStats:
    return archive.stats()
