"""Historical Archive Data Models."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class HistoricalTripRecord(BaseModel):
    """A trip as it was first archived. Never overwritten.

    Attributes:
        trip_id: Unique trip identifier (VRID)
        secondary_id: Alternate id from the manifest, if any
        driver_name: Driver cell as it appeared in the manifest
        vehicle_id: Vehicle cell as it appeared in the manifest
        week_label: Processing week the trip was first seen in
        trip_date: Trip date from the manifest
        route: Route from the manifest
        raw_trip_data: Full original row
        created_at: When the trip was archived
    """
    id: Optional[int] = None
    trip_id: str = Field(..., min_length=1)
    secondary_id: Optional[str] = None
    driver_name: Optional[str] = None
    vehicle_id: Optional[str] = None
    week_label: str
    trip_date: Optional[str] = None
    route: Optional[str] = None
    raw_trip_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class HistoricalMatch(BaseModel):
    """Public view of an archived trip in search results."""
    driver_name: Optional[str] = None
    week_label: str


class HistoricalSearchResult(BaseModel):
    """Result of searching the archive by trip ids."""
    found_trips: Dict[str, HistoricalMatch] = Field(default_factory=dict)
    found: int = 0
    total: int = 0


class ArchiveStats(BaseModel):
    """Archive size summary."""
    total_trips: int = 0
    unique_trip_ids: int = 0
    weeks: int = 0
