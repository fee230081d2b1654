"""Pending Mapping Data Models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from identity_resolver.models import CompanySuggestion, Driver


class PendingMapping(BaseModel):
    """An unresolved driver waiting for a human-confirmed company.

    Attributes:
        driver_name: Driver name as first seen (display casing)
        normalized_name: Lowercase, whitespace-collapsed name
        name_variants: Reordered variants, used for deduplication
        suggestion: Non-authoritative suggested company
        alternatives: Every other company, ranked
        trip_ids: Trips currently waiting on this driver
        first_seen_at: When the driver was first queued
    """
    driver_name: str
    normalized_name: str
    name_variants: List[str] = Field(default_factory=list)
    suggestion: Optional[CompanySuggestion] = None
    alternatives: List[CompanySuggestion] = Field(default_factory=list)
    trip_ids: List[str] = Field(default_factory=list)
    first_seen_at: datetime = Field(default_factory=datetime.utcnow)


class MappingConfirmation(BaseModel):
    """Outcome of confirming a pending mapping.

    The rerun_token identifies the full re-run this confirmation triggers.
    """
    driver: Driver
    created: bool = Field(..., description="True if a new driver row was created")
    company_id: int
    rerun_token: str
    confirmed_at: datetime = Field(default_factory=datetime.utcnow)
