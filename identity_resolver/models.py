"""Identity Resolver Data Models.

This module defines the Pydantic models for carrier resolution:
- Company, Driver, Vehicle: the registry rows resolution reads
- CompanySuggestion: a non-authoritative company guess for a driver
- Resolution: the outcome of resolving one trip (Resolved or Unresolved)
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


# Ledger bucket for invoice lines no company claims; not a usable company name
UNMATCHED_LABEL = "Unmatched"


class MatchType(str, Enum):
    """How the company was determined."""
    VEHICLE = "vehicle"                # Active vehicle registration
    DRIVER_EXACT = "driver_exact"      # Normalized driver name in the driver map
    DRIVER_VARIANT = "driver_variant"  # A reordered variant of the name matched
    NO_MATCH = "no_match"              # Left for human confirmation


class SuggestionSource(str, Enum):
    """Where a suggested company came from."""
    HISTORICAL = "historical"  # Pairing discovered through the archive earlier in the batch
    SIMILARITY = "similarity"  # Token overlap with already-mapped drivers
    FALLBACK = "fallback"      # Configured default company
    NONE = "none"              # Other companies offered as alternatives


class ResolutionOutcome(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


# =============================================================================
# Registry rows
# =============================================================================

class Company(BaseModel):
    """A carrier (transport subcontractor).

    Attributes:
        id: Database row ID
        name: Unique display name
        commission_rate: Fraction retained by the operator (0.04 = 4%)
        is_main_company: Marks the operator's own company
    """
    id: int
    name: str = Field(..., min_length=1)
    commission_rate: Decimal = Field(default=Decimal("0.04"), ge=0)
    is_main_company: bool = False

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }


class Driver(BaseModel):
    """A driver mapped to at most one company.

    name_variants is derived from name on every write and never edited
    directly.
    """
    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    company_id: Optional[int] = None
    name_variants: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Vehicle(BaseModel):
    """A vehicle registration owned by a company."""
    id: Optional[int] = None
    vehicle_id: str = Field(..., min_length=1, description="Registration, stored normalized")
    company_id: int
    vehicle_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


# =============================================================================
# Resolution
# =============================================================================

class CompanySuggestion(BaseModel):
    """A company offered to the operator for an unresolved driver."""
    company_id: int
    company_name: str
    score: int = Field(default=0, description="Token overlap score")
    source: SuggestionSource = SuggestionSource.SIMILARITY


class Resolution(BaseModel):
    """Result of resolving one trip to a carrier.

    Exactly two shapes exist:
    - RESOLVED: company_id is set, suggestion/alternatives are empty
    - UNRESOLVED: company_id is None, the line belongs to Unmatched

    Use ``Resolution.resolved(...)`` / ``Resolution.unresolved(...)``.
    """
    outcome: ResolutionOutcome
    company_id: Optional[int] = None
    match_type: MatchType = MatchType.NO_MATCH
    matched_on: Optional[str] = Field(default=None, description="Registration or name variant that matched")
    driver_name: Optional[str] = Field(default=None, description="Driver the line is waiting on, if any")
    suggestion: Optional[CompanySuggestion] = None
    alternatives: List[CompanySuggestion] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shape(self) -> "Resolution":
        if self.outcome is ResolutionOutcome.RESOLVED:
            if self.company_id is None:
                raise ValueError("Resolved outcome requires company_id")
            if self.match_type is MatchType.NO_MATCH:
                raise ValueError("Resolved outcome requires a match type")
        elif self.company_id is not None:
            raise ValueError("Unresolved outcome cannot carry a company_id")
        return self

    @classmethod
    def resolved(cls, company_id: int, match_type: MatchType, matched_on: str, reason: str) -> "Resolution":
        return cls(
            outcome=ResolutionOutcome.RESOLVED,
            company_id=company_id,
            match_type=match_type,
            matched_on=matched_on,
            reasons=[reason],
        )

    @classmethod
    def unresolved(
        cls,
        reason: str,
        driver_name: Optional[str] = None,
        suggestion: Optional[CompanySuggestion] = None,
        alternatives: Optional[List[CompanySuggestion]] = None,
    ) -> "Resolution":
        return cls(
            outcome=ResolutionOutcome.UNRESOLVED,
            driver_name=driver_name,
            suggestion=suggestion,
            alternatives=alternatives or [],
            reasons=[reason],
        )

    @property
    def is_resolved(self) -> bool:
        return self.outcome is ResolutionOutcome.RESOLVED
