"""Trip and invoice-line models shared by every reconciliation stage.

These live only for the duration of one run: the trip manifest and the
two invoice feeds of a weekly upload are parsed into them, resolved,
and then dropped. The durable outputs are the historical archive, the
ledger and the company balances.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class BillingCycle(str, Enum):
    """Invoice billing cycle."""
    SEVEN_DAY = "7day"
    THIRTY_DAY = "30day"

    @property
    def report_key(self) -> str:
        """Key used in per-trip detail of the result JSON."""
        return "7_days" if self is BillingCycle.SEVEN_DAY else "30_days"


class TripRecord(BaseModel):
    """One row of the trip manifest: who drove which trip with which vehicle.

    Attributes:
        trip_id: Primary trip identifier (VRID)
        secondary_id: Alternate id column some manifests carry ("VR ID")
        vehicle_id: Vehicle registration, possibly prefixed ("OTHR-TR94FST")
        driver_name_raw: Driver cell as typed, may hold several comma-joined names
        trip_date: Trip date as it appears in the feed
        route: Route description
        raw: Original row, kept for the historical archive
    """
    trip_id: str = Field(..., min_length=1, description="Trip identifier (VRID)")
    secondary_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_name_raw: Optional[str] = None
    trip_date: Optional[str] = None
    route: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    def ids(self) -> List[str]:
        """Every id an invoice line may reference this trip by."""
        ids = [self.trip_id]
        if self.secondary_id and self.secondary_id != self.trip_id:
            ids.append(self.secondary_id)
        return ids


class InvoiceFeedRow(BaseModel):
    """A validated but not yet interpreted invoice row.

    Amount is kept as the raw cell text: deciding whether it is a usable
    number is part of reconciliation (bad amounts are counted, not
    rejected at parse time).
    """
    row_number: int = Field(..., description="1-based row number within its source")
    primary_id: Optional[str] = Field(default=None, description="'Tour ID' column")
    secondary_id: Optional[str] = Field(default=None, description="'Load ID' column")
    amount_raw: Optional[str] = Field(default=None, description="'Gross Pay Amt (Excl. Tax)' cell")
    source: Optional[str] = Field(default=None, description="File/sheet the row came from")


class InvoiceLine(BaseModel):
    """An invoice row after id and amount parsing."""
    trip_id: str
    amount: Decimal
    cycle: BillingCycle
    row_number: int = 0
    synthetic_id: bool = Field(default=False, description="True when no id column was filled")


class QuarantinedRow(BaseModel):
    """A feed row rejected by its row schema."""
    source: str
    row_number: int
    reason: str
    raw: Dict[str, Any] = Field(default_factory=dict)


class ReconciliationBatch(BaseModel):
    """One weekly upload held in memory until finalized.

    The same batch object is re-run after every mapping confirmation.
    """
    batch_id: str = Field(default_factory=lambda: f"B-{uuid4().hex[:12]}")
    tenant_id: str = Field(default="default")
    week_label: str = Field(..., description="Processing week label, e.g. '2025-W14'")
    trips: List[TripRecord] = Field(default_factory=list)
    invoice_7day: List[InvoiceFeedRow] = Field(default_factory=list)
    invoice_30day: List[InvoiceFeedRow] = Field(default_factory=list)
    quarantined: List[QuarantinedRow] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def rows_for(self, cycle: BillingCycle) -> List[InvoiceFeedRow]:
        if cycle is BillingCycle.SEVEN_DAY:
            return self.invoice_7day
        return self.invoice_30day
