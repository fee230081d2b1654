"""Batch endpoints.

Submit a weekly upload, read the held result, reassign Unmatched trips
and finalize the week.
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator, model_validator

from api.dependencies import get_orchestrator
from models.trips import InvoiceFeedRow, ReconciliationBatch, TripRecord
from pending_mappings.models import PendingMapping
from reconciliation.models import CheckResult, ReconciliationResult, SmallAmountAnomaly
from reconciliation.orchestrator import FinalizeOutcome, ReconciliationOrchestrator


router = APIRouter()


class TripIn(BaseModel):
    """One trip-manifest row."""
    trip_id: Optional[str] = Field(None, description="'Trip ID'")
    secondary_id: Optional[str] = Field(None, description="'VR ID'")
    vehicle_id: Optional[str] = None
    driver_name: Optional[str] = None
    trip_date: Optional[str] = None
    route: Optional[str] = None

    @model_validator(mode="after")
    def _require_id(self) -> "TripIn":
        if not (self.trip_id or "").strip() and not (self.secondary_id or "").strip():
            raise ValueError("trip needs trip_id or secondary_id")
        return self

    def to_trip(self) -> TripRecord:
        trip_id = (self.trip_id or "").strip()
        return TripRecord(
            trip_id=trip_id or self.secondary_id.strip(),
            secondary_id=self.secondary_id if trip_id else None,
            vehicle_id=self.vehicle_id,
            driver_name_raw=self.driver_name,
            trip_date=self.trip_date,
            route=self.route,
            raw=self.model_dump(),
        )


class InvoiceRowIn(BaseModel):
    """One invoice row; the amount is interpreted during reconciliation."""
    primary_id: Optional[str] = Field(None, description="'Tour ID'")
    secondary_id: Optional[str] = Field(None, description="'Load ID'")
    amount: Optional[Union[str, float, int]] = Field(None, description="'Gross Pay Amt (Excl. Tax)'")

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, value):
        return None if value is None else str(value)


class BatchSubmitRequest(BaseModel):
    """Request to reconcile a weekly upload."""
    week_label: str = Field(..., min_length=1, description="Processing week, e.g. 2025-W14")
    tenant_id: str = Field("default")
    trips: List[TripIn] = Field(default_factory=list)
    invoice_7day: List[InvoiceRowIn] = Field(default_factory=list)
    invoice_30day: List[InvoiceRowIn] = Field(default_factory=list)

    def to_batch(self) -> ReconciliationBatch:
        def rows(items: List[InvoiceRowIn], source: str) -> List[InvoiceFeedRow]:
            return [
                InvoiceFeedRow(
                    row_number=index,
                    primary_id=item.primary_id,
                    secondary_id=item.secondary_id,
                    amount_raw=item.amount,
                    source=source,
                )
                for index, item in enumerate(items, start=1)
            ]

        return ReconciliationBatch(
            tenant_id=self.tenant_id,
            week_label=self.week_label,
            trips=[t.to_trip() for t in self.trips],
            invoice_7day=rows(self.invoice_7day, "api:7day"),
            invoice_30day=rows(self.invoice_30day, "api:30day"),
        )


class ReassignRequest(BaseModel):
    """Request to move an Unmatched trip to a company."""
    trip_id: str
    company_id: int


class ResultResponse(BaseModel):
    """Latest reconciliation result of a held batch."""
    batch_id: str
    week_label: str
    version: int
    status: str
    summary: Dict[str, Any]
    report: Dict[str, Any]
    pending_mappings: List[PendingMapping]
    anomalies: List[SmallAmountAnomaly]
    checks: List[CheckResult]

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "ResultResponse":
        return cls(
            batch_id=result.batch_id,
            week_label=result.week_label,
            version=result.version,
            status=result.status.value,
            summary=result.summary(),
            report=result.to_report(),
            pending_mappings=result.pending_mappings,
            anomalies=result.anomalies,
            checks=result.checks,
        )


@router.post("", response_model=ResultResponse, status_code=201)
async def submit_batch(
    request: BatchSubmitRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> ResultResponse:
    """Reconcile a weekly upload and hold it for confirmations."""
    result = await orchestrator.submit(request.to_batch())
    return ResultResponse.from_result(result)


@router.get("/{batch_id}", response_model=ResultResponse)
async def get_batch(
    batch_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> ResultResponse:
    return ResultResponse.from_result(orchestrator.result(batch_id))


@router.get("/{batch_id}/report")
async def get_batch_report(
    batch_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Per-company JSON report of the latest result."""
    return orchestrator.result(batch_id).to_report()


@router.post("/{batch_id}/reassign", response_model=ResultResponse)
async def reassign_trip(
    batch_id: str,
    request: ReassignRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> ResultResponse:
    """Move one Unmatched trip to a company (commission at that company's rate)."""
    result = await orchestrator.reassign(batch_id, request.trip_id, request.company_id)
    return ResultResponse.from_result(result)


@router.post("/{batch_id}/finalize", response_model=FinalizeOutcome)
async def finalize_batch(
    batch_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> FinalizeOutcome:
    """Archive trips, store the week and sync balances. Refused while blocked."""
    return await orchestrator.finalize(batch_id)
