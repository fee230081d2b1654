"""Pending-mapping endpoints.

Confirming a driver persists the mapping and re-runs the held batch
before responding, so the returned version already reflects it.
"""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_orchestrator
from identity_resolver.models import Driver
from pending_mappings.models import PendingMapping
from reconciliation.orchestrator import ReconciliationOrchestrator


router = APIRouter()


class ConfirmRequest(BaseModel):
    """Request to confirm a pending driver."""
    driver_name: str = Field(..., min_length=1)
    company_id: int


class ConfirmResponse(BaseModel):
    """Confirmed driver and the re-run it triggered."""
    driver: Driver
    created: bool
    rerun_token: str
    result_version: int
    status: str
    pending_remaining: int


@router.get("/{batch_id}/pending", response_model=List[PendingMapping])
async def list_pending(
    batch_id: str,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> List[PendingMapping]:
    return orchestrator.pending(batch_id)


@router.post("/{batch_id}/confirm", response_model=ConfirmResponse)
async def confirm_mapping(
    batch_id: str,
    request: ConfirmRequest,
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
) -> ConfirmResponse:
    confirmation, result = await orchestrator.confirm_mapping(
        batch_id, request.driver_name, request.company_id
    )
    return ConfirmResponse(
        driver=confirmation.driver,
        created=confirmation.created,
        rerun_token=confirmation.rerun_token,
        result_version=result.version,
        status=result.status.value,
        pending_remaining=len(result.pending_mappings),
    )
