"""Company balance and payment endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_balances
from balance_ledger.ledger import BalanceLedger
from balance_ledger.models import CompanyBalance, Payment


router = APIRouter()


class PaymentRequest(BaseModel):
    """Request to record a payment."""
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    paid_at: Optional[datetime] = None


class ReverseRequest(BaseModel):
    """Request to reverse part of what was paid."""
    amount: Decimal = Field(..., gt=0)


class PaymentResponse(BaseModel):
    payment: Payment
    balance: CompanyBalance


@router.get("", response_model=List[CompanyBalance])
async def list_balances(
    period_label: Optional[str] = Query(None, description="Only this period"),
    balances: BalanceLedger = Depends(get_balances),
) -> List[CompanyBalance]:
    return balances.list_balances(period_label)


@router.get("/{company_id}/{period_label}", response_model=CompanyBalance)
async def get_balance(
    company_id: int,
    period_label: str,
    balances: BalanceLedger = Depends(get_balances),
) -> CompanyBalance:
    return balances.get_balance(company_id, period_label)


@router.get("/{company_id}/{period_label}/payments", response_model=List[Payment])
async def list_payments(
    company_id: int,
    period_label: str,
    balances: BalanceLedger = Depends(get_balances),
) -> List[Payment]:
    return balances.list_payments(company_id, period_label)


@router.post("/{company_id}/{period_label}/payments", response_model=PaymentResponse, status_code=201)
async def apply_payment(
    company_id: int,
    period_label: str,
    request: PaymentRequest,
    balances: BalanceLedger = Depends(get_balances),
) -> PaymentResponse:
    payment = balances.apply_payment(
        company_id,
        period_label,
        request.amount,
        description=request.description,
        paid_at=request.paid_at,
    )
    return PaymentResponse(payment=payment, balance=balances.get_balance(company_id, period_label))


@router.post("/{company_id}/{period_label}/reverse", response_model=CompanyBalance)
async def reverse_payment(
    company_id: int,
    period_label: str,
    request: ReverseRequest,
    balances: BalanceLedger = Depends(get_balances),
) -> CompanyBalance:
    return balances.reverse_payment(company_id, period_label, request.amount)


@router.delete("/payments/{payment_id}", response_model=CompanyBalance)
async def delete_payment(
    payment_id: int,
    balances: BalanceLedger = Depends(get_balances),
) -> CompanyBalance:
    """Reverse a payment; the payment row and its history are kept."""
    return balances.delete_payment(payment_id)
