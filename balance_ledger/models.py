"""Company Balance Data Models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


ZERO = Decimal("0")
DEFAULT_PAID_EPSILON = Decimal("1")


class BalanceStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentAction(str, Enum):
    CREATED = "created"
    REVERSED = "reversed"


def compute_outstanding(total_invoiced: Decimal, total_paid: Decimal) -> Decimal:
    """outstanding = max(0, invoiced - min(paid, invoiced))"""
    return max(ZERO, total_invoiced - min(total_paid, total_invoiced))


def derive_status(
    total_invoiced: Decimal,
    outstanding: Decimal,
    epsilon: Decimal = DEFAULT_PAID_EPSILON,
) -> BalanceStatus:
    """Status is a pure function of outstanding vs invoiced."""
    if outstanding < epsilon:
        return BalanceStatus.PAID
    if outstanding < total_invoiced:
        return BalanceStatus.PARTIAL
    return BalanceStatus.PENDING


class CompanyBalance(BaseModel):
    """What a company is owed for one period and how much was paid.

    total_paid is stored as the raw running sum of payments so that a
    reversal restores the previous state exactly; outstanding and status
    are always derived from it.
    """
    id: Optional[int] = None
    company_id: int
    period_label: str
    total_invoiced: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding: Decimal = ZERO
    status: BalanceStatus = BalanceStatus.PENDING
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }

    def recompute(self, epsilon: Decimal = DEFAULT_PAID_EPSILON) -> "CompanyBalance":
        self.outstanding = compute_outstanding(self.total_invoiced, self.total_paid)
        self.status = derive_status(self.total_invoiced, self.outstanding, epsilon)
        self.updated_at = datetime.utcnow()
        return self


class Payment(BaseModel):
    """A payment to a company for a period. Never deleted, only reversed."""
    id: Optional[int] = None
    company_id: int
    period_label: str
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    paid_at: datetime = Field(default_factory=datetime.utcnow)
    reversed: bool = False
    reversed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }


class PaymentHistoryEntry(BaseModel):
    """Audit row written on every payment create/reverse."""
    id: Optional[int] = None
    payment_id: int
    action: PaymentAction
    snapshot: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
