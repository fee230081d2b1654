"""Per-company ledger of one reconciliation run.

Every valid invoice line lands in exactly one bucket: a real company
(``LedgerEntry`` keyed by company id) or the Unmatched bucket. The
Unmatched bucket is a separate field, never a dict key, and its
commission is always zero. Moving a trip out of Unmatched re-posts its
amounts through ``LedgerEntry.add_line`` so commission is computed at
the destination rate.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from core.errors import UnmatchedTripNotFoundError
from identity_resolver.models import UNMATCHED_LABEL, Company
from models.trips import BillingCycle


ZERO = Decimal("0")


class TripDetail(BaseModel):
    """Amounts of one trip inside a bucket."""
    amount_7day: Decimal = ZERO
    amount_30day: Decimal = ZERO
    commission: Decimal = ZERO

    def amount(self, cycle: BillingCycle) -> Decimal:
        return self.amount_7day if cycle is BillingCycle.SEVEN_DAY else self.amount_30day

    def to_report_dict(self) -> Dict[str, float]:
        return {
            "7_days": float(self.amount_7day),
            "30_days": float(self.amount_30day),
            "commission": float(self.commission),
        }


class LedgerEntry(BaseModel):
    """Totals of one bucket.

    Attributes:
        company_id: Company id, None for the Unmatched bucket
        company_name: Display name ("Unmatched" for the synthetic bucket)
        commission_rate: Rate applied to every line posted here
        total_7day: Sum of 7-day cycle amounts
        total_30day: Sum of 30-day cycle amounts
        total_commission: Sum of commission
        trips: Trip id → per-trip detail
    """
    company_id: Optional[int] = None
    company_name: str
    commission_rate: Decimal = ZERO
    total_7day: Decimal = ZERO
    total_30day: Decimal = ZERO
    total_commission: Decimal = ZERO
    trips: Dict[str, TripDetail] = Field(default_factory=dict)

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }

    @classmethod
    def for_company(cls, company: Company) -> "LedgerEntry":
        return cls(
            company_id=company.id,
            company_name=company.name,
            commission_rate=company.commission_rate,
        )

    @classmethod
    def unmatched(cls) -> "LedgerEntry":
        return cls(company_id=None, company_name=UNMATCHED_LABEL, commission_rate=ZERO)

    @property
    def is_unmatched(self) -> bool:
        return self.company_id is None

    @property
    def gross_total(self) -> Decimal:
        return self.total_7day + self.total_30day

    @property
    def net_payable(self) -> Decimal:
        """Gross invoiced minus commission retained by the operator."""
        return self.gross_total - self.total_commission

    def add_line(self, trip_id: str, cycle: BillingCycle, amount: Decimal) -> Decimal:
        """Post one invoice line. Returns the commission charged on it."""
        commission = ZERO if self.is_unmatched else amount * self.commission_rate

        detail = self.trips.setdefault(trip_id, TripDetail())
        if cycle is BillingCycle.SEVEN_DAY:
            self.total_7day += amount
            detail.amount_7day += amount
        else:
            self.total_30day += amount
            detail.amount_30day += amount

        detail.commission += commission
        self.total_commission += commission
        return commission

    def remove_trip(self, trip_id: str) -> Optional[TripDetail]:
        """Take a trip out of this bucket, decrementing every total."""
        detail = self.trips.pop(trip_id, None)
        if detail is None:
            return None
        self.total_7day -= detail.amount_7day
        self.total_30day -= detail.amount_30day
        self.total_commission -= detail.commission
        return detail

    def to_report_dict(self) -> Dict:
        return {
            "Total_7_days": float(self.total_7day),
            "Total_30_days": float(self.total_30day),
            "Total_comision": float(self.total_commission),
            "VRID_details": {
                trip_id: detail.to_report_dict()
                for trip_id, detail in self.trips.items()
            },
        }


class Ledger(BaseModel):
    """All buckets of one run."""
    entries: Dict[int, LedgerEntry] = Field(default_factory=dict)
    unmatched: LedgerEntry = Field(default_factory=LedgerEntry.unmatched)

    def entry_for(self, company: Company) -> LedgerEntry:
        entry = self.entries.get(company.id)
        if entry is None:
            entry = LedgerEntry.for_company(company)
            self.entries[company.id] = entry
        return entry

    def post(
        self,
        trip_id: str,
        cycle: BillingCycle,
        amount: Decimal,
        company: Optional[Company] = None,
    ) -> Decimal:
        """Post a line to a company, or to Unmatched when company is None."""
        bucket = self.unmatched if company is None else self.entry_for(company)
        return bucket.add_line(trip_id, cycle, amount)

    def move_from_unmatched(self, trip_id: str, company: Company) -> TripDetail:
        """Move a trip (both cycles) from Unmatched to a company.

        Commission is recomputed at the company's rate.

        Raises:
            UnmatchedTripNotFoundError: If the trip is not in Unmatched
        """
        detail = self.unmatched.remove_trip(trip_id)
        if detail is None:
            raise UnmatchedTripNotFoundError(
                f"Trip {trip_id} is not in the Unmatched bucket",
                {"trip_id": trip_id},
            )

        entry = self.entry_for(company)
        if detail.amount_7day:
            entry.add_line(trip_id, BillingCycle.SEVEN_DAY, detail.amount_7day)
        if detail.amount_30day:
            entry.add_line(trip_id, BillingCycle.THIRTY_DAY, detail.amount_30day)
        return entry.trips.get(trip_id, TripDetail())

    def bucket_label(self, trip_id: str) -> str:
        """Name of the bucket holding a trip."""
        for entry in self.entries.values():
            if trip_id in entry.trips:
                return entry.company_name
        return UNMATCHED_LABEL

    def total_invoiced(self) -> Decimal:
        """Gross total over every bucket, Unmatched included."""
        return sum((e.gross_total for e in self.entries.values()), ZERO) + self.unmatched.gross_total

    def companies(self) -> List[LedgerEntry]:
        return list(self.entries.values())

    def to_report(self) -> Dict[str, Dict]:
        """Per-company JSON report; "Unmatched" only appears when it holds trips."""
        report = {entry.company_name: entry.to_report_dict() for entry in self.entries.values()}
        if self.unmatched.trips:
            report[UNMATCHED_LABEL] = self.unmatched.to_report_dict()
        return report
