"""Reconciliation result models.

A run produces a ``ReconciliationResult``: the ledger, the pending
mappings the operator has to confirm, advisory small-amount anomalies,
and a list of checks. A failed total-discrepancy check is blocking and
is surfaced, never corrected.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.trips import BillingCycle
from pending_mappings.models import PendingMapping
from reconciliation.ledger import Ledger


class Severity(str, Enum):
    BLOCK = "BLOCK"
    WARN = "WARN"
    INFO = "INFO"


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class SkipReason(str, Enum):
    """Why an invoice row was not posted."""
    NON_NUMERIC_AMOUNT = "non_numeric_amount"
    ZERO_AMOUNT = "zero_amount"


class CheckResult(BaseModel):
    """Result of a single reconciliation check."""
    check_id: str
    severity: Severity
    passed: bool
    message: str
    evidence: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict:
        return self.model_dump(mode="json")


class SmallAmountAnomaly(BaseModel):
    """A line at or below the small-amount threshold, flagged for review."""
    trip_id: str
    amount: Decimal
    company: str
    cycle: BillingCycle


class RunStats(BaseModel):
    """Counters of one run."""
    lines_processed: Dict[str, int] = Field(default_factory=lambda: {c.value: 0 for c in BillingCycle})
    lines_skipped: Dict[str, int] = Field(default_factory=lambda: {r.value: 0 for r in SkipReason})
    trips_in_feed: int = 0
    lines_missing_trip: int = 0
    resolved_via_archive: int = 0
    archive_lookup_failed: bool = False
    quarantined_rows: int = 0

    @property
    def total_processed(self) -> int:
        return sum(self.lines_processed.values())

    @property
    def total_skipped(self) -> int:
        return sum(self.lines_skipped.values())


class ManualReassignment(BaseModel):
    """Operator decision moving one Unmatched trip to a company."""
    trip_id: str
    company_id: int
    assigned_at: datetime = Field(default_factory=datetime.utcnow)


class ReconciliationResult(BaseModel):
    """Everything one run produced for a batch.

    Attributes:
        batch_id: Held batch this result belongs to
        tenant_id: Tenant the batch was submitted by
        week_label: Processing week
        version: Increases by one every time the batch is re-run
        status: PASS, WARN, or FAIL (FAIL when a blocking check failed)
        ledger: Company buckets plus Unmatched
        pending_mappings: Drivers awaiting confirmation
        anomalies: Small-amount lines for operator review
        discrepancy: The failed total check, if any
        checks: Every check that ran
        stats: Run counters
        reassignments: Manual Unmatched → company moves applied to this result
    """
    batch_id: str
    tenant_id: str = "default"
    week_label: str
    version: int = 1
    status: CheckStatus = CheckStatus.PASS
    ledger: Ledger = Field(default_factory=Ledger)
    pending_mappings: List[PendingMapping] = Field(default_factory=list)
    anomalies: List[SmallAmountAnomaly] = Field(default_factory=list)
    discrepancy: Optional[CheckResult] = None
    checks: List[CheckResult] = Field(default_factory=list)
    stats: RunStats = Field(default_factory=RunStats)
    expected_total: Decimal = Decimal("0")
    reassignments: List[ManualReassignment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {
            Decimal: lambda v: float(v)
        }

    @property
    def is_blocked(self) -> bool:
        return self.discrepancy is not None

    def to_report(self) -> Dict[str, Dict]:
        """Per-company JSON consumed by accounting."""
        return self.ledger.to_report()

    def summary(self) -> Dict[str, Any]:
        """Short overview for logs and API listings."""
        return {
            "batch_id": self.batch_id,
            "week_label": self.week_label,
            "version": self.version,
            "status": self.status.value,
            "companies": len(self.ledger.entries),
            "unmatched_trips": len(self.ledger.unmatched.trips),
            "unmatched_total": str(self.ledger.unmatched.gross_total),
            "pending_mappings": len(self.pending_mappings),
            "anomalies": len(self.anomalies),
            "lines_processed": self.stats.total_processed,
            "lines_skipped": self.stats.total_skipped,
            "expected_total": str(self.expected_total),
            "ledger_total": str(self.ledger.total_invoiced()),
            "total_commission": str(sum(
                (e.total_commission for e in self.ledger.entries.values()), Decimal("0")
            )),
            "blocking_issues": sum(1 for c in self.checks if not c.passed and c.severity == Severity.BLOCK),
            "warnings": sum(1 for c in self.checks if not c.passed and c.severity == Severity.WARN),
        }

    def net_payable_by_company(self) -> Dict[int, Decimal]:
        return {cid: entry.net_payable for cid, entry in self.ledger.entries.items()}
