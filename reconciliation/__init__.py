"""Weekly carrier reconciliation: feeds, engine, ledger and orchestration.

``reconciliation.orchestrator`` is imported explicitly; it depends on
``balance_ledger``, which itself builds on this package's ledger.
"""

from reconciliation.ledger import UNMATCHED_LABEL, Ledger, LedgerEntry, TripDetail
from reconciliation.models import (
    CheckResult,
    CheckStatus,
    ManualReassignment,
    ReconciliationResult,
    RunStats,
    Severity,
    SkipReason,
    SmallAmountAnomaly,
)
from reconciliation.engine import ReconciliationEngine, evaluate_checks, parse_amount, reassign_unmatched
from reconciliation.feeds import build_batch, load_invoice_feed, load_trip_feed

__all__ = [
    # Ledger
    "UNMATCHED_LABEL",
    "Ledger",
    "LedgerEntry",
    "TripDetail",
    # Models
    "CheckResult",
    "CheckStatus",
    "ManualReassignment",
    "ReconciliationResult",
    "RunStats",
    "Severity",
    "SkipReason",
    "SmallAmountAnomaly",
    # Engine
    "ReconciliationEngine",
    "evaluate_checks",
    "parse_amount",
    "reassign_unmatched",
    # Feeds
    "build_batch",
    "load_invoice_feed",
    "load_trip_feed",
]
