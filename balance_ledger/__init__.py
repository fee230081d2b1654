"""Company Balance Ledger - what each carrier is owed per period, and what was paid."""

from balance_ledger.models import (
    BalanceStatus,
    CompanyBalance,
    Payment,
    PaymentAction,
    PaymentHistoryEntry,
    compute_outstanding,
    derive_status,
)
from balance_ledger.db import (
    init_balance_db,
    clear_balances,
)
from balance_ledger.ledger import BalanceLedger

__all__ = [
    # Models
    "BalanceStatus",
    "CompanyBalance",
    "Payment",
    "PaymentAction",
    "PaymentHistoryEntry",
    "compute_outstanding",
    "derive_status",
    # Database
    "init_balance_db",
    "clear_balances",
    # Ledger
    "BalanceLedger",
]
