"""Company Balance Ledger.

Tracks, per company and period, what the company is owed (net payable
from finalized reconciliations) and what was paid. Applying a payment
and then reversing it returns the balance to its prior state exactly:
total_paid is never rounded or clamped on the way up, only outstanding
is clamped at zero.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union

from balance_ledger import db as balance_db
from balance_ledger.models import (
    DEFAULT_PAID_EPSILON,
    ZERO,
    CompanyBalance,
    Payment,
    PaymentHistoryEntry,
)
from core.errors import BalanceNotFoundError, PaymentNotFoundError, UnknownCompanyError
from core.observability.logging import get_logger
from identity_resolver.db import get_company, init_registry_db
from reconciliation.ledger import LedgerEntry
from reconciliation.models import ReconciliationResult


logger = get_logger(__name__)


class BalanceLedger:
    """Persistent per-company, per-period balances.

    Example:
        balances = BalanceLedger(db_path)
        balances.sync_from_result("2025-W14", result)

        payment = balances.apply_payment(company_id=2, period_label="2025-W14", amount=Decimal("50"))
        balances.delete_payment(payment.id)   # back to the previous state
    """

    def __init__(self, db_path: Path = balance_db.DEFAULT_DB_PATH, paid_epsilon: Decimal = DEFAULT_PAID_EPSILON):
        self.db_path = db_path
        self.paid_epsilon = Decimal(str(paid_epsilon))
        init_registry_db(db_path)
        balance_db.init_balance_db(db_path)

    # =========================================================================
    # Invoiced side
    # =========================================================================

    def upsert(
        self,
        company_id: int,
        period_label: str,
        invoiced: Union[LedgerEntry, Decimal],
    ) -> CompanyBalance:
        """Set what a company was invoiced for a period.

        A LedgerEntry contributes its net payable (7-day + 30-day minus
        commission). Payments already made are kept; outstanding and
        status are re-derived.

        Raises:
            UnknownCompanyError: If the company does not exist
        """
        if get_company(company_id, db_path=self.db_path) is None:
            raise UnknownCompanyError(company_id)

        if isinstance(invoiced, LedgerEntry):
            if invoiced.is_unmatched:
                raise ValueError("The Unmatched bucket has no balance")
            amount = invoiced.net_payable
        else:
            amount = Decimal(str(invoiced))

        balance = balance_db.get_balance(company_id, period_label, db_path=self.db_path)
        if balance is None:
            balance = CompanyBalance(company_id=company_id, period_label=period_label)
        balance.total_invoiced = amount
        balance.recompute(self.paid_epsilon)

        saved = balance_db.save_balance(balance, db_path=self.db_path)
        logger.info(
            f"Balance for company {company_id} / {period_label}: invoiced {amount}",
            extra_fields={"status": saved.status.value, "outstanding": str(saved.outstanding)},
        )
        return saved

    def sync_from_result(self, period_label: str, result: ReconciliationResult) -> List[CompanyBalance]:
        """Upsert the net payable of every resolved company in a result."""
        return [
            self.upsert(company_id, period_label, entry)
            for company_id, entry in sorted(result.ledger.entries.items())
        ]

    # =========================================================================
    # Paid side
    # =========================================================================

    def apply_payment(
        self,
        company_id: int,
        period_label: str,
        amount: Decimal,
        description: Optional[str] = None,
        paid_at: Optional[datetime] = None,
    ) -> Payment:
        """Record a payment and increase total_paid.

        Callers should cap the amount at the outstanding balance; an
        overpayment is still recorded but outstanding never goes below 0.

        Raises:
            BalanceNotFoundError: If there is no balance for company + period
            ValueError: If the amount is not positive
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Payment amount must be positive: {amount}")

        balance = self.get_balance(company_id, period_label)
        if balance.total_paid + amount - balance.total_invoiced > self.paid_epsilon:
            logger.warning(
                f"Payment of {amount} exceeds outstanding {balance.outstanding} "
                f"for company {company_id} / {period_label}",
                extra_fields={"total_invoiced": str(balance.total_invoiced)},
            )

        balance.total_paid += amount
        balance.recompute(self.paid_epsilon)

        payment = balance_db.record_payment(
            Payment(
                company_id=company_id,
                period_label=period_label,
                amount=amount,
                description=description,
                paid_at=paid_at or datetime.utcnow(),
            ),
            balance,
            db_path=self.db_path,
        )
        logger.info(
            f"Applied payment {payment.id} of {amount} to company {company_id} / {period_label}",
            extra_fields={"status": balance.status.value, "outstanding": str(balance.outstanding)},
        )
        return payment

    def _decrement(self, balance: CompanyBalance, amount: Decimal) -> CompanyBalance:
        if amount > balance.total_paid:
            logger.warning(
                f"Reversing {amount} exceeds total paid {balance.total_paid}; clamping at 0",
                extra_fields={"company_id": balance.company_id, "period_label": balance.period_label},
            )
            balance.total_paid = ZERO
        else:
            balance.total_paid -= amount
        return balance.recompute(self.paid_epsilon)

    def reverse_payment(self, company_id: int, period_label: str, amount: Decimal) -> CompanyBalance:
        """Decrease total_paid by an amount (never below zero).

        Raises:
            BalanceNotFoundError: If there is no balance for company + period
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Reversal amount must be positive: {amount}")

        balance = self._decrement(self.get_balance(company_id, period_label), amount)
        saved = balance_db.save_balance(balance, db_path=self.db_path)
        logger.info(
            f"Reversed {amount} for company {company_id} / {period_label}",
            extra_fields={"status": saved.status.value, "outstanding": str(saved.outstanding)},
        )
        return saved

    def delete_payment(self, payment_id: int) -> CompanyBalance:
        """Reverse a recorded payment. The payment row and its history are kept.

        Raises:
            PaymentNotFoundError: If the payment does not exist or is already reversed
        """
        payment = balance_db.get_payment(payment_id, db_path=self.db_path)
        if payment is None or payment.reversed:
            raise PaymentNotFoundError(
                f"No active payment with id {payment_id}",
                {"payment_id": payment_id},
            )

        balance = self._decrement(self.get_balance(payment.company_id, payment.period_label), payment.amount)
        balance_db.record_reversal(payment, balance, db_path=self.db_path)
        logger.info(
            f"Deleted payment {payment_id} ({payment.amount}) for company {payment.company_id}",
            extra_fields={"period_label": payment.period_label, "status": balance.status.value},
        )
        return self.get_balance(payment.company_id, payment.period_label)

    def rebuild_period(self, period_label: str) -> List[CompanyBalance]:
        """Recompute total_paid of every balance in a period from its active payments."""
        rebuilt = []
        for balance in balance_db.list_balances(period_label, db_path=self.db_path):
            payments = balance_db.list_payments(
                balance.company_id, period_label, include_reversed=False, db_path=self.db_path
            )
            balance.total_paid = sum((p.amount for p in payments), ZERO)
            balance.recompute(self.paid_epsilon)
            rebuilt.append(balance_db.save_balance(balance, db_path=self.db_path))
        logger.info(f"Rebuilt {len(rebuilt)} balances for {period_label}")
        return rebuilt

    # =========================================================================
    # Queries
    # =========================================================================

    def get_balance(self, company_id: int, period_label: str) -> CompanyBalance:
        balance = balance_db.get_balance(company_id, period_label, db_path=self.db_path)
        if balance is None:
            raise BalanceNotFoundError(company_id, period_label)
        return balance

    def list_balances(self, period_label: Optional[str] = None) -> List[CompanyBalance]:
        return balance_db.list_balances(period_label, db_path=self.db_path)

    def list_payments(self, company_id: int, period_label: str) -> List[Payment]:
        return balance_db.list_payments(company_id, period_label, db_path=self.db_path)

    def payment_history(self, payment_id: int) -> List[PaymentHistoryEntry]:
        return balance_db.list_payment_history(payment_id, db_path=self.db_path)
