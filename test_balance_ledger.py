"""
Company Balance Ledger Test Suite

1. Outstanding and status are derived from invoiced vs paid
2. Applying then deleting a payment restores the balance exactly
3. Over-payments and over-reversals clamp outstanding/paid at zero
4. Every payment create/reverse leaves a history row
5. Balances are synced from a reconciliation result's net payable
"""

from decimal import Decimal

import pytest

from balance_ledger.ledger import BalanceLedger
from balance_ledger.models import BalanceStatus, PaymentAction, compute_outstanding, derive_status
from core.errors import BalanceNotFoundError, PaymentNotFoundError, UnknownCompanyError
from models.trips import BillingCycle
from reconciliation.ledger import Ledger, LedgerEntry
from reconciliation.models import ReconciliationResult


PERIOD = "2025-W14"


@pytest.fixture
def balances(temp_db, registry):
    return BalanceLedger(temp_db, paid_epsilon=Decimal("1"))


def _snapshot(balance):
    return (balance.total_invoiced, balance.total_paid, balance.outstanding, balance.status)


class TestDerivedFields:
    """Pure outstanding/status rules."""

    @pytest.mark.parametrize("invoiced,paid,outstanding", [
        ("96", "0", "96"),
        ("96", "50", "46"),
        ("96", "96", "0"),
        ("96", "150", "0"),
        ("0", "0", "0"),
    ])
    def test_compute_outstanding(self, invoiced, paid, outstanding):
        assert compute_outstanding(Decimal(invoiced), Decimal(paid)) == Decimal(outstanding)

    def test_derive_status(self):
        assert derive_status(Decimal("96"), Decimal("96")) is BalanceStatus.PENDING
        assert derive_status(Decimal("96"), Decimal("46")) is BalanceStatus.PARTIAL
        assert derive_status(Decimal("96"), Decimal("0.50")) is BalanceStatus.PAID
        assert derive_status(Decimal("96"), Decimal("0.50"), epsilon=Decimal("0.01")) is BalanceStatus.PARTIAL


class TestBalanceLedger:
    """Persistent balances and payments."""

    def test_upsert_sets_invoiced(self, balances, registry):
        balance = balances.upsert(registry["daniel"].id, PERIOD, Decimal("96"))

        assert balance.id is not None
        assert _snapshot(balance) == (Decimal("96"), Decimal("0"), Decimal("96"), BalanceStatus.PENDING)

        again = balances.upsert(registry["daniel"].id, PERIOD, Decimal("120"))
        assert again.total_invoiced == Decimal("120")
        assert len(balances.list_balances(PERIOD)) == 1

    def test_upsert_from_ledger_entry_uses_net_payable(self, balances, registry):
        entry = LedgerEntry.for_company(registry["daniel"])
        entry.add_line("T1", BillingCycle.SEVEN_DAY, Decimal("100"))

        balance = balances.upsert(registry["daniel"].id, PERIOD, entry)
        assert balance.total_invoiced == Decimal("96.00")

    def test_upsert_rejects_unmatched_and_unknown(self, balances, registry):
        with pytest.raises(ValueError):
            balances.upsert(registry["daniel"].id, PERIOD, LedgerEntry.unmatched())
        with pytest.raises(UnknownCompanyError):
            balances.upsert(999, PERIOD, Decimal("10"))

    def test_payment_status_progression(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))

        balances.apply_payment(company_id, PERIOD, Decimal("50"), description="first transfer")
        partial = balances.get_balance(company_id, PERIOD)
        assert partial.status is BalanceStatus.PARTIAL
        assert partial.outstanding == Decimal("46")

        balances.apply_payment(company_id, PERIOD, Decimal("45.50"))
        paid = balances.get_balance(company_id, PERIOD)
        assert paid.outstanding == Decimal("0.50")
        assert paid.status is BalanceStatus.PAID

    def test_apply_then_delete_restores_exactly(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))
        balances.apply_payment(company_id, PERIOD, Decimal("33.33"))
        before = _snapshot(balances.get_balance(company_id, PERIOD))

        payment = balances.apply_payment(company_id, PERIOD, Decimal("12.34"))
        restored = balances.delete_payment(payment.id)

        assert _snapshot(restored) == before

    def test_delete_keeps_payment_and_history(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))
        payment = balances.apply_payment(company_id, PERIOD, Decimal("20"))

        balances.delete_payment(payment.id)

        payments = balances.list_payments(company_id, PERIOD)
        assert len(payments) == 1
        assert payments[0].reversed is True
        assert payments[0].reversed_at is not None

        history = balances.payment_history(payment.id)
        assert [h.action for h in history] == [PaymentAction.CREATED, PaymentAction.REVERSED]
        assert history[0].snapshot["description"] is None

        with pytest.raises(PaymentNotFoundError):
            balances.delete_payment(payment.id)

    def test_overpayment_is_recorded_and_clamped(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))

        balances.apply_payment(company_id, PERIOD, Decimal("150"))
        balance = balances.get_balance(company_id, PERIOD)

        assert balance.total_paid == Decimal("150")
        assert balance.outstanding == Decimal("0")
        assert balance.status is BalanceStatus.PAID

    def test_reverse_clamps_at_zero(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))
        balances.apply_payment(company_id, PERIOD, Decimal("30"))

        balance = balances.reverse_payment(company_id, PERIOD, Decimal("200"))

        assert balance.total_paid == Decimal("0")
        assert balance.outstanding == Decimal("96")
        assert balance.status is BalanceStatus.PENDING

    def test_rebuild_period_from_active_payments(self, balances, registry):
        company_id = registry["daniel"].id
        balances.upsert(company_id, PERIOD, Decimal("96"))
        balances.apply_payment(company_id, PERIOD, Decimal("30"))
        removed = balances.apply_payment(company_id, PERIOD, Decimal("40"))
        balances.delete_payment(removed.id)
        balances.reverse_payment(company_id, PERIOD, Decimal("30"))

        rebuilt = balances.rebuild_period(PERIOD)

        assert len(rebuilt) == 1
        assert rebuilt[0].total_paid == Decimal("30")
        assert rebuilt[0].status is BalanceStatus.PARTIAL

    def test_errors(self, balances, registry):
        with pytest.raises(BalanceNotFoundError):
            balances.apply_payment(registry["stef"].id, PERIOD, Decimal("10"))
        with pytest.raises(BalanceNotFoundError):
            balances.get_balance(registry["stef"].id, PERIOD)
        with pytest.raises(PaymentNotFoundError):
            balances.delete_payment(12345)

        balances.upsert(registry["stef"].id, PERIOD, Decimal("10"))
        with pytest.raises(ValueError):
            balances.apply_payment(registry["stef"].id, PERIOD, Decimal("0"))
        with pytest.raises(ValueError):
            balances.reverse_payment(registry["stef"].id, PERIOD, Decimal("-1"))


class TestSyncFromResult:
    """Net payable of finalized results becomes the invoiced side."""

    def _result(self, registry, daniel_amount: str) -> ReconciliationResult:
        ledger = Ledger()
        ledger.post("T1", BillingCycle.SEVEN_DAY, Decimal(daniel_amount), registry["daniel"])
        ledger.post("T2", BillingCycle.THIRTY_DAY, Decimal("200"), registry["stef"])
        ledger.post("T3", BillingCycle.SEVEN_DAY, Decimal("999"))
        return ReconciliationResult(batch_id="B-test", week_label=PERIOD, ledger=ledger)

    def test_sync_skips_unmatched(self, balances, registry):
        synced = balances.sync_from_result(PERIOD, self._result(registry, "100"))

        by_company = {b.company_id: b for b in synced}
        assert set(by_company) == {registry["daniel"].id, registry["stef"].id}
        assert by_company[registry["daniel"].id].total_invoiced == Decimal("96.00")
        assert by_company[registry["stef"].id].total_invoiced == Decimal("196.00")

    def test_resync_keeps_payments(self, balances, registry):
        balances.sync_from_result(PERIOD, self._result(registry, "100"))
        balances.apply_payment(registry["daniel"].id, PERIOD, Decimal("50"))

        balances.sync_from_result(PERIOD, self._result(registry, "200"))
        balance = balances.get_balance(registry["daniel"].id, PERIOD)

        assert balance.total_invoiced == Decimal("192.00")
        assert balance.total_paid == Decimal("50")
        assert balance.outstanding == Decimal("142.00")
        assert balance.status is BalanceStatus.PARTIAL


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
