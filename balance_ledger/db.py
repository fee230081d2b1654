"""Company Balance Database Operations.

Tables:
- company_balances: one row per (company_id, period_label)
- payments: append-only; deleting a payment marks it reversed
- payment_history: created/reversed audit trail with a JSON snapshot

Amounts are stored as TEXT so Decimal values round-trip exactly.
"""

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from balance_ledger.models import (
    BalanceStatus,
    CompanyBalance,
    Payment,
    PaymentAction,
    PaymentHistoryEntry,
)


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "reconciliation.db"


def init_balance_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize the balance tables.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS company_balances (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                company_id INTEGER NOT NULL,
                period_label TEXT NOT NULL,
                total_invoiced TEXT NOT NULL DEFAULT '0',
                total_paid TEXT NOT NULL DEFAULT '0',
                outstanding TEXT NOT NULL DEFAULT '0',
                status TEXT NOT NULL DEFAULT 'pending',
                updated_at TEXT NOT NULL,
                UNIQUE (company_id, period_label)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                company_id INTEGER NOT NULL,
                period_label TEXT NOT NULL,
                amount TEXT NOT NULL,
                description TEXT,
                paid_at TEXT NOT NULL,
                reversed INTEGER NOT NULL DEFAULT 0,
                reversed_at TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS payment_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                payment_id INTEGER NOT NULL,
                action TEXT NOT NULL,
                snapshot TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_payments_company_period
            ON payments(company_id, period_label)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_company_balances_period
            ON company_balances(period_label)
        """)

        conn.commit()
    finally:
        conn.close()


# =============================================================================
# Balances
# =============================================================================

def _write_balance(cursor: sqlite3.Cursor, balance: CompanyBalance) -> None:
    cursor.execute("""
        INSERT INTO company_balances
        (company_id, period_label, total_invoiced, total_paid, outstanding, status, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(company_id, period_label) DO UPDATE SET
            total_invoiced = excluded.total_invoiced,
            total_paid = excluded.total_paid,
            outstanding = excluded.outstanding,
            status = excluded.status,
            updated_at = excluded.updated_at
    """, (
        balance.company_id,
        balance.period_label,
        str(balance.total_invoiced),
        str(balance.total_paid),
        str(balance.outstanding),
        balance.status.value,
        balance.updated_at.isoformat(),
    ))


def save_balance(balance: CompanyBalance, db_path: Path = DEFAULT_DB_PATH) -> CompanyBalance:
    """Insert or update a balance row."""
    conn = sqlite3.connect(db_path)
    try:
        _write_balance(conn.cursor(), balance)
        conn.commit()
    finally:
        conn.close()
    return get_balance(balance.company_id, balance.period_label, db_path=db_path)


def get_balance(company_id: int, period_label: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[CompanyBalance]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM company_balances WHERE company_id = ? AND period_label = ?",
            (company_id, period_label),
        )
        row = cursor.fetchone()
        return _row_to_balance(row) if row else None
    finally:
        conn.close()


def list_balances(period_label: Optional[str] = None, db_path: Path = DEFAULT_DB_PATH) -> List[CompanyBalance]:
    """Balances ordered by period then company; optionally one period only."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        if period_label is None:
            cursor.execute("SELECT * FROM company_balances ORDER BY period_label, company_id")
        else:
            cursor.execute(
                "SELECT * FROM company_balances WHERE period_label = ? ORDER BY company_id",
                (period_label,),
            )
        return [_row_to_balance(row) for row in cursor.fetchall()]
    finally:
        conn.close()


# =============================================================================
# Payments
# =============================================================================

def _write_history(cursor: sqlite3.Cursor, payment: Payment, action: PaymentAction) -> None:
    cursor.execute("""
        INSERT INTO payment_history (payment_id, action, snapshot, created_at)
        VALUES (?, ?, ?, ?)
    """, (
        payment.id,
        action.value,
        payment.model_dump_json(),
        datetime.utcnow().isoformat(),
    ))


def record_payment(payment: Payment, balance: CompanyBalance, db_path: Path = DEFAULT_DB_PATH) -> Payment:
    """Insert a payment, its history row and the updated balance in one transaction.

    Returns:
        Payment with id populated
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO payments
            (company_id, period_label, amount, description, paid_at, reversed, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?)
        """, (
            payment.company_id,
            payment.period_label,
            str(payment.amount),
            payment.description,
            payment.paid_at.isoformat(),
            payment.created_at.isoformat(),
        ))
        payment = payment.model_copy(update={"id": cursor.lastrowid})
        _write_history(cursor, payment, PaymentAction.CREATED)
        _write_balance(cursor, balance)
        conn.commit()
        return payment
    finally:
        conn.close()


def record_reversal(payment: Payment, balance: CompanyBalance, db_path: Path = DEFAULT_DB_PATH) -> Payment:
    """Mark a payment reversed, write history and the updated balance atomically."""
    reversed_at = datetime.utcnow()
    payment = payment.model_copy(update={"reversed": True, "reversed_at": reversed_at})

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE payments SET reversed = 1, reversed_at = ? WHERE id = ?",
            (reversed_at.isoformat(), payment.id),
        )
        _write_history(cursor, payment, PaymentAction.REVERSED)
        _write_balance(cursor, balance)
        conn.commit()
        return payment
    finally:
        conn.close()


def get_payment(payment_id: int, db_path: Path = DEFAULT_DB_PATH) -> Optional[Payment]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM payments WHERE id = ?", (payment_id,))
        row = cursor.fetchone()
        return _row_to_payment(row) if row else None
    finally:
        conn.close()


def list_payments(
    company_id: int,
    period_label: str,
    include_reversed: bool = True,
    db_path: Path = DEFAULT_DB_PATH,
) -> List[Payment]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        query = "SELECT * FROM payments WHERE company_id = ? AND period_label = ?"
        if not include_reversed:
            query += " AND reversed = 0"
        cursor.execute(query + " ORDER BY id", (company_id, period_label))
        return [_row_to_payment(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def list_payment_history(payment_id: int, db_path: Path = DEFAULT_DB_PATH) -> List[PaymentHistoryEntry]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM payment_history WHERE payment_id = ? ORDER BY id", (payment_id,))
        return [_row_to_history(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def clear_balances(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Delete all balances and payments (for testing)."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM payment_history")
        cursor.execute("DELETE FROM payments")
        cursor.execute("DELETE FROM company_balances")
        conn.commit()
    except sqlite3.OperationalError:
        # Tables don't exist yet
        pass
    finally:
        conn.close()


# =============================================================================
# Row converters
# =============================================================================

def _row_to_balance(row: sqlite3.Row) -> CompanyBalance:
    return CompanyBalance(
        id=row["id"],
        company_id=row["company_id"],
        period_label=row["period_label"],
        total_invoiced=Decimal(row["total_invoiced"]),
        total_paid=Decimal(row["total_paid"]),
        outstanding=Decimal(row["outstanding"]),
        status=BalanceStatus(row["status"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_payment(row: sqlite3.Row) -> Payment:
    return Payment(
        id=row["id"],
        company_id=row["company_id"],
        period_label=row["period_label"],
        amount=Decimal(row["amount"]),
        description=row["description"],
        paid_at=datetime.fromisoformat(row["paid_at"]),
        reversed=bool(row["reversed"]),
        reversed_at=datetime.fromisoformat(row["reversed_at"]) if row["reversed_at"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_history(row: sqlite3.Row) -> PaymentHistoryEntry:
    return PaymentHistoryEntry(
        id=row["id"],
        payment_id=row["payment_id"],
        action=PaymentAction(row["action"]),
        snapshot=json.loads(row["snapshot"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
