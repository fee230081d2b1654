"""Carrier Registry Database Operations.

This module handles the registry tables identity resolution reads:
- companies: carriers and their commission rates
- drivers: driver name → company, with derived name variants
- vehicles: registration → company, with an active flag

Drivers are looked up by ``name_normalized`` (trimmed, collapsed,
lowercased) so a confirmation never creates a second row for a name
that only differs in case or spacing.
"""

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from core.errors import UnknownCompanyError
from core.observability.logging import get_logger
from identity_resolver.models import UNMATCHED_LABEL, Company, Driver, Vehicle
from identity_resolver.normalize import (
    display_driver_name,
    generate_name_variants,
    normalize_driver_name,
    normalize_registration,
)


logger = get_logger(__name__)

DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "reconciliation.db"
DEFAULT_COMMISSION_RATE = Decimal("0.04")


def init_registry_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize registry tables.

    Creates:
    - companies: one row per carrier, unique name
    - drivers: unique on name_normalized
    - vehicles: unique on normalized registration

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS companies (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                commission_rate TEXT NOT NULL,
                is_main_company INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS drivers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                name_normalized TEXT NOT NULL UNIQUE,
                company_id INTEGER REFERENCES companies(id),
                name_variants TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS vehicles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vehicle_id TEXT NOT NULL UNIQUE,
                company_id INTEGER NOT NULL REFERENCES companies(id),
                vehicle_name TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_drivers_company
            ON drivers(company_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_vehicles_company
            ON vehicles(company_id, is_active)
        """)

        conn.commit()
        logger.debug("Registry tables initialized", extra_fields={"db_path": str(db_path)})

    finally:
        conn.close()


# =============================================================================
# Companies
# =============================================================================

def add_company(
    name: str,
    commission_rate: Optional[Decimal] = None,
    is_main_company: bool = False,
    db_path: Path = DEFAULT_DB_PATH,
) -> Company:
    """Add a carrier company.

    Args:
        name: Unique company name
        commission_rate: Fraction retained as commission (default 4%)
        is_main_company: Whether this is the operator's own company
        db_path: Path to database

    Returns:
        Company with id populated

    Raises:
        ValueError: If the rate is negative or the name is the Unmatched label
        sqlite3.IntegrityError: If the name already exists
    """
    rate = DEFAULT_COMMISSION_RATE if commission_rate is None else Decimal(str(commission_rate))
    if rate < 0:
        raise ValueError(f"Commission rate cannot be negative: {rate}")
    if name.strip().lower() == UNMATCHED_LABEL.lower():
        raise ValueError(f"'{UNMATCHED_LABEL}' is reserved for the unmatched bucket")

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO companies (name, commission_rate, is_main_company, created_at)
            VALUES (?, ?, ?, ?)
        """, (name.strip(), str(rate), int(is_main_company), datetime.utcnow().isoformat()))
        conn.commit()

        return Company(
            id=cursor.lastrowid,
            name=name.strip(),
            commission_rate=rate,
            is_main_company=is_main_company,
        )
    finally:
        conn.close()


def get_company(company_id: int, db_path: Path = DEFAULT_DB_PATH) -> Optional[Company]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM companies WHERE id = ?", (company_id,))
        row = cursor.fetchone()
        return _row_to_company(row) if row else None
    finally:
        conn.close()


def get_company_by_name(name: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[Company]:
    """Case-insensitive lookup by company name."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM companies WHERE lower(name) = lower(?)",
            (name.strip(),),
        )
        row = cursor.fetchone()
        return _row_to_company(row) if row else None
    finally:
        conn.close()


def list_companies(db_path: Path = DEFAULT_DB_PATH) -> List[Company]:
    """All companies ordered by id."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM companies ORDER BY id")
        return [_row_to_company(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def update_commission_rate(
    company_id: int,
    commission_rate: Decimal,
    db_path: Path = DEFAULT_DB_PATH,
) -> Company:
    """Change a company's commission rate.

    Raises:
        ValueError: If the rate is negative
        UnknownCompanyError: If the company does not exist
    """
    rate = Decimal(str(commission_rate))
    if rate < 0:
        raise ValueError(f"Commission rate cannot be negative: {rate}")

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE companies SET commission_rate = ? WHERE id = ?",
            (str(rate), company_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            raise UnknownCompanyError(company_id)
    finally:
        conn.close()

    return get_company(company_id, db_path=db_path)


# =============================================================================
# Drivers
# =============================================================================

def add_driver(
    name: str,
    company_id: Optional[int],
    db_path: Path = DEFAULT_DB_PATH,
) -> Driver:
    """Add a driver. Variants are derived from the name.

    Raises:
        sqlite3.IntegrityError: If a driver with the same normalized name exists
    """
    display = display_driver_name(name)
    now = datetime.utcnow().isoformat()
    variants = generate_name_variants(display)

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO drivers
            (name, name_normalized, company_id, name_variants, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (display, normalize_driver_name(display), company_id, json.dumps(variants), now, now))
        conn.commit()

        return Driver(
            id=cursor.lastrowid,
            name=display,
            company_id=company_id,
            name_variants=variants,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )
    finally:
        conn.close()


def find_driver_by_name(name: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[Driver]:
    """Exact lookup on the normalized name (case and spacing insensitive)."""
    normalized = normalize_driver_name(name)
    if not normalized:
        return None

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM drivers WHERE name_normalized = ?", (normalized,))
        row = cursor.fetchone()
        return _row_to_driver(row) if row else None
    finally:
        conn.close()


def upsert_driver_mapping(
    name: str,
    company_id: int,
    db_path: Path = DEFAULT_DB_PATH,
) -> Tuple[Driver, bool]:
    """Map a driver name to a company, creating the driver if it is new.

    The existing row is matched by exact normalized name first so a
    confirmation never duplicates a driver.

    Returns:
        Tuple of (Driver, created)

    Raises:
        UnknownCompanyError: If the company does not exist
    """
    if get_company(company_id, db_path=db_path) is None:
        raise UnknownCompanyError(company_id)

    existing = find_driver_by_name(name, db_path=db_path)
    if existing is None:
        driver = add_driver(name, company_id, db_path=db_path)
        logger.info(
            f"Created driver mapping '{driver.name}' → company {company_id}",
            extra_fields={"driver_id": driver.id},
        )
        return driver, True

    now = datetime.utcnow().isoformat()
    variants = generate_name_variants(existing.name)
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE drivers
            SET company_id = ?, name_variants = ?, updated_at = ?
            WHERE id = ?
        """, (company_id, json.dumps(variants), now, existing.id))
        conn.commit()
    finally:
        conn.close()

    logger.info(
        f"Updated driver mapping '{existing.name}': company {existing.company_id} → {company_id}",
        extra_fields={"driver_id": existing.id},
    )
    existing.company_id = company_id
    existing.name_variants = variants
    existing.updated_at = datetime.fromisoformat(now)
    return existing, False


def list_drivers(db_path: Path = DEFAULT_DB_PATH) -> List[Driver]:
    """All drivers ordered by id."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM drivers ORDER BY id")
        return [_row_to_driver(row) for row in cursor.fetchall()]
    finally:
        conn.close()


# =============================================================================
# Vehicles
# =============================================================================

def add_vehicle(
    vehicle_id: str,
    company_id: int,
    vehicle_name: Optional[str] = None,
    is_active: bool = True,
    db_path: Path = DEFAULT_DB_PATH,
) -> Vehicle:
    """Register a vehicle, or move an existing registration to a new owner."""
    registration = normalize_registration(vehicle_id)
    if not registration:
        raise ValueError("Vehicle registration cannot be empty")
    now = datetime.utcnow().isoformat()

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO vehicles (vehicle_id, company_id, vehicle_name, is_active, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(vehicle_id) DO UPDATE SET
                company_id = excluded.company_id,
                vehicle_name = excluded.vehicle_name,
                is_active = excluded.is_active
        """, (registration, company_id, vehicle_name, int(is_active), now))
        conn.commit()
    finally:
        conn.close()

    return Vehicle(
        vehicle_id=registration,
        company_id=company_id,
        vehicle_name=vehicle_name,
        is_active=is_active,
        created_at=datetime.fromisoformat(now),
    )


def set_vehicle_active(
    vehicle_id: str,
    is_active: bool,
    db_path: Path = DEFAULT_DB_PATH,
) -> bool:
    """Activate or deactivate a vehicle. Returns False if unknown."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE vehicles SET is_active = ? WHERE vehicle_id = ?",
            (int(is_active), normalize_registration(vehicle_id)),
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def list_vehicles(active_only: bool = False, db_path: Path = DEFAULT_DB_PATH) -> List[Vehicle]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        if active_only:
            cursor.execute("SELECT * FROM vehicles WHERE is_active = 1 ORDER BY id")
        else:
            cursor.execute("SELECT * FROM vehicles ORDER BY id")
        return [_row_to_vehicle(row) for row in cursor.fetchall()]
    finally:
        conn.close()


# =============================================================================
# Row converters
# =============================================================================

def _row_to_company(row: sqlite3.Row) -> Company:
    return Company(
        id=row["id"],
        name=row["name"],
        commission_rate=Decimal(row["commission_rate"]),
        is_main_company=bool(row["is_main_company"]),
    )


def _row_to_driver(row: sqlite3.Row) -> Driver:
    return Driver(
        id=row["id"],
        name=row["name"],
        company_id=row["company_id"],
        name_variants=json.loads(row["name_variants"] or "[]"),
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
    )


def _row_to_vehicle(row: sqlite3.Row) -> Vehicle:
    return Vehicle(
        id=row["id"],
        vehicle_id=row["vehicle_id"],
        company_id=row["company_id"],
        vehicle_name=row["vehicle_name"],
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )


# =============================================================================
# Sample Data Seeding
# =============================================================================

def seed_sample_registry(db_path: Path = DEFAULT_DB_PATH) -> Dict[str, int]:
    """Seed a small registry for local runs.

    Creates two carriers, a fallback company, a few drivers and one
    vehicle. Rows that already exist are left alone.

    Returns:
        Dict with counts of created rows
    """
    init_registry_db(db_path)

    created = {"companies": 0, "drivers": 0, "vehicles": 0}
    companies = [
        ("Fast Express", Decimal("0.04"), True),
        ("Daniel Ontheroad S.R.L.", Decimal("0.04"), False),
        ("Stef Trans S.R.L.", Decimal("0.02"), False),
    ]
    ids: Dict[str, int] = {}
    for name, rate, is_main in companies:
        existing = get_company_by_name(name, db_path=db_path)
        if existing:
            ids[name] = existing.id
            continue
        ids[name] = add_company(name, rate, is_main, db_path=db_path).id
        created["companies"] += 1

    drivers = [
        ("Ionut Daniel Pop", "Daniel Ontheroad S.R.L."),
        ("Stefan Munteanu", "Stef Trans S.R.L."),
        ("Andrei Marin", "Fast Express"),
    ]
    for name, company_name in drivers:
        if find_driver_by_name(name, db_path=db_path) is None:
            add_driver(name, ids[company_name], db_path=db_path)
            created["drivers"] += 1

    vehicles = [("TR94FST", "Stef Trans S.R.L.")]
    known = {v.vehicle_id for v in list_vehicles(db_path=db_path)}
    for registration, company_name in vehicles:
        if registration not in known:
            add_vehicle(registration, ids[company_name], db_path=db_path)
            created["vehicles"] += 1

    logger.info("Seeded sample registry", extra_fields=created)
    return created


def clear_registry(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Delete every registry row (for testing)."""
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        for table in ("vehicles", "drivers", "companies"):
            cursor.execute(f"DELETE FROM {table}")
        conn.commit()
    finally:
        conn.close()
