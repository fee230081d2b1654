"""Historical Archive Database Operations.

The historical_trips table is append-only: trip_id is UNIQUE and rows
are inserted with ``INSERT OR IGNORE`` so re-ingesting a week never
overwrites the record of when and by whom a trip was first seen.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List

from historical_archive.models import ArchiveStats, HistoricalTripRecord


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "reconciliation.db"

# SQLite's default host-parameter limit is 999 and each id is bound twice
_ID_CHUNK = 450


def init_archive_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Initialize the historical_trips table and its indexes.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS historical_trips (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                trip_id TEXT NOT NULL UNIQUE,
                secondary_id TEXT,
                driver_name TEXT,
                vehicle_id TEXT,
                week_label TEXT NOT NULL,
                trip_date TEXT,
                route TEXT,
                raw_trip_data TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_historical_trips_secondary
            ON historical_trips(secondary_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_historical_trips_week
            ON historical_trips(week_label)
        """)

        conn.commit()
    finally:
        conn.close()


def insert_trips(records: Iterable[HistoricalTripRecord], db_path: Path = DEFAULT_DB_PATH) -> int:
    """Insert trips that are not archived yet.

    Returns:
        Number of newly archived trips (already-present ids are skipped)
    """
    now = datetime.utcnow().isoformat()
    rows = [
        (
            r.trip_id,
            r.secondary_id,
            r.driver_name,
            r.vehicle_id,
            r.week_label,
            r.trip_date,
            r.route,
            json.dumps(r.raw_trip_data, default=str),
            now,
        )
        for r in records
    ]
    if not rows:
        return 0

    conn = sqlite3.connect(db_path)
    try:
        before = conn.total_changes
        conn.executemany("""
            INSERT OR IGNORE INTO historical_trips
            (trip_id, secondary_id, driver_name, vehicle_id, week_label,
             trip_date, route, raw_trip_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, rows)
        conn.commit()
        return conn.total_changes - before
    finally:
        conn.close()


def fetch_by_ids(ids: List[str], db_path: Path = DEFAULT_DB_PATH) -> Dict[str, HistoricalTripRecord]:
    """Fetch archived trips whose trip_id or secondary_id is in ``ids``.

    Returns:
        Requested id → record (ids with no archived trip are absent)
    """
    wanted = list(dict.fromkeys(i for i in ids if i))
    found: Dict[str, HistoricalTripRecord] = {}
    if not wanted:
        return found

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        for start in range(0, len(wanted), _ID_CHUNK):
            chunk = wanted[start:start + _ID_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            cursor.execute(f"""
                SELECT * FROM historical_trips
                WHERE trip_id IN ({placeholders}) OR secondary_id IN ({placeholders})
                ORDER BY id
            """, chunk + chunk)
            chunk_set = set(chunk)
            for row in cursor.fetchall():
                record = _row_to_record(row)
                for key in (record.trip_id, record.secondary_id):
                    if key in chunk_set:
                        found.setdefault(key, record)
    finally:
        conn.close()

    return found


def fetch_by_week(week_label: str, db_path: Path = DEFAULT_DB_PATH) -> List[HistoricalTripRecord]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM historical_trips WHERE week_label = ? ORDER BY id",
            (week_label,),
        )
        return [_row_to_record(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def archive_stats(db_path: Path = DEFAULT_DB_PATH) -> ArchiveStats:
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT COUNT(*), COUNT(DISTINCT trip_id), COUNT(DISTINCT week_label)
            FROM historical_trips
        """)
        total, unique, weeks = cursor.fetchone()
        return ArchiveStats(total_trips=total, unique_trip_ids=unique, weeks=weeks)
    finally:
        conn.close()


def clear_archive(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Delete every archived trip (for testing)."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("DELETE FROM historical_trips")
        conn.commit()
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        pass
    finally:
        conn.close()


def _row_to_record(row: sqlite3.Row) -> HistoricalTripRecord:
    return HistoricalTripRecord(
        id=row["id"],
        trip_id=row["trip_id"],
        secondary_id=row["secondary_id"],
        driver_name=row["driver_name"],
        vehicle_id=row["vehicle_id"],
        week_label=row["week_label"],
        trip_date=row["trip_date"],
        route=row["route"],
        raw_trip_data=json.loads(row["raw_trip_data"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )
