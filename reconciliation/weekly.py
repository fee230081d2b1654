"""Weekly processing records.

When a batch is finalized its result is written as JSON artifacts and a
``weekly_processing`` row remembers the counts and where the artifacts
are. Re-finalizing a week replaces its row.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from models.refs import ArtifactKind, WeeklyArtifacts
from models.trips import ReconciliationBatch
from reconciliation.models import ReconciliationResult
from storage.artifacts import get_json, put_json, weekly_artifact_path


DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "reconciliation.db"


class WeeklyProcessing(BaseModel):
    """One finalized processing week."""
    id: Optional[int] = None
    week_label: str
    batch_id: str
    tenant_id: str = "default"
    status: str
    result_version: int = 1
    trips_count: int = 0
    lines_processed: int = 0
    lines_skipped: int = 0
    unmatched_trips: int = 0
    total_invoiced: str = "0"
    artifacts: Optional[WeeklyArtifacts] = None
    processed_at: datetime = Field(default_factory=datetime.utcnow)


def init_weekly_db(db_path: Path = DEFAULT_DB_PATH) -> None:
    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS weekly_processing (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                week_label TEXT NOT NULL UNIQUE,
                batch_id TEXT NOT NULL,
                tenant_id TEXT NOT NULL DEFAULT 'default',
                status TEXT NOT NULL,
                result_version INTEGER NOT NULL DEFAULT 1,
                trips_count INTEGER NOT NULL DEFAULT 0,
                lines_processed INTEGER NOT NULL DEFAULT 0,
                lines_skipped INTEGER NOT NULL DEFAULT 0,
                unmatched_trips INTEGER NOT NULL DEFAULT 0,
                total_invoiced TEXT NOT NULL DEFAULT '0',
                artifacts TEXT,
                processed_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def write_weekly_artifacts(
    batch: ReconciliationBatch,
    result: ReconciliationResult,
    artifacts_dir: Path,
) -> WeeklyArtifacts:
    """Store the result, the accounting report and the parsed feeds of a week."""
    week = result.week_label
    result_ref = put_json(result, weekly_artifact_path(artifacts_dir, week, "result"), kind=ArtifactKind.RESULT)
    report_ref = put_json(result.to_report(), weekly_artifact_path(artifacts_dir, week, "report"), kind=ArtifactKind.REPORT)
    feeds_ref = put_json(batch, weekly_artifact_path(artifacts_dir, week, "feeds"), kind=ArtifactKind.RAW_FEED)
    return WeeklyArtifacts(
        week_label=week,
        result_ref=result_ref,
        report_ref=report_ref,
        feeds_ref=feeds_ref,
    )


def save_weekly_processing(
    result: ReconciliationResult,
    artifacts: Optional[WeeklyArtifacts],
    trips_count: int,
    db_path: Path = DEFAULT_DB_PATH,
) -> WeeklyProcessing:
    """Insert or replace the weekly_processing row of a week."""
    init_weekly_db(db_path)
    record = WeeklyProcessing(
        week_label=result.week_label,
        batch_id=result.batch_id,
        tenant_id=result.tenant_id,
        status=result.status.value,
        result_version=result.version,
        trips_count=trips_count,
        lines_processed=result.stats.total_processed,
        lines_skipped=result.stats.total_skipped,
        unmatched_trips=len(result.ledger.unmatched.trips),
        total_invoiced=str(result.ledger.total_invoiced()),
        artifacts=artifacts,
    )

    conn = sqlite3.connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO weekly_processing
            (week_label, batch_id, tenant_id, status, result_version, trips_count,
             lines_processed, lines_skipped, unmatched_trips, total_invoiced,
             artifacts, processed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(week_label) DO UPDATE SET
                batch_id = excluded.batch_id,
                tenant_id = excluded.tenant_id,
                status = excluded.status,
                result_version = excluded.result_version,
                trips_count = excluded.trips_count,
                lines_processed = excluded.lines_processed,
                lines_skipped = excluded.lines_skipped,
                unmatched_trips = excluded.unmatched_trips,
                total_invoiced = excluded.total_invoiced,
                artifacts = excluded.artifacts,
                processed_at = excluded.processed_at
        """, (
            record.week_label,
            record.batch_id,
            record.tenant_id,
            record.status,
            record.result_version,
            record.trips_count,
            record.lines_processed,
            record.lines_skipped,
            record.unmatched_trips,
            record.total_invoiced,
            artifacts.model_dump_json() if artifacts else None,
            record.processed_at.isoformat(),
        ))
        conn.commit()
    finally:
        conn.close()

    return get_weekly_processing(record.week_label, db_path=db_path)


def get_weekly_processing(week_label: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[WeeklyProcessing]:
    init_weekly_db(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM weekly_processing WHERE week_label = ?", (week_label,))
        row = cursor.fetchone()
        return _row_to_weekly(row) if row else None
    finally:
        conn.close()


def list_weekly_processing(db_path: Path = DEFAULT_DB_PATH) -> List[WeeklyProcessing]:
    """Every finalized week, most recent first."""
    init_weekly_db(db_path)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM weekly_processing ORDER BY processed_at DESC, id DESC")
        return [_row_to_weekly(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def load_weekly_result(week_label: str, db_path: Path = DEFAULT_DB_PATH) -> Optional[ReconciliationResult]:
    """Reload the stored result of a finalized week (hash-verified)."""
    record = get_weekly_processing(week_label, db_path=db_path)
    if record is None or record.artifacts is None:
        return None
    return ReconciliationResult.model_validate(get_json(record.artifacts.result_ref))


def _row_to_weekly(row: sqlite3.Row) -> WeeklyProcessing:
    artifacts = row["artifacts"]
    return WeeklyProcessing(
        id=row["id"],
        week_label=row["week_label"],
        batch_id=row["batch_id"],
        tenant_id=row["tenant_id"],
        status=row["status"],
        result_version=row["result_version"],
        trips_count=row["trips_count"],
        lines_processed=row["lines_processed"],
        lines_skipped=row["lines_skipped"],
        unmatched_trips=row["unmatched_trips"],
        total_invoiced=row["total_invoiced"],
        artifacts=WeeklyArtifacts.model_validate(json.loads(artifacts)) if artifacts else None,
        processed_at=datetime.fromisoformat(row["processed_at"]),
    )
