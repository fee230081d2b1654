"""Historical Archive - permanent record of every ingested trip.

Usage:
    from historical_archive import HistoricalArchive

    archive = HistoricalArchive(db_path="reconciliation.db")
    archive.record_batch(trips, week_label="2025-W14")
    result = await archive.search(["T-100", "T-200"])
"""

from historical_archive.models import (
    ArchiveStats,
    HistoricalMatch,
    HistoricalSearchResult,
    HistoricalTripRecord,
)
from historical_archive.archive import HistoricalArchive
from historical_archive.db import init_archive_db, clear_archive

__all__ = [
    # Models
    "ArchiveStats",
    "HistoricalMatch",
    "HistoricalSearchResult",
    "HistoricalTripRecord",
    # Archive
    "HistoricalArchive",
    # Database
    "init_archive_db",
    "clear_archive",
]
