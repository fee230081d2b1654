"""Historical Trip Archive.

Every trip ever ingested is archived with the week it was first seen
in. The archive backs invoice lines whose trip id is missing from the
current week's manifest (late invoices for older trips).

Lookups go through one batched, awaited call per run. A slow or failing
archive must never abort a reconciliation, so callers wrap
``find_by_ids`` and treat a failure as "nothing found".
"""

import asyncio
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from core.observability.logging import get_logger
from historical_archive.db import (
    DEFAULT_DB_PATH,
    archive_stats,
    fetch_by_ids,
    fetch_by_week,
    init_archive_db,
    insert_trips,
)
from historical_archive.models import (
    ArchiveStats,
    HistoricalMatch,
    HistoricalSearchResult,
    HistoricalTripRecord,
)
from models.trips import TripRecord


logger = get_logger(__name__)


class HistoricalArchive:
    """Append-only trip archive backed by SQLite.

    Example:
        archive = HistoricalArchive(db_path)
        archive.record_batch(batch.trips, week_label="2025-W14")

        found = await archive.find_by_ids(["T-100", "T-101"])
        for trip_id, record in found.items():
            print(trip_id, record.driver_name, record.week_label)
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, lookup_timeout: Optional[float] = 30.0):
        """Initialize the archive.

        Args:
            db_path: Path to SQLite database
            lookup_timeout: Seconds before a batched lookup is abandoned
                (None waits indefinitely)
        """
        self.db_path = db_path
        self.lookup_timeout = lookup_timeout
        init_archive_db(db_path)

    @staticmethod
    def _to_record(trip: TripRecord, week_label: str) -> HistoricalTripRecord:
        return HistoricalTripRecord(
            trip_id=trip.trip_id,
            secondary_id=trip.secondary_id,
            driver_name=trip.driver_name_raw,
            vehicle_id=trip.vehicle_id,
            week_label=week_label,
            trip_date=trip.trip_date,
            route=trip.route,
            raw_trip_data=trip.raw,
        )

    def record(self, trip: TripRecord, week_label: str) -> bool:
        """Archive one trip. Returns False when the trip id was already archived."""
        return self.record_batch([trip], week_label) == 1

    def record_batch(self, trips: Iterable[TripRecord], week_label: str) -> int:
        """Archive a week's trips; already-archived ids are left untouched.

        Returns:
            Number of newly archived trips
        """
        trips = list(trips)
        inserted = insert_trips(
            (self._to_record(t, week_label) for t in trips),
            db_path=self.db_path,
        )
        logger.info(
            f"Archived {inserted} new trips for {week_label}",
            extra_fields={"submitted": len(trips), "already_archived": len(trips) - inserted},
        )
        return inserted

    async def find_by_ids(self, ids: List[str]) -> Dict[str, HistoricalTripRecord]:
        """Batched lookup of archived trips.

        Args:
            ids: Trip ids to look up (primary or secondary)

        Returns:
            Requested id → archived record, for ids that were found

        Raises:
            asyncio.TimeoutError: If the lookup exceeds lookup_timeout
            sqlite3.Error: If the database query fails
        """
        if not ids:
            return {}
        lookup = asyncio.to_thread(fetch_by_ids, list(ids), self.db_path)
        if self.lookup_timeout is None:
            return await lookup
        return await asyncio.wait_for(lookup, timeout=self.lookup_timeout)

    async def search(self, ids: List[str]) -> HistoricalSearchResult:
        """Search the archive for trip ids (operator-facing view)."""
        requested = list(dict.fromkeys(i.strip() for i in ids if i and i.strip()))
        found = await self.find_by_ids(requested)
        return HistoricalSearchResult(
            found_trips={
                trip_id: HistoricalMatch(driver_name=r.driver_name, week_label=r.week_label)
                for trip_id, r in found.items()
            },
            found=len(found),
            total=len(requested),
        )

    def get_by_week(self, week_label: str) -> List[HistoricalTripRecord]:
        return fetch_by_week(week_label, db_path=self.db_path)

    def stats(self) -> ArchiveStats:
        return archive_stats(db_path=self.db_path)
