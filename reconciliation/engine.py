"""Reconciliation engine for weekly carrier invoice feeds.

Exposes:
- ReconciliationEngine.run(batch) -> ReconciliationResult
- reassign_unmatched(result, trip_id, company) -> ReconciliationResult
- evaluate_checks(result, tolerance) -> List[CheckResult]

A run is a pure function of the batch and the registry snapshot it was
given: re-running with the same mappings reproduces the same ledger.
"""

import asyncio
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from core.config import ReconciliationSettings, get_settings
from core.observability.logging import get_logger, with_correlation
from historical_archive.archive import HistoricalArchive
from historical_archive.models import HistoricalTripRecord
from identity_resolver.models import Company, Resolution
from identity_resolver.normalize import split_driver_names
from identity_resolver.resolver import IdentityResolver, ResolutionContext
from models.trips import BillingCycle, InvoiceFeedRow, InvoiceLine, ReconciliationBatch, TripRecord
from pending_mappings.queue import PendingMappingQueue
from reconciliation.ledger import Ledger
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


logger = get_logger(__name__)

ZERO = Decimal("0")


# =============================================================================
# Line Parsing
# =============================================================================

def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Parse an invoice amount cell.

    Accepts "1234.50", "1,234.50", "1234,50", "1.234,50" and a trailing "€".
    With both separators present the last one is the decimal point.
    Returns None for anything that is not a finite number.
    """
    if raw is None:
        return None
    text = str(raw).replace("€", "").replace(" ", "").replace(" ", "").strip()
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def line_trip_id(row: InvoiceFeedRow, cycle: BillingCycle) -> Tuple[str, bool]:
    """Primary id, else secondary id, else a placeholder unique to the row.

    Returns:
        Tuple of (trip id, True when the id is a placeholder)
    """
    for candidate in (row.primary_id, row.secondary_id):
        if candidate and candidate.strip():
            return candidate.strip(), False
    return f"UNKNOWN-{cycle.value}-{row.row_number}", True


def parse_line(row: InvoiceFeedRow, cycle: BillingCycle) -> Tuple[Optional[InvoiceLine], Optional[SkipReason]]:
    """Turn a feed row into an InvoiceLine, or say why it is skipped."""
    amount = parse_amount(row.amount_raw)
    if amount is None:
        return None, SkipReason.NON_NUMERIC_AMOUNT
    if amount == ZERO:
        return None, SkipReason.ZERO_AMOUNT

    trip_id, synthetic = line_trip_id(row, cycle)
    return InvoiceLine(
        trip_id=trip_id,
        amount=amount,
        cycle=cycle,
        row_number=row.row_number,
        synthetic_id=synthetic,
    ), None


def index_trips(trips: List[TripRecord]) -> Dict[str, TripRecord]:
    """Every id a trip can be referenced by → trip. First row wins."""
    index: Dict[str, TripRecord] = {}
    for trip in trips:
        for trip_id in trip.ids():
            index.setdefault(trip_id, trip)
    return index


# =============================================================================
# Checks
# =============================================================================

def check_total_reconciliation(result: ReconciliationResult, tolerance: Decimal) -> CheckResult:
    """Sum of valid input lines must equal the ledger total (Unmatched included)."""
    actual = result.ledger.total_invoiced()
    difference = result.expected_total - actual
    passed = abs(difference) <= tolerance
    return CheckResult(
        check_id="total_reconciliation",
        severity=Severity.BLOCK,
        passed=passed,
        message=(
            f"Ledger total {actual} matches input total {result.expected_total}"
            if passed
            else f"Ledger total {actual} differs from input total {result.expected_total} by {difference}"
        ),
        evidence={
            "expected_total": str(result.expected_total),
            "actual_total": str(actual),
            "difference": str(difference),
            "tolerance": str(tolerance),
        },
    )


def check_unmatched_lines(result: ReconciliationResult) -> CheckResult:
    unmatched = result.ledger.unmatched
    return CheckResult(
        check_id="unmatched_lines",
        severity=Severity.WARN,
        passed=not unmatched.trips,
        message=(
            "Every line was assigned to a company"
            if not unmatched.trips
            else f"{len(unmatched.trips)} trips ({unmatched.gross_total}) are Unmatched"
        ),
        evidence={"trip_ids": sorted(unmatched.trips), "amount": str(unmatched.gross_total)},
    )


def check_pending_mappings(result: ReconciliationResult) -> CheckResult:
    names = [p.driver_name for p in result.pending_mappings]
    return CheckResult(
        check_id="pending_mappings",
        severity=Severity.WARN,
        passed=not names,
        message="No drivers awaiting confirmation" if not names else f"{len(names)} drivers awaiting confirmation",
        evidence={"drivers": names},
    )


def check_small_amounts(result: ReconciliationResult) -> CheckResult:
    return CheckResult(
        check_id="small_amounts",
        severity=Severity.WARN,
        passed=not result.anomalies,
        message=(
            "No small-amount lines"
            if not result.anomalies
            else f"{len(result.anomalies)} lines at or below the small-amount threshold"
        ),
        evidence={"trip_ids": [a.trip_id for a in result.anomalies]},
    )


def check_skipped_rows(result: ReconciliationResult) -> CheckResult:
    skipped = result.stats.total_skipped
    return CheckResult(
        check_id="skipped_rows",
        severity=Severity.WARN,
        passed=skipped == 0,
        message="No invoice rows skipped" if skipped == 0 else f"{skipped} invoice rows skipped",
        evidence=dict(result.stats.lines_skipped),
    )


def check_quarantined_rows(result: ReconciliationResult) -> CheckResult:
    count = result.stats.quarantined_rows
    return CheckResult(
        check_id="quarantined_rows",
        severity=Severity.WARN,
        passed=count == 0,
        message="No feed rows quarantined" if count == 0 else f"{count} feed rows failed validation",
        evidence={"count": count},
    )


def check_archive_lookup(result: ReconciliationResult) -> CheckResult:
    failed = result.stats.archive_lookup_failed
    return CheckResult(
        check_id="archive_lookup",
        severity=Severity.WARN,
        passed=not failed,
        message=(
            "Historical archive lookup failed; missing trips stay Unmatched"
            if failed
            else f"{result.stats.resolved_via_archive} trips resolved via the historical archive"
        ),
        evidence={
            "lines_missing_trip": result.stats.lines_missing_trip,
            "resolved_via_archive": result.stats.resolved_via_archive,
        },
    )


def evaluate_checks(result: ReconciliationResult, tolerance: Decimal) -> List[CheckResult]:
    """Run every check against a result and set its status and discrepancy."""
    total_check = check_total_reconciliation(result, tolerance)
    checks = [
        total_check,
        check_unmatched_lines(result),
        check_pending_mappings(result),
        check_small_amounts(result),
        check_skipped_rows(result),
        check_quarantined_rows(result),
        check_archive_lookup(result),
    ]

    has_blocks = any(not c.passed and c.severity == Severity.BLOCK for c in checks)
    has_warns = any(not c.passed and c.severity == Severity.WARN for c in checks)
    if has_blocks:
        result.status = CheckStatus.FAIL
    elif has_warns:
        result.status = CheckStatus.WARN
    else:
        result.status = CheckStatus.PASS

    result.checks = checks
    result.discrepancy = None if total_check.passed else total_check
    return checks


# =============================================================================
# Main Reconciliation Engine
# =============================================================================

class ReconciliationEngine:
    """Buckets every invoice line of a batch into a company or Unmatched.

    Example:
        ctx = load_resolution_context(settings.db_path)
        engine = ReconciliationEngine(ctx, archive=HistoricalArchive(settings.db_path))
        result = await engine.run(batch)

        if result.is_blocked:
            print(result.discrepancy.message)
    """

    def __init__(
        self,
        context: ResolutionContext,
        archive: Optional[HistoricalArchive] = None,
        settings: Optional[ReconciliationSettings] = None,
    ):
        self.context = context
        self.archive = archive
        self.settings = settings or get_settings()

    async def run(
        self,
        batch: ReconciliationBatch,
        queue: Optional[PendingMappingQueue] = None,
    ) -> ReconciliationResult:
        """Reconcile one batch from scratch.

        Args:
            batch: Trips and both invoice feeds of one weekly upload
            queue: Pending-mapping queue to fill; a fresh one when omitted

        Returns:
            ReconciliationResult (status FAIL when totals disagree)
        """
        if queue is None:
            queue = PendingMappingQueue(db_path=self.settings.db_path)

        # Pairings found through the archive live for this run only
        context = replace(self.context, historical_pairings={})
        resolver = IdentityResolver(context, queue=queue)

        with with_correlation(
            tenant_id=batch.tenant_id,
            batch_id=batch.batch_id,
            week_label=batch.week_label,
            stage="reconcile",
        ):
            logger.info(
                "Reconciliation started",
                extra_fields={
                    "trips": len(batch.trips),
                    "lines_7day": len(batch.invoice_7day),
                    "lines_30day": len(batch.invoice_30day),
                },
            )

            ledger = Ledger()
            stats = RunStats(trips_in_feed=len(batch.trips), quarantined_rows=len(batch.quarantined))
            expected_total = ZERO
            posted: List[InvoiceLine] = []
            missing: Dict[str, None] = {}
            trip_index = index_trips(batch.trips)
            resolutions: Dict[str, Resolution] = {}

            # =================================================================
            # Current-batch pass (7-day, then 30-day)
            # =================================================================
            for cycle in (BillingCycle.SEVEN_DAY, BillingCycle.THIRTY_DAY):
                for row in batch.rows_for(cycle):
                    line, skip = parse_line(row, cycle)
                    if line is None:
                        stats.lines_skipped[skip.value] += 1
                        logger.debug(
                            f"Skipped {cycle.value} row {row.row_number}: {skip.value}",
                            extra_fields={"amount_raw": row.amount_raw},
                        )
                        continue

                    stats.lines_processed[cycle.value] += 1
                    expected_total += line.amount
                    posted.append(line)

                    trip = self._find_trip(trip_index, row, line)
                    if trip is None:
                        ledger.post(line.trip_id, cycle, line.amount)
                        stats.lines_missing_trip += 1
                        if not line.synthetic_id:
                            missing.setdefault(line.trip_id, None)
                        continue

                    resolution = resolutions.get(trip.trip_id)
                    if resolution is None:
                        resolution = resolver.resolve(trip)
                        resolutions[trip.trip_id] = resolution

                    company = context.company(resolution.company_id) if resolution.is_resolved else None
                    ledger.post(line.trip_id, cycle, line.amount, company)

            # =================================================================
            # Historical archive backfill
            # =================================================================
            if missing:
                found = await self._lookup_archive(list(missing), stats)
                self._backfill(ledger, resolver, context, found, list(missing), stats)
                if context.historical_pairings:
                    self._refresh_suggestions(queue, resolver, context)

            # =================================================================
            # Anomalies, checks, status
            # =================================================================
            threshold = self.settings.small_amount_threshold
            anomalies = [
                SmallAmountAnomaly(
                    trip_id=line.trip_id,
                    amount=line.amount,
                    company=ledger.bucket_label(line.trip_id),
                    cycle=line.cycle,
                )
                for line in posted
                if line.amount <= threshold
            ]

            result = ReconciliationResult(
                batch_id=batch.batch_id,
                tenant_id=batch.tenant_id,
                week_label=batch.week_label,
                ledger=ledger,
                pending_mappings=queue.list(),
                anomalies=anomalies,
                stats=stats,
                expected_total=expected_total,
            )
            evaluate_checks(result, self.settings.discrepancy_tolerance)

            if result.is_blocked:
                logger.error(
                    f"Reconciliation blocked: {result.discrepancy.message}",
                    extra_fields=result.discrepancy.evidence,
                )
            logger.info("Reconciliation complete", extra_fields=result.summary())
            return result

    @staticmethod
    def _find_trip(
        trip_index: Dict[str, TripRecord],
        row: InvoiceFeedRow,
        line: InvoiceLine,
    ) -> Optional[TripRecord]:
        if line.synthetic_id:
            return None
        trip = trip_index.get(line.trip_id)
        if trip is None and row.secondary_id:
            trip = trip_index.get(row.secondary_id.strip())
        return trip

    async def _lookup_archive(self, ids: List[str], stats: RunStats) -> Dict[str, HistoricalTripRecord]:
        """One batched archive round trip; failures degrade to 'nothing found'."""
        if self.archive is None:
            return {}
        with with_correlation(stage="archive_lookup"):
            try:
                found = await self.archive.find_by_ids(ids)
            except asyncio.TimeoutError:
                stats.archive_lookup_failed = True
                logger.warning(
                    f"Historical archive lookup timed out for {len(ids)} trips",
                    extra_fields={"timeout": self.archive.lookup_timeout},
                )
                return {}
            except Exception as e:
                stats.archive_lookup_failed = True
                logger.error(
                    f"Historical archive lookup failed: {e}",
                    exc_info=True,
                    extra_fields={"ids": len(ids)},
                )
                return {}
            logger.info(f"Historical archive returned {len(found)} of {len(ids)} trips")
            return found

    def _backfill(
        self,
        ledger: Ledger,
        resolver: IdentityResolver,
        context: ResolutionContext,
        found: Dict[str, HistoricalTripRecord],
        missing: List[str],
        stats: RunStats,
    ) -> None:
        """Move archived trips out of Unmatched when their vehicle or driver now resolves."""
        for trip_id in missing:
            record = found.get(trip_id)
            if record is None or trip_id not in ledger.unmatched.trips:
                continue

            archived = TripRecord(
                trip_id=trip_id,
                vehicle_id=record.vehicle_id,
                driver_name_raw=record.driver_name,
            )
            resolution = resolver.resolve(archived)
            if not resolution.is_resolved:
                continue

            company = context.company(resolution.company_id)
            ledger.move_from_unmatched(trip_id, company)
            stats.resolved_via_archive += 1
            for name in split_driver_names(record.driver_name or ""):
                context.remember_pairing(name, company.id)

            logger.debug(
                f"Trip {trip_id} resolved via archive ({record.week_label}) to {company.name}",
                extra_fields={"driver": record.driver_name},
            )

    @staticmethod
    def _refresh_suggestions(
        queue: PendingMappingQueue,
        resolver: IdentityResolver,
        context: ResolutionContext,
    ) -> None:
        for entry in queue.list():
            if context.historical_pairing(entry.driver_name) is not None:
                entry.suggestion, entry.alternatives = resolver.suggest_company(entry.driver_name)


# =============================================================================
# Manual Reassignment
# =============================================================================

def reassign_unmatched(
    result: ReconciliationResult,
    trip_id: str,
    company: Company,
    tolerance: Optional[Decimal] = None,
) -> ReconciliationResult:
    """Move one Unmatched trip (both cycles) to a company.

    The given result is not modified.

    Raises:
        UnmatchedTripNotFoundError: If the trip is not in Unmatched
    """
    if tolerance is None:
        tolerance = get_settings().discrepancy_tolerance

    updated = result.model_copy(deep=True)
    updated.ledger.move_from_unmatched(trip_id, company)
    for anomaly in updated.anomalies:
        if anomaly.trip_id == trip_id:
            anomaly.company = company.name
    updated.reassignments.append(ManualReassignment(trip_id=trip_id, company_id=company.id))
    evaluate_checks(updated, tolerance)

    logger.info(
        f"Trip {trip_id} reassigned from Unmatched to {company.name}",
        extra_fields={"batch_id": result.batch_id},
    )
    return updated
