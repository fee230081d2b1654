"""
Reconciliation Engine Test Suite

End-to-end runs of the engine against a seeded registry:
1. Unknown driver lands in Unmatched, confirmation moves it with commission
2. Re-running with the same mappings reproduces the same ledger
3. Bad amounts are skipped and counted; placeholder ids stay Unmatched
4. Archived trips are backfilled; a failing archive degrades to a warning
5. Total discrepancy blocks the run; manual reassignment keeps totals
"""

import asyncio
from decimal import Decimal

import pytest

from core.errors import UnmatchedTripNotFoundError
from historical_archive.archive import HistoricalArchive
from identity_resolver.db import upsert_driver_mapping
from identity_resolver.models import SuggestionSource
from identity_resolver.resolver import load_resolution_context
from models.trips import BillingCycle, InvoiceFeedRow, QuarantinedRow, TripRecord
from reconciliation.engine import (
    ReconciliationEngine,
    evaluate_checks,
    line_trip_id,
    parse_amount,
    reassign_unmatched,
)
from reconciliation.ledger import UNMATCHED_LABEL
from reconciliation.models import CheckStatus, Severity, SkipReason


def _engine(settings, archive=None) -> ReconciliationEngine:
    context = load_resolution_context(settings.db_path, fallback_company_name="Fast Express")
    return ReconciliationEngine(context, archive=archive, settings=settings)


def _check(result, check_id):
    return next(c for c in result.checks if c.check_id == check_id)


class FailingArchive:
    """Archive stand-in whose lookup always fails."""

    lookup_timeout = 0.1

    def __init__(self, error: Exception):
        self.error = error
        self.calls = []

    async def find_by_ids(self, ids):
        self.calls.append(list(ids))
        raise self.error


class RecordingArchive:
    """Archive stand-in that finds nothing and records what was asked."""

    lookup_timeout = None

    def __init__(self):
        self.calls = []

    async def find_by_ids(self, ids):
        self.calls.append(list(ids))
        return {}


# =============================================================================
# Line parsing
# =============================================================================

class TestLineParsing:
    """Amount and trip id parsing of invoice rows."""

    @pytest.mark.parametrize("raw,expected", [
        ("100", Decimal("100")),
        ("1234.50", Decimal("1234.50")),
        ("1,234.50", Decimal("1234.50")),
        ("1.234,50", Decimal("1234.50")),
        ("1.234.567,25", Decimal("1234567.25")),
        ("50,5", Decimal("50.5")),
        ("  75.25 € ", Decimal("75.25")),
        ("-12.00", Decimal("-12.00")),
    ])
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "NaN", "Infinity", "12.3.4"])
    def test_parse_amount_rejects(self, raw):
        assert parse_amount(raw) is None

    def test_line_trip_id_fallbacks(self):
        primary = InvoiceFeedRow(row_number=1, primary_id=" T1 ", secondary_id="L1", amount_raw="1")
        secondary = InvoiceFeedRow(row_number=2, primary_id="  ", secondary_id="L2", amount_raw="1")
        neither = InvoiceFeedRow(row_number=3, amount_raw="1")

        assert line_trip_id(primary, BillingCycle.SEVEN_DAY) == ("T1", False)
        assert line_trip_id(secondary, BillingCycle.SEVEN_DAY) == ("L2", False)
        assert line_trip_id(neither, BillingCycle.THIRTY_DAY) == ("UNKNOWN-30day-3", True)


# =============================================================================
# Engine runs
# =============================================================================

class TestReconciliationEngine:
    """Bucketing of invoice lines into companies and Unmatched."""

    @pytest.fixture
    def weekly_batch(self, make_batch):
        return make_batch(
            trips=[
                ("T1", "Jurubita Razvan", None),
                ("T2", "Andrei Marin", None),
                ("T3", "Andrei Marin", "OTHR-TR94FST"),
            ],
            lines_7day=[("T1", "100"), ("T2", "250.00"), ("T3", "50,5")],
            lines_30day=[("T1", ""), ("T2", "0")],
        )

    def test_unknown_driver_goes_to_unmatched(self, settings, registry, weekly_batch):
        result = asyncio.run(_engine(settings).run(weekly_batch))

        unmatched = result.ledger.unmatched
        assert set(unmatched.trips) == {"T1"}
        assert unmatched.total_7day == Decimal("100")
        assert unmatched.total_commission == Decimal("0")

        fast = result.ledger.entries[registry["fast"].id]
        assert fast.total_7day == Decimal("250.00")
        assert fast.total_commission == Decimal("10.00")

        stef = result.ledger.entries[registry["stef"].id]
        assert stef.trips["T3"].amount_7day == Decimal("50.5")
        assert stef.total_commission == Decimal("1.010")

        assert [p.driver_name for p in result.pending_mappings] == ["Jurubita Razvan"]
        assert result.pending_mappings[0].suggestion.source is SuggestionSource.FALLBACK
        assert result.status is CheckStatus.WARN
        assert not result.is_blocked

    def test_confirmation_moves_trip_with_commission(self, settings, registry, weekly_batch):
        asyncio.run(_engine(settings).run(weekly_batch))
        upsert_driver_mapping("Jurubita Razvan", registry["daniel"].id, db_path=settings.db_path)

        result = asyncio.run(_engine(settings).run(weekly_batch))

        daniel = result.ledger.entries[registry["daniel"].id]
        assert daniel.total_7day == Decimal("100.00")
        assert daniel.total_commission == Decimal("4.00")
        assert daniel.trips["T1"].commission == Decimal("4.00")
        assert result.ledger.unmatched.trips == {}
        assert result.pending_mappings == []
        assert UNMATCHED_LABEL not in result.to_report()

    def test_rerun_is_idempotent(self, settings, registry, weekly_batch):
        engine = _engine(settings)
        first = asyncio.run(engine.run(weekly_batch))
        second = asyncio.run(engine.run(weekly_batch))

        assert first.to_report() == second.to_report()
        assert [p.driver_name for p in first.pending_mappings] == [p.driver_name for p in second.pending_mappings]
        assert first.stats == second.stats

    def test_totals_and_skips(self, settings, registry, weekly_batch):
        result = asyncio.run(_engine(settings).run(weekly_batch))

        assert result.expected_total == Decimal("400.5")
        assert result.ledger.total_invoiced() == result.expected_total
        assert result.stats.lines_processed == {"7day": 3, "30day": 0}
        assert result.stats.lines_skipped == {
            SkipReason.NON_NUMERIC_AMOUNT.value: 1,
            SkipReason.ZERO_AMOUNT.value: 1,
        }
        assert _check(result, "total_reconciliation").passed
        assert not _check(result, "skipped_rows").passed

    def test_report_format(self, settings, registry, weekly_batch):
        report = asyncio.run(_engine(settings).run(weekly_batch)).to_report()

        assert set(report) == {"Fast Express", "Stef Trans S.R.L.", UNMATCHED_LABEL}
        assert report["Fast Express"]["Total_7_days"] == 250.0
        assert report["Fast Express"]["Total_comision"] == 10.0
        assert report["Fast Express"]["VRID_details"]["T2"] == {"7_days": 250.0, "30_days": 0.0, "commission": 10.0}
        assert report[UNMATCHED_LABEL]["Total_comision"] == 0.0

    def test_lines_accumulate_per_trip(self, settings, registry, make_batch):
        batch = make_batch(
            trips=[("T2", "Andrei Marin", None)],
            lines_7day=[("T2", "100"), ("T2", "50")],
            lines_30day=[("T2", "20")],
        )
        result = asyncio.run(_engine(settings).run(batch))

        detail = result.ledger.entries[registry["fast"].id].trips["T2"]
        assert detail.amount_7day == Decimal("150")
        assert detail.amount_30day == Decimal("20")
        assert detail.commission == Decimal("6.80")

    def test_secondary_trip_id(self, settings, registry, make_batch):
        batch = make_batch(trips=[], lines_7day=[("VR-9", "80")])
        batch.trips.append(TripRecord(trip_id="T9", secondary_id="VR-9", driver_name_raw="Stefan Munteanu"))

        result = asyncio.run(_engine(settings).run(batch))
        assert "VR-9" in result.ledger.entries[registry["stef"].id].trips

    def test_placeholder_ids_stay_unmatched(self, settings, registry, make_batch):
        batch = make_batch(
            trips=[("T2", "Andrei Marin", None)],
            lines_7day=[(None, "20")],
            lines_30day=[(None, "30")],
        )
        archive = RecordingArchive()
        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        assert set(result.ledger.unmatched.trips) == {"UNKNOWN-7day-1", "UNKNOWN-30day-1"}
        assert result.stats.lines_missing_trip == 2
        assert archive.calls == []

    def test_small_amount_anomalies(self, settings, registry, make_batch):
        batch = make_batch(
            trips=[("T2", "Andrei Marin", None), ("T4", "Nobody Known", None)],
            lines_7day=[("T2", "10"), ("T2", "10.01"), ("T4", "-5")],
        )
        result = asyncio.run(_engine(settings).run(batch))

        flagged = {(a.trip_id, a.amount, a.company) for a in result.anomalies}
        assert flagged == {
            ("T2", Decimal("10"), "Fast Express"),
            ("T4", Decimal("-5"), UNMATCHED_LABEL),
        }
        small = _check(result, "small_amounts")
        assert not small.passed
        assert small.severity is Severity.WARN

    def test_quarantined_rows_are_reported(self, settings, registry, make_batch):
        batch = make_batch(trips=[("T2", "Andrei Marin", None)], lines_7day=[("T2", "100")])
        batch.quarantined.append(QuarantinedRow(source="trips.csv", row_number=4, reason="row has neither"))

        result = asyncio.run(_engine(settings).run(batch))
        assert result.stats.quarantined_rows == 1
        assert not _check(result, "quarantined_rows").passed


# =============================================================================
# Historical archive backfill
# =============================================================================

class TestArchiveBackfill:
    """Invoice lines for trips missing from the current manifest."""

    def test_archived_trip_resolves_to_driver_company(self, settings, registry, make_batch):
        archive = HistoricalArchive(settings.db_path)
        archive.record(TripRecord(trip_id="T-OLD", driver_name_raw="Munteanu Stefan"), "2025-W13")

        batch = make_batch(trips=[("T2", "Andrei Marin", None)], lines_7day=[("T-OLD", "300")])
        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        stef = result.ledger.entries[registry["stef"].id]
        assert stef.trips["T-OLD"].commission == Decimal("6.00")
        assert result.ledger.unmatched.trips == {}
        assert result.stats.resolved_via_archive == 1
        assert _check(result, "archive_lookup").passed

    def test_archived_vehicle_wins_over_driver(self, settings, registry, make_batch):
        archive = HistoricalArchive(settings.db_path)
        archive.record(
            TripRecord(trip_id="OLD1", driver_name_raw="Unknown Person", vehicle_id="OTHR-TR94FST"),
            "2025-W13",
        )
        archive.record(
            TripRecord(trip_id="OLD2", driver_name_raw="Andrei Marin", vehicle_id="TR94FST"),
            "2025-W13",
        )

        batch = make_batch(
            trips=[("T2", "Andrei Marin", None)],
            lines_7day=[("T2", "100"), ("OLD1", "300"), ("OLD2", "100")],
        )
        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        stef = result.ledger.entries[registry["stef"].id]
        assert set(stef.trips) == {"OLD1", "OLD2"}
        assert stef.total_commission == Decimal("8.00")
        assert set(result.ledger.entries[registry["fast"].id].trips) == {"T2"}
        assert result.ledger.unmatched.trips == {}
        assert result.pending_mappings == []
        assert result.stats.resolved_via_archive == 2

    def test_unknown_archived_driver_is_queued(self, settings, registry, make_batch):
        archive = HistoricalArchive(settings.db_path)
        archive.record(TripRecord(trip_id="T-OLD", driver_name_raw="Jurubita Razvan"), "2025-W13")

        batch = make_batch(lines_7day=[("T-OLD", "300"), ("T-GONE", "40")])
        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        assert set(result.ledger.unmatched.trips) == {"T-OLD", "T-GONE"}
        assert [p.driver_name for p in result.pending_mappings] == ["Jurubita Razvan"]
        assert result.pending_mappings[0].trip_ids == ["T-OLD"]

    def test_archive_pairing_refreshes_suggestion(self, settings, registry, make_batch):
        archive = HistoricalArchive(settings.db_path)
        archive.record(
            TripRecord(trip_id="T-OLD", driver_name_raw="Ion Vasilescu, Munteanu Stefan"),
            "2025-W13",
        )

        batch = make_batch(
            trips=[("T5", "Vasilescu Ion", None)],
            lines_7day=[("T5", "120"), ("T-OLD", "300")],
        )
        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        pending = result.pending_mappings[0]
        assert pending.driver_name == "Vasilescu Ion"
        assert pending.suggestion.company_id == registry["stef"].id
        assert pending.suggestion.source is SuggestionSource.HISTORICAL
        # Suggestions never assign: T5 is still Unmatched
        assert "T5" in result.ledger.unmatched.trips

    @pytest.mark.parametrize("error", [RuntimeError("archive down"), asyncio.TimeoutError()])
    def test_archive_failure_is_a_warning(self, settings, registry, make_batch, error):
        archive = FailingArchive(error)
        batch = make_batch(trips=[("T2", "Andrei Marin", None)], lines_7day=[("T2", "100"), ("T-OLD", "300")])

        result = asyncio.run(_engine(settings, archive=archive).run(batch))

        assert archive.calls == [["T-OLD"]]
        assert result.stats.archive_lookup_failed is True
        assert "T-OLD" in result.ledger.unmatched.trips
        check = _check(result, "archive_lookup")
        assert not check.passed
        assert check.severity is Severity.WARN
        assert result.status is CheckStatus.WARN


# =============================================================================
# Checks and reassignment
# =============================================================================

class TestChecksAndReassignment:

    @pytest.fixture
    def result(self, settings, registry, make_batch):
        batch = make_batch(
            trips=[("T1", "Jurubita Razvan", None), ("T2", "Andrei Marin", None)],
            lines_7day=[("T1", "100"), ("T2", "200")],
            lines_30day=[("T1", "50")],
        )
        return asyncio.run(_engine(settings).run(batch))

    def test_discrepancy_blocks(self, result):
        result.expected_total += Decimal("5")
        evaluate_checks(result, Decimal("0.01"))

        assert result.status is CheckStatus.FAIL
        assert result.is_blocked
        assert result.discrepancy.check_id == "total_reconciliation"
        assert result.discrepancy.evidence["difference"] == "5"
        assert result.summary()["blocking_issues"] == 1

    def test_discrepancy_within_tolerance(self, result):
        result.expected_total += Decimal("0.005")
        evaluate_checks(result, Decimal("0.01"))
        assert not result.is_blocked

    def test_reassign_moves_both_cycles(self, result, registry):
        updated = reassign_unmatched(result, "T1", registry["stef"], Decimal("0.01"))

        stef = updated.ledger.entries[registry["stef"].id]
        assert stef.trips["T1"].amount_7day == Decimal("100")
        assert stef.trips["T1"].amount_30day == Decimal("50")
        assert stef.total_commission == Decimal("3.00")
        assert updated.ledger.unmatched.trips == {}
        assert updated.ledger.total_invoiced() == result.ledger.total_invoiced()
        assert [r.trip_id for r in updated.reassignments] == ["T1"]
        assert _check(updated, "unmatched_lines").passed

        # The original result is untouched
        assert "T1" in result.ledger.unmatched.trips

    def test_reassign_unknown_trip(self, result, registry):
        with pytest.raises(UnmatchedTripNotFoundError):
            reassign_unmatched(result, "T2", registry["stef"], Decimal("0.01"))


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
