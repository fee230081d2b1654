"""Reconcile one week of feeds from the command line.

Loads the trip manifest and the invoice feeds (CSV or Excel, several
files per cycle allowed), runs the engine against the registry and
prints the summary. With --finalize the week is archived, stored and
synced to company balances.

Usage:
    python scripts/reconcile_week.py --week 2025-W14 --trips trips.csv \\
        --invoice-7 payments_7.xlsx --invoice-30 payments_30a.xlsx payments_30b.xlsx
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from balance_ledger.ledger import BalanceLedger
from core.config import get_settings
from core.errors import ReconciliationError
from core.observability.logging import configure_logging, get_logger
from historical_archive.archive import HistoricalArchive
from reconciliation.feeds import build_batch
from reconciliation.orchestrator import finalize_batch, run_batch


logger = get_logger("scripts.reconcile_week")


async def reconcile_week(args: argparse.Namespace) -> int:
    settings = get_settings()

    batch = build_batch(
        week_label=args.week,
        trip_feed=args.trips,
        invoice_7day=args.invoice_7 or [],
        invoice_30day=args.invoice_30 or [],
    )
    archive = HistoricalArchive(settings.db_path)
    result = await run_batch(batch, settings, archive)

    print("\n=== RECONCILIATION SUMMARY ===")
    for key, value in result.summary().items():
        print(f"  {key}: {value}")

    failed = [c for c in result.checks if not c.passed]
    if failed:
        print("\n=== CHECKS ===")
        for check in failed:
            print(f"  [{check.severity.value}] {check.check_id}: {check.message}")

    if result.pending_mappings:
        print("\n=== PENDING MAPPINGS ===")
        for pending in result.pending_mappings:
            suggestion = pending.suggestion.company_name if pending.suggestion else "-"
            print(f"  {pending.driver_name}: suggested {suggestion} ({len(pending.trip_ids)} trips)")

    if args.report:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        args.report.write_text(json.dumps(result.to_report(), indent=2), encoding="utf-8")
        print(f"\nReport written to {args.report}")

    if args.finalize:
        balances = BalanceLedger(settings.db_path, paid_epsilon=settings.paid_epsilon)
        outcome = finalize_batch(batch, result, settings, archive, balances)
        print(f"\nFinalized {outcome.week_label}: {outcome.archived_trips} trips archived, "
              f"{len(outcome.balances)} balances synced")

    return 1 if result.is_blocked else 0


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Reconcile one week of carrier feeds")
    parser.add_argument("--week", required=True, help="Processing week label, e.g. 2025-W14")
    parser.add_argument("--trips", required=True, type=Path, help="Trip manifest (CSV/XLSX)")
    parser.add_argument("--invoice-7", nargs="*", type=Path, help="7-day invoice file(s)")
    parser.add_argument("--invoice-30", nargs="*", type=Path, help="30-day invoice file(s)")
    parser.add_argument("--report", type=Path, default=None, help="Write the per-company JSON report here")
    parser.add_argument("--finalize", action="store_true", help="Archive, store and sync balances")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level_number, json_format=settings.log_json)

    try:
        return asyncio.run(reconcile_week(args))
    except ReconciliationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
