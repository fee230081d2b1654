"""Start, signal or query a Weekly Reconciliation workflow.

Start a week (stores the parsed batch as an artifact, then starts the
workflow):
    python scripts/start_weekly_reconciliation.py start --week 2025-W14 \\
        --trips trips.csv --invoice-7 week7.xlsx --invoice-30 week30.xlsx

Confirm a driver, check progress, finalize:
    python scripts/start_weekly_reconciliation.py confirm --workflow-id weekly-2025-W14 \\
        --driver "Jurubita Razvan" --company-id 2
    python scripts/start_weekly_reconciliation.py status --workflow-id weekly-2025-W14
    python scripts/start_weekly_reconciliation.py finalize --workflow-id weekly-2025-W14 --wait
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.reconcile import store_batch
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from reconciliation.feeds import build_batch
from temporal_client import get_temporal_client
from workflows.weekly_reconciliation_workflow import (
    MappingDecision,
    TASK_QUEUE_DEFAULT,
    WeeklyReconciliationInput,
    WeeklyReconciliationWorkflow,
)


logger = get_logger("scripts.start_weekly_reconciliation")


async def start(args: argparse.Namespace) -> dict:
    batch = build_batch(
        week_label=args.week,
        trip_feed=args.trips,
        invoice_7day=args.invoice_7 or [],
        invoice_30day=args.invoice_30 or [],
    )
    batch_ref = store_batch(batch)
    workflow_id = args.workflow_id or f"weekly-{args.week}"

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    handle = await client.start_workflow(
        WeeklyReconciliationWorkflow.run,
        WeeklyReconciliationInput(batch_ref=batch_ref, batch_id=batch.batch_id, week_label=args.week),
        task_queue=args.queue,
        id=workflow_id,
    )
    logger.info(f"Workflow started: {handle.id}")
    return {"workflow_id": handle.id, "batch_id": batch.batch_id, "trips": len(batch.trips)}


async def confirm(args: argparse.Namespace) -> dict:
    client = await get_temporal_client()
    handle = client.get_workflow_handle(args.workflow_id)
    await handle.signal(
        WeeklyReconciliationWorkflow.confirm_mapping,
        MappingDecision(driver_name=args.driver, company_id=args.company_id),
    )
    return {"workflow_id": args.workflow_id, "signalled": "confirm_mapping", "driver": args.driver}


async def status(args: argparse.Namespace) -> dict:
    client = await get_temporal_client()
    handle = client.get_workflow_handle(args.workflow_id)
    return await handle.query(WeeklyReconciliationWorkflow.current_result) or {}


async def finalize(args: argparse.Namespace) -> dict:
    client = await get_temporal_client()
    handle = client.get_workflow_handle(args.workflow_id)
    await handle.signal(WeeklyReconciliationWorkflow.finalize)
    if not args.wait:
        return {"workflow_id": args.workflow_id, "signalled": "finalize"}
    logger.info("Waiting for workflow result...")
    return await handle.result()


COMMANDS = {"start": start, "confirm": confirm, "status": status, "finalize": finalize}


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Weekly Reconciliation workflow client")
    sub = parser.add_subparsers(dest="command", required=True)

    p_start = sub.add_parser("start", help="Parse feeds and start the workflow")
    p_start.add_argument("--week", required=True)
    p_start.add_argument("--trips", required=True, type=Path)
    p_start.add_argument("--invoice-7", nargs="*", type=Path)
    p_start.add_argument("--invoice-30", nargs="*", type=Path)
    p_start.add_argument("--workflow-id", default=None)
    p_start.add_argument("--queue", default=TASK_QUEUE_DEFAULT)

    p_confirm = sub.add_parser("confirm", help="Confirm a pending driver")
    p_confirm.add_argument("--workflow-id", required=True)
    p_confirm.add_argument("--driver", required=True)
    p_confirm.add_argument("--company-id", required=True, type=int)

    p_status = sub.add_parser("status", help="Query the latest result")
    p_status.add_argument("--workflow-id", required=True)

    p_finalize = sub.add_parser("finalize", help="Finalize the week")
    p_finalize.add_argument("--workflow-id", required=True)
    p_finalize.add_argument("--wait", action="store_true", help="Wait for the workflow result")

    args = parser.parse_args()
    settings = get_settings()
    configure_logging(level=settings.log_level_number, json_format=settings.log_json)

    try:
        result = asyncio.run(COMMANDS[args.command](args))
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
