"""Worker for the weekly carrier reconciliation pipeline.

Listens on the reconciliation task queue and executes the weekly
workflow and its activities. Database and artifact locations come from
the RECON_* settings of the worker's environment.

Run with --queue <name> to poll a different task queue.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.weekly_reconciliation_workflow import (
    WeeklyReconciliationWorkflow,
    TASK_QUEUE_DEFAULT,
)
from activities.reconcile import reconcile_week, confirm_pending_mapping
from activities.persist import finalize_week


logger = get_logger(__name__)

ACTIVITIES = [
    reconcile_week,
    confirm_pending_mapping,
    finalize_week,
]

WORKFLOWS = [WeeklyReconciliationWorkflow]


async def run_worker(queue: str = TASK_QUEUE_DEFAULT):
    """Start a worker listening on a task queue.

    Args:
        queue: Task queue to poll

    Raises:
        Exception: If connection to Temporal fails
    """
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal namespace: {client.namespace}")

    worker = Worker(
        client,
        task_queue=queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(
        f"Worker created for queue '{queue}'",
        extra_fields={"workflows": len(WORKFLOWS), "activities": len(ACTIVITIES)},
    )

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="Carrier Reconciliation Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=TASK_QUEUE_DEFAULT,
        help=f"Task queue to poll (default: {TASK_QUEUE_DEFAULT})"
    )
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level_number, json_format=settings.log_json)

    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
