"""Persistence activities for the weekly carrier pipeline.

Finalizing a week archives its trips, stores the result and report
artifacts with a weekly_processing row, and syncs company balances.
"""

from dataclasses import dataclass
from typing import List, Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from activities.reconcile import load_batch, load_result
from balance_ledger.ledger import BalanceLedger
from core.config import get_settings
from core.errors import BatchBlockedError
from historical_archive.archive import HistoricalArchive
from reconciliation.orchestrator import finalize_batch


@dataclass
class FinalizeWeekInput:
    """Input for finalize_week activity.

    Attributes:
        batch_ref: Serialized DataReference to the batch JSON
        result_ref: Serialized DataReference to the result being finalized
    """
    batch_ref: dict
    result_ref: dict


@dataclass
class FinalizeWeekOutput:
    """Output from finalize_week activity.

    Attributes:
        week_label: Finalized week
        archived_trips: Trips newly added to the historical archive
        balances_synced: Company balances written
        weekly_result_ref: Serialized DataReference to the stored weekly result
        company_ids: Companies with a balance for the week
    """
    week_label: str
    archived_trips: int
    balances_synced: int
    weekly_result_ref: Optional[dict] = None
    company_ids: Optional[List[int]] = None


@activity.defn
async def finalize_week(input: FinalizeWeekInput) -> FinalizeWeekOutput:
    """Persist a reconciled week.

    Raises:
        ApplicationError: Non-retryable if the result has a total discrepancy
    """
    settings = get_settings()
    batch = load_batch(input.batch_ref)
    result = load_result(input.result_ref)

    activity.logger.info(f"Finalizing week {result.week_label} (batch {result.batch_id}, v{result.version})")

    try:
        outcome = finalize_batch(
            batch,
            result,
            settings,
            archive=HistoricalArchive(settings.db_path),
            balances=BalanceLedger(settings.db_path, paid_epsilon=settings.paid_epsilon),
        )
    except BatchBlockedError as e:
        raise ApplicationError(str(e), e.details, type="BatchBlockedError", non_retryable=True) from e

    weekly_ref = None
    if outcome.weekly is not None and outcome.weekly.artifacts is not None:
        weekly_ref = outcome.weekly.artifacts.result_ref.model_dump(mode="json")

    activity.logger.info(
        f"Week {outcome.week_label} finalized: {outcome.archived_trips} trips archived, "
        f"{len(outcome.balances)} balances synced"
    )
    return FinalizeWeekOutput(
        week_label=outcome.week_label,
        archived_trips=outcome.archived_trips,
        balances_synced=len(outcome.balances),
        weekly_result_ref=weekly_ref,
        company_ids=[b.company_id for b in outcome.balances],
    )
