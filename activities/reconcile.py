"""Reconciliation activities for the weekly carrier pipeline.

Temporal activities that run the engine over a stored batch and confirm
pending driver mappings. Batches and results travel between activities
as DataReferences to JSON artifacts, never inline in workflow history.
"""

from dataclasses import dataclass
from typing import Optional

from temporalio import activity
from temporalio.exceptions import ApplicationError

from core.config import get_settings
from core.errors import PendingMappingNotFoundError, UnknownCompanyError
from core.observability.logging import with_correlation
from historical_archive.archive import HistoricalArchive
from models.refs import ArtifactKind, DataReference
from models.trips import ReconciliationBatch
from pending_mappings.queue import PendingMappingQueue
from reconciliation.models import ReconciliationResult, Severity
from reconciliation.orchestrator import run_batch
from storage.artifacts import batch_artifact_path, get_json, put_json


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ReconcileWeekInput:
    """Input for reconcile_week activity.

    Attributes:
        batch_ref: Serialized DataReference to the batch JSON
        version: Result version this run produces
    """
    batch_ref: dict
    version: int = 1


@dataclass
class ReconcileWeekOutput:
    """Output from reconcile_week activity.

    Attributes:
        result_ref: Serialized DataReference to the result JSON
        batch_id: Batch that was reconciled
        week_label: Processing week
        version: Result version
        status: PASS, WARN, or FAIL
        pending_mappings: Drivers awaiting confirmation
        unmatched_trips: Trips left in the Unmatched bucket
        blocking_issues: Failed BLOCK checks
        warnings: Failed WARN checks
    """
    result_ref: dict
    batch_id: str
    week_label: str
    version: int
    status: str
    pending_mappings: int
    unmatched_trips: int
    blocking_issues: int
    warnings: int


@dataclass
class ConfirmMappingInput:
    """Input for confirm_pending_mapping activity.

    Attributes:
        result_ref: Result whose pending mappings the driver must be in
        driver_name: Driver to confirm
        company_id: Company chosen by the operator
    """
    result_ref: dict
    driver_name: str
    company_id: int


@dataclass
class ConfirmMappingOutput:
    driver_id: Optional[int]
    driver_name: str
    company_id: int
    created: bool
    rerun_token: str


def load_batch(ref: dict) -> ReconciliationBatch:
    return ReconciliationBatch.model_validate(get_json(DataReference.model_validate(ref)))


def load_result(ref: dict) -> ReconciliationResult:
    return ReconciliationResult.model_validate(get_json(DataReference.model_validate(ref)))


def store_batch(batch: ReconciliationBatch) -> dict:
    """Write a batch as a working artifact; returns the serialized reference."""
    settings = get_settings()
    path = batch_artifact_path(settings.artifacts_dir, batch.batch_id, "batch")
    return put_json(batch, path, kind=ArtifactKind.RAW_FEED).model_dump(mode="json")


# =============================================================================
# Activity Definitions
# =============================================================================

@activity.defn
async def reconcile_week(input: ReconcileWeekInput) -> ReconcileWeekOutput:
    """Run the reconciliation engine over a stored batch.

    Every run starts from a fresh registry snapshot, so a run after a
    confirmation sees the new driver mapping.

    Args:
        input: ReconcileWeekInput with the batch reference

    Returns:
        ReconcileWeekOutput with the result reference and counts
    """
    settings = get_settings()
    batch = load_batch(input.batch_ref)

    with with_correlation(batch_id=batch.batch_id, week_label=batch.week_label, activity_name="reconcile_week"):
        activity.logger.info(f"Reconciling batch {batch.batch_id} ({batch.week_label}), version {input.version}")

        result = await run_batch(batch, settings, archive=HistoricalArchive(settings.db_path))
        result.version = input.version

        path = batch_artifact_path(settings.artifacts_dir, batch.batch_id, f"result-v{input.version}")
        result_ref = put_json(result, path)

        activity.logger.info(
            f"Batch {batch.batch_id} reconciled: {result.status.value}, "
            f"{len(result.pending_mappings)} pending, {len(result.ledger.unmatched.trips)} unmatched"
        )

        return ReconcileWeekOutput(
            result_ref=result_ref.model_dump(mode="json"),
            batch_id=batch.batch_id,
            week_label=batch.week_label,
            version=input.version,
            status=result.status.value,
            pending_mappings=len(result.pending_mappings),
            unmatched_trips=len(result.ledger.unmatched.trips),
            blocking_issues=sum(1 for c in result.checks if not c.passed and c.severity == Severity.BLOCK),
            warnings=sum(1 for c in result.checks if not c.passed and c.severity == Severity.WARN),
        )


@activity.defn
async def confirm_pending_mapping(input: ConfirmMappingInput) -> ConfirmMappingOutput:
    """Confirm a pending driver from a stored result.

    Raises:
        ApplicationError: Non-retryable when the driver is not pending or
            the company does not exist
    """
    settings = get_settings()
    result = load_result(input.result_ref)
    queue = PendingMappingQueue.from_pending(result.pending_mappings, db_path=settings.db_path)

    activity.logger.info(f"Confirming '{input.driver_name}' → company {input.company_id}")
    try:
        confirmation = queue.confirm(input.driver_name, input.company_id)
    except (PendingMappingNotFoundError, UnknownCompanyError) as e:
        raise ApplicationError(str(e), e.details, type=type(e).__name__, non_retryable=True) from e

    return ConfirmMappingOutput(
        driver_id=confirmation.driver.id,
        driver_name=confirmation.driver.name,
        company_id=confirmation.company_id,
        created=confirmation.created,
        rerun_token=confirmation.rerun_token,
    )
