"""Batch orchestration.

A submitted batch is held in memory until it is finalized. Every
mapping confirmation triggers a full re-run of the engine over the held
batch; the new result replaces the old one atomically, so readers see
either the previous result or the new one, never a mix.

Manual reassignments of Unmatched trips are remembered and replayed
after each re-run.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from balance_ledger.ledger import BalanceLedger
from balance_ledger.models import CompanyBalance
from core.config import ReconciliationSettings, get_settings
from core.errors import BatchBlockedError, BatchNotFoundError, UnknownCompanyError
from core.observability.logging import get_logger, with_correlation
from historical_archive.archive import HistoricalArchive
from identity_resolver.db import get_company
from identity_resolver.resolver import load_resolution_context
from models.trips import ReconciliationBatch
from pending_mappings.models import MappingConfirmation, PendingMapping
from pending_mappings.queue import PendingMappingQueue
from reconciliation.engine import ReconciliationEngine, reassign_unmatched
from reconciliation.models import ReconciliationResult
from reconciliation.weekly import WeeklyProcessing, save_weekly_processing, write_weekly_artifacts


logger = get_logger(__name__)


# =============================================================================
# Held batches
# =============================================================================

@dataclass
class HeldBatch:
    """A batch waiting for confirmations, with its latest result."""
    batch: ReconciliationBatch
    result: ReconciliationResult
    queue: PendingMappingQueue
    version: int = 1
    rerun_tokens: List[str] = field(default_factory=list)


class BatchStore:
    """In-memory held batches, one per tenant.

    Submitting a new batch for a tenant drops the tenant's previous one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._batches: Dict[str, HeldBatch] = {}
        self._tenant_batch: Dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._batches)

    def put(self, held: HeldBatch) -> HeldBatch:
        with self._lock:
            tenant_id = held.batch.tenant_id
            previous = self._tenant_batch.get(tenant_id)
            if previous is not None and previous != held.batch.batch_id:
                self._batches.pop(previous, None)
                logger.info(f"Batch {previous} superseded by {held.batch.batch_id}")
            self._batches[held.batch.batch_id] = held
            self._tenant_batch[tenant_id] = held.batch.batch_id
            return held

    def get(self, batch_id: str) -> HeldBatch:
        """Raises BatchNotFoundError when the batch is not held."""
        with self._lock:
            held = self._batches.get(batch_id)
        if held is None:
            raise BatchNotFoundError(f"No held batch {batch_id}", {"batch_id": batch_id})
        return held

    def replace(self, batch_id: str, result: ReconciliationResult, queue: PendingMappingQueue) -> ReconciliationResult:
        """Swap in a new result and queue, bumping the version."""
        with self._lock:
            held = self._batches.get(batch_id)
            if held is None:
                raise BatchNotFoundError(f"No held batch {batch_id}", {"batch_id": batch_id})
            version = held.version + 1
            result = result.model_copy(update={"version": version})
            held.result = result
            held.queue = queue
            held.version = version
            return result

    def discard(self, batch_id: str) -> Optional[HeldBatch]:
        with self._lock:
            held = self._batches.pop(batch_id, None)
            if held is not None and self._tenant_batch.get(held.batch.tenant_id) == batch_id:
                del self._tenant_batch[held.batch.tenant_id]
            return held

    def batch_ids(self) -> List[str]:
        with self._lock:
            return list(self._batches)


# =============================================================================
# Runs
# =============================================================================

async def run_batch(
    batch: ReconciliationBatch,
    settings: ReconciliationSettings,
    archive: HistoricalArchive,
    queue: Optional[PendingMappingQueue] = None,
) -> ReconciliationResult:
    """Reconcile a batch against a fresh snapshot of the registry."""
    context = load_resolution_context(
        settings.db_path,
        fallback_company_name=settings.fallback_company_name,
        min_token_length=settings.min_token_length,
    )
    engine = ReconciliationEngine(context, archive=archive, settings=settings)
    return await engine.run(batch, queue=queue)


def replay_reassignments(
    result: ReconciliationResult,
    previous: ReconciliationResult,
    settings: ReconciliationSettings,
) -> ReconciliationResult:
    """Apply the manual reassignments of ``previous`` to a fresh result."""
    for reassignment in previous.reassignments:
        if reassignment.trip_id not in result.ledger.unmatched.trips:
            # Resolved on its own by the re-run
            continue
        company = get_company(reassignment.company_id, db_path=settings.db_path)
        if company is None:
            logger.warning(
                f"Dropping reassignment of {reassignment.trip_id}: company {reassignment.company_id} is gone"
            )
            continue
        result = reassign_unmatched(result, reassignment.trip_id, company, settings.discrepancy_tolerance)
    return result


async def reprocess(
    batch: ReconciliationBatch,
    mapping_update: Optional[MappingConfirmation],
    settings: ReconciliationSettings,
    archive: HistoricalArchive,
    previous: Optional[ReconciliationResult] = None,
    queue: Optional[PendingMappingQueue] = None,
) -> ReconciliationResult:
    """Recompute a batch from scratch after a mapping change.

    The driver row in ``mapping_update`` is already persisted, so reloading
    the registry is enough for it to reach every trip of that driver.
    Nothing is patched incrementally.

    Args:
        batch: The held batch
        mapping_update: Confirmation that triggered the run, if any
        settings: Reconciliation settings
        archive: Historical archive used for unknown trip ids
        previous: Result being replaced; its reassignments are replayed
        queue: Queue collecting the drivers still unresolved

    Returns:
        New ReconciliationResult (version not yet bumped)
    """
    if mapping_update is not None:
        logger.info(
            f"Re-running {batch.batch_id} after '{mapping_update.driver.name}' → company {mapping_update.company_id}",
            extra_fields={"rerun_token": mapping_update.rerun_token},
        )
    result = await run_batch(batch, settings, archive, queue=queue)
    if previous is not None:
        result = replay_reassignments(result, previous, settings)
    return result


class FinalizeOutcome(BaseModel):
    """What finalizing a batch wrote."""
    batch_id: str
    week_label: str
    archived_trips: int = 0
    weekly: Optional[WeeklyProcessing] = None
    balances: List[CompanyBalance] = Field(default_factory=list)


def finalize_batch(
    batch: ReconciliationBatch,
    result: ReconciliationResult,
    settings: ReconciliationSettings,
    archive: HistoricalArchive,
    balances: BalanceLedger,
) -> FinalizeOutcome:
    """Archive the trips, store the week and sync company balances.

    Raises:
        BatchBlockedError: If the result has a total discrepancy
    """
    if result.is_blocked:
        raise BatchBlockedError(
            f"Batch {result.batch_id} cannot be finalized: {result.discrepancy.message}",
            result.discrepancy.evidence,
        )

    with with_correlation(batch_id=result.batch_id, week_label=result.week_label, stage="finalize"):
        archived = archive.record_batch(batch.trips, result.week_label)
        artifacts = write_weekly_artifacts(batch, result, settings.artifacts_dir)
        weekly = save_weekly_processing(result, artifacts, trips_count=len(batch.trips), db_path=settings.db_path)
        synced = balances.sync_from_result(result.week_label, result)

        logger.info(
            f"Finalized week {result.week_label}",
            extra_fields={"archived": archived, "balances": len(synced)},
        )
        return FinalizeOutcome(
            batch_id=result.batch_id,
            week_label=result.week_label,
            archived_trips=archived,
            weekly=weekly,
            balances=synced,
        )


# =============================================================================
# Orchestrator
# =============================================================================

class ReconciliationOrchestrator:
    """Runs, re-runs and finalizes held batches.

    Example:
        orchestrator = ReconciliationOrchestrator(settings)
        result = await orchestrator.submit(batch)

        confirmation, result = await orchestrator.confirm_mapping(
            batch.batch_id, "Jurubita Razvan", company_id=2,
        )
        outcome = await orchestrator.finalize(batch.batch_id)
    """

    def __init__(
        self,
        settings: Optional[ReconciliationSettings] = None,
        archive: Optional[HistoricalArchive] = None,
        balances: Optional[BalanceLedger] = None,
        store: Optional[BatchStore] = None,
    ):
        self.settings = settings or get_settings()
        self.archive = archive or HistoricalArchive(self.settings.db_path)
        self.balances = balances or BalanceLedger(self.settings.db_path, paid_epsilon=self.settings.paid_epsilon)
        self.store = store or BatchStore()
        self._run_lock = asyncio.Lock()

    def _new_queue(self, batch_id: str) -> PendingMappingQueue:
        def on_confirmed(confirmation: MappingConfirmation) -> None:
            held = self.store.get(batch_id)
            held.rerun_tokens.append(confirmation.rerun_token)

        return PendingMappingQueue(db_path=self.settings.db_path, on_confirmed=on_confirmed)

    async def submit(self, batch: ReconciliationBatch) -> ReconciliationResult:
        """Reconcile a new batch and hold it for confirmations."""
        async with self._run_lock:
            with with_correlation(batch_id=batch.batch_id, tenant_id=batch.tenant_id, week_label=batch.week_label):
                queue = self._new_queue(batch.batch_id)
                result = await run_batch(batch, self.settings, self.archive, queue=queue)
                self.store.put(HeldBatch(batch=batch, result=result, queue=queue))
                logger.info(f"Batch {batch.batch_id} held", extra_fields={"status": result.status.value})
                return result

    async def rerun(self, batch_id: str) -> ReconciliationResult:
        """Recompute the held batch from scratch and swap the result in."""
        async with self._run_lock:
            return await self._rerun_locked(batch_id)

    async def _rerun_locked(
        self,
        batch_id: str,
        mapping_update: Optional[MappingConfirmation] = None,
    ) -> ReconciliationResult:
        held = self.store.get(batch_id)
        with with_correlation(batch_id=batch_id, tenant_id=held.batch.tenant_id, week_label=held.batch.week_label):
            queue = self._new_queue(batch_id)
            result = await reprocess(
                held.batch,
                mapping_update,
                self.settings,
                self.archive,
                previous=held.result,
                queue=queue,
            )
            result = self.store.replace(batch_id, result, queue)
            logger.info(
                f"Batch {batch_id} re-run (version {result.version})",
                extra_fields={"pending_mappings": len(result.pending_mappings)},
            )
            return result

    async def confirm_mapping(
        self,
        batch_id: str,
        driver_name: str,
        company_id: int,
    ) -> Tuple[MappingConfirmation, ReconciliationResult]:
        """Confirm a pending driver and re-run the batch.

        Raises:
            BatchNotFoundError: If the batch is not held
            PendingMappingNotFoundError: If the driver is not pending
            UnknownCompanyError: If the company does not exist
        """
        async with self._run_lock:
            held = self.store.get(batch_id)
            confirmation = held.queue.confirm(driver_name, company_id)
            result = await self._rerun_locked(batch_id, confirmation)
            return confirmation, result

    def pending(self, batch_id: str) -> List[PendingMapping]:
        return self.store.get(batch_id).queue.list()

    def result(self, batch_id: str) -> ReconciliationResult:
        return self.store.get(batch_id).result

    async def reassign(self, batch_id: str, trip_id: str, company_id: int) -> ReconciliationResult:
        """Move one Unmatched trip of the held result to a company.

        Raises:
            BatchNotFoundError: If the batch is not held
            UnknownCompanyError: If the company does not exist
            UnmatchedTripNotFoundError: If the trip is not in Unmatched
        """
        company = get_company(company_id, db_path=self.settings.db_path)
        if company is None:
            raise UnknownCompanyError(company_id)

        async with self._run_lock:
            held = self.store.get(batch_id)
            result = reassign_unmatched(held.result, trip_id, company, self.settings.discrepancy_tolerance)
            return self.store.replace(batch_id, result, held.queue)

    async def finalize(self, batch_id: str) -> FinalizeOutcome:
        """Archive the trips, store the week, sync balances and release the batch.

        Raises:
            BatchNotFoundError: If the batch is not held
            BatchBlockedError: If the latest result has a total discrepancy
        """
        async with self._run_lock:
            held = self.store.get(batch_id)
            outcome = finalize_batch(held.batch, held.result, self.settings, self.archive, self.balances)
            self.store.discard(batch_id)
            return outcome
