"""Weekly Reconciliation Workflow.

Holds one weekly batch for as long as operators need to confirm pending
driver mappings. Every ``confirm_mapping`` signal runs a confirmation
activity followed by a full re-run of the engine; the ``finalize``
signal ends the wait and persists the latest result.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from activities.reconcile import (
        reconcile_week,
        confirm_pending_mapping,
        ReconcileWeekInput,
        ReconcileWeekOutput,
        ConfirmMappingInput,
    )
    from activities.persist import (
        finalize_week,
        FinalizeWeekInput,
    )


# Task queue for reconciliation workflows and activities
TASK_QUEUE_DEFAULT = "recon-default"

ACTIVITY_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=2),
    maximum_interval=timedelta(seconds=30),
    maximum_attempts=3,
)


@dataclass
class WeeklyReconciliationInput:
    """Input for Weekly Reconciliation Workflow.

    Attributes:
        batch_ref: Serialized DataReference to the stored batch
        batch_id: Batch identifier
        week_label: Processing week label
    """
    batch_ref: dict
    batch_id: str
    week_label: str


@dataclass
class MappingDecision:
    """Signal payload: the company an operator chose for a pending driver."""
    driver_name: str
    company_id: int


@dataclass
class WorkflowState:
    result: Optional[ReconcileWeekOutput] = None
    confirmed: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)


@workflow.defn
class WeeklyReconciliationWorkflow:
    """Workflow for reconciling one weekly upload.

    1. Reconcile the batch
    2. Wait for confirm_mapping / finalize signals
    3. Each confirmation: confirm activity, then full re-run
    4. On finalize: persist the latest result (unless blocked)
    """

    def __init__(self) -> None:
        self._decisions: List[MappingDecision] = []
        self._finalize_requested = False
        self._state = WorkflowState()

    @workflow.run
    async def run(self, input: WeeklyReconciliationInput) -> dict:
        """Execute weekly reconciliation workflow.

        Args:
            input: WeeklyReconciliationInput with the batch reference

        Returns:
            dict with final status, version and persistence counts
        """
        workflow.logger.info(f"Starting Weekly Reconciliation for {input.batch_id} ({input.week_label})")

        self._state.result = await self._reconcile(input, version=1)

        while True:
            await workflow.wait_condition(lambda: bool(self._decisions) or self._finalize_requested)

            while self._decisions:
                decision = self._decisions.pop(0)
                try:
                    confirmation = await workflow.execute_activity(
                        confirm_pending_mapping,
                        ConfirmMappingInput(
                            result_ref=self._state.result.result_ref,
                            driver_name=decision.driver_name,
                            company_id=decision.company_id,
                        ),
                        start_to_close_timeout=timedelta(seconds=30),
                        retry_policy=ACTIVITY_RETRY,
                    )
                except ActivityError as e:
                    workflow.logger.warning(f"Confirmation of '{decision.driver_name}' rejected: {e.cause}")
                    self._state.rejected.append(decision.driver_name)
                    continue

                self._state.confirmed.append(confirmation.driver_name)
                workflow.logger.info(
                    f"Confirmed '{confirmation.driver_name}' (token {confirmation.rerun_token}), re-running"
                )
                self._state.result = await self._reconcile(input, version=self._state.result.version + 1)

            if self._finalize_requested:
                break

        result = self._state.result
        if result.blocking_issues:
            workflow.logger.error(f"Batch {input.batch_id} is blocked by a total discrepancy; not finalized")
            return {
                "batch_id": input.batch_id,
                "week_label": input.week_label,
                "status": "BLOCKED",
                "version": result.version,
                "confirmed": self._state.confirmed,
            }

        finalized = await workflow.execute_activity(
            finalize_week,
            FinalizeWeekInput(batch_ref=input.batch_ref, result_ref=result.result_ref),
            start_to_close_timeout=timedelta(minutes=2),
            retry_policy=ACTIVITY_RETRY,
        )

        workflow.logger.info(f"Week {input.week_label} finalized at version {result.version}")
        return {
            "batch_id": input.batch_id,
            "week_label": input.week_label,
            "status": "FINALIZED",
            "result_status": result.status,
            "version": result.version,
            "unmatched_trips": result.unmatched_trips,
            "pending_mappings": result.pending_mappings,
            "archived_trips": finalized.archived_trips,
            "balances_synced": finalized.balances_synced,
            "confirmed": self._state.confirmed,
            "rejected": self._state.rejected,
        }

    async def _reconcile(self, input: WeeklyReconciliationInput, version: int) -> ReconcileWeekOutput:
        output = await workflow.execute_activity(
            reconcile_week,
            ReconcileWeekInput(batch_ref=input.batch_ref, version=version),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=ACTIVITY_RETRY,
        )
        workflow.logger.info(
            f"Reconciled v{version}: {output.status}, {output.pending_mappings} pending, "
            f"{output.unmatched_trips} unmatched"
        )
        return output

    @workflow.signal
    def confirm_mapping(self, decision: MappingDecision) -> None:
        self._decisions.append(decision)

    @workflow.signal
    def finalize(self) -> None:
        self._finalize_requested = True

    @workflow.query
    def current_result(self) -> Optional[dict]:
        """Latest run summary, None before the first run completes."""
        result = self._state.result
        if result is None:
            return None
        return {
            "result_ref": result.result_ref,
            "version": result.version,
            "status": result.status,
            "pending_mappings": result.pending_mappings,
            "unmatched_trips": result.unmatched_trips,
            "blocking_issues": result.blocking_issues,
            "warnings": result.warnings,
            "confirmed": list(self._state.confirmed),
            "rejected": list(self._state.rejected),
        }
