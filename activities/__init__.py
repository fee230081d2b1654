"""Activity definitions module."""

from activities.reconcile import (
    reconcile_week,
    confirm_pending_mapping,
    ReconcileWeekInput,
    ReconcileWeekOutput,
    ConfirmMappingInput,
    ConfirmMappingOutput,
)
from activities.persist import (
    finalize_week,
    FinalizeWeekInput,
    FinalizeWeekOutput,
)

__all__ = [
    # Reconcile activities
    "reconcile_week",
    "confirm_pending_mapping",
    "ReconcileWeekInput",
    "ReconcileWeekOutput",
    "ConfirmMappingInput",
    "ConfirmMappingOutput",
    # Persist activities
    "finalize_week",
    "FinalizeWeekInput",
    "FinalizeWeekOutput",
]
