"""Workflow definitions module."""

from workflows.weekly_reconciliation_workflow import (
    WeeklyReconciliationWorkflow,
    WeeklyReconciliationInput,
    MappingDecision,
    TASK_QUEUE_DEFAULT,
)

__all__ = [
    "WeeklyReconciliationWorkflow",
    "WeeklyReconciliationInput",
    "MappingDecision",
    "TASK_QUEUE_DEFAULT",
]
