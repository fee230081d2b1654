"""
Observability for the reconciliation pipeline.

Provides structured logging with correlation IDs (tenant, batch, week,
trip, workflow) so one weekly run can be followed across the engine,
the API and Temporal activities.
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
