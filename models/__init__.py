"""Models Package.

Data models shared across the reconciliation pipeline:
- Trip manifest rows and invoice lines of one weekly batch
- Data reference models for artifact storage
"""

from models.trips import (
    BillingCycle,
    TripRecord,
    InvoiceFeedRow,
    InvoiceLine,
    QuarantinedRow,
    ReconciliationBatch,
)

from models.refs import (
    ArtifactKind,
    DataReference,
    WeeklyArtifacts,
)

__all__ = [
    # Trips and invoices
    "BillingCycle",
    "TripRecord",
    "InvoiceFeedRow",
    "InvoiceLine",
    "QuarantinedRow",
    "ReconciliationBatch",
    # References
    "ArtifactKind",
    "DataReference",
    "WeeklyArtifacts",
]
