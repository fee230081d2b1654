"""Domain exceptions for the carrier reconciliation pipeline.

Row-level data problems never raise (they are skipped or quarantined and
counted). These exceptions are reserved for conditions the caller has to
act on: a file that cannot be read at all, an unknown company id, a
balance or payment that does not exist.
"""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class FeedFormatError(ReconciliationError):
    """A feed file is unreadable or lacks every required column."""
    pass


class UnknownCompanyError(ReconciliationError):
    """Company id does not exist in the registry."""
    def __init__(self, company_id: int):
        super().__init__(f"Unknown company id: {company_id}", {"company_id": company_id})
        self.company_id = company_id


class BatchNotFoundError(ReconciliationError):
    """No held batch with this id."""
    pass


class PendingMappingNotFoundError(ReconciliationError):
    """Driver name is not in the pending-mapping queue."""
    pass


class UnmatchedTripNotFoundError(ReconciliationError):
    """Trip id is not in the Unmatched bucket."""
    pass


class BalanceNotFoundError(ReconciliationError):
    """No balance row for company + period."""
    def __init__(self, company_id: int, period_label: str):
        super().__init__(
            f"No balance for company {company_id} in period {period_label}",
            {"company_id": company_id, "period_label": period_label},
        )
        self.company_id = company_id
        self.period_label = period_label


class PaymentNotFoundError(ReconciliationError):
    """Payment id does not exist (or was already reversed)."""
    pass


class BatchBlockedError(ReconciliationError):
    """Batch cannot be finalized while a blocking check fails."""
    pass
