"""Core module - shared configuration, errors and observability.

Everything in here is independent of the reconciliation domain packages
(identity_resolver, historical_archive, reconciliation, balance_ledger)
so they can all import from it without cycles.
"""

__version__ = "1.0.0"
