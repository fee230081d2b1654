"""Pending Mappings - unresolved drivers awaiting human confirmation.

Usage:
    from pending_mappings import PendingMappingQueue

    queue = PendingMappingQueue(db_path="reconciliation.db")
    for entry in queue.list():
        print(entry.driver_name, entry.suggestion)
"""

from pending_mappings.models import MappingConfirmation, PendingMapping
from pending_mappings.queue import PendingMappingQueue

__all__ = [
    "MappingConfirmation",
    "PendingMapping",
    "PendingMappingQueue",
]
