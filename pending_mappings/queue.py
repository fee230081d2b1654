"""Pending Mapping Queue.

Holds the drivers the resolver could not map. Entries are deduplicated
by name identity: two spellings whose variant sets intersect ("Smith
John" / "John Smith") are one entry.

Confirming an entry writes the driver mapping to the registry, removes
only that entry, and notifies the orchestrator so the held batch is
reconciled again from scratch.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from core.errors import PendingMappingNotFoundError
from core.observability.logging import get_logger
from identity_resolver.db import DEFAULT_DB_PATH, upsert_driver_mapping
from identity_resolver.models import CompanySuggestion
from identity_resolver.normalize import (
    display_driver_name,
    generate_name_variants,
    normalize_driver_name,
)
from pending_mappings.models import MappingConfirmation, PendingMapping


logger = get_logger(__name__)


ConfirmationListener = Callable[[MappingConfirmation], None]


class PendingMappingQueue:
    """Per-batch queue of unresolved drivers.

    Example:
        queue = PendingMappingQueue(db_path, on_confirmed=orchestrator_callback)
        queue.enqueue("Jurubita Razvan", suggestion, alternatives, trip_id="T1")

        confirmation = queue.confirm("Jurubita Razvan", company_id=2)
        # orchestrator_callback(confirmation) has been called
    """

    def __init__(
        self,
        db_path: Path = DEFAULT_DB_PATH,
        on_confirmed: Optional[ConfirmationListener] = None,
    ):
        self.db_path = db_path
        self.on_confirmed = on_confirmed
        self._entries: Dict[str, PendingMapping] = {}
        self._variant_index: Dict[str, str] = {}

    @classmethod
    def from_pending(
        cls,
        entries: List[PendingMapping],
        db_path: Path = DEFAULT_DB_PATH,
        on_confirmed: Optional[ConfirmationListener] = None,
    ) -> "PendingMappingQueue":
        """Rebuild a queue from the pending entries of a stored result."""
        queue = cls(db_path=db_path, on_confirmed=on_confirmed)
        for entry in entries:
            queue._entries[entry.normalized_name] = entry
            for variant in entry.name_variants:
                queue._variant_index.setdefault(variant, entry.normalized_name)
        return queue

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, driver_name: str) -> bool:
        return self._key_for(driver_name) is not None

    def _key_for(self, driver_name: str) -> Optional[str]:
        for variant in generate_name_variants(driver_name):
            key = self._variant_index.get(variant)
            if key is not None:
                return key
        return None

    def enqueue(
        self,
        driver_name: str,
        suggestion: Optional[CompanySuggestion],
        alternatives: List[CompanySuggestion],
        trip_id: Optional[str] = None,
    ) -> bool:
        """Queue a driver for confirmation.

        Returns:
            True if a new entry was created, False if the driver (or a
            reordering of the name) was already queued
        """
        normalized = normalize_driver_name(driver_name)
        if not normalized:
            return False

        key = self._key_for(driver_name)
        if key is not None:
            entry = self._entries[key]
            if trip_id and trip_id not in entry.trip_ids:
                entry.trip_ids.append(trip_id)
            return False

        variants = generate_name_variants(driver_name)
        entry = PendingMapping(
            driver_name=display_driver_name(driver_name),
            normalized_name=normalized,
            name_variants=variants,
            suggestion=suggestion,
            alternatives=list(alternatives),
            trip_ids=[trip_id] if trip_id else [],
        )
        self._entries[normalized] = entry
        for variant in variants:
            self._variant_index.setdefault(variant, normalized)

        logger.info(
            f"Queued driver '{entry.driver_name}' for confirmation",
            extra_fields={
                "suggested_company": suggestion.company_name if suggestion else None,
                "suggestion_source": suggestion.source.value if suggestion else None,
            },
        )
        return True

    def get(self, driver_name: str) -> Optional[PendingMapping]:
        key = self._key_for(driver_name)
        return self._entries.get(key) if key else None

    def list(self) -> List[PendingMapping]:
        """Entries in the order they were first queued."""
        return list(self._entries.values())

    def remove(self, driver_name: str) -> bool:
        """Drop one entry. Other entries are untouched."""
        key = self._key_for(driver_name)
        if key is None:
            return False
        entry = self._entries.pop(key)
        for variant in entry.name_variants:
            if self._variant_index.get(variant) == key:
                del self._variant_index[variant]
        return True

    def confirm(self, driver_name: str, company_id: int) -> MappingConfirmation:
        """Confirm a company for a queued driver.

        Persists the driver mapping (updating an existing driver with the
        same name instead of duplicating it), removes the entry and
        notifies the confirmation listener.

        Args:
            driver_name: Queued driver name (any reordering is accepted)
            company_id: Company chosen by the operator

        Returns:
            MappingConfirmation with the stored driver and a re-run token

        Raises:
            PendingMappingNotFoundError: If the driver is not queued
            UnknownCompanyError: If the company does not exist
        """
        entry = self.get(driver_name)
        if entry is None:
            raise PendingMappingNotFoundError(
                f"Driver '{driver_name}' is not awaiting confirmation",
                {"driver_name": driver_name},
            )

        driver, created = upsert_driver_mapping(entry.driver_name, company_id, db_path=self.db_path)
        self.remove(entry.driver_name)

        confirmation = MappingConfirmation(
            driver=driver,
            created=created,
            company_id=company_id,
            rerun_token=uuid4().hex,
        )
        logger.info(
            f"Confirmed '{driver.name}' → company {company_id}",
            extra_fields={"rerun_token": confirmation.rerun_token, "remaining": len(self)},
        )

        if self.on_confirmed is not None:
            self.on_confirmed(confirmation)
        return confirmation
