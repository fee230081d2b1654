"""Carrier Identity Resolution.

This module decides which carrier company a trip belongs to:
1. Active vehicle registration (raw, or with the ``PREFIX-`` stripped)
2. Driver name, exact, then via reordered name variants, per comma-joined sub-name
3. Otherwise Unresolved, with a non-authoritative company suggestion
   (historical pairing, token similarity, or the configured fallback)
   and a pending mapping queued for human confirmation

Only steps 1 and 2 ever assign a company automatically. Everything the
resolver reads comes from a ``ResolutionContext`` built once per batch.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from core.observability.logging import get_logger
from identity_resolver.db import (
    DEFAULT_DB_PATH,
    init_registry_db,
    list_companies,
    list_drivers,
    list_vehicles,
)
from identity_resolver.models import (
    Company,
    CompanySuggestion,
    Driver,
    MatchType,
    Resolution,
    SuggestionSource,
    Vehicle,
)
from identity_resolver.normalize import (
    clean_vehicle_id,
    generate_name_variants,
    normalize_driver_name,
    normalize_registration,
    split_driver_names,
    token_overlap_score,
    tokenize_name,
)
from models.trips import TripRecord


logger = get_logger(__name__)


class MappingQueue(Protocol):
    """Protocol for the pending-mapping queue the resolver feeds.

    ``pending_mappings.PendingMappingQueue`` implements this.
    """

    def enqueue(
        self,
        driver_name: str,
        suggestion: Optional[CompanySuggestion],
        alternatives: List[CompanySuggestion],
        trip_id: Optional[str] = None,
    ) -> bool:
        """Queue a driver for confirmation; False if already queued."""
        ...


# =============================================================================
# Resolution Context
# =============================================================================

@dataclass
class ResolutionContext:
    """Registry snapshot used for every resolution in one batch.

    Attributes:
        companies: Company id → Company
        driver_map: Every name variant of every mapped driver → company id
        exact_names: Normalized canonical driver name → company id
        vehicle_map: Normalized registration of active vehicles → company id
        fallback_company_id: Company suggested when nothing else scores
        historical_pairings: Normalized driver name → company id discovered
            through the archive during this batch (suggestions only)
        min_token_length: Shortest token counted by similarity scoring
    """
    companies: Dict[int, Company] = field(default_factory=dict)
    driver_map: Dict[str, int] = field(default_factory=dict)
    exact_names: Dict[str, int] = field(default_factory=dict)
    vehicle_map: Dict[str, int] = field(default_factory=dict)
    fallback_company_id: Optional[int] = None
    historical_pairings: Dict[str, int] = field(default_factory=dict)
    min_token_length: int = 3

    @classmethod
    def build(
        cls,
        companies: List[Company],
        drivers: List[Driver],
        vehicles: List[Vehicle],
        fallback_company_name: Optional[str] = None,
        min_token_length: int = 3,
    ) -> "ResolutionContext":
        """Build the lookup maps.

        Drivers are applied in list order (id order when loaded from the
        database); when two drivers share a variant the first one keeps it.
        Drivers without a company, and inactive vehicles, are ignored.
        """
        company_map = {c.id: c for c in companies}
        ctx = cls(companies=company_map, min_token_length=min_token_length)

        for driver in drivers:
            if driver.company_id is None or driver.company_id not in company_map:
                continue
            normalized = normalize_driver_name(driver.name)
            ctx.exact_names.setdefault(normalized, driver.company_id)
            for variant in driver.name_variants or generate_name_variants(driver.name):
                ctx.driver_map.setdefault(variant, driver.company_id)

        for vehicle in vehicles:
            if vehicle.is_active and vehicle.company_id in company_map:
                ctx.vehicle_map[normalize_registration(vehicle.vehicle_id)] = vehicle.company_id

        if fallback_company_name:
            wanted = fallback_company_name.strip().lower()
            for company in companies:
                if company.name.lower() == wanted:
                    ctx.fallback_company_id = company.id
                    break

        return ctx

    def company(self, company_id: int) -> Optional[Company]:
        return self.companies.get(company_id)

    def remember_pairing(self, driver_name: str, company_id: int) -> None:
        """Cache a driver → company pairing found through the archive."""
        normalized = normalize_driver_name(driver_name)
        if normalized:
            self.historical_pairings.setdefault(normalized, company_id)

    def historical_pairing(self, driver_name: str) -> Optional[int]:
        for variant in generate_name_variants(driver_name):
            if variant in self.historical_pairings:
                return self.historical_pairings[variant]
        return None


def load_resolution_context(
    db_path: Path = DEFAULT_DB_PATH,
    fallback_company_name: Optional[str] = None,
    min_token_length: int = 3,
) -> ResolutionContext:
    """Read the registry tables and build a ResolutionContext."""
    init_registry_db(db_path)
    ctx = ResolutionContext.build(
        companies=list_companies(db_path=db_path),
        drivers=list_drivers(db_path=db_path),
        vehicles=list_vehicles(active_only=True, db_path=db_path),
        fallback_company_name=fallback_company_name,
        min_token_length=min_token_length,
    )
    logger.debug(
        "Loaded resolution context",
        extra_fields={
            "companies": len(ctx.companies),
            "driver_variants": len(ctx.driver_map),
            "vehicles": len(ctx.vehicle_map),
        },
    )
    return ctx


# =============================================================================
# Resolver
# =============================================================================

class IdentityResolver:
    """Resolves trips to carrier companies.

    Example:
        ctx = load_resolution_context(db_path)
        resolver = IdentityResolver(ctx, queue=pending_queue)

        resolution = resolver.resolve(trip)
        if resolution.is_resolved:
            company = ctx.company(resolution.company_id)
        else:
            # Line goes to Unmatched, driver is in pending_queue
            print(resolution.suggestion)
    """

    def __init__(self, context: ResolutionContext, queue: Optional[MappingQueue] = None):
        self.context = context
        self.queue = queue

    def resolve(self, trip: TripRecord) -> Resolution:
        """Resolve a trip to its carrier.

        Args:
            trip: Trip record with vehicle id and/or driver name

        Returns:
            Resolution: Resolved(company_id) or Unresolved
        """
        vehicle_match = self.resolve_vehicle(trip.vehicle_id)
        if vehicle_match is not None:
            return vehicle_match

        driver_names = split_driver_names(trip.driver_name_raw or "")
        for name in driver_names:
            driver_match = self.resolve_driver_name(name)
            if driver_match is not None:
                return driver_match

        if not driver_names:
            return Resolution.unresolved(
                f"Trip {trip.trip_id} has no mapped vehicle and no driver name",
            )

        # Ambiguous identity: queue the primary driver for a human decision
        primary = driver_names[0]
        suggestion, alternatives = self.suggest_company(primary)
        if self.queue is not None:
            self.queue.enqueue(primary, suggestion, alternatives, trip_id=trip.trip_id)

        return Resolution.unresolved(
            f"No vehicle or driver mapping for '{trip.driver_name_raw}'",
            driver_name=primary,
            suggestion=suggestion,
            alternatives=alternatives,
        )

    def resolve_vehicle(self, vehicle_id: Optional[str]) -> Optional[Resolution]:
        """Look up an active vehicle by raw or cleaned registration."""
        if not vehicle_id:
            return None

        raw = normalize_registration(vehicle_id)
        cleaned = clean_vehicle_id(vehicle_id)
        for registration in (raw, cleaned):
            company_id = self.context.vehicle_map.get(registration)
            if company_id is not None:
                return Resolution.resolved(
                    company_id,
                    MatchType.VEHICLE,
                    registration,
                    f"Vehicle {vehicle_id} → {registration}",
                )
        return None

    def resolve_driver_name(self, name: str) -> Optional[Resolution]:
        """Exact, then variant lookup of one driver name."""
        normalized = normalize_driver_name(name)
        if not normalized:
            return None

        company_id = self.context.driver_map.get(normalized)
        if company_id is not None:
            match_type = (
                MatchType.DRIVER_EXACT
                if normalized in self.context.exact_names
                else MatchType.DRIVER_VARIANT
            )
            return Resolution.resolved(company_id, match_type, normalized, f"Driver '{name}' matched")

        for variant in generate_name_variants(normalized)[1:]:
            company_id = self.context.driver_map.get(variant)
            if company_id is not None:
                return Resolution.resolved(
                    company_id,
                    MatchType.DRIVER_VARIANT,
                    variant,
                    f"Driver '{name}' matched as '{variant}'",
                )
        return None

    def suggest_company(self, name: str) -> Tuple[Optional[CompanySuggestion], List[CompanySuggestion]]:
        """Pick a suggested company and rank the alternatives.

        Priority: a pairing found through the archive in this batch, then
        the highest aggregate token-overlap score against mapped drivers
        (ties go to the lowest company id), then the fallback company.

        Returns:
            Tuple of (suggestion or None, every other company ranked)
        """
        scores = self._score_companies(name)
        ranked = sorted(
            self.context.companies.values(),
            key=lambda c: (-scores.get(c.id, 0), c.id),
        )

        suggestion: Optional[CompanySuggestion] = None
        historical_id = self.context.historical_pairing(name)
        if historical_id is not None and historical_id in self.context.companies:
            suggestion = self._suggestion(historical_id, scores, SuggestionSource.HISTORICAL)
        elif ranked and scores.get(ranked[0].id, 0) > 0:
            suggestion = self._suggestion(ranked[0].id, scores, SuggestionSource.SIMILARITY)
        elif self.context.fallback_company_id is not None:
            suggestion = self._suggestion(
                self.context.fallback_company_id, scores, SuggestionSource.FALLBACK
            )

        suggested_id = suggestion.company_id if suggestion else None
        alternatives = [
            self._suggestion(
                c.id,
                scores,
                SuggestionSource.SIMILARITY if scores.get(c.id, 0) > 0 else SuggestionSource.NONE,
            )
            for c in ranked
            if c.id != suggested_id
        ]
        return suggestion, alternatives

    def _score_companies(self, name: str) -> Dict[int, int]:
        tokens = tokenize_name(name, self.context.min_token_length)
        scores: Dict[int, int] = defaultdict(int)
        if not tokens:
            return scores
        for mapped_name, company_id in self.context.exact_names.items():
            mapped_tokens = tokenize_name(mapped_name, self.context.min_token_length)
            score = token_overlap_score(tokens, mapped_tokens)
            if score:
                scores[company_id] += score
        return scores

    def _suggestion(
        self,
        company_id: int,
        scores: Dict[int, int],
        source: SuggestionSource,
    ) -> CompanySuggestion:
        company = self.context.companies[company_id]
        return CompanySuggestion(
            company_id=company.id,
            company_name=company.name,
            score=scores.get(company_id, 0),
            source=source,
        )

    def explain_resolution(self, resolution: Resolution) -> str:
        """Generate a human-readable explanation of a resolution."""
        lines = ["=" * 60, "Carrier Resolution Explanation", "=" * 60]
        lines.append(f"Outcome: {resolution.outcome.value}")
        lines.append(f"Match type: {resolution.match_type.value}")

        if resolution.is_resolved:
            company = self.context.company(resolution.company_id)
            label = company.name if company else f"#{resolution.company_id}"
            lines.append(f"Company: {label}")
            lines.append(f"Matched on: '{resolution.matched_on}'")
        else:
            if resolution.driver_name:
                lines.append(f"Waiting on driver: '{resolution.driver_name}'")
            if resolution.suggestion:
                s = resolution.suggestion
                lines.append(f"Suggested: {s.company_name} ({s.source.value}, score {s.score})")
            if resolution.alternatives:
                lines.append("Alternatives:")
                for alt in resolution.alternatives:
                    lines.append(f"  - {alt.company_name} (score {alt.score})")

        lines.append("")
        lines.append("Reasons:")
        for reason in resolution.reasons:
            lines.append(f"  - {reason}")
        lines.append("=" * 60)
        return "\n".join(lines)
