"""Identity Resolver - decides which carrier a trip belongs to.

Resolution order:
- Active vehicle registration (vehicle evidence always wins)
- Driver name, exact or via reordered name variants
- Otherwise Unresolved: a suggestion is computed and the driver is
  queued for human confirmation

Key Features:
- ResolutionContext snapshot rebuilt once per batch
- Name variants bridge "First Last" vs "Last First" data entry
- Confirmed drivers become permanent registry rows

Usage:
    from identity_resolver import IdentityResolver, load_resolution_context

    ctx = load_resolution_context(db_path="reconciliation.db")
    resolution = IdentityResolver(ctx, queue=pending).resolve(trip)

    if resolution.is_resolved:
        company = ctx.company(resolution.company_id)
"""

from identity_resolver.models import (
    Company,
    CompanySuggestion,
    Driver,
    MatchType,
    Resolution,
    ResolutionOutcome,
    SuggestionSource,
    Vehicle,
)
from identity_resolver.resolver import (
    IdentityResolver,
    ResolutionContext,
    load_resolution_context,
)
from identity_resolver.normalize import (
    clean_vehicle_id,
    generate_name_variants,
    is_same_person,
    normalize_driver_name,
)
from identity_resolver.db import (
    init_registry_db,
    add_company,
    get_company,
    get_company_by_name,
    list_companies,
    add_driver,
    find_driver_by_name,
    upsert_driver_mapping,
    list_drivers,
    add_vehicle,
    set_vehicle_active,
    list_vehicles,
    seed_sample_registry,
)

__all__ = [
    # Models
    "Company",
    "CompanySuggestion",
    "Driver",
    "MatchType",
    "Resolution",
    "ResolutionOutcome",
    "SuggestionSource",
    "Vehicle",
    # Resolver
    "IdentityResolver",
    "ResolutionContext",
    "load_resolution_context",
    # Normalization
    "clean_vehicle_id",
    "generate_name_variants",
    "is_same_person",
    "normalize_driver_name",
    # Database
    "init_registry_db",
    "add_company",
    "get_company",
    "get_company_by_name",
    "list_companies",
    "add_driver",
    "find_driver_by_name",
    "upsert_driver_mapping",
    "list_drivers",
    "add_vehicle",
    "set_vehicle_active",
    "list_vehicles",
    "seed_sample_registry",
]
