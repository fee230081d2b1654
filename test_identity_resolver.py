"""
Identity Resolution Test Suite

Covers name normalization, variant generation and carrier resolution:
1. Token-order variants and same-person checks
2. Vehicle registration wins over any driver name
3. Driver names resolve exactly, via variants, per comma-joined sub-name
4. Unresolved drivers get a suggestion (historical, similarity, fallback)
   and are queued once
"""

import sqlite3

import pytest

from core.errors import UnknownCompanyError
from identity_resolver.db import (
    add_company,
    add_driver,
    find_driver_by_name,
    list_drivers,
    set_vehicle_active,
    upsert_driver_mapping,
)
from identity_resolver.models import MatchType, Resolution, ResolutionOutcome, SuggestionSource
from identity_resolver.normalize import (
    clean_vehicle_id,
    generate_name_variants,
    is_same_person,
    normalize_driver_name,
    split_driver_names,
    token_overlap_score,
    tokenize_name,
)
from identity_resolver.resolver import IdentityResolver, ResolutionContext, load_resolution_context
from models.trips import TripRecord
from pending_mappings.queue import PendingMappingQueue


# =============================================================================
# Normalization
# =============================================================================

class TestNameVariants:
    """Token-order variants of driver names."""

    def test_three_token_name(self):
        variants = generate_name_variants("John Paul Smith")
        assert variants == ["john paul smith", "smith paul john", "john smith paul"]

    def test_two_token_name(self):
        assert generate_name_variants("Jurubita Razvan") == ["jurubita razvan", "razvan jurubita"]

    def test_single_token_and_empty(self):
        assert generate_name_variants("Razvan") == ["razvan"]
        assert generate_name_variants("") == []
        assert generate_name_variants("   ") == []

    def test_variants_are_normalized(self):
        variants = generate_name_variants("  JURUBITA   Razvan ")
        assert variants[0] == "jurubita razvan"
        assert all(v == v.lower() for v in variants)

    def test_four_tokens_deduplicated(self):
        variants = generate_name_variants("a b c d")
        assert len(variants) == len(set(variants))
        assert "d c b a" in variants
        assert "a d c b" in variants

    def test_same_person(self):
        assert is_same_person("Smith John", "john  smith")
        assert is_same_person("Ionut Daniel Pop", "Pop Daniel Ionut")
        assert not is_same_person("John Smith", "John Smyth")
        assert not is_same_person("", "John Smith")


class TestNormalizeHelpers:
    """Whitespace, splitting, tokens and registrations."""

    def test_normalize_driver_name(self):
        assert normalize_driver_name("  Jurubita   Razvan ") == "jurubita razvan"
        assert normalize_driver_name(None) == ""

    def test_split_driver_names(self):
        assert split_driver_names("Pop Ion,  Jurubita Razvan ,") == ["Pop Ion", "Jurubita Razvan"]
        assert split_driver_names("") == []

    def test_tokenize_drops_short_tokens(self):
        assert tokenize_name("Al Jurubita Razvan") == ["jurubita", "razvan"]
        assert tokenize_name("Al Jo", min_length=3) == []

    def test_token_overlap_counts_containment(self):
        assert token_overlap_score(["daniel", "popescu"], ["ionut", "daniel", "pop"]) == 2
        assert token_overlap_score(["razvan"], ["andrei", "marin"]) == 0

    def test_clean_vehicle_id(self):
        assert clean_vehicle_id("OTHR-TR94FST") == "TR94FST"
        assert clean_vehicle_id("b 123 abc") == "B123ABC"
        assert clean_vehicle_id("") == ""


# =============================================================================
# Registry
# =============================================================================

class TestRegistry:
    """Driver mapping persistence."""

    def test_upsert_updates_existing_driver(self, temp_db, registry):
        driver, created = upsert_driver_mapping("andrei  MARIN", registry["daniel"].id, db_path=temp_db)

        assert created is False
        assert driver.company_id == registry["daniel"].id
        assert len([d for d in list_drivers(db_path=temp_db) if d.name == "Andrei Marin"]) == 1

    def test_upsert_creates_driver_with_variants(self, temp_db, registry):
        driver, created = upsert_driver_mapping("Jurubita Razvan", registry["daniel"].id, db_path=temp_db)

        assert created is True
        assert driver.name_variants == ["jurubita razvan", "razvan jurubita"]
        assert find_driver_by_name("JURUBITA razvan", db_path=temp_db).id == driver.id

    def test_upsert_unknown_company(self, temp_db, registry):
        with pytest.raises(UnknownCompanyError):
            upsert_driver_mapping("Jurubita Razvan", 999, db_path=temp_db)

    def test_duplicate_driver_rejected(self, temp_db, registry):
        with pytest.raises(sqlite3.IntegrityError):
            add_driver("Andrei Marin", registry["fast"].id, db_path=temp_db)

    def test_negative_commission_rejected(self, temp_db, registry):
        with pytest.raises(ValueError):
            add_company("Broken S.R.L.", -1, db_path=temp_db)

    @pytest.mark.parametrize("name", ["Unmatched", " unmatched "])
    def test_unmatched_label_is_reserved(self, temp_db, registry, name):
        with pytest.raises(ValueError):
            add_company(name, db_path=temp_db)


# =============================================================================
# Resolution
# =============================================================================

class TestIdentityResolver:
    """Resolution priority and suggestions."""

    @pytest.fixture
    def context(self, temp_db, registry):
        return load_resolution_context(temp_db, fallback_company_name="Fast Express")

    @pytest.fixture
    def queue(self, temp_db):
        return PendingMappingQueue(db_path=temp_db)

    def test_prefixed_vehicle_resolves(self, context, queue, registry):
        resolver = IdentityResolver(context, queue=queue)
        resolution = resolver.resolve(TripRecord(trip_id="T1", vehicle_id="OTHR-TR94FST"))

        assert resolution.is_resolved
        assert resolution.company_id == registry["stef"].id
        assert resolution.match_type is MatchType.VEHICLE
        assert resolution.matched_on == "TR94FST"

    def test_vehicle_overrides_driver(self, context, queue, registry):
        resolver = IdentityResolver(context, queue=queue)
        resolution = resolver.resolve(
            TripRecord(trip_id="T1", vehicle_id="TR94FST", driver_name_raw="Andrei Marin")
        )

        assert resolution.company_id == registry["stef"].id
        assert resolution.match_type is MatchType.VEHICLE

    def test_inactive_vehicle_ignored(self, temp_db, registry, queue):
        set_vehicle_active("TR94FST", False, db_path=temp_db)
        context = load_resolution_context(temp_db, fallback_company_name="Fast Express")
        resolver = IdentityResolver(context, queue=queue)

        resolution = resolver.resolve(
            TripRecord(trip_id="T1", vehicle_id="TR94FST", driver_name_raw="Andrei Marin")
        )
        assert resolution.company_id == registry["fast"].id
        assert resolution.match_type is MatchType.DRIVER_EXACT

    def test_driver_exact_and_variant(self, context, registry):
        resolver = IdentityResolver(context)

        exact = resolver.resolve(TripRecord(trip_id="T1", driver_name_raw="ANDREI marin"))
        assert exact.company_id == registry["fast"].id
        assert exact.match_type is MatchType.DRIVER_EXACT

        variant = resolver.resolve(TripRecord(trip_id="T2", driver_name_raw="Pop Daniel Ionut"))
        assert variant.company_id == registry["daniel"].id
        assert variant.match_type is MatchType.DRIVER_VARIANT

    def test_comma_joined_names_use_first_match(self, context, queue, registry):
        resolver = IdentityResolver(context, queue=queue)
        resolution = resolver.resolve(
            TripRecord(trip_id="T1", driver_name_raw="Jurubita Razvan, Munteanu Stefan")
        )

        assert resolution.company_id == registry["stef"].id
        assert len(queue) == 0

    def test_unresolved_gets_fallback_and_is_queued_once(self, context, queue, registry):
        resolver = IdentityResolver(context, queue=queue)

        first = resolver.resolve(TripRecord(trip_id="T1", driver_name_raw="Jurubita Razvan"))
        second = resolver.resolve(TripRecord(trip_id="T2", driver_name_raw="Razvan Jurubita"))

        assert first.outcome is ResolutionOutcome.UNRESOLVED
        assert first.company_id is None
        assert first.suggestion.company_id == registry["fast"].id
        assert first.suggestion.source is SuggestionSource.FALLBACK
        assert {a.company_id for a in first.alternatives} == {registry["daniel"].id, registry["stef"].id}
        assert second.driver_name == "Razvan Jurubita"

        assert len(queue) == 1
        assert queue.list()[0].trip_ids == ["T1", "T2"]

    def test_similarity_suggestion(self, context, registry):
        resolver = IdentityResolver(context)
        suggestion, alternatives = resolver.suggest_company("Daniel Popescu")

        assert suggestion.company_id == registry["daniel"].id
        assert suggestion.source is SuggestionSource.SIMILARITY
        assert suggestion.score == 2
        assert registry["daniel"].id not in {a.company_id for a in alternatives}

    def test_historical_pairing_beats_similarity(self, context, registry):
        context.remember_pairing("Daniel Popescu", registry["stef"].id)
        resolver = IdentityResolver(context)

        suggestion, alternatives = resolver.suggest_company("Popescu Daniel")
        assert suggestion.company_id == registry["stef"].id
        assert suggestion.source is SuggestionSource.HISTORICAL
        assert alternatives[0].company_id == registry["daniel"].id

    def test_similarity_tie_goes_to_lowest_id(self, registry):
        companies = list(registry.values())
        context = ResolutionContext.build(companies, drivers=[], vehicles=[])
        context.exact_names = {"marin stan": registry["stef"].id, "marin pop": registry["daniel"].id}

        suggestion, _ = IdentityResolver(context).suggest_company("Marin Ionescu")
        assert suggestion.company_id == min(registry["stef"].id, registry["daniel"].id)

    def test_no_names_no_vehicle_not_queued(self, context, queue):
        resolution = IdentityResolver(context, queue=queue).resolve(TripRecord(trip_id="T1"))

        assert not resolution.is_resolved
        assert resolution.driver_name is None
        assert len(queue) == 0

    def test_resolution_shape_enforced(self):
        with pytest.raises(ValueError):
            Resolution(outcome=ResolutionOutcome.RESOLVED, match_type=MatchType.VEHICLE)
        with pytest.raises(ValueError):
            Resolution(outcome=ResolutionOutcome.UNRESOLVED, company_id=1)

    def test_explain_resolution(self, context):
        resolver = IdentityResolver(context)
        resolution = resolver.resolve(TripRecord(trip_id="T1", driver_name_raw="Jurubita Razvan"))

        text = resolver.explain_resolution(resolution)
        assert "unresolved" in text
        assert "Fast Express" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
