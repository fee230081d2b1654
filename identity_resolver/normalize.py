"""Name and Registration Normalization.

Drivers are typed by hand into trip manifests, so the same person shows
up as "Razvan Jurubita", "JURUBITA  Razvan" or "Jurubita Razvan, Ion Pop"
(two drivers on one trip). This module turns those strings into small,
comparable sets of lowercase token orderings.

Variant generation is limited to reordering tokens; it is not an edit
distance matcher. Two names are the same person when their variant sets
intersect.

Examples:
    "John Paul Smith" → ["john paul smith", "smith paul john", "john smith paul"]
    "OTHR-TR94FST"    → registration "TR94FST"
"""

import re
from typing import Iterable, List, Set


_WHITESPACE = re.compile(r"\s+")


def normalize_driver_name(name: str) -> str:
    """Trim, collapse inner whitespace and lowercase a driver name.

    Examples:
        >>> normalize_driver_name("  Jurubita   Razvan ")
        'jurubita razvan'
    """
    if not name:
        return ""
    return _WHITESPACE.sub(" ", str(name).strip()).lower()


def display_driver_name(name: str) -> str:
    """Trim and collapse whitespace but keep the original casing."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", str(name).strip())


def generate_name_variants(name: str) -> List[str]:
    """Generate the token-order variants of a person name.

    Variants, in order, deduplicated:
    1. The name as-is
    2. Full token reversal (2+ tokens)
    3. First token + reversed remainder (3+ tokens)
    4. Last token + reversed everything-but-last (3+ tokens)

    Args:
        name: Raw driver name

    Returns:
        List of lowercase variants, first one is the normalized name

    Examples:
        >>> generate_name_variants("Jurubita Razvan")
        ['jurubita razvan', 'razvan jurubita']
    """
    normalized = normalize_driver_name(name)
    if not normalized:
        return []

    tokens = normalized.split(" ")
    variants = [normalized]

    if len(tokens) > 1:
        variants.append(" ".join(reversed(tokens)))

        if len(tokens) >= 3:
            first, rest = tokens[0], tokens[1:]
            variants.append(" ".join([first] + list(reversed(rest))))

            last, before_last = tokens[-1], tokens[:-1]
            variants.append(" ".join([last] + list(reversed(before_last))))

    seen: Set[str] = set()
    result = []
    for variant in variants:
        if variant not in seen:
            seen.add(variant)
            result.append(variant)
    return result


def is_same_person(name1: str, name2: str) -> bool:
    """True when the variant sets of two names intersect."""
    variants1 = set(generate_name_variants(name1))
    if not variants1:
        return False
    return any(v in variants1 for v in generate_name_variants(name2))


def split_driver_names(raw: str) -> List[str]:
    """Split a comma-joined driver cell into display names.

    Examples:
        >>> split_driver_names("Pop Ion,  Jurubita Razvan ,")
        ['Pop Ion', 'Jurubita Razvan']
    """
    if not raw:
        return []
    names = []
    for part in str(raw).split(","):
        cleaned = display_driver_name(part)
        if cleaned:
            names.append(cleaned)
    return names


def tokenize_name(name: str, min_length: int = 3) -> List[str]:
    """Unique lowercase tokens of at least ``min_length`` characters."""
    tokens = []
    for token in normalize_driver_name(name).split(" "):
        if len(token) >= min_length and token not in tokens:
            tokens.append(token)
    return tokens


def token_overlap_score(tokens: Iterable[str], candidate_tokens: Iterable[str]) -> int:
    """Count tokens that share a substring relation with any candidate token.

    A token scores one point when it is contained in, or contains, at
    least one candidate token. Both lists are expected to come from
    ``tokenize_name`` so short tokens are already filtered out.
    """
    candidates = list(candidate_tokens)
    score = 0
    for token in tokens:
        if any(token in other or other in token for other in candidates):
            score += 1
    return score


# =============================================================================
# Vehicle registrations
# =============================================================================

def normalize_registration(vehicle_id: str) -> str:
    """Uppercase a registration and drop inner whitespace."""
    if not vehicle_id:
        return ""
    return _WHITESPACE.sub("", str(vehicle_id)).upper()


def clean_vehicle_id(vehicle_id: str) -> str:
    """Strip a ``PREFIX-`` operator code, keeping the part after the last hyphen.

    Examples:
        >>> clean_vehicle_id("OTHR-TR94FST")
        'TR94FST'
        >>> clean_vehicle_id("B 123 ABC")
        'B123ABC'
    """
    registration = normalize_registration(vehicle_id)
    if "-" in registration:
        registration = registration.rsplit("-", 1)[1]
    return registration
