"""Decide whether a patient's drug is one side of a reference interaction.

Two independently maintained naming systems meet here: the local
formulary (Italian names, sometimes with ATC codes) and the interaction
database (English INN names with ATC codes). Matching therefore works in
two steps:

1. ATC code equality, case-insensitive. When it holds, names are ignored.
2. Otherwise, normalized Damerau-Levenshtein similarity between the
   lowercased generic name and the lowercased reference name. Adjacent
   transpositions count as a single edit.

Examples of where the threshold lands:
    "ibuprofene"  vs "ibuprofen"   -> 0.90  (match)
    "metformina"  vs "metformin"   -> 0.90  (match)
    "ketoprofene" vs "fenoprofen"  -> 0.73  (different drug, rejected)
"""

from __future__ import annotations

from rapidfuzz.distance import DamerauLevenshtein

from ddi_engine.models import DrugIdentity, ReferenceSide, code_key

# Accepts short localized suffix differences (-e, -a) while rejecting
# distinct drugs that share a long stem, which score around 0.65-0.75.
SIMILARITY_THRESHOLD = 0.8


def name_similarity(a: str, b: str) -> float:
    """Normalized Damerau-Levenshtein similarity in [0, 1], case-insensitive.

    Computed as 1 - distance / max(len(a), len(b)); two empty strings are
    identical (1.0).
    """
    return DamerauLevenshtein.normalized_similarity(a.lower(), b.lower())


def codes_equal(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return code_key(a) == code_key(b)


def matches(identity: DrugIdentity, side: ReferenceSide) -> bool:
    """Return True if `identity` is the drug on this side of a record."""
    if codes_equal(identity.identifier_code, side.identifier_code):
        return True

    if side.name is not None:
        return name_similarity(identity.generic_name, side.name) >= SIMILARITY_THRESHOLD

    return False
