"""Tests for confirming candidate records against a drug list."""

from __future__ import annotations

from uuid import uuid4

from ddi_engine.models import DrugIdentity, InteractionRecord, ReferenceSide
from ddi_engine.pairing import cross_check, incremental_check
from ddi_engine.severity import Severity


def _drug(display: str, generic: str, code: str | None = None) -> DrugIdentity:
    return DrugIdentity(display_name=display, generic_name=generic, identifier_code=code)


def _record(
    code_a: str, name_a: str | None, code_b: str, name_b: str | None
) -> InteractionRecord:
    return InteractionRecord(
        id=uuid4(),
        side_a=ReferenceSide(code_a, name_a),
        side_b=ReferenceSide(code_b, name_b),
        severity=Severity.MAJOR,
    )


METFORMINA = _drug("Metforal", "metformina")
WARFARIN = _drug("Coumadin", "warfarin")
IBUPROFENE = _drug("Brufen", "ibuprofene", "M01AE01")

WARFARIN_IBUPROFEN = _record("B01AA03", "Warfarin", "M01AE01", "Ibuprofen")


# --- cross_check ---


def test_cross_check_confirms_pair_in_either_orientation() -> None:
    swapped = _record("M01AE01", "Ibuprofen", "B01AA03", "Warfarin")
    confirmed = cross_check([IBUPROFENE, WARFARIN], [WARFARIN_IBUPROFEN, swapped])
    assert confirmed == [WARFARIN_IBUPROFEN, swapped]


def test_cross_check_needs_both_sides_present() -> None:
    assert cross_check([WARFARIN, METFORMINA], [WARFARIN_IBUPROFEN]) == []


def test_cross_check_no_self_interaction() -> None:
    """One drug fuzzy-matching both sides of a record is not an interaction."""
    both_sides = _record("A10BA02", "Metformin", "A10BA03", "Metformine")
    assert cross_check([METFORMINA], [both_sides]) == []


def test_cross_check_same_generic_under_two_brands_is_not_an_interaction() -> None:
    glucophage = _drug("Glucophage", "Metformina")
    both_sides = _record("A10BA02", "Metformin", "A10BA03", "Metformine")
    assert cross_check([METFORMINA, glucophage], [both_sides]) == []


def test_cross_check_deduplicates_by_id() -> None:
    confirmed = cross_check([IBUPROFENE, WARFARIN], [WARFARIN_IBUPROFEN, WARFARIN_IBUPROFEN])
    assert confirmed == [WARFARIN_IBUPROFEN]


def test_cross_check_empty_inputs() -> None:
    assert cross_check([], [WARFARIN_IBUPROFEN]) == []
    assert cross_check([WARFARIN, IBUPROFENE], []) == []


# --- incremental_check ---


def test_incremental_confirms_new_drug_against_existing() -> None:
    confirmed = incremental_check(IBUPROFENE, [METFORMINA, WARFARIN], [WARFARIN_IBUPROFEN])
    assert confirmed == [WARFARIN_IBUPROFEN]

    # Same result with the roles reversed
    assert incremental_check(WARFARIN, [IBUPROFENE], [WARFARIN_IBUPROFEN]) == [WARFARIN_IBUPROFEN]


def test_incremental_ignores_interactions_among_existing_drugs() -> None:
    assert incremental_check(METFORMINA, [WARFARIN, IBUPROFENE], [WARFARIN_IBUPROFEN]) == []


def test_incremental_does_not_require_distinct_generics() -> None:
    """A re-prescribed generic can still hit a record matching it on both
    sides, while the full cross-check of the same list reports nothing."""
    new = _drug("Glucophage", "metformin")
    existing = [_drug("Metforal", "metformin")]
    both_sides = _record("A10BA02", "Metformin", "A10BA03", "Metformine")

    assert incremental_check(new, existing, [both_sides]) == [both_sides]
    assert cross_check([new, *existing], [both_sides]) == []


def test_incremental_deduplicates_by_id() -> None:
    confirmed = incremental_check(WARFARIN, [IBUPROFENE], [WARFARIN_IBUPROFEN] * 3)
    assert confirmed == [WARFARIN_IBUPROFEN]
