"""Turn candidate records into confirmed interactions.

Both functions take the candidate set returned by the store and apply the
matcher to every side of every record. They are synchronous and pure: all
I/O has already happened by the time they run.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from ddi_engine.matcher import matches
from ddi_engine.models import DrugIdentity, InteractionRecord, ReferenceSide


def _matching(drugs: Sequence[DrugIdentity], side: ReferenceSide) -> list[DrugIdentity]:
    return [drug for drug in drugs if matches(drug, side)]


def cross_check(
    drugs: Sequence[DrugIdentity], candidates: Iterable[InteractionRecord]
) -> list[InteractionRecord]:
    """Find interactions between any two different drugs of one list.

    A record is confirmed when side A is matched by some drug, side B by
    some drug, and at least one such pairing uses two drugs with different
    generic names. This keeps a drug from interacting with itself when
    both sides of a record happen to fuzzy-match the same generic name.

    Args:
        drugs: The patient's resolved medications.
        candidates: Records returned by the candidate prefilter.

    Returns:
        Confirmed records, each at most once, in candidate order.
    """
    confirmed: list[InteractionRecord] = []
    seen: set[UUID] = set()

    for record in candidates:
        if record.id in seen:
            continue

        side_a_drugs = _matching(drugs, record.side_a)
        if not side_a_drugs:
            continue
        side_b_drugs = _matching(drugs, record.side_b)

        if any(a.generic_key != b.generic_key for a in side_a_drugs for b in side_b_drugs):
            seen.add(record.id)
            confirmed.append(record)

    return confirmed


def incremental_check(
    new_drug: DrugIdentity,
    existing: Sequence[DrugIdentity],
    candidates: Iterable[InteractionRecord],
) -> list[InteractionRecord]:
    """Find interactions that adding `new_drug` would introduce.

    A record is confirmed when the new drug matches one side and some
    existing drug matches the other, in either orientation.

    Unlike cross_check(), the new drug and the matched existing drug are
    not required to have different generic names: re-prescribing a drug
    the patient already takes under another brand can still report an
    interaction whose two sides both match that generic.
    """
    confirmed: list[InteractionRecord] = []
    seen: set[UUID] = set()

    for record in candidates:
        if record.id in seen:
            continue

        new_matches_a = matches(new_drug, record.side_a)
        new_matches_b = matches(new_drug, record.side_b)
        if not (new_matches_a or new_matches_b):
            continue

        hit = (new_matches_a and any(matches(d, record.side_b) for d in existing)) or (
            new_matches_b and any(matches(d, record.side_a) for d in existing)
        )
        if hit:
            seen.add(record.id)
            confirmed.append(record)

    return confirmed
