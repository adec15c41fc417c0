"""Cheap candidate retrieval predicates for the reference store.

The reference table holds on the order of 10^5 interactions. Running the
fuzzy matcher against every row is too slow, so the store is first asked
for a small candidate set using only index-friendly predicates:

- ATC code equality (case-insensitive) against either side's code;
- name prefix: the first 4 characters of each drug's lowercased generic
  name (2 characters for names of length 2-3), matched against the start
  of either side's lowercased name. Names shorter than 2 characters only
  reach the store through their ATC code.

A filter is a plain value. Stores translate it into their own query
language; `admits()` evaluates the same predicate in Python, which is what
the in-memory store and the tests use.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ddi_engine.models import DrugIdentity, InteractionRecord, ReferenceSide, code_key, name_key

PREFIX_LENGTH = 4
SHORT_PREFIX_LENGTH = 2


def name_prefix(generic_name: str) -> str | None:
    """Return the lowercased retrieval prefix for a generic name, or None."""
    name = name_key(generic_name.strip())
    if len(name) >= PREFIX_LENGTH:
        return name[:PREFIX_LENGTH]
    if len(name) >= SHORT_PREFIX_LENGTH:
        return name[:SHORT_PREFIX_LENGTH]
    return None


@dataclass(frozen=True)
class CandidateFilter:
    """Codes and name prefixes that admit one side of a record.

    Codes are stored as `code_key()` values and prefixes lowercased.
    """

    codes: frozenset[str] = frozenset()
    prefixes: frozenset[str] = frozenset()

    @classmethod
    def for_identities(cls, identities: Iterable[DrugIdentity]) -> CandidateFilter:
        codes: set[str] = set()
        prefixes: set[str] = set()
        for identity in identities:
            if identity.identifier_code:
                codes.add(code_key(identity.identifier_code))
            prefix = name_prefix(identity.generic_name)
            if prefix is not None:
                prefixes.add(prefix)
        return cls(codes=frozenset(codes), prefixes=frozenset(prefixes))

    @property
    def is_empty(self) -> bool:
        return not self.codes and not self.prefixes

    def admits_side(self, side: ReferenceSide) -> bool:
        if code_key(side.identifier_code) in self.codes:
            return True
        if side.name is None:
            return False
        name = name_key(side.name)
        return any(name.startswith(prefix) for prefix in self.prefixes)

    def admits(self, record: InteractionRecord) -> bool:
        """Either side of the record is reachable from one of the drugs."""
        return self.admits_side(record.side_a) or self.admits_side(record.side_b)


@dataclass(frozen=True)
class PairedCandidateFilter:
    """Predicate for incremental checks: one side must be reachable from the
    new drug and the other side from the existing drugs, in either order."""

    new: CandidateFilter
    existing: CandidateFilter

    @property
    def is_empty(self) -> bool:
        return self.new.is_empty or self.existing.is_empty

    def admits(self, record: InteractionRecord) -> bool:
        a, b = record.side_a, record.side_b
        return (self.new.admits_side(a) and self.existing.admits_side(b)) or (
            self.new.admits_side(b) and self.existing.admits_side(a)
        )


def cross_check_filter(identities: Iterable[DrugIdentity]) -> CandidateFilter:
    return CandidateFilter.for_identities(identities)


def incremental_filter(
    new_drug: DrugIdentity, existing: Iterable[DrugIdentity]
) -> PairedCandidateFilter:
    return PairedCandidateFilter(
        new=CandidateFilter.for_identities([new_drug]),
        existing=CandidateFilter.for_identities(existing),
    )
