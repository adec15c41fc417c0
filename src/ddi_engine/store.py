"""Collaborator contracts for reference data, plus in-memory implementations.

`InteractionStore` serves the drug-interaction reference table and
`Formulary` the local medication catalogue. The SQLAlchemy-backed
implementations live in `ddi_engine.db`; the in-memory ones here evaluate
the very same candidate predicates in Python and are handy for small
deployments, fixtures and tests.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection, Iterable
from typing import Protocol, Union

from ddi_engine.context import AccessContext
from ddi_engine.models import (
    InteractionRecord,
    InteractionStatistics,
    ReferenceEntry,
    merge_records,
)
from ddi_engine.prefilter import CandidateFilter, PairedCandidateFilter
from ddi_engine.severity import Severity

CandidatePredicate = Union[CandidateFilter, PairedCandidateFilter]


class InteractionStoreError(Exception):
    """Raised when the reference store cannot be queried or written."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InteractionStore(Protocol):
    async def fetch_candidates(
        self, ctx: AccessContext, predicate: CandidatePredicate
    ) -> list[InteractionRecord]:
        """Return active records admitted by `predicate`."""
        ...

    async def upsert(self, ctx: AccessContext, entry: ReferenceEntry) -> InteractionRecord:
        """Insert an entry or merge it into the record with the same natural key.

        Fields the entry leaves as None keep their stored values.
        """
        ...

    async def statistics(self, ctx: AccessContext) -> InteractionStatistics:
        ...


class Formulary(Protocol):
    async def codes_for_names(self, ctx: AccessContext, names: Collection[str]) -> dict[str, str]:
        """Map lowercased medication names (brand or generic) to ATC codes.

        Names without a coded formulary entry are simply absent.
        """
        ...

    async def names_for_codes(
        self, ctx: AccessContext, codes: Collection[str]
    ) -> dict[str, tuple[str, str]]:
        """Map uppercased ATC codes to (display name, generic name)."""
        ...


def statistics_for(records: Iterable[InteractionRecord]) -> InteractionStatistics:
    active = [r for r in records if r.is_active]
    by_severity = {s: 0 for s in Severity}
    for record in active:
        by_severity[record.severity] += 1
    return InteractionStatistics(
        total=len(active),
        contraindicated=by_severity[Severity.CONTRAINDICATED],
        major=by_severity[Severity.MAJOR],
        moderate=by_severity[Severity.MODERATE],
        minor=by_severity[Severity.MINOR],
        unknown=by_severity[Severity.UNKNOWN],
        sources=len({r.source for r in active}),
    )


class InMemoryInteractionStore:
    """Reference table held in a dict keyed by natural key."""

    def __init__(self, records: Iterable[InteractionRecord] = ()) -> None:
        self._records: dict[tuple[str, str, str], InteractionRecord] = {}
        for record in records:
            ordered = record.ordered()
            self._records[ordered.natural_key] = ordered

    async def fetch_candidates(
        self, ctx: AccessContext, predicate: CandidatePredicate
    ) -> list[InteractionRecord]:
        return [r for r in self._records.values() if r.is_active and predicate.admits(r)]

    async def upsert(self, ctx: AccessContext, entry: ReferenceEntry) -> InteractionRecord:
        ordered = entry.ordered()
        existing = self._records.get(ordered.natural_key)
        if existing is None:
            merged = ordered.to_record(new_record_id())
        else:
            merged = merge_records(existing, ordered)
        self._records[merged.natural_key] = merged
        return merged

    async def statistics(self, ctx: AccessContext) -> InteractionStatistics:
        return statistics_for(self._records.values())


class InMemoryFormulary:
    """Formulary backed by (name, generic_name, atc_code) tuples."""

    def __init__(self, entries: Iterable[tuple[str, str | None, str | None]] = ()) -> None:
        self._entries = list(entries)

    async def codes_for_names(self, ctx: AccessContext, names: Collection[str]) -> dict[str, str]:
        wanted = {n.lower() for n in names}
        found: dict[str, str] = {}
        for name, generic, code in self._entries:
            if not code:
                continue
            for key in (name, generic):
                if key and key.lower() in wanted:
                    found.setdefault(key.lower(), code)
        return found

    async def names_for_codes(
        self, ctx: AccessContext, codes: Collection[str]
    ) -> dict[str, tuple[str, str]]:
        wanted = {c.upper() for c in codes}
        found: dict[str, tuple[str, str]] = {}
        for name, generic, code in self._entries:
            if code and code.upper() in wanted:
                found.setdefault(code.upper(), (name, generic or name))
        return found


def new_record_id() -> uuid.UUID:
    return uuid.uuid4()
