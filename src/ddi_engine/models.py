"""Core value types shared by the matching engine.

All of these are plain frozen dataclasses: they are created per request
(or per row read from the reference store) and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TypeVar
from uuid import UUID

from ddi_engine.severity import Severity

_T = TypeVar("_T")


def code_key(code: str) -> str:
    """Case-insensitive comparison key for an ATC code."""
    return code.strip().casefold()


def name_key(name: str) -> str:
    """Lowercased reference name, as compared against retrieval prefixes."""
    return name.lower()


def _in_code_order(a: ReferenceSide, b: ReferenceSide) -> tuple[ReferenceSide, ReferenceSide]:
    if code_key(a.identifier_code) <= code_key(b.identifier_code):
        return a, b
    return b, a


@dataclass(frozen=True)
class DrugIdentity:
    """A medication as the matcher sees it.

    Attributes:
        display_name: Name shown to the clinician (brand or local name).
        generic_name: Active ingredient name, the fuzzy-matching key.
        identifier_code: ATC code when known, otherwise None.
    """

    display_name: str
    generic_name: str
    identifier_code: str | None = None

    @property
    def generic_key(self) -> str:
        """Lowercased generic name, used to tell two drugs apart."""
        return self.generic_name.lower()


@dataclass(frozen=True)
class ReferenceSide:
    """One drug of a reference interaction record."""

    identifier_code: str
    name: str | None = None


@dataclass(frozen=True)
class InteractionRecord:
    """A known drug-drug interaction from the reference table.

    The two sides are stored ordered by ATC code, but the pair is
    unordered for matching purposes.
    """

    id: UUID
    side_a: ReferenceSide
    side_b: ReferenceSide
    severity: Severity
    effect: str | None = None
    mechanism: str | None = None
    management: str | None = None
    source: str = "DDINTER"
    source_id: str | None = None
    is_active: bool = True

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (
            code_key(self.side_a.identifier_code),
            code_key(self.side_b.identifier_code),
            self.source,
        )

    def ordered(self) -> InteractionRecord:
        """Return this record with its sides in alphabetical code order."""
        side_a, side_b = _in_code_order(self.side_a, self.side_b)
        return replace(self, side_a=side_a, side_b=side_b)


@dataclass(frozen=True)
class ReferenceEntry:
    """An incoming reference interaction, to be inserted or merged.

    None means "not given". A new entry gets severity UNKNOWN and is
    active; merged into a stored record, a None field keeps the stored
    value.
    """

    side_a: ReferenceSide
    side_b: ReferenceSide
    severity: Severity | None = None
    effect: str | None = None
    mechanism: str | None = None
    management: str | None = None
    source: str = "DDINTER"
    source_id: str | None = None
    is_active: bool | None = None

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (
            code_key(self.side_a.identifier_code),
            code_key(self.side_b.identifier_code),
            self.source,
        )

    def ordered(self) -> ReferenceEntry:
        side_a, side_b = _in_code_order(self.side_a, self.side_b)
        return replace(self, side_a=side_a, side_b=side_b)

    def to_record(self, record_id: UUID) -> InteractionRecord:
        """The record stored when no entry with this natural key exists yet."""
        return InteractionRecord(
            id=record_id,
            side_a=self.side_a,
            side_b=self.side_b,
            severity=self.severity if self.severity is not None else Severity.UNKNOWN,
            effect=self.effect,
            mechanism=self.mechanism,
            management=self.management,
            source=self.source,
            source_id=self.source_id,
            is_active=self.is_active if self.is_active is not None else True,
        )


def merge_records(existing: InteractionRecord, incoming: ReferenceEntry) -> InteractionRecord:
    """Merge an incoming reference entry into the stored record.

    Both must share the same natural key. Incoming non-null values win;
    incoming None keeps the stored value. The stored id, codes and source
    are kept.
    """

    def pick(new: _T | None, old: _T) -> _T:
        return new if new is not None else old

    return InteractionRecord(
        id=existing.id,
        side_a=ReferenceSide(
            identifier_code=existing.side_a.identifier_code,
            name=pick(incoming.side_a.name, existing.side_a.name),
        ),
        side_b=ReferenceSide(
            identifier_code=existing.side_b.identifier_code,
            name=pick(incoming.side_b.name, existing.side_b.name),
        ),
        severity=pick(incoming.severity, existing.severity),
        effect=pick(incoming.effect, existing.effect),
        mechanism=pick(incoming.mechanism, existing.mechanism),
        management=pick(incoming.management, existing.management),
        source=existing.source,
        source_id=pick(incoming.source_id, existing.source_id),
        is_active=pick(incoming.is_active, existing.is_active),
    )


@dataclass(frozen=True)
class PatientMedication:
    """An active medication as handed over by the prescription source.

    Names are already decrypted. generic_name and identifier_code may be
    missing; the identity resolver fills in what it can.
    """

    medication_name: str
    generic_name: str | None = None
    identifier_code: str | None = None


@dataclass(frozen=True)
class InteractionCheckResult:
    """Severity-ranked outcome of one interaction check."""

    interactions: list[InteractionRecord] = field(default_factory=list)
    total: int = 0
    major_count: int = 0
    moderate_count: int = 0
    minor_count: int = 0
    highest_severity: Severity | None = None

    @classmethod
    def empty(cls) -> InteractionCheckResult:
        return cls()


@dataclass(frozen=True)
class InteractionStatistics:
    """Counts over the active reference table."""

    total: int
    contraindicated: int
    major: int
    moderate: int
    minor: int
    unknown: int
    sources: int
