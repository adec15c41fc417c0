"""Rank confirmed interactions and compute the summary counts."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from ddi_engine.models import InteractionCheckResult, InteractionRecord
from ddi_engine.severity import Severity


def _sort_key(record: InteractionRecord) -> tuple[int, str, str]:
    return (
        -record.severity.priority,
        (record.side_a.name or "").lower(),
        (record.side_b.name or "").lower(),
    )


def aggregate(
    records: Iterable[InteractionRecord],
    min_severity: Severity | None = None,
) -> InteractionCheckResult:
    """Build the check result from confirmed records.

    Records are deduplicated by id, records below `min_severity` are
    dropped (from the list and from every count), and the rest are sorted
    most severe first. Ties keep a deterministic order by the two side
    names.
    """
    threshold = min_severity.priority if min_severity is not None else 0

    unique: dict[UUID, InteractionRecord] = {}
    for record in records:
        if record.severity.priority < threshold:
            continue
        unique.setdefault(record.id, record)

    ranked = sorted(unique.values(), key=_sort_key)

    severities = [r.severity for r in ranked]
    return InteractionCheckResult(
        interactions=ranked,
        total=len(ranked),
        major_count=sum(s in (Severity.CONTRAINDICATED, Severity.MAJOR) for s in severities),
        moderate_count=severities.count(Severity.MODERATE),
        minor_count=severities.count(Severity.MINOR),
        highest_severity=ranked[0].severity if ranked else None,
    )
