"""Interaction severity levels.

Severity arrives as free text from the reference data and from request
parameters. It is parsed exactly once, at the boundary, into the
`Severity` enum below; everything downstream compares typed values and
their numeric priority.
"""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    """Clinical severity of a drug-drug interaction.

    The string value is the lowercase token used in the database and in
    JSON responses. Members are declared from most to least severe.
    """

    CONTRAINDICATED = "contraindicated"  # Avoid use completely
    MAJOR = "major"  # Serious, requires clinical intervention
    MODERATE = "moderate"  # Caution advised, may require monitoring
    MINOR = "minor"  # Low risk but may be clinically relevant
    UNKNOWN = "unknown"  # Severity not determined

    @property
    def priority(self) -> int:
        """Numeric priority, higher is more severe (5 down to 1)."""
        return _PRIORITIES[self]

    @classmethod
    def parse(cls, raw: str | None) -> Severity:
        """Parse a severity string case-insensitively.

        Anything unrecognized (including None and blank strings) becomes
        UNKNOWN instead of raising, so one bad reference row never fails a
        whole query.
        """
        if raw is None:
            return cls.UNKNOWN
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN


_PRIORITIES: dict[Severity, int] = {
    Severity.CONTRAINDICATED: 5,
    Severity.MAJOR: 4,
    Severity.MODERATE: 3,
    Severity.MINOR: 2,
    Severity.UNKNOWN: 1,
}
