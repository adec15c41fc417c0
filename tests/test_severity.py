"""Tests for severity parsing and ordering."""

from __future__ import annotations

import pytest

from ddi_engine.severity import Severity


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("major", Severity.MAJOR),
        ("MAJOR", Severity.MAJOR),
        ("  Moderate ", Severity.MODERATE),
        ("Contraindicated", Severity.CONTRAINDICATED),
        ("minor", Severity.MINOR),
        ("unknown", Severity.UNKNOWN),
    ],
)
def test_parse_is_case_insensitive(raw: str, expected: Severity) -> None:
    assert Severity.parse(raw) is expected


@pytest.mark.parametrize("raw", [None, "", "   ", "severe", "level 3"])
def test_parse_unrecognized_becomes_unknown(raw: str | None) -> None:
    """Bad values degrade to UNKNOWN instead of raising."""
    assert Severity.parse(raw) is Severity.UNKNOWN


def test_priorities_descend_in_declaration_order() -> None:
    priorities = [s.priority for s in Severity]
    assert priorities == [5, 4, 3, 2, 1]


def test_value_is_the_wire_token() -> None:
    assert Severity.MAJOR.value == "major"
    assert Severity("moderate") is Severity.MODERATE
