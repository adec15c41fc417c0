"""Shared fixtures for the engine tests."""

from __future__ import annotations

import pytest

from ddi_engine.context import AccessContext, Role


@pytest.fixture
def ctx() -> AccessContext:
    """A clinician allowed to read interaction data."""
    return AccessContext(user_id="42", role=Role.DOCTOR)


@pytest.fixture
def admin_ctx() -> AccessContext:
    return AccessContext(user_id="1", role=Role.ADMIN)
