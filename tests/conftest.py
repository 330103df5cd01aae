"""Shared test configuration."""

from __future__ import annotations

import pytest

from mailbridge.auth.token_refresh import reset_token_refreshers


@pytest.fixture(autouse=True)
def _reset_shared_refreshers():
    reset_token_refreshers()
    yield
    reset_token_refreshers()
