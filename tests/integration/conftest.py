"""Integration-test conftest — real-infra fixtures.

Integration tests require:
    REPOLENS_TEST_INTEGRATION=1   (set in shell before running)
    Redis on localhost:6379 (or REDIS_URL)

Run with:
    REPOLENS_TEST_INTEGRATION=1 pytest tests/integration/ -v
"""

from __future__ import annotations

import uuid

import pytest


@pytest.fixture
def session_id():
    """A throwaway session namespace so runs never collide."""
    return f"it-{uuid.uuid4().hex[:8]}"
