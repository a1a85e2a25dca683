"""E2E conftest — requires a live agent host and Redis.

E2E tests drive a real workflow through the capability registry:
    - Agent host serving /mcp-servers and /mcp-tools (REGISTRY_URL)
    - A connected GitHub provider
    - Redis for the workflow store and transcript

Run with:
    REPOLENS_TEST_E2E=1 pytest tests/e2e/ -v
"""

from __future__ import annotations

import os
import uuid

import pytest


@pytest.fixture
def e2e_repository():
    """Public repository to research (override with REPOLENS_E2E_REPO)."""
    return os.getenv("REPOLENS_E2E_REPO", "encode/httpx")


@pytest.fixture
def session_id():
    return f"e2e-{uuid.uuid4().hex[:8]}"
