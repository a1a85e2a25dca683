"""Unit-test conftest — FakeRedis, FakeRegistry, and engine builders.

All fixtures here are available to every test under tests/unit/ without import.
"""

from __future__ import annotations

import base64
from datetime import timedelta
from typing import Any

import pytest

from repolens.research.delivery import TrackerDelivery
from repolens.research.engine import WorkflowEngine
from repolens.research.models import ProviderInfo
from repolens.research.readiness import ReadinessGate
from repolens.research.store import WorkflowStore
from repolens.research.transcript import Transcript


# ─────────────────────────────────────────────────────────────────────────────
# FakeRedis: the subset of redis.asyncio.Redis the store and transcript use
# ─────────────────────────────────────────────────────────────────────────────


def _redis_slice(items: list, start: int, end: int) -> list:
    """Redis LRANGE/ZRANGE index semantics (inclusive end, negative from tail)."""
    n = len(items)
    s = start if start >= 0 else max(n + start, 0)
    e = end if end >= 0 else n + end
    if e < s:
        return []
    return items[s:e + 1]


class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    def _queue(self, name: str, *args) -> "FakePipeline":
        self._ops.append((name, args))
        return self

    def set(self, key, value):
        return self._queue("set", key, value)

    def zadd(self, key, mapping):
        return self._queue("zadd", key, mapping)

    def rpush(self, key, *values):
        return self._queue("rpush", key, *values)

    def ltrim(self, key, start, end):
        return self._queue("ltrim", key, start, end)

    async def execute(self) -> list:
        if self._redis.fail_writes:
            raise ConnectionError("redis down")
        results = []
        for name, args in self._ops:
            results.append(await getattr(self._redis, name)(*args))
        self._ops.clear()
        return results


class FakeRedis:
    """In-memory stand-in for a Redis server in unit tests."""

    def __init__(self) -> None:
        self.kv: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.lists: dict[str, list[str]] = {}
        self.fail_writes = False
        self.closed = False

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def get(self, key):
        return self.kv.get(key)

    async def set(self, key, value):
        self.kv[key] = value
        return True

    async def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def zrevrange(self, key, start, end):
        members = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        return _redis_slice([m for m, _ in members], start, end)

    async def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def ltrim(self, key, start, end):
        self.lists[key] = _redis_slice(self.lists.get(key, []), start, end)
        return True

    async def lrange(self, key, start, end):
        return _redis_slice(self.lists.get(key, []), start, end)

    async def aclose(self):
        self.closed = True


# ─────────────────────────────────────────────────────────────────────────────
# FakeRegistry: configurable capability registry
# ─────────────────────────────────────────────────────────────────────────────


def b64_file(text: str) -> dict:
    """File payload shaped like a GitHub contents response."""
    return {"encoding": "base64", "content": base64.b64encode(text.encode()).decode()}


AUTH_PY = '''\
import jwt
from fastapi import Depends

class AuthMiddleware:
    pass

def verify_token(token: str) -> dict:
    return jwt.decode(token, "secret")
'''

SESSION_TS = '''\
import { Request } from "express";
const crypto = require("crypto");

export function createSession(req: Request) {
  return crypto.randomUUID();
}
'''


class FakeRegistry:
    """Fake CapabilityRegistry.

    Args:
        snapshots:      Sequence of provider snapshots, one consumed per poll;
                        the last one repeats. Each is a list of (id, name, state).
        tools:          Tool keys returned by capabilities().
        search_result:  Value returned by the search tool (or an Exception to raise).
        files:          path → value returned by the read tool (Exception → raise).
        comment_raises: If set, the comment tool raises this.
    """

    def __init__(
        self,
        snapshots: list[list[tuple[str, str, str]]] | None = None,
        tools: list[str] | None = None,
        search_result: Any = None,
        files: dict[str, Any] | None = None,
        comment_raises: Exception | None = None,
    ) -> None:
        self.snapshots = snapshots or [[]]
        self.tools = list(tools or [])
        self.search_result = search_result
        self.files = files or {}
        self.comment_raises = comment_raises
        self.polls = 0
        self.calls: list[tuple[str, dict]] = []

    async def providers(self) -> dict[str, ProviderInfo]:
        snapshot = self.snapshots[min(self.polls, len(self.snapshots) - 1)]
        self.polls += 1
        return {pid: ProviderInfo(id=pid, name=name, state=state) for pid, name, state in snapshot}

    async def capabilities(self) -> list[str]:
        return list(self.tools)

    async def invoke(self, name: str, arguments: dict) -> Any:
        self.calls.append((name, arguments))
        if "search_code" in name:
            if isinstance(self.search_result, Exception):
                raise self.search_result
            return self.search_result
        if "get_file_contents" in name:
            value = self.files.get(arguments["path"])
            if value is None:
                raise FileNotFoundError(arguments["path"])
            if isinstance(value, Exception):
                raise value
            return value
        if "create_comment" in name:
            if self.comment_raises:
                raise self.comment_raises
            return {"success": True}
        raise KeyError(name)

    def calls_to(self, tool_name: str) -> list[dict]:
        return [args for name, args in self.calls if tool_name in name]


GITHUB_TOOLS = ["tool_gh1_search_code", "tool_gh1_get_file_contents"]
LINEAR_TOOLS = ["tool_ln1_list_issues", "tool_ln1_create_comment"]


def github_registry(**kwargs) -> FakeRegistry:
    """A registry with a ready GitHub provider finding two auth files."""
    defaults: dict[str, Any] = {
        "snapshots": [[("gh1", "GitHub", "ready")]],
        "tools": GITHUB_TOOLS,
        "search_result": {
            "total_count": 2,
            "items": [{"path": "src/auth.py"}, {"path": "web/session.ts"}],
        },
        "files": {"src/auth.py": b64_file(AUTH_PY), "web/session.ts": b64_file(SESSION_TS)},
    }
    defaults.update(kwargs)
    return FakeRegistry(**defaults)


async def no_sleep(_seconds: float) -> None:
    return None


class RecordingScheduler:
    def __init__(self) -> None:
        self.calls: list[tuple[timedelta, str, dict]] = []

    async def schedule(self, delay: timedelta, handler_name: str, payload: dict) -> None:
        self.calls.append((delay, handler_name, payload))


def make_engine(
    registry: FakeRegistry,
    redis: FakeRedis | None = None,
    scheduler: RecordingScheduler | None = None,
    **kwargs,
) -> WorkflowEngine:
    """Engine over FakeRedis with instant readiness polling."""
    redis = redis or FakeRedis()
    store = WorkflowStore(session_id="test", _redis=redis)
    transcript = Transcript(session_id="test", _redis=redis)
    gate = ReadinessGate(registry, sleep=no_sleep)
    delivery = TrackerDelivery(registry, gate, provider_name="Linear", max_attempts=2, interval=0)
    options: dict[str, Any] = {
        "gate": gate,
        "delivery": delivery,
        "readiness_attempts": 3,
        "readiness_interval": 0,
    }
    options.update(kwargs)
    return WorkflowEngine(store, registry, transcript, scheduler or RecordingScheduler(), **options)


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return WorkflowStore(session_id="test", _redis=fake_redis)


@pytest.fixture
def transcript(fake_redis):
    return Transcript(session_id="test", _redis=fake_redis)


@pytest.fixture
def make_registry():
    """The FakeRegistry class, for tests that build their own snapshots."""
    return FakeRegistry


@pytest.fixture
def github():
    """Factory for a registry with a ready GitHub provider (kwargs override)."""
    return github_registry


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def engine_factory():
    """make_engine(registry, redis=None, scheduler=None, **engine_kwargs)."""
    return make_engine


@pytest.fixture
def b64():
    return b64_file
