"""Capability registry client, MCP result parsing and tool lookup.

HTTP is served by httpx.MockTransport — no real connections are made.
"""

from __future__ import annotations

import json

import httpx
import pytest

from repolens.tools.capabilities import (
    CapabilityInvocationError,
    HttpCapabilityRegistry,
    find_capability,
    parse_tool_result,
    resolve_capabilities,
    tool_key,
)

SNAPSHOT = {
    "servers": {
        "gh1": {"name": "GitHub", "state": "ready", "server_url": "https://api.githubcopilot.com/mcp/"},
        "ln1": {"name": "Linear", "state": "authenticating"},
    },
    "tools": [
        {"name": "search_code", "serverId": "gh1"},
        {"name": "get_file_contents", "serverId": "gh1"},
        {"name": "create_comment", "serverId": "ln1"},
    ],
}


def _registry(handler, api_key: str | None = "secret") -> HttpCapabilityRegistry:
    registry = HttpCapabilityRegistry(base_url="http://host/agents/chat/s1", api_key=api_key)
    registry._client = httpx.AsyncClient(
        base_url=registry.base_url,
        headers=registry._auth_headers(),
        transport=httpx.MockTransport(handler),
    )
    return registry


# ─────────────────────────────────────────────────────────────────────────────
# parse_tool_result
# ─────────────────────────────────────────────────────────────────────────────


class TestParseToolResult:

    def test_json_text_is_decoded(self):
        result = {"content": [{"type": "text", "text": '{"total_count": 1}'}]}
        assert parse_tool_result(result) == {"total_count": 1}

    def test_plain_text_returned_as_is(self):
        result = {"content": [{"type": "text", "text": "just words"}]}
        assert parse_tool_result(result) == "just words"

    def test_embedded_resource(self):
        result = {"content": [{"type": "resource", "resource": {"uri": "repo://x", "text": "body"}}]}
        assert parse_tool_result(result) == "body"

    def test_error_result_raises(self):
        result = {"isError": True, "content": [{"type": "text", "text": "Not Found"}]}
        with pytest.raises(CapabilityInvocationError, match="Not Found"):
            parse_tool_result(result)

    def test_non_mcp_shapes_pass_through(self):
        assert parse_tool_result({"items": []}) == {"items": []}
        assert parse_tool_result("raw") == "raw"

    def test_empty_content(self):
        assert parse_tool_result({"content": []}) is None


# ─────────────────────────────────────────────────────────────────────────────
# find_capability
# ─────────────────────────────────────────────────────────────────────────────


class TestFindCapability:

    NAMES = ["tool_gh1_search_code", "tool_gh2_search_code", "tool_ln1_create_comment"]

    def test_substring_match(self):
        assert find_capability(self.NAMES, "search_code") == "tool_gh1_search_code"

    def test_provider_prefix_preferred(self):
        assert find_capability(self.NAMES, "search_code", "gh2") == "tool_gh2_search_code"

    def test_falls_back_when_provider_has_no_match(self):
        assert find_capability(self.NAMES, "create_comment", "gh1") == "tool_ln1_create_comment"

    def test_missing(self):
        assert find_capability(self.NAMES, "get_file_contents") is None

    def test_tool_key_convention(self):
        assert tool_key("abc", "search_code") == "tool_abc_search_code"


# ─────────────────────────────────────────────────────────────────────────────
# resolve_capabilities
# ─────────────────────────────────────────────────────────────────────────────


async def test_resolve_binds_repository(github):
    registry = github()
    caps = await resolve_capabilities(registry, "acme/widgets")
    assert caps.search_name == "tool_gh1_search_code"
    assert caps.read_name == "tool_gh1_get_file_contents"

    await caps.search("auth repo:acme/widgets")
    await caps.read("src/auth.py")
    assert registry.calls == [
        ("tool_gh1_search_code", {"query": "auth repo:acme/widgets"}),
        ("tool_gh1_get_file_contents", {"owner": "acme", "repo": "widgets", "path": "src/auth.py"}),
    ]


async def test_resolve_without_tools(make_registry):
    caps = await resolve_capabilities(make_registry(tools=["tool_ln1_create_comment"]), "a/b")
    assert caps.search is None
    assert caps.read is None


# ─────────────────────────────────────────────────────────────────────────────
# HttpCapabilityRegistry
# ─────────────────────────────────────────────────────────────────────────────


class TestHttpCapabilityRegistry:

    async def test_providers_snapshot(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=SNAPSHOT)

        registry = _registry(handler)
        providers = await registry.providers()
        await registry.close()

        assert set(providers) == {"gh1", "ln1"}
        assert providers["gh1"].is_ready
        assert providers["ln1"].state == "authenticating"
        assert seen[0].url.path == "/agents/chat/s1/mcp-servers"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    async def test_capabilities_use_tool_keys(self):
        registry = _registry(lambda request: httpx.Response(200, json=SNAPSHOT))
        names = await registry.capabilities()
        await registry.close()
        assert names == [
            "tool_gh1_search_code",
            "tool_gh1_get_file_contents",
            "tool_ln1_create_comment",
        ]

    async def test_invoke_posts_arguments_and_unwraps(self):
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            payload = {"content": [{"type": "text", "text": '{"items": [{"path": "a.py"}]}'}]}
            return httpx.Response(200, json=payload)

        registry = _registry(handler)
        result = await registry.invoke("tool_gh1_search_code", {"query": "auth"})
        await registry.close()

        assert result == {"items": [{"path": "a.py"}]}
        assert captured["path"].endswith("/mcp-tools/tool_gh1_search_code")
        assert captured["body"] == {"arguments": {"query": "auth"}}

    async def test_http_errors_propagate(self):
        registry = _registry(lambda request: httpx.Response(503, json={"error": "down"}))
        with pytest.raises(httpx.HTTPStatusError):
            await registry.providers()
        await registry.close()

    async def test_no_auth_header_without_key(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"servers": {}, "tools": []})

        registry = _registry(handler, api_key="")
        assert await registry.providers() == {}
        await registry.close()
        assert "Authorization" not in seen[0].headers

    async def test_async_context_manager_closes_client(self):
        async with _registry(lambda r: httpx.Response(200, json=SNAPSHOT)) as registry:
            await registry.providers()
        assert registry._client is None
