"""Async client for the capability registry (agent host with MCP servers).

The agent host owns provider connections and authentication; repolens only
reads the registry snapshot and invokes tools by name.

Route map:
    Snapshot:  GET  {base}/mcp-servers
               → {"servers": {id: {"name", "state", ...}},
                  "tools":   [{"name", "serverId", ...}]}
    Invoke:    POST {base}/mcp-tools/{tool_key}   body: {"arguments": {...}}
               → MCP tool result {"content": [{"type": "text", "text": ...}]}

Tool keys follow the host convention ``tool_{serverId}_{toolName}``, so a
capability is located by substring match on the tool name and, optionally,
on the owning server id.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from repolens.config import settings
from repolens.research.models import ProviderInfo

logger = structlog.get_logger().bind(component="capabilities")

SEARCH_TOOL = "search_code"
READ_TOOL = "get_file_contents"
COMMENT_TOOL = "create_comment"


class CapabilityInvocationError(Exception):
    """The provider reported an error result for a tool call."""


class CapabilityRegistry(Protocol):
    """What the research core needs from the agent host."""

    async def providers(self) -> dict[str, ProviderInfo]: ...

    async def capabilities(self) -> list[str]: ...

    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any: ...


def tool_key(server_id: str, tool_name: str) -> str:
    return f"tool_{server_id}_{tool_name}"


class HttpCapabilityRegistry:
    """CapabilityRegistry backed by the agent host's HTTP API.

    Single httpx client, single base URL, Bearer auth on every request.
    Errors are logged and re-raised; callers decide whether they are fatal.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.registry_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.registry_api_key
        self.timeout = timeout or settings.registry_timeout
        self._client: httpx.AsyncClient | None = None

    def _auth_headers(self) -> dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpCapabilityRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Snapshot ──────────────────────────────────────────────────────────

    async def _snapshot(self) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get("/mcp-servers")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error("registry_snapshot_failed", error=str(e))
            raise

    async def providers(self) -> dict[str, ProviderInfo]:
        """Current provider snapshot: id → ProviderInfo(name, state)."""
        snapshot = await self._snapshot()
        servers = snapshot.get("servers") or {}
        return {
            server_id: ProviderInfo(
                id=server_id,
                name=str(info.get("name", "")),
                state=str(info.get("state", "connecting")),
            )
            for server_id, info in servers.items()
        }

    async def capabilities(self) -> list[str]:
        """Names of every invokable tool, as ``tool_{serverId}_{toolName}``."""
        snapshot = await self._snapshot()
        names: list[str] = []
        for tool in snapshot.get("tools") or []:
            if isinstance(tool, str):
                names.append(tool)
            elif isinstance(tool, dict) and tool.get("name"):
                server_id = tool.get("serverId")
                names.append(tool_key(server_id, tool["name"]) if server_id else tool["name"])
        return names

    # ── Invocation ────────────────────────────────────────────────────────

    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any:
        """Call tool *name* and return its parsed result."""
        client = await self._get_client()
        try:
            response = await client.post(f"/mcp-tools/{name}", json={"arguments": arguments})
            response.raise_for_status()
            result = response.json()
            logger.debug("capability_invoked", tool=name)
            return parse_tool_result(result)
        except httpx.HTTPError as e:
            logger.error("capability_invoke_failed", tool=name, error=str(e))
            raise


# ── Result parsing ────────────────────────────────────────────────────────────


def parse_tool_result(result: Any) -> Any:
    """Unwrap an MCP tool result into plain data.

    MCP tools answer with ``{"content": [{"type": "text", "text": "..."}]}``.
    The first text item is JSON-decoded when possible, otherwise returned as
    a string. Embedded resources yield their ``text`` (or the resource dict
    itself when it only carries a blob). Anything else is returned unchanged.
    """
    if not isinstance(result, dict) or not isinstance(result.get("content"), list):
        return result

    if result.get("isError"):
        message = next(
            (c.get("text", "") for c in result["content"] if isinstance(c, dict)),
            "",
        )
        raise CapabilityInvocationError(message or "tool returned an error")

    for item in result["content"]:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "text" and item.get("text") is not None:
            text = item["text"]
            try:
                return json.loads(text)
            except (TypeError, ValueError):
                return text
        if item.get("type") == "resource" and isinstance(item.get("resource"), dict):
            resource = item["resource"]
            return resource.get("text", resource)
    return None


# ── Capability lookup ─────────────────────────────────────────────────────────


def find_capability(
    names: list[str],
    tool_name: str,
    provider_id: str | None = None,
) -> str | None:
    """Return the first tool key containing *tool_name*.

    When *provider_id* is given, keys namespaced to that provider win over
    same-named tools from other providers.
    """
    matches = [n for n in names if tool_name in n]
    if provider_id:
        prefix = tool_key(provider_id, "")
        preferred = [n for n in matches if n.startswith(prefix)]
        if preferred:
            return preferred[0]
    return matches[0] if matches else None


@dataclass
class CapabilitySet:
    """Search / read capabilities bound to one repository.

    Either field is None when the registry exposes no matching tool.
    """

    search: Callable[[str], Awaitable[Any]] | None = None
    read: Callable[[str], Awaitable[Any]] | None = None
    search_name: str | None = None
    read_name: str | None = None


async def resolve_capabilities(
    registry: CapabilityRegistry,
    repository: str,
    provider_id: str | None = None,
) -> CapabilitySet:
    """Look up the code search and file read tools and bind them to *repository*."""
    owner, _, repo = repository.partition("/")
    names = await registry.capabilities()
    search_name = find_capability(names, SEARCH_TOOL, provider_id)
    read_name = find_capability(names, READ_TOOL, provider_id)

    caps = CapabilitySet(search_name=search_name, read_name=read_name)
    if search_name:
        async def _search(query: str) -> Any:
            return await registry.invoke(search_name, {"query": query})
        caps.search = _search
    if read_name:
        async def _read(path: str) -> Any:
            return await registry.invoke(read_name, {"owner": owner, "repo": repo, "path": path})
        caps.read = _read

    logger.debug(
        "capabilities_resolved",
        repository=repository,
        search=search_name,
        read=read_name,
    )
    return caps
