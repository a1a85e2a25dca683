"""Exploration unit — search the repository for one sub-question, read a few hits.

Pipeline per sub-question:
  1. keywords + ``repo:{owner/name}`` → code search
  2. up to MAX_FILES paths from the search response
  3. first MAX_READS paths read concurrently (each read may fail independently)
  4. heuristic summary: import lines, declaration lines, short preview

Graceful degradation:
  - No search capability   → Exploration(success=False)
  - No hits                → Exploration(success=True, files=[])
  - No read capability / every read failed → bare file listing
  - Never raises to the caller
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import re
from typing import Any

import structlog

from repolens.research.errors import ExplorationFailure
from repolens.research.keywords import extract_keywords
from repolens.research.models import Exploration
from repolens.tools.capabilities import CapabilitySet

logger = structlog.get_logger().bind(component="research.explorer")

MAX_FILES = 10
MAX_READS = 3
MAX_CONTENT_CHARS = 2000
PREVIEW_CHARS = 200
MAX_IMPORT_LINES = 2
MAX_DECLARATION_LINES = 3
DECLARATION_CHARS = 60

_IMPORT_RE = re.compile(
    r"^\s*(?:import\b|from\s+\S+\s+import\b|#include\b|use\s+\w|using\s+\w)"
    r"|\brequire\s*\("
)
_DECLARATION_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:pub\s+)?(?:async\s+)?"
    r"(?:def|class|function|interface|type|struct|enum|fn|func|const|let|var)\s+\w"
)


def build_search_query(repository: str, sub_question: str) -> str:
    """Keywords joined by spaces plus a ``repo:`` qualifier."""
    keywords = extract_keywords(sub_question)
    return " ".join([*keywords, f"repo:{repository}"])


def extract_paths(raw: Any, limit: int = MAX_FILES) -> list[str]:
    """Pull file paths out of a search response.

    Accepts ``{"items": [...]}``, a bare list, or a single object; each item
    may be a dict carrying ``path`` (preferred) or ``name``, or a plain string.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []

    if isinstance(raw, dict):
        items = raw.get("items")
        if isinstance(items, list):
            candidates = items
        elif raw.get("path") or raw.get("name"):
            candidates = [raw]
        else:
            candidates = []
    elif isinstance(raw, list):
        candidates = raw
    else:
        candidates = []

    paths: list[str] = []
    for item in candidates:
        if isinstance(item, dict):
            path = item.get("path") or item.get("name")
        elif isinstance(item, str):
            path = item
        else:
            path = None
        if path and path not in paths:
            paths.append(str(path))
        if len(paths) >= limit:
            break
    return paths


def decode_content(raw: Any) -> str:
    """Normalise a file-read result to text, truncated to MAX_CONTENT_CHARS."""
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    elif isinstance(raw, dict):
        content = raw.get("content")
        if isinstance(content, str) and raw.get("encoding") == "base64":
            text = _b64_text(content)
        elif isinstance(content, str):
            text = content
        elif isinstance(raw.get("text"), str):
            text = raw["text"]
        elif isinstance(raw.get("blob"), str):
            text = _b64_text(raw["blob"])
        else:
            text = json.dumps(raw)
    else:
        text = str(raw)
    return text[:MAX_CONTENT_CHARS]


def _b64_text(payload: str) -> str:
    try:
        return base64.b64decode(payload).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return payload


def summarize_file(path: str, content: str) -> str:
    """Markdown block with the lightweight signals of one file."""
    lines = content.splitlines()
    imports = [ln.strip() for ln in lines if _IMPORT_RE.search(ln)][:MAX_IMPORT_LINES]
    declarations = [
        ln.strip()[:DECLARATION_CHARS]
        for ln in lines
        if _DECLARATION_RE.match(ln) and not _IMPORT_RE.search(ln)
    ][:MAX_DECLARATION_LINES]

    parts = [f"### `{path}`"]
    if imports:
        parts.append("Imports: " + "; ".join(f"`{i}`" for i in imports))
    if declarations:
        parts.append("Declarations: " + "; ".join(f"`{d}`" for d in declarations))
    preview = content[:PREVIEW_CHARS].strip()
    if preview:
        parts.append(f"```\n{preview}\n```")
    return "\n".join(parts)


def _listing(repository: str, paths: list[str]) -> str:
    lines = [f"Found {len(paths)} relevant file(s) in {repository}:"]
    lines.extend(f"- `{p}`" for p in paths[:MAX_FILES])
    return "\n".join(lines)


async def _read_files(
    capabilities: CapabilitySet,
    paths: list[str],
) -> list[tuple[str, str]]:
    """Read *paths* concurrently; failed or empty reads are dropped."""

    async def _read_one(path: str) -> tuple[str, str]:
        raw = await capabilities.read(path)
        return path, decode_content(raw)

    results = await asyncio.gather(*(_read_one(p) for p in paths), return_exceptions=True)
    contents: list[tuple[str, str]] = []
    for path, result in zip(paths, results):
        if isinstance(result, BaseException):
            logger.debug("file_read_dropped", path=path, error=str(result))
            continue
        if result[1]:
            contents.append(result)
    return contents


async def explore(
    repository: str,
    sub_question: str,
    capabilities: CapabilitySet,
    *,
    max_reads: int = MAX_READS,
) -> Exploration:
    """Investigate one sub-question. Never raises."""
    try:
        if capabilities.search is None:
            raise ExplorationFailure("Search capability not available")

        query = build_search_query(repository, sub_question)
        raw = await capabilities.search(query)
        paths = extract_paths(raw)
        logger.info(
            "exploration_search_done",
            repository=repository,
            query=query,
            hits=len(paths),
        )

        if not paths:
            return Exploration(
                sub_question=sub_question,
                success=True,
                summary=f"No relevant files found in {repository} for: {sub_question}",
                files=[],
            )

        contents: list[tuple[str, str]] = []
        if capabilities.read is not None:
            contents = await _read_files(capabilities, paths[:max_reads])

        if contents:
            summary = "\n\n".join(summarize_file(p, c) for p, c in contents)
        else:
            summary = _listing(repository, paths)

        return Exploration(
            sub_question=sub_question,
            success=True,
            summary=summary,
            files=paths,
        )
    except Exception as exc:
        logger.warning(
            "exploration_failed",
            repository=repository,
            sub_question=sub_question[:80],
            error=str(exc),
        )
        return Exploration(
            sub_question=sub_question,
            success=False,
            error=str(exc) or type(exc).__name__,
        )
