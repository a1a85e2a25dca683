"""Synthesizer — merge exploration results into one markdown answer.

Layout:

    # Research: <question>

    ## <sub-question>
    <summary>
    ...

    ## Relevant Files            (only when any exploration found files)
    - `path`

Pure function: no I/O, no LLM, deterministic for a given input.
"""

from __future__ import annotations

from collections.abc import Iterable

from repolens.research.models import Exploration

# Answers shorter than this are treated as noise by the engine.
MIN_RESULT_CHARS = 50


def relevant_files(explorations: Iterable[Exploration]) -> list[str]:
    """Union of every exploration's files, deduplicated in first-seen order."""
    seen: dict[str, None] = {}
    for exploration in explorations:
        for path in exploration.files:
            seen.setdefault(path, None)
    return list(seen)


def synthesize(question: str, explorations: list[Exploration]) -> str:
    """Assemble the answer document for *question*."""
    lines = [f"# Research: {question}", ""]

    for exploration in explorations:
        lines.append(f"## {exploration.sub_question}")
        lines.append("")
        lines.append(exploration.summary)
        lines.append("")

    files = relevant_files(explorations)
    if files:
        lines.append("## Relevant Files")
        lines.append("")
        lines.extend(f"- `{path}`" for path in files)
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
