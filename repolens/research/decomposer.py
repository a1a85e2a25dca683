"""Question decomposer — question + depth → ordered sub-questions.

Each depth level is a strict prefix of the next one, so a thorough run always
covers what a quick run would have asked:

    quick     → 2 (core)
    medium    → 4 (core + dependencies, tests/docs)
    thorough  → 6 (medium + history, open issues)
"""

from __future__ import annotations

from repolens.research.models import ResearchDepth

_CORE_TEMPLATES = (
    "Which files and directories are relevant to: {question}",
    "What is the current implementation or pattern used for: {question}",
)

_MEDIUM_TEMPLATES = (
    "Which dependencies or libraries are involved in: {question}",
    "Which tests or documentation cover: {question}",
)

_THOROUGH_TEMPLATES = (
    "What historical context or past changes relate to: {question}",
    "Which open issues or TODOs mention: {question}",
)

_TEMPLATES_BY_DEPTH: dict[ResearchDepth, tuple[str, ...]] = {
    ResearchDepth.QUICK: _CORE_TEMPLATES,
    ResearchDepth.MEDIUM: _CORE_TEMPLATES + _MEDIUM_TEMPLATES,
    ResearchDepth.THOROUGH: _CORE_TEMPLATES + _MEDIUM_TEMPLATES + _THOROUGH_TEMPLATES,
}


def decompose(question: str, depth: ResearchDepth | str = ResearchDepth.MEDIUM) -> list[str]:
    """Expand *question* into the fixed sub-question set for *depth*."""
    templates = _TEMPLATES_BY_DEPTH[ResearchDepth(depth)]
    return [template.format(question=question) for template in templates]
