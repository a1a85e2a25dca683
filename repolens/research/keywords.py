"""Keyword extraction for code-search queries.

Sub-questions are long templated sentences; code search wants a handful of
content words. We keep the first five surviving tokens in their original
order — no frequency ranking, so the result is stable for a given question.
"""

from __future__ import annotations

MAX_KEYWORDS = 5

_STRIP_CHARS = "?:,.()[]{}"
_STRIP_TABLE = str.maketrans("", "", _STRIP_CHARS)

STOP_WORDS = frozenset(
    "a an the "
    "what which who whom whose when where why how "
    "in on at to for with from into onto of by over under between through "
    "within across "
    "related about".split()
)


def extract_keywords(text: str) -> list[str]:
    """Return up to MAX_KEYWORDS lowercase content tokens from *text*.

    >>> extract_keywords("Which files are related to: auth handling?")
    ['files', 'are', 'auth', 'handling']
    """
    tokens = text.lower().translate(_STRIP_TABLE).split()
    keywords: list[str] = []
    for token in tokens:
        if len(token) <= 2 or token in STOP_WORDS:
            continue
        keywords.append(token)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords
