"""Question decomposition by depth."""

from __future__ import annotations

import pytest

from repolens.research.decomposer import decompose
from repolens.research.models import ResearchDepth

QUESTION = "How is auth handled?"


@pytest.mark.parametrize(
    "depth, expected",
    [(ResearchDepth.QUICK, 2), (ResearchDepth.MEDIUM, 4), (ResearchDepth.THOROUGH, 6)],
)
def test_counts_per_depth(depth, expected):
    assert len(decompose(QUESTION, depth)) == expected


def test_each_level_is_a_prefix_of_the_next():
    quick = decompose(QUESTION, "quick")
    medium = decompose(QUESTION, "medium")
    thorough = decompose(QUESTION, "thorough")
    assert medium[: len(quick)] == quick
    assert thorough[: len(medium)] == medium


def test_quick_embeds_question_verbatim():
    subs = decompose(QUESTION, "quick")
    assert len(subs) == 2
    assert all(QUESTION in s for s in subs)


def test_core_templates_cover_files_and_implementation():
    files_q, impl_q = decompose(QUESTION, "quick")
    assert "files" in files_q.lower()
    assert "implementation" in impl_q.lower()


def test_deterministic():
    assert decompose(QUESTION, "thorough") == decompose(QUESTION, "thorough")


def test_question_with_braces_is_not_reformatted():
    question = "Where is {config} loaded?"
    assert all(question in s for s in decompose(question, "medium"))


def test_unknown_depth_rejected():
    with pytest.raises(ValueError):
        decompose(QUESTION, "exhaustive")
