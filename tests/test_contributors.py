"""
Tests for src.agents.contributors.

Covers:
    - Approved-author and style-proxy helpers
    - score_contributor() for expertise, content type and specialty matches
    - assign_contributor() selection, tie-breaking and fallbacks
    - build_author_prompt() sections and the custom-prompt override
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.contributors import (
    DEFAULT_CONTRIBUTOR,
    assign_contributor,
    build_author_prompt,
    get_style_proxy,
    is_approved_author,
    score_contributor,
)


CONTRIBUTORS = [
    {
        "name": "Tony Huffman",
        "expertise_areas": ["rankings", "mba"],
        "content_types": ["ranking"],
    },
    {
        "name": "Kayleigh Gilbert",
        "expertise_areas": ["nursing", "social work"],
        "content_types": ["guide"],
    },
    {
        "name": "Sara",
        "expertise_areas": ["technology"],
        "content_types": ["explainer", "guide"],
    },
    {
        "name": "Charity",
        "expertise_areas": ["teaching"],
        "content_types": ["guide"],
    },
]


def _db(rows):
    db = MagicMock()
    db.get_active_contributors = AsyncMock(return_value=rows)
    return db


# =============================================================================
# Helpers
# =============================================================================


class TestApprovedAuthors:
    @pytest.mark.parametrize("name", ["Tony Huffman", "Kayleigh Gilbert", "Sara", "Charity"])
    def test_approved(self, name):
        assert is_approved_author(name) is True

    @pytest.mark.parametrize("name", ["Kif", "Julia Tell", "", None])
    def test_not_approved(self, name):
        assert is_approved_author(name) is False

    def test_style_proxy(self):
        assert get_style_proxy("Tony Huffman") == "Kif"
        assert get_style_proxy("Unknown Writer") == "Unknown Writer"


# =============================================================================
# Scoring
# =============================================================================


class TestScoreContributor:
    def test_all_signals(self):
        idea = {"title": "Best Online MBA Rankings", "seed_topics": ["mba"]}
        scored = score_contributor(CONTRIBUTORS[0], idea, "ranking")
        assert scored["score"] == 50 + 30 + 40
        assert scored["expertise_match"] == ["rankings", "mba"]
        assert scored["content_type_match"] is True
        assert len(scored["reasons"]) == 3

    def test_no_match(self):
        scored = score_contributor(CONTRIBUTORS[3], {"title": "Cybersecurity careers"}, "ranking")
        assert scored["score"] == 0
        assert scored["reasons"] == []

    def test_specialty_keyword_in_title(self):
        scored = score_contributor(
            CONTRIBUTORS[1], {"title": "LCSW licensure by state"}, "ranking"
        )
        assert scored["score"] == 40
        assert "Kayleigh specialty" in scored["reasons"][0]


# =============================================================================
# Assignment
# =============================================================================


class TestAssignContributor:
    @pytest.mark.asyncio
    async def test_highest_score_wins(self):
        idea = {"title": "Online Nursing Degrees Guide", "seed_topics": ["nursing"]}
        result = await assign_contributor(idea, "guide", db=_db(CONTRIBUTORS))

        assert result["contributor"]["name"] == "Kayleigh Gilbert"
        assert result["score"] == 50 + 30 + 40
        assert {a["name"] for a in result["alternatives"]} == {
            "Tony Huffman",
            "Sara",
            "Charity",
        }

    @pytest.mark.asyncio
    async def test_ties_keep_database_order(self):
        idea = {"title": "Studying abroad"}
        result = await assign_contributor(idea, "review", db=_db(CONTRIBUTORS))

        assert result["contributor"]["name"] == "Tony Huffman"
        assert result["reasoning"] == "Selected as default - no strong topic matches found."

    @pytest.mark.asyncio
    async def test_deterministic(self):
        idea = {"title": "How to become a teacher online"}
        first = await assign_contributor(idea, "guide", db=_db(CONTRIBUTORS))
        second = await assign_contributor(idea, "guide", db=_db(CONTRIBUTORS))
        assert first["contributor"]["name"] == second["contributor"]["name"]

    @pytest.mark.asyncio
    async def test_unapproved_contributors_ignored(self):
        rows = [{"name": "Kif", "expertise_areas": ["rankings"]}, CONTRIBUTORS[2]]
        result = await assign_contributor({"title": "Best rankings"}, "ranking", db=_db(rows))
        assert result["contributor"]["name"] == "Sara"

    @pytest.mark.asyncio
    async def test_no_approved_contributors(self):
        result = await assign_contributor({"title": "x"}, "guide", db=_db([{"name": "Kif"}]))
        assert result["contributor"] is None
        assert result["score"] == 0

    @pytest.mark.asyncio
    async def test_database_error_falls_back_to_default(self):
        db = MagicMock()
        db.get_active_contributors = AsyncMock(side_effect=RuntimeError("timeout"))

        result = await assign_contributor({"title": "x"}, "guide", db=db)

        assert result["contributor"] == DEFAULT_CONTRIBUTOR
        assert result["contributor"] is not DEFAULT_CONTRIBUTOR
        assert "default (Tony Huffman)" in result["reasoning"]


# =============================================================================
# Author prompt
# =============================================================================


class TestBuildAuthorPrompt:
    def test_empty(self):
        assert build_author_prompt(None) == ""

    def test_custom_prompt_wins(self):
        prompt = build_author_prompt({
            "name": "Sara",
            "custom_system_prompt": "Write like Sara.",
            "voice_description": "ignored",
        })
        assert prompt == "Write like Sara."

    def test_sections(self):
        prompt = build_author_prompt({
            "name": "Charity",
            "voice_description": "Warm and encouraging.",
            "signature_phrases": ["Here's the good news"],
            "phrases_to_avoid": ["utilize"],
            "writing_style_profile": {"tone": "supportive"},
            "writing_samples": ["Teaching is a calling."],
        })
        assert "## Author Voice\nWarm and encouraging." in prompt
        assert "Naturally use phrases like: Here's the good news" in prompt
        assert "NEVER use these words/phrases: utilize" in prompt
        assert "## Tone: supportive" in prompt
        assert 'Example 1:\n"Teaching is a calling."' in prompt
