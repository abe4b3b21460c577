"""
Tests for src.agents.idea_discovery.

Covers:
    - Title similarity and duplicate filtering
    - Content type validation and detection, keyword titles
    - Monetization context grouping, prompt sections and idea scoring
    - Response parsing
    - IdeaDiscoveryService discovery, keyword ideas and saving
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.idea_discovery import (
    IdeaDiscoveryService,
    MonetizationContext,
    build_learning_context,
    build_monetization_prompt_section,
    calculate_similarity,
    detect_content_type,
    edit_distance,
    filter_by_monetization,
    filter_duplicates,
    generate_idea_title,
    parse_ideas_response,
    score_idea_monetization,
    validate_content_type,
)
from src.exceptions import IdeaDiscoveryError


CATEGORY_ROWS = [
    {"category_id": 1, "concentration_id": 10, "category": "Business", "concentration": "MBA"},
    {"category_id": 1, "concentration_id": 11, "category": "Business", "concentration": "Accounting"},
    {"category_id": 2, "concentration_id": 20, "category": "Healthcare", "concentration": "Nursing"},
]
SCHOOLS = [{"id": "s1", "school_name": "Alpha University", "degree_count": 12}]
LEVELS = [{"level_code": 4, "level_name": "Master"}]


def _context():
    return MonetizationContext.from_rows(CATEGORY_ROWS, SCHOOLS, LEVELS)


def _discovery_db(titles=None):
    db = MagicMock()
    db.get_monetization_categories = AsyncMock(return_value=CATEGORY_ROWS)
    db.get_paid_schools = AsyncMock(return_value=SCHOOLS)
    db.get_monetization_levels = AsyncMock(return_value=LEVELS)
    db.get_active_learning_session = AsyncMock(return_value=None)
    db.get_recent_idea_titles = AsyncMock(return_value=titles or [])
    db.insert_ideas = AsyncMock(side_effect=lambda rows: [dict(r, id=f"idea-{i}") for i, r in enumerate(rows)])
    return db


def _grok(ideas):
    grok = MagicMock()
    grok.generate = AsyncMock(return_value="```json\n" + json.dumps({"ideas": ideas}) + "\n```")
    return grok


# =============================================================================
# Duplicates and content types
# =============================================================================


class TestSimilarity:
    def test_edit_distance(self):
        assert edit_distance("kitten", "sitting") == 3
        assert edit_distance("", "abc") == 3

    def test_identical_after_normalizing(self):
        assert calculate_similarity("Online MBA: Costs!", "online mba costs") == 1.0

    def test_empty_title(self):
        assert calculate_similarity("", "Online MBA") == 0.0

    def test_close_titles_score_high(self):
        assert calculate_similarity("Online MBA Programs", "Online MBA Program") > 0.9

    def test_filter_duplicates_against_existing_and_batch(self):
        ideas = [
            {"title": "Best Online MBA Programs"},
            {"title": "Online Nursing Degrees Explained"},
            {"title": "Online Nursing Degree Explained"},
        ]

        kept = filter_duplicates(ideas, ["Best Online MBA Program"])

        assert [i["title"] for i in kept] == ["Online Nursing Degrees Explained"]

    def test_threshold_is_exclusive(self):
        assert filter_duplicates([{"title": "abcdefghij"}], ["abcdefgxyz"]) == [{"title": "abcdefghij"}]


class TestContentTypes:
    @pytest.mark.parametrize("title,expected", [
        ("10 Best Online Colleges", "listicle"),
        ("Nurse Practitioner Salary Outlook", "career_guide"),
        ("WGU vs SNHU for Online Degrees", "ranking"),
        ("What Is a Competency-Based Degree?", "explainer"),
        ("Is an Online MBA Worth It?", "review"),
        ("Financing an Online Degree", "guide"),
    ])
    def test_detect(self, title, expected):
        assert detect_content_type(title) == expected

    def test_validate(self):
        assert validate_content_type("career_guide") == "career_guide"
        assert validate_content_type("podcast") == "guide"
        assert validate_content_type(None) == "guide"

    def test_keyword_titles(self):
        assert generate_idea_title("how to become a nurse") == "How to become a nurse"
        assert generate_idea_title("nurse salary") == "Nurse salary: Complete Guide"
        assert generate_idea_title("online mba degree") == "Guide to Online mba degree"
        assert generate_idea_title("accounting career") == "Accounting career Career Path"
        assert generate_idea_title("rn to bsn") == "Rn to bsn - Complete Guide"
        assert generate_idea_title("best online colleges").startswith("Best online colleges in 20")


# =============================================================================
# Monetization
# =============================================================================


class TestMonetizationContext:
    def test_groups_concentrations(self):
        context = _context()

        assert [c["name"] for c in context.categories] == ["Business", "Healthcare"]
        assert [c["name"] for c in context.categories[0]["concentrations"]] == ["MBA", "Accounting"]
        assert context.stats == {
            "total_categories": 2,
            "total_concentrations": 3,
            "total_paid_schools": 1,
        }

    def test_prompt_section(self):
        section = build_monetization_prompt_section(_context())

        assert "1. Business: MBA, Accounting" in section
        assert "- Alpha University (12 online programs)" in section
        assert "- Master" in section
        assert "BANNED TOPICS" in section
        assert build_monetization_prompt_section(None) == ""

    def test_learning_context(self):
        text = build_learning_context({
            "learned_patterns": {
                "goodPatterns": ["Salary data in titles"],
                "avoidTopics": ["crypto"],
                "titlePatterns": {"bad": ["Ultimate guide"]},
            },
            "improved_prompt": "Prefer master's level topics.",
        })

        assert "- Salary data in titles" in text
        assert "TOPICS TO AVOID:\ncrypto" in text
        assert "BAD TITLE PATTERNS (avoid):\n- Ultimate guide" in text
        assert "Prefer master's level topics." in text
        assert build_learning_context(None) == ""
        assert build_learning_context({"learned_patterns": None}) == ""


class TestMonetizationScoring:
    def test_concentration_match(self):
        result = score_idea_monetization(
            {"title": "Online MBA Costs in Business Schools", "description": ""}, _context()
        )

        assert result["matched_category"] == {"category_id": 1, "category_name": "Business"}
        assert result["score"] == 55
        assert result["confidence"] == "medium"

    def test_banned_topic_scores_zero(self):
        result = score_idea_monetization(
            {"title": "Becoming a Park Ranger with a Business Degree"}, _context()
        )
        assert result["score"] == 0
        assert result["confidence"] == "banned"

    def test_no_match(self):
        result = score_idea_monetization({"title": "Cooking at Home"}, _context())
        assert result["score"] == 0
        assert result["matched_category"] is None
        assert result["reason"] == "No category match found"

    def test_filter_splits_ideas(self):
        accepted, rejected = filter_by_monetization(
            [
                {"title": "Online Nursing Degrees for Working Adults"},
                {"title": "Space Tourism Careers"},
            ],
            _context(),
        )

        assert [i["title"] for i in accepted] == ["Online Nursing Degrees for Working Adults"]
        assert accepted[0]["monetization_category"] == "Healthcare"
        assert accepted[0]["monetization_category_id"] == 2
        assert rejected[0]["monetization_score"] == 0
        assert "banned" in rejected[0]["rejection_reason"]


class TestParseIdeasResponse:
    def test_fenced_json(self):
        assert parse_ideas_response('```json\n{"ideas": [{"title": "A"}]}\n```') == [{"title": "A"}]

    def test_json_inside_chatter(self):
        text = 'Here are your ideas: {"ideas": [{"title": "A"}, "junk"]} Enjoy!'
        assert parse_ideas_response(text) == [{"title": "A"}]

    def test_bare_list(self):
        assert parse_ideas_response('[{"title": "A"}]') == [{"title": "A"}]

    def test_no_json_raises(self):
        with pytest.raises(IdeaDiscoveryError):
            parse_ideas_response("Sorry, I cannot help with that.")


# =============================================================================
# IdeaDiscoveryService
# =============================================================================


class TestDiscoverIdeas:
    @pytest.mark.asyncio
    async def test_keeps_monetizable_new_ideas(self):
        db = _discovery_db(titles=["Online MBA Programs Compared"])
        grok = _grok([
            {"title": "Online MBA Programs Compared", "description": "Dup of an existing idea."},
            {"title": "Online Nursing Degrees for Career Changers", "description": "RN paths.",
             "content_type": "career_guide", "target_keywords": ["online nursing"]},
            {"title": "Space Tourism Careers", "description": "Astronaut jobs."},
            {"title": "Missing description"},
        ])
        service = IdeaDiscoveryService(grok=grok, dataforseo=MagicMock(), db=db)

        result = await service.discover_ideas(sources=["news"], custom_topic="nursing")

        assert [i["title"] for i in result["ideas"]] == ["Online Nursing Degrees for Career Changers"]
        assert result["ideas"][0]["content_type"] == "career_guide"
        assert result["ideas"][0]["monetization_category"] == "Healthcare"
        assert [i["title"] for i in result["rejected"]] == ["Space Tourism Careers"]
        assert result["stats"]["generated"] == 3
        assert result["stats"]["duplicates"] == 1
        assert result["stats"]["monetization_context"]["total_categories"] == 2

        prompt = grok.generate.call_args.args[0][1]["content"]
        assert "Current news about higher education" in prompt
        assert "Reddit discussions" not in prompt
        assert 'USER REQUESTED FOCUS: "nursing"' in prompt
        assert "- Online MBA Programs Compared" in prompt

    @pytest.mark.asyncio
    async def test_learned_patterns_in_prompt(self):
        db = _discovery_db()
        db.get_active_learning_session.return_value = {
            "learned_patterns": {"goodPatterns": ["Cost comparisons"]}
        }
        grok = _grok([])
        service = IdeaDiscoveryService(grok=grok, dataforseo=MagicMock(), db=db)

        await service.discover_ideas()

        db.get_active_learning_session.assert_awaited_once_with("idea_generation")
        assert "- Cost comparisons" in grok.generate.call_args.args[0][1]["content"]

    @pytest.mark.asyncio
    async def test_lenient_mode_keeps_everything(self):
        grok = _grok([{"title": "Cooking at Home", "description": "Recipes."}])
        service = IdeaDiscoveryService(grok=grok, dataforseo=MagicMock(), db=_discovery_db())

        result = await service.discover_ideas(
            strict_monetization=False, use_learned_patterns=False, existing_topics=[]
        )

        assert [i["title"] for i in result["ideas"]] == ["Cooking at Home"]
        assert result["rejected"] == []

    @pytest.mark.asyncio
    async def test_missing_context_raises(self):
        db = _discovery_db()
        db.get_monetization_categories = AsyncMock(side_effect=RuntimeError("db down"))
        service = IdeaDiscoveryService(grok=_grok([]), dataforseo=MagicMock(), db=db)

        with pytest.raises(IdeaDiscoveryError, match="monetization context"):
            await service.discover_ideas()
        service.grok.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_model_failure_wrapped(self):
        grok = MagicMock()
        grok.generate = AsyncMock(side_effect=RuntimeError("xAI 503"))
        service = IdeaDiscoveryService(grok=grok, dataforseo=MagicMock(), db=_discovery_db())

        with pytest.raises(IdeaDiscoveryError, match="xAI 503"):
            await service.discover_ideas()

    @pytest.mark.asyncio
    async def test_context_cached(self):
        db = _discovery_db()
        service = IdeaDiscoveryService(grok=_grok([]), dataforseo=MagicMock(), db=db)

        await service.get_monetization_context()
        stats = await service.get_monetization_stats()

        assert stats["total_paid_schools"] == 1
        db.get_monetization_categories.assert_awaited_once()


class TestKeywordIdeas:
    @pytest.mark.asyncio
    async def test_filtered_keywords_become_ideas(self):
        dataforseo = MagicMock()
        dataforseo.is_configured.return_value = True
        dataforseo.get_keyword_suggestions = AsyncMock(return_value=[
            {"keyword": "online mba degree", "search_volume": 5400, "difficulty": 40,
             "opportunity_score": 80, "trend": "rising", "cpc": 12.5},
            {"keyword": "mba", "search_volume": 90000, "difficulty": 95,
             "opportunity_score": 30, "trend": "stable", "cpc": 20},
        ])
        service = IdeaDiscoveryService(grok=MagicMock(), dataforseo=dataforseo, db=_discovery_db())

        ideas = await service.ideas_from_keywords(["mba"], limit=5)

        assert len(ideas) == 1
        idea = ideas[0]
        assert idea["title"] == "Guide to Online mba degree"
        assert idea["description"] == 'Article targeting keyword: "online mba degree" with 5,400 monthly searches'
        assert idea["keyword_research_data"]["primary_keyword"] == "online mba degree"
        assert idea["keyword_research_data"]["trend"] == "rising"
        dataforseo.get_keyword_suggestions.assert_awaited_once_with(["mba"], limit=15)

    @pytest.mark.asyncio
    async def test_requires_credentials(self):
        dataforseo = MagicMock()
        dataforseo.is_configured.return_value = False
        service = IdeaDiscoveryService(grok=MagicMock(), dataforseo=dataforseo, db=_discovery_db())

        with pytest.raises(IdeaDiscoveryError, match="DataForSEO"):
            await service.ideas_from_keywords(["mba"])


class TestSaveIdeas:
    @pytest.mark.asyncio
    async def test_rows_are_pending(self):
        db = _discovery_db()
        service = IdeaDiscoveryService(grok=MagicMock(), dataforseo=MagicMock(), db=db)

        saved = await service.save_ideas(
            [{"title": "Online Nursing Degrees", "target_keywords": ["online nursing"],
              "monetization_category": "Healthcare", "monetization_score": 40}],
            user_id="u1",
        )

        row = db.insert_ideas.call_args.args[0][0]
        assert row["status"] == "pending"
        assert row["seed_topics"] == ["online nursing"]
        assert row["content_type"] == "guide"
        assert row["user_id"] == "u1"
        assert saved[0]["id"] == "idea-0"
