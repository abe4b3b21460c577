"""
Tests for the smaller generation stages in ``src.agents``.

Covers:
    - content_rules: cached loader, prompt section, tone context, pipeline steps
    - cost_data: degree level detection, keywords, context assembly, prompt text
    - formatting: HTML repair of plain-text model output
    - internal_linker: candidate scoring, the RPC -> catalog -> legacy chain,
      link-count bookkeeping, inserted-link detection
    - reasoning: AIReasoningLog bookkeeping
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.content_rules import (
    ContentRulesLoader,
    build_content_rules_prompt_section,
    build_tone_voice_context,
    get_pipeline_step_config,
    get_quality_thresholds,
    is_pipeline_step_enabled,
)
from src.agents.cost_data import (
    NO_COST_DATA_TEXT,
    detect_degree_level,
    extract_keywords,
    format_cost_data_for_prompt,
    get_cost_data_context,
)
from src.agents.formatting import ensure_proper_html_formatting
from src.agents.internal_linker import (
    add_internal_links,
    find_inserted_links,
    get_relevant_site_articles,
    increment_article_link_counts,
    score_site_article,
)
from src.agents.reasoning import AIReasoningLog
from src.config import get_default_content_rules


# =========================================================================
# 1. Content rules
# =========================================================================


class TestContentRulesLoader:
    @pytest.mark.asyncio
    async def test_cached_until_forced(self):
        db = MagicMock()
        db.get_active_content_rules = AsyncMock(return_value={"version": 4})
        loader = ContentRulesLoader(db=db)

        assert (await loader.load())["version"] == 4
        await loader.load()
        assert db.get_active_content_rules.await_count == 1

        await loader.load(force=True)
        assert db.get_active_content_rules.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate(self):
        db = MagicMock()
        db.get_active_content_rules = AsyncMock(return_value={"version": 1})
        loader = ContentRulesLoader(db=db)

        await loader.load()
        loader.invalidate()
        await loader.load()

        assert db.get_active_content_rules.await_count == 2

    @pytest.mark.asyncio
    async def test_defaults_when_no_active_rules(self):
        db = MagicMock()
        db.get_active_content_rules = AsyncMock(return_value=None)
        rules = await ContentRulesLoader(db=db).load()
        assert rules["version"] == 0

    @pytest.mark.asyncio
    async def test_defaults_on_database_error(self):
        db = MagicMock()
        db.get_active_content_rules = AsyncMock(side_effect=RuntimeError("down"))
        rules = await ContentRulesLoader(db=db).load()
        assert rules["hard_rules"]["authors"]["approved_authors"][0] == "Tony Huffman"


class TestContentRulesPrompt:
    def test_default_rules_section(self):
        section = build_content_rules_prompt_section(get_default_content_rules())
        assert "APPROVED AUTHORS ONLY: Tony Huffman, Kayleigh Gilbert, Sara, Charity" in section
        assert "NEVER link to competitors: onlineu.com, usnews.com, niche.com" in section
        assert "Word count: 1500-2500 words (target: 2000)" in section
        assert "Include 3-5 FAQs" in section
        assert "Cite sources for all statistics" in section
        assert section.rstrip().endswith("=== END CONTENT RULES ===")

    def test_no_rules(self):
        assert build_content_rules_prompt_section(None) == ""

    def test_tone_voice_context(self):
        tone = build_tone_voice_context(get_default_content_rules())
        assert tone["tone"] == "conversational"
        assert tone["formality"] == "professional but approachable"
        assert "utilize" in tone["banned_phrases"]

    def test_tone_voice_missing(self):
        assert build_tone_voice_context({"version": 2}) is None

    def test_quality_thresholds_from_rules(self):
        rules = get_default_content_rules()
        rules["guidelines"]["links"]["internal_links_min"] = 4
        assert get_quality_thresholds(rules).min_internal_links == 4


class TestPipelineSteps:
    def test_enabled_by_default(self):
        rules = get_default_content_rules()
        assert is_pipeline_step_enabled(rules, "humanize") is True
        assert is_pipeline_step_enabled(rules, "not_a_step") is True
        assert is_pipeline_step_enabled(None, "draft") is True

    def test_disabled_step(self):
        rules = get_default_content_rules()
        rules["pipeline_steps"][1]["enabled"] = False
        assert is_pipeline_step_enabled(rules, "humanize") is False

    def test_step_config_is_copy(self):
        rules = {"pipeline_steps": [{"id": "humanize", "config": {"tone": "PhD"}}]}
        config = get_pipeline_step_config(rules, "humanize")
        config["tone"] = "College"
        assert rules["pipeline_steps"][0]["config"]["tone"] == "PhD"
        assert get_pipeline_step_config(rules, "draft") == {}


# =========================================================================
# 2. Cost data
# =========================================================================


class TestCostDataHelpers:
    @pytest.mark.parametrize(
        "topic,level",
        [
            ("Cheapest Online MBA Programs", "Master"),
            ("Online Bachelor's in Psychology", "Bachelor"),
            ("Associate Degree in Accounting", "Associate"),
            ("PhD in Education", "Doctorate"),
            ("Graduate Certificate in Data Analytics", "Certificate"),
            ("Nursing careers", None),
        ],
    )
    def test_detect_degree_level(self, topic, level):
        assert detect_degree_level(topic) == level

    def test_extract_keywords(self):
        keywords = extract_keywords("The Best Online MBA Programs for Working Nurses in 2025!")
        assert keywords == ["mba", "working", "nurses", "2025"]

    def test_extract_keywords_limit(self):
        assert len(extract_keywords("alpha bravo charlie delta echo foxtrot golf")) == 5

    def test_format_empty(self):
        assert format_cost_data_for_prompt([]) == NO_COST_DATA_TEXT

    def test_format_entry(self):
        text = format_cost_data_for_prompt([{
            "school_name": "Example State University",
            "program_name": "Online MBA",
            "total_cost": 12345,
            "in_state_cost": 9000,
            "is_sponsored": True,
            "ranking_reports": {"report_url": "https://www.geteducated.com/rankings/mba/"},
        }])
        assert "* Example State University - Online MBA" in text
        assert "Total Cost: $12,345" in text
        assert "In-State: $9,000" in text
        assert "SPONSORED LISTING" in text
        assert "Source: https://www.geteducated.com/rankings/mba/" in text


class TestGetCostDataContext:
    @pytest.mark.asyncio
    async def test_merges_dedupes_and_orders(self):
        db = MagicMock()
        db.search_ranking_entries = AsyncMock(side_effect=[
            [
                {"id": 1, "school_name": "A", "total_cost": 30000},
                {"id": 2, "school_name": "B", "total_cost": 20000, "is_sponsored": True},
            ],
            [
                {"id": 1, "school_name": "A", "total_cost": 30000},
                {"id": 3, "school_name": "C", "total_cost": 10000},
            ],
        ])
        idea = {"title": "Affordable Online MBA Programs", "seed_topics": ["mba finance"]}

        context = await get_cost_data_context(idea, db=db)

        assert [e["id"] for e in context["cost_data"]] == [2, 3, 1]
        assert context["degree_level"] == "Master"
        assert context["has_data"] is True
        assert "SPONSORED LISTING" in context["prompt_text"]
        first_call = db.search_ranking_entries.call_args_list[0]
        assert first_call.kwargs["limit"] == 15
        assert first_call.kwargs["degree_level"] == "Master"

    @pytest.mark.asyncio
    async def test_search_errors_give_no_data(self):
        db = MagicMock()
        db.search_ranking_entries = AsyncMock(side_effect=RuntimeError("rpc missing"))

        context = await get_cost_data_context({"title": "Online nursing"}, db=db)

        assert context["has_data"] is False
        assert context["prompt_text"] == NO_COST_DATA_TEXT


# =========================================================================
# 3. Formatting
# =========================================================================


class TestEnsureProperHtmlFormatting:
    def test_formatted_content_kept(self):
        html = "<h2>Costs</h2><p>Tuition varies.</p>"
        assert ensure_proper_html_formatting(html).strip() == html

    def test_spacing_added_after_block_followed_by_text(self):
        html = "<h2>Costs</h2>Tuition varies.<p>More.</p>"
        assert ensure_proper_html_formatting(html).startswith("<h2>Costs</h2>\n\nTuition")

    def test_plain_text_wrapped(self):
        text = (
            "Why Online Degrees Matter\n\n"
            "Online degrees let working adults study on their own schedule and keep "
            "their jobs while they learn new skills.\n\n"
            "- Flexible schedules\n- Lower costs\n\n"
            "1. Apply\n2. Enroll"
        )
        blocks = ensure_proper_html_formatting(text).split("\n\n")

        assert blocks[0] == "<h3>Why Online Degrees Matter</h3>"
        assert blocks[1].startswith("<p>Online degrees") and blocks[1].endswith("</p>")
        assert blocks[2] == "<ul>\n<li>Flexible schedules</li>\n<li>Lower costs</li>\n</ul>"
        assert blocks[3] == "<ol>\n<li>Apply</li>\n<li>Enroll</li>\n</ol>"

    def test_markdown_bold_heading_cleaned(self):
        assert ensure_proper_html_formatting("**Key Takeaways**") == "<h3>Key Takeaways</h3>"

    def test_empty(self):
        assert ensure_proper_html_formatting("") == ""


# =========================================================================
# 4. Internal linking
# =========================================================================


class TestScoreSiteArticle:
    def test_all_signals(self):
        article = {
            "title": "Online Nursing Programs",
            "topics": ["nursing careers"],
            "subject_area": "nursing",
            "degree_level": "Bachelor",
        }
        score = score_site_article(
            article, ["online", "nursing", "degrees"], "nursing", "Bachelor"
        )
        assert score == 10 * 2 + 15 + 20 + 15

    def test_unrelated(self):
        assert score_site_article({"title": "Culinary Arts"}, ["nursing"]) == 0


class TestGetRelevantSiteArticles:
    @pytest.mark.asyncio
    async def test_rpc_results_used_first(self):
        db = MagicMock()
        db.find_relevant_site_articles = AsyncMock(return_value=[
            {"id": i, "url": f"https://www.geteducated.com/{i}/", "title": f"T{i}", "extra": 1}
            for i in range(7)
        ])
        db.get_catalog_articles = AsyncMock()

        results = await get_relevant_site_articles("Online Nursing Degrees", db=db)

        assert len(results) == 5
        assert "extra" not in results[0]
        db.get_catalog_articles.assert_not_awaited()
        assert db.find_relevant_site_articles.call_args.args[0] == ["online", "nursing", "degrees"]

    @pytest.mark.asyncio
    async def test_catalog_scored_and_excluded(self):
        db = MagicMock()
        db.find_relevant_site_articles = AsyncMock(return_value=[])
        db.get_catalog_articles = AsyncMock(return_value=[
            {"url": "https://www.geteducated.com/a/", "title": "Nursing Salary Guide"},
            {"url": "https://www.geteducated.com/b/", "title": "Online Nursing Degrees"},
            {"url": "https://www.geteducated.com/c/", "title": "Culinary School"},
            {"url": "https://www.geteducated.com/self/", "title": "Online Nursing Degrees"},
        ])

        results = await get_relevant_site_articles(
            "Online Nursing Degrees",
            exclude_urls=["https://www.geteducated.com/self/"],
            db=db,
        )

        assert [r["url"] for r in results] == [
            "https://www.geteducated.com/b/",
            "https://www.geteducated.com/a/",
        ]

    @pytest.mark.asyncio
    async def test_legacy_fallback(self):
        db = MagicMock()
        db.find_relevant_site_articles = AsyncMock(return_value=[])
        db.get_catalog_articles = AsyncMock(return_value=[])
        db.get_legacy_site_articles = AsyncMock(return_value=[
            {"url": "https://www.geteducated.com/legacy/", "title": "Nursing Careers"},
        ])

        results = await get_relevant_site_articles("Nursing Degrees", db=db)

        assert results[0]["url"] == "https://www.geteducated.com/legacy/"

    @pytest.mark.asyncio
    async def test_errors_return_empty(self):
        db = MagicMock()
        db.find_relevant_site_articles = AsyncMock(side_effect=RuntimeError("boom"))
        assert await get_relevant_site_articles("Nursing Degrees", db=db) == []


class TestLinkBookkeeping:
    @pytest.mark.asyncio
    async def test_increment_continues_after_failure(self):
        db = MagicMock()
        db.increment_article_link_count = AsyncMock(side_effect=[None, RuntimeError("x"), None])

        await increment_article_link_counts(["u1", "u2", "u3"], db=db)

        assert db.increment_article_link_count.await_count == 3

    @pytest.mark.asyncio
    async def test_add_links_keeps_original_on_failure(self):
        claude = MagicMock()
        claude.add_internal_links = AsyncMock(side_effect=RuntimeError("overloaded"))
        assert await add_internal_links(claude, "<p>original</p>", []) == "<p>original</p>"

    def test_find_inserted_links_ignores_existing_and_external(self):
        before = '<p>See <a href="https://www.geteducated.com/old/">old</a>.</p>'
        after = (
            before
            + '<p><a href="https://www.geteducated.com/new/">new</a> and '
            + '<a href="https://example.com/x/">x</a> and '
            + '<a href="https://www.geteducated.com/new/">again</a>.</p>'
        )

        assert find_inserted_links(before, after) == ["https://www.geteducated.com/new/"]

    def test_find_inserted_links_none_when_unchanged(self):
        html = '<p><a href="https://www.geteducated.com/old/">old</a></p>'
        assert find_inserted_links(html, html) == []


# =========================================================================
# 5. Reasoning log
# =========================================================================


class TestAIReasoningLog:
    def test_log_replaces_category(self):
        log = AIReasoningLog()
        log.log("contributor", selected="Sara", score=30)
        log.log("contributor", selected="Charity", score=70)

        assert log.decision("contributor")["selected"] == "Charity"
        assert "logged_at" in log.decision("contributor")
        assert log.decision("monetization") is None

    def test_to_dict(self):
        log = AIReasoningLog(model_used="grok-3", temperature=0.8)
        log.warn("cost_data", "No cost data found", severity="low")
        log.add_data_source("ranking_reports", count=4)

        data = log.to_dict()

        assert data["model_used"] == "grok-3"
        assert data["warnings"][0]["severity"] == "low"
        assert data["data_sources"][0] == {
            "source": "ranking_reports",
            "count": 4,
            "logged_at": data["data_sources"][0]["logged_at"],
        }
        assert "finalized_at" in data
