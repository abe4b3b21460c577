"""
Tests for src.agents.quality.

Covers:
    - Individual rules and the 100-minus-penalties score
    - Monotonic scoring (more violated rules never raise the score)
    - Auto-fix prompt construction from QualityIssue objects and dicts
    - QualityAssuranceLoop stop conditions and risk flags
"""

from unittest.mock import AsyncMock

import pytest

from src.agents.quality import (
    ISSUE_PENALTIES,
    QualityAssuranceLoop,
    QualityContext,
    build_auto_fix_prompt,
    calculate_quality_metrics,
    poor_readability,
)
from src.config import QualityThresholds
from src.models import QualityIssue


FAQS = [
    {"question": "Is it accredited?", "answer": "Yes."},
    {"question": "How long?", "answer": "Two years."},
    {"question": "How much?", "answer": "It varies."},
]


def _article(sentences=400, h2=3, links=3):
    """HTML with *sentences* four-word sentences plus headings and links."""
    headings = "".join(f"<h2>Section {i}</h2>" for i in range(h2))
    anchors = "".join(
        f'<a href="https://www.geteducated.com/page-{i}/">link</a>' for i in range(links)
    )
    return headings + "<p>" + "Online programs offer flexibility. " * sentences + "</p>" + anchors


# =============================================================================
# Scoring
# =============================================================================


class TestCalculateQualityMetrics:
    def test_clean_article_scores_100(self):
        metrics = calculate_quality_metrics(_article(), FAQS)
        assert metrics.issues == []
        assert metrics.score == 100
        assert metrics.thresholds_used["min_faqs"] == 3

    def test_empty_content(self):
        metrics = calculate_quality_metrics("", [])
        assert metrics.word_count == 0
        assert set(metrics.issue_types) == {
            "word_count_low",
            "missing_internal_links",
            "missing_external_links",
            "missing_faqs",
            "weak_headings",
        }
        assert metrics.score == 100 - 15 - 15 - 10 - 10 - 10

    def test_too_long(self):
        metrics = calculate_quality_metrics(_article(sentences=700), FAQS)
        assert metrics.issue_types == ["word_count_high"]
        assert metrics.score == 100 - ISSUE_PENALTIES["word_count_high"]

    def test_custom_thresholds(self):
        thresholds = QualityThresholds(min_word_count=10, max_word_count=100, min_faqs=0)
        metrics = calculate_quality_metrics(_article(sentences=10), [], thresholds)
        assert metrics.score == 100

    def test_score_floored_at_zero(self):
        thresholds = QualityThresholds(min_faqs=10, min_h2_headings=10)
        metrics = calculate_quality_metrics("", None, thresholds)
        assert metrics.score >= 0

    def test_more_violations_never_raise_score(self):
        full = calculate_quality_metrics(_article(), FAQS).score
        fewer_faqs = calculate_quality_metrics(_article(), FAQS[:1]).score
        fewer_faqs_and_links = calculate_quality_metrics(_article(links=0), FAQS[:1]).score
        assert full >= fewer_faqs >= fewer_faqs_and_links


class TestReadability:
    def test_long_sentences_flagged(self):
        content = "<p>" + " ".join(["word"] * 60) + ".</p>"
        ctx = QualityContext.build(content, [], QualityThresholds())
        issues = poor_readability(ctx)
        assert issues[0].type == "poor_readability"
        assert "avg 60 words/sentence" in issues[0].details

    def test_no_sentences(self):
        ctx = QualityContext.build("", [], QualityThresholds())
        assert ctx.avg_sentence_length == 0.0


# =============================================================================
# Auto-fix prompt
# =============================================================================


class TestAutoFixPrompt:
    def test_instructions_per_issue(self):
        prompt = build_auto_fix_prompt(
            "<p>body</p>",
            [QualityIssue("word_count_low", "major"), {"type": "missing_faqs", "severity": "minor"}],
            faqs=FAQS[:1],
            formatting_rules="FORMAT RULES",
        )
        assert "Article is too short" in prompt
        assert "Add 2 more relevant questions" in prompt
        assert "FORMAT RULES" in prompt
        assert "CURRENT ARTICLE CONTENT:\n<p>body</p>" in prompt

    def test_unknown_issue_type(self):
        prompt = build_auto_fix_prompt("<p>x</p>", [{"type": "tone_off", "severity": "minor"}])
        assert "- tone_off: minor issue" in prompt


# =============================================================================
# QualityAssuranceLoop
# =============================================================================


class TestQualityAssuranceLoop:
    @pytest.mark.asyncio
    async def test_clean_article_needs_no_fix(self):
        fixer = AsyncMock()
        loop = QualityAssuranceLoop(fixer)

        result = await loop.run({"content": _article(), "faqs": FAQS})

        assert result.attempts == 1
        assert result.final_score == 100
        assert result.article["risk_flags"] == []
        fixer.auto_fix_quality_issues.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fix_then_clean(self):
        fixer = AsyncMock()
        fixer.auto_fix_quality_issues.return_value = _article()
        loop = QualityAssuranceLoop(fixer)

        result = await loop.run({"content": _article(links=0), "faqs": FAQS})

        assert result.attempts == 2
        assert result.history == [75, 100]
        assert result.article["risk_flags"] == []
        assert result.article["content"] == _article()

    @pytest.mark.asyncio
    async def test_no_improvement_stops_with_flags(self):
        stuck = _article(links=0)
        fixer = AsyncMock()
        fixer.auto_fix_quality_issues.return_value = stuck
        loop = QualityAssuranceLoop(fixer)

        result = await loop.run({"content": stuck, "faqs": FAQS}, max_attempts=3)

        assert result.attempts == 1
        assert set(result.article["risk_flags"]) == {
            "missing_internal_links",
            "missing_external_links",
        }

    @pytest.mark.asyncio
    async def test_fixer_error_stops_with_flags(self):
        fixer = AsyncMock()
        fixer.auto_fix_quality_issues.side_effect = RuntimeError("overloaded")
        loop = QualityAssuranceLoop(fixer)

        result = await loop.run({"content": _article(), "faqs": []})

        assert result.attempts == 1
        assert result.article["risk_flags"] == ["missing_faqs"]

    @pytest.mark.asyncio
    async def test_last_attempt_does_not_fix(self):
        fixer = AsyncMock()
        loop = QualityAssuranceLoop(fixer)

        result = await loop.run({"content": _article(), "faqs": []}, max_attempts=1)

        assert result.article["risk_flags"] == ["missing_faqs"]
        fixer.auto_fix_quality_issues.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_attempt_callback_awaited(self):
        seen = []

        async def on_attempt(attempt, total):
            seen.append((attempt, total))

        await QualityAssuranceLoop(AsyncMock()).run(
            {"content": _article(), "faqs": FAQS}, max_attempts=2, on_attempt=on_attempt
        )
        assert seen == [(1, 2)]

    @pytest.mark.asyncio
    async def test_input_article_not_mutated(self):
        article = {"content": _article(), "faqs": FAQS}
        await QualityAssuranceLoop(AsyncMock()).run(article)
        assert "quality_score" not in article
