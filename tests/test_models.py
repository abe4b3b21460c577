"""
Tests for src.models module.

Covers:
    - Enum values used as database column values
    - RiskLevel ordering and parsing
    - ContentIdea / Contributor construction from database rows
    - QualityMetrics, ValidationIssue and ValidationResult serialisation
    - MonetizationSlotResult helpers and ProgressUpdate defaults
"""

import pytest

from src.models import (
    ArticleStatus,
    ContentIdea,
    Contributor,
    GenerationStage,
    IdeaStatus,
    MonetizationSlotResult,
    ProgressUpdate,
    QualityIssue,
    QualityMetrics,
    QueueStatus,
    RiskLevel,
    ValidationIssue,
    ValidationResult,
)


# =============================================================================
# Enums
# =============================================================================


class TestStatusEnums:
    def test_article_status_values(self):
        assert [s.value for s in ArticleStatus] == [
            "idea",
            "drafting",
            "refinement",
            "qa_review",
            "ready_to_publish",
            "published",
            "archived",
        ]

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (ArticleStatus.PUBLISHED, True),
            (ArticleStatus.ARCHIVED, True),
            (ArticleStatus.DRAFTING, False),
            (ArticleStatus.READY_TO_PUBLISH, False),
        ],
    )
    def test_terminal_states(self, status, terminal):
        assert status.is_terminal is terminal

    def test_queue_status_includes_cancelled(self):
        assert QueueStatus("cancelled") is QueueStatus.CANCELLED

    def test_idea_status_is_str(self):
        assert IdeaStatus.APPROVED == "approved"

    def test_generation_stages(self):
        assert {s.value for s in GenerationStage} == {
            "drafting",
            "humanizing",
            "linking",
            "quality_check",
            "auto_fix",
            "saving",
        }


class TestRiskLevel:
    def test_ordering_by_severity(self):
        assert RiskLevel.LOW < RiskLevel.MEDIUM < RiskLevel.HIGH < RiskLevel.CRITICAL
        assert RiskLevel.CRITICAL >= RiskLevel.HIGH
        assert not RiskLevel.HIGH <= RiskLevel.MEDIUM

    def test_sorted(self):
        levels = [RiskLevel.HIGH, RiskLevel.LOW, RiskLevel.CRITICAL, RiskLevel.MEDIUM]
        assert sorted(levels) == [
            RiskLevel.LOW,
            RiskLevel.MEDIUM,
            RiskLevel.HIGH,
            RiskLevel.CRITICAL,
        ]

    def test_compare_with_other_type_fails(self):
        with pytest.raises(TypeError):
            RiskLevel.LOW < 3  # noqa: B015

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("medium", RiskLevel.MEDIUM),
            ("CRITICAL", RiskLevel.CRITICAL),
            ("unknown", RiskLevel.LOW),
            (None, RiskLevel.LOW),
        ],
    )
    def test_parse(self, raw, expected):
        assert RiskLevel.parse(raw) is expected

    def test_parse_custom_default(self):
        assert RiskLevel.parse("bogus", RiskLevel.HIGH) is RiskLevel.HIGH


# =============================================================================
# Inputs
# =============================================================================


class TestContentIdea:
    def test_from_row(self):
        idea = ContentIdea.from_row({
            "id": "i1",
            "title": "Online RN to BSN Programs",
            "status": "approved",
            "seed_topics": ["nursing"],
            "extra_column": "ignored",
        })
        assert idea.id == "i1"
        assert idea.status is IdeaStatus.APPROVED
        assert idea.seed_topics == ["nursing"]

    def test_unknown_status_defaults_to_pending(self):
        assert ContentIdea.from_row({"title": "x", "status": "weird"}).status is IdeaStatus.PENDING


class TestContributor:
    def test_byline_prefers_display_name(self):
        c = Contributor(name="Sara", display_name="Sara Miller")
        assert c.byline == "Sara Miller"

    def test_byline_falls_back_to_name(self):
        assert Contributor(name="Charity").byline == "Charity"

    def test_from_row_copies_lists(self):
        row = {"name": "Tony Huffman", "expertise_areas": ["rankings"], "is_active": False}
        c = Contributor.from_row(row)
        c.expertise_areas.append("cost")
        assert row["expertise_areas"] == ["rankings"]
        assert c.is_active is False


# =============================================================================
# Quality and validation
# =============================================================================


class TestQualityMetrics:
    def test_issue_types(self):
        m = QualityMetrics(
            score=75,
            word_count=1400,
            issues=[
                QualityIssue("word_count_low", "major", "1400 words"),
                QualityIssue("missing_faqs", "minor"),
            ],
        )
        assert m.issue_types == ["word_count_low", "missing_faqs"]
        assert m.issues[0].to_dict() == {
            "type": "word_count_low",
            "severity": "major",
            "details": "1400 words",
        }


class TestValidationResult:
    def test_issue_to_dict_merges_extra(self):
        issue = ValidationIssue(
            type="truncation",
            severity="critical",
            message="Article appears truncated",
            extra={"ending": "and the"},
        )
        assert issue.to_dict() == {
            "type": "truncation",
            "severity": "critical",
            "message": "Article appears truncated",
            "ending": "and the",
        }

    def test_issues_lists_blocking_first(self):
        block = ValidationIssue("placeholder", "critical", "Placeholder text")
        warn = ValidationIssue("legislation", "warning", "Legislation mention")
        result = ValidationResult(
            is_valid=False,
            is_blocked=True,
            risk_level=RiskLevel.CRITICAL,
            blocking_issues=[block],
            warnings=[warn],
        )
        assert result.issues == [block, warn]
        data = result.to_dict()
        assert data["risk_level"] == "CRITICAL"
        assert [i["type"] for i in data["issues"]] == ["placeholder", "legislation"]


# =============================================================================
# Monetization and progress
# =============================================================================


class TestMonetizationSlotResult:
    def test_program_helpers(self):
        slot = MonetizationSlotResult(
            name="after_intro",
            type="ge_picks",
            shortcode="[su_ge-picks][/su_ge-picks]",
            selected_program_ids=[1, 2],
            selected_programs=[{"id": 1, "is_sponsored": True}, {"id": 2}],
        )
        assert slot.program_count == 2
        assert slot.has_sponsored is True

    def test_no_sponsored(self):
        slot = MonetizationSlotResult("mid", "qdf", "[su_ge-qdf][/su_ge-qdf]")
        assert slot.program_count == 0
        assert slot.has_sponsored is False


def test_progress_update_defaults():
    update = ProgressUpdate("Generating draft...", 20)
    assert update.stage is None
    assert update.timestamp is None
