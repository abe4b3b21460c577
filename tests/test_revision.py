"""
Tests for src.agents.revision.

Covers:
    - Feedback revisions: Claude call, article update, comments addressed
    - Catalog versions: original snapshot, numbering, restore
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.revision import RevisionService
from src.exceptions import RevisionError


ARTICLE = {"id": "a1", "title": "Online MBA Costs", "content": "<p>Old tuition figures.</p>"}

FEEDBACK = [
    {"id": "f1", "category": "accuracy", "severity": "major",
     "selected_text": "Old tuition", "comment": "Update to 2025 tuition"},
]

CATALOG_ARTICLE = {
    "id": "ge-1",
    "title": "Cheapest Online MBA",
    "meta_description": "Low-cost MBA programs.",
    "content_html": "<p>Original page text.</p>",
    "faqs": [],
}


def _revision_db(versions=None):
    db = MagicMock()
    db.get_article = AsyncMock(return_value=dict(ARTICLE))
    db.get_pending_feedback = AsyncMock(return_value=FEEDBACK)
    db.update_article = AsyncMock(side_effect=lambda article_id, updates: {**ARTICLE, **updates})
    db.mark_feedback_addressed = AsyncMock()
    db.get_article_versions = AsyncMock(return_value=versions or [])
    db.insert_article_version = AsyncMock(
        side_effect=lambda row: {**row, "id": f"v{row['version_number']}"}
    )
    db.set_current_version = AsyncMock()
    db.update_catalog_article = AsyncMock()
    db.get_article_version = AsyncMock(return_value=None)
    return db


def _claude():
    claude = MagicMock()
    claude.revise_with_feedback = AsyncMock(return_value="<p>New tuition figures for 2025.</p>")
    return claude


# =============================================================================
# Feedback revisions
# =============================================================================


class TestReviseWithFeedback:
    @pytest.mark.asyncio
    async def test_pending_feedback_applied(self):
        db = _revision_db()
        claude = _claude()

        updated = await RevisionService(claude=claude, db=db).revise_with_feedback("a1")

        claude.revise_with_feedback.assert_awaited_once_with("<p>Old tuition figures.</p>", FEEDBACK)
        assert updated["content"] == "<p>New tuition figures for 2025.</p>"
        assert db.update_article.call_args.args[1]["word_count"] == 5
        db.mark_feedback_addressed.assert_awaited_once_with(["f1"], ai_revised=True)

    @pytest.mark.asyncio
    async def test_no_feedback_leaves_article(self):
        db = _revision_db()
        db.get_pending_feedback.return_value = []
        claude = _claude()

        article = await RevisionService(claude=claude, db=db).revise_with_feedback("a1")

        assert article["content"] == ARTICLE["content"]
        claude.revise_with_feedback.assert_not_awaited()
        db.update_article.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_article(self):
        db = _revision_db()
        db.get_article.return_value = None

        with pytest.raises(RevisionError, match="not found"):
            await RevisionService(claude=_claude(), db=db).revise_with_feedback("gone")


# =============================================================================
# Catalog versions
# =============================================================================


class TestVersions:
    @pytest.mark.asyncio
    async def test_first_revision_keeps_original(self):
        db = _revision_db()
        service = RevisionService(claude=_claude(), db=db)

        version = await service.record_version(
            CATALOG_ARTICLE,
            {"content": "<p>Refreshed page text with 2025 costs.</p>"},
            revision_prompt="refresh costs",
            ai_model="claude-sonnet",
        )

        inserted = [c.args[0] for c in db.insert_article_version.await_args_list]
        assert [(r["version_number"], r["version_type"]) for r in inserted] == [
            (1, "original"),
            (2, "ai_revision"),
        ]
        assert inserted[0]["content_html"] == "<p>Original page text.</p>"
        assert inserted[1]["title"] == "Cheapest Online MBA"
        assert inserted[1]["revision_prompt"] == "refresh costs"
        assert version["id"] == "v2"
        db.set_current_version.assert_awaited_once_with("ge-1", "v2")
        updates = db.update_catalog_article.call_args.args[1]
        assert updates["version_count"] == 2
        assert updates["content_text"] == "Refreshed page text with 2025 costs."
        assert updates["word_count"] == 6

    @pytest.mark.asyncio
    async def test_numbering_follows_latest(self):
        db = _revision_db(versions=[{"id": "v3", "version_number": 3}, {"id": "v1", "version_number": 1}])

        version = await RevisionService(claude=_claude(), db=db).record_version(
            CATALOG_ARTICLE, {"content": "<p>Again.</p>"}
        )

        assert version["version_number"] == 4
        db.insert_article_version.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restore_version(self):
        db = _revision_db()
        db.get_article_version.return_value = {
            "id": "v1", "article_id": "ge-1", "version_number": 1,
            "title": "Cheapest Online MBA", "content_html": "<p>Original page text.</p>",
        }

        version = await RevisionService(claude=_claude(), db=db).restore_version("ge-1", "v1")

        assert version["version_number"] == 1
        db.set_current_version.assert_awaited_once_with("ge-1", "v1")
        updates = db.update_catalog_article.call_args.args[1]
        assert updates["current_version_id"] == "v1"
        assert updates["content_html"] == "<p>Original page text.</p>"

    @pytest.mark.asyncio
    async def test_restore_rejects_foreign_version(self):
        db = _revision_db()
        db.get_article_version.return_value = {"id": "v9", "article_id": "other"}

        with pytest.raises(RevisionError):
            await RevisionService(claude=_claude(), db=db).restore_version("ge-1", "v9")
        db.set_current_version.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history(self):
        db = _revision_db(versions=[{"id": "v2", "version_number": 2}])
        history = await RevisionService(claude=_claude(), db=db).get_version_history("ge-1")
        assert history == [{"id": "v2", "version_number": 2}]
