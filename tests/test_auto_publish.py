"""
Tests for src.scheduling.auto_publish.

Covers:
    - AutoPublisher.get_settings() overlay of system_settings rows
    - Eligibility and the publish cycle (disabled, empty, published, skipped, failed)
    - Deadlines, review marking and status reporting
    - AutoPublishScheduler start/stop
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config import AutoPublishConfig, Settings
from src.exceptions import DatabaseError
from src.scheduling.auto_publish import SETTING_KEYS, AutoPublisher, AutoPublishScheduler


def _auto_db(stored=None, candidates=None, article=None):
    db = MagicMock()
    db.get_system_settings = AsyncMock(return_value=stored or {})
    db.get_auto_publish_candidates = AsyncMock(return_value=candidates or [])
    db.get_article = AsyncMock(return_value=article)
    db.update_article = AsyncMock()
    return db


def _publisher(*outcomes):
    publisher = MagicMock()
    publisher.publish_article = AsyncMock(
        side_effect=list(outcomes) or [{"success": True, "webhook_response": {"post_id": 1}}]
    )
    return publisher


def _auto(db, publisher=None):
    return AutoPublisher(db=db, settings=Settings(), publisher=publisher or _publisher())


# =============================================================================
# Settings
# =============================================================================


class TestAutoPublishSettings:
    def test_config_defaults(self):
        config = AutoPublishConfig()
        assert config.enabled is False
        assert config.days_until_auto_publish == 5
        assert config.max_risk_level == "LOW"
        assert config.min_quality_score == 80
        assert config.max_articles_per_run == 10

    @pytest.mark.asyncio
    async def test_defaults_without_rows(self):
        db = _auto_db()
        config = await _auto(db).get_settings()

        db.get_system_settings.assert_awaited_once_with(SETTING_KEYS)
        assert config.enabled is False
        assert config.max_risk_level == "LOW"

    @pytest.mark.asyncio
    async def test_rows_override_defaults(self):
        db = _auto_db(stored={
            "enable_auto_publish": "true",
            "auto_publish_days": "7",
            "block_high_risk_publish": False,
            "quality_threshold_publish": 75,
        })
        config = await _auto(db).get_settings()

        assert config.enabled is True
        assert config.days_until_auto_publish == 7
        assert config.max_risk_level == "MEDIUM"
        assert config.min_quality_score == 75

    @pytest.mark.asyncio
    async def test_bad_numbers_keep_defaults(self):
        db = _auto_db(stored={"auto_publish_days": "soon", "quality_threshold_publish": None})
        config = await _auto(db).get_settings()
        assert config.days_until_auto_publish == 5
        assert config.min_quality_score == 80

    @pytest.mark.asyncio
    async def test_global_settings_untouched(self):
        auto = _auto(_auto_db(stored={"enable_auto_publish": True}))
        await auto.get_settings()
        assert auto.settings.auto_publish.enabled is False

    @pytest.mark.asyncio
    async def test_eligible_articles_query(self):
        db = _auto_db()
        await _auto(db).get_eligible_articles(3)
        now_iso, limit = db.get_auto_publish_candidates.call_args.args
        assert limit == 3
        assert now_iso.endswith("+00:00")


# =============================================================================
# Eligibility
# =============================================================================


class TestEligibility:
    def test_clean_article(self, sample_article):
        result = _auto(_auto_db()).check_auto_publish_eligibility(sample_article, AutoPublishConfig())
        assert result == {"eligible": True, "reasons": [], "risk_level": "LOW"}

    def test_risk_and_quality(self, sample_article):
        article = dict(sample_article, quality_score=75)
        result = _auto(_auto_db()).check_auto_publish_eligibility(article, AutoPublishConfig())

        assert result["eligible"] is False
        assert result["reasons"] == [
            "Risk level MEDIUM exceeds maximum LOW",
            "Quality score 75 below minimum 80",
        ]

    def test_medium_allowed_when_configured(self, sample_article):
        article = dict(sample_article, quality_score=82)
        config = AutoPublishConfig(max_risk_level="MEDIUM")
        assert _auto(_auto_db()).check_auto_publish_eligibility(article, config)["eligible"] is True

    def test_gate_failure(self, sample_article):
        content = sample_article["content"] + '<a href="https://www.usnews.com/">x</a>'
        result = _auto(_auto_db()).check_auto_publish_eligibility(
            dict(sample_article, content=content), AutoPublishConfig()
        )
        assert result["risk_level"] == "CRITICAL"
        assert any("Competitor link detected" in r for r in result["reasons"])


# =============================================================================
# Cycle
# =============================================================================


class TestAutoPublishCycle:
    @pytest.mark.asyncio
    async def test_disabled(self):
        db = _auto_db()
        result = await _auto(db).run_auto_publish_cycle()

        assert result["details"] == [{"type": "info", "message": "Auto-publish is disabled"}]
        db.get_auto_publish_candidates.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_eligible(self):
        result = await _auto(_auto_db(stored={"enable_auto_publish": True})).run_auto_publish_cycle()
        assert result["articles_checked"] == 0
        assert result["details"][0]["message"] == "No articles eligible for auto-publish"

    @pytest.mark.asyncio
    async def test_publishes_skips_and_counts_failures(self, sample_article):
        low_quality = dict(sample_article, id="article-2", quality_score=60)
        failing = dict(sample_article, id="article-3")
        publisher = _publisher(
            {"success": True, "webhook_response": {"post_id": 9}},
            {"success": False, "error": "Webhook error: 502 - bad gateway"},
        )
        db = _auto_db(
            stored={"enable_auto_publish": "true"},
            candidates=[sample_article, low_quality, failing],
        )

        result = await _auto(db, publisher).run_auto_publish_cycle()

        assert result["articles_checked"] == 3
        assert result["articles_published"] == 1
        assert result["articles_skipped"] == 1
        assert result["articles_failed"] == 1
        assert [d["type"] for d in result["details"]] == ["published", "skipped", "failed"]
        assert result["details"][2]["error"].startswith("Webhook error: 502")

        kwargs = publisher.publish_article.call_args.kwargs
        assert kwargs["status"] == "publish"
        assert kwargs["validate_first"] is False

    @pytest.mark.asyncio
    async def test_respects_run_cap(self, sample_article):
        candidates = [dict(sample_article, id=f"a{i}") for i in range(3)]
        db = _auto_db(stored={"enable_auto_publish": True}, candidates=candidates)
        auto = _auto(db, _publisher({"success": True}))
        auto.settings.auto_publish.max_articles_per_run = 1

        result = await auto.run_auto_publish_cycle()

        assert db.get_auto_publish_candidates.call_args.args[1] == 1
        assert result["articles_published"] == 1


# =============================================================================
# Deadlines & status
# =============================================================================


class TestDeadlines:
    @pytest.mark.asyncio
    async def test_set_deadline(self):
        db = _auto_db()
        result = await _auto(db).set_auto_publish_deadline("article-1", 5)

        deadline = datetime.fromisoformat(result["deadline"])
        assert timedelta(days=4, hours=23) < deadline - datetime.now(deadline.tzinfo) <= timedelta(days=5)
        db.update_article.assert_awaited_once_with(
            "article-1", {"autopublish_deadline": result["deadline"]}
        )

    @pytest.mark.asyncio
    async def test_cancel_clears_deadline(self):
        db = _auto_db()
        await _auto(db).cancel_auto_publish("article-1")
        db.update_article.assert_awaited_once_with("article-1", {"autopublish_deadline": None})

    @pytest.mark.asyncio
    async def test_mark_as_reviewed(self):
        db = _auto_db()
        await _auto(db).mark_as_reviewed("article-1", "editor-7")
        updates = db.update_article.call_args.args[1]
        assert updates["human_reviewed"] is True
        assert updates["reviewed_by"] == "editor-7"

    @pytest.mark.asyncio
    async def test_status_overdue(self):
        article = {
            "id": "article-1",
            "status": "ready_to_publish",
            "autopublish_deadline": "2020-01-01T00:00:00Z",
            "human_reviewed": False,
        }
        status = await _auto(_auto_db(article=article)).get_auto_publish_status("article-1")

        assert status["has_deadline"] is True
        assert status["is_overdue"] is True
        assert status["time_remaining"] < 0
        assert status["will_auto_publish"] is True

    @pytest.mark.asyncio
    async def test_reviewed_article_never_auto_publishes(self):
        article = {
            "status": "ready_to_publish",
            "autopublish_deadline": "2020-01-01T00:00:00+00:00",
            "human_reviewed": True,
        }
        status = await _auto(_auto_db(article=article)).get_auto_publish_status("article-1")
        assert status["will_auto_publish"] is False

    @pytest.mark.asyncio
    async def test_no_deadline(self):
        article = {"status": "ready_to_publish"}
        status = await _auto(_auto_db(article=article)).get_auto_publish_status("article-1")
        assert status["has_deadline"] is False
        assert status["time_remaining"] is None
        assert status["will_auto_publish"] is False

    @pytest.mark.asyncio
    async def test_missing_article(self):
        with pytest.raises(DatabaseError, match="not found"):
            await _auto(_auto_db(article=None)).get_auto_publish_status("gone")


# =============================================================================
# Scheduler
# =============================================================================


class TestAutoPublishScheduler:
    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        publisher = MagicMock()
        scheduler = AutoPublishScheduler(publisher, check_interval_seconds=60)
        calls = []

        async def cycle():
            calls.append(1)
            if len(calls) == 2:
                await scheduler.stop()
            return {"articles_published": len(calls)}

        publisher.run_auto_publish_cycle = AsyncMock(side_effect=cycle)

        with patch("src.scheduling.auto_publish.asyncio.sleep", new=AsyncMock()) as sleep:
            await scheduler.start()

        assert len(calls) == 2
        assert scheduler.last_result == {"articles_published": 2}
        assert scheduler.is_running is False
        sleep.assert_awaited_once_with(60)

    @pytest.mark.asyncio
    async def test_cycle_errors_do_not_stop_loop(self):
        publisher = MagicMock()
        scheduler = AutoPublishScheduler(publisher)

        calls = []

        async def cycle():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("db offline")
            await scheduler.stop()
            return {"ok": True}

        publisher.run_auto_publish_cycle = AsyncMock(side_effect=cycle)

        with patch("src.scheduling.auto_publish.asyncio.sleep", new=AsyncMock()):
            await scheduler.start()

        assert publisher.run_auto_publish_cycle.await_count == 2
        assert scheduler.last_result == {"ok": True}
