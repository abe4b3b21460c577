"""
Deadline-driven auto-publishing.

Articles that reach ``ready_to_publish`` get an ``autopublish_deadline``.
When the deadline passes and nobody has reviewed the article, the
auto-publish cycle publishes it, provided its risk level and quality score
are within the configured limits and the publish gate passes.  A human
review always takes the article out of the automatic path.

Provides:
    - AutoPublisher: settings, eligibility, the publish cycle and deadlines
    - AutoPublishScheduler: Background loop that runs the cycle periodically
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from src.config import AutoPublishConfig, get_settings
from src.exceptions import DatabaseError
from src.logging import ComponentLogger, LogComponent
from src.models import ArticleStatus, RiskLevel
from src.scheduling.prepublish import assess_risk, validate_for_publish
from src.scheduling.publishing import PublishService
from src.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

SETTING_KEYS: List[str] = [
    "enable_auto_publish",
    "auto_publish_days",
    "block_high_risk_publish",
    "quality_threshold_publish",
]


def _setting_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _setting_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


class AutoPublisher:
    """
    Runs auto-publish cycles against the ``articles`` table.

    Args:
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.
        settings: Optional ``Settings``; ``get_settings()`` when omitted.
        publisher: Optional ``PublishService``; built from *db* and
            *settings* when omitted.
    """

    def __init__(
        self,
        db: Any = None,
        settings: Any = None,
        publisher: Optional[PublishService] = None,
    ) -> None:
        self._db = db
        self.settings = settings or get_settings()
        self.publisher = publisher or PublishService(db=db, settings=self.settings)
        self.log = ComponentLogger(LogComponent.AUTO_PUBLISH)

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    # ------------------------------------------------------------------
    # Settings & eligibility
    # ------------------------------------------------------------------

    async def get_settings(self) -> AutoPublishConfig:
        """
        Configured defaults overlaid with the ``system_settings`` rows.

        ``block_high_risk_publish`` true caps the risk level at LOW,
        false at MEDIUM.  Unparseable numbers keep the defaults.
        """
        db = await self._get_db()
        stored = await db.get_system_settings(SETTING_KEYS)
        config = replace(self.settings.auto_publish)

        if "enable_auto_publish" in stored:
            config.enabled = _setting_bool(stored["enable_auto_publish"])
        if "auto_publish_days" in stored:
            config.days_until_auto_publish = _setting_int(
                stored["auto_publish_days"], config.days_until_auto_publish
            )
        if "block_high_risk_publish" in stored:
            config.max_risk_level = (
                RiskLevel.LOW.value
                if _setting_bool(stored["block_high_risk_publish"])
                else RiskLevel.MEDIUM.value
            )
        if "quality_threshold_publish" in stored:
            config.min_quality_score = _setting_int(
                stored["quality_threshold_publish"], config.min_quality_score
            )
        return config

    async def get_eligible_articles(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Unreviewed ``ready_to_publish`` articles past their deadline."""
        db = await self._get_db()
        return await db.get_auto_publish_candidates(
            utc_now().isoformat(), limit or self.settings.auto_publish.max_articles_per_run
        )

    def check_auto_publish_eligibility(
        self, article: Dict[str, Any], config: AutoPublishConfig
    ) -> Dict[str, Any]:
        """Returns ``{"eligible", "reasons", "risk_level"}``."""
        reasons: List[str] = []
        risk_level = assess_risk(article)["risk_level"]
        max_risk = RiskLevel.parse(config.max_risk_level)

        if risk_level > max_risk:
            reasons.append(
                f"Risk level {risk_level.value} exceeds maximum {max_risk.value}"
            )

        quality_score = article.get("quality_score") or 0
        if quality_score < config.min_quality_score:
            reasons.append(
                f"Quality score {quality_score} below minimum {config.min_quality_score}"
            )

        validation = validate_for_publish(article, thresholds=self.settings.thresholds)
        if not validation["can_publish"]:
            reasons.extend(issue["message"] for issue in validation["blocking_issues"])

        return {"eligible": not reasons, "reasons": reasons, "risk_level": risk_level.value}

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_auto_publish_cycle(self) -> Dict[str, Any]:
        """
        Publish every eligible overdue article, up to the per-run cap.

        Individual publish failures are counted, never raised.
        """
        started = time.monotonic()
        results: Dict[str, Any] = {
            "timestamp": utc_now().isoformat(),
            "articles_checked": 0,
            "articles_published": 0,
            "articles_failed": 0,
            "articles_skipped": 0,
            "details": [],
            "duration": 0.0,
        }

        config = await self.get_settings()
        if not config.enabled:
            results["details"].append({"type": "info", "message": "Auto-publish is disabled"})
            return results

        articles = await self.get_eligible_articles(config.max_articles_per_run)
        results["articles_checked"] = len(articles)
        if not articles:
            results["details"].append(
                {"type": "info", "message": "No articles eligible for auto-publish"}
            )
            return results

        for article in articles[: config.max_articles_per_run]:
            eligibility = self.check_auto_publish_eligibility(article, config)
            if not eligibility["eligible"]:
                results["articles_skipped"] += 1
                results["details"].append({
                    "type": "skipped",
                    "article_id": article.get("id"),
                    "title": article.get("title"),
                    "reasons": eligibility["reasons"],
                })
                continue

            # Already validated above
            outcome = await self.publisher.publish_article(
                article, status="publish", validate_first=False, update_database=True
            )
            if outcome["success"]:
                results["articles_published"] += 1
                results["details"].append({
                    "type": "published",
                    "article_id": article.get("id"),
                    "title": article.get("title"),
                    "webhook_response": outcome.get("webhook_response"),
                })
            else:
                results["articles_failed"] += 1
                results["details"].append({
                    "type": "failed",
                    "article_id": article.get("id"),
                    "title": article.get("title"),
                    "error": outcome.get("error"),
                })
            await self._log_event(article.get("id"), outcome)

        results["duration"] = round(time.monotonic() - started, 3)
        logger.info(
            "Auto-publish cycle: %d checked, %d published, %d failed, %d skipped",
            results["articles_checked"],
            results["articles_published"],
            results["articles_failed"],
            results["articles_skipped"],
        )
        return results

    async def _log_event(self, article_id: Optional[str], outcome: Dict[str, Any]) -> None:
        status = "success" if outcome["success"] else "failed"
        logger.info("Auto-publish article %s: %s", article_id, status)
        await self.log.info(
            f"Auto-publish {status}",
            data={"article_id": article_id, "error": outcome.get("error")},
        )

    # ------------------------------------------------------------------
    # Deadlines & review
    # ------------------------------------------------------------------

    async def set_auto_publish_deadline(
        self, article_id: str, days: Optional[int] = 5
    ) -> Dict[str, Any]:
        """Deadline *days* from now; ``None`` or ``0`` clears it."""
        deadline = (utc_now() + timedelta(days=days)).isoformat() if days else None
        db = await self._get_db()
        await db.update_article(article_id, {"autopublish_deadline": deadline})
        return {"article_id": article_id, "deadline": deadline}

    async def cancel_auto_publish(self, article_id: str) -> Dict[str, Any]:
        return await self.set_auto_publish_deadline(article_id, None)

    async def mark_as_reviewed(self, article_id: str, reviewer_id: Optional[str]) -> Dict[str, Any]:
        reviewed_at = utc_now().isoformat()
        db = await self._get_db()
        await db.update_article(article_id, {
            "human_reviewed": True,
            "reviewed_at": reviewed_at,
            "reviewed_by": reviewer_id,
        })
        return {"article_id": article_id, "reviewed_at": reviewed_at}

    async def get_auto_publish_status(self, article_id: str) -> Dict[str, Any]:
        """
        Raises:
            DatabaseError: The article does not exist.
        """
        db = await self._get_db()
        article = await db.get_article(article_id)
        if not article:
            raise DatabaseError(f"Failed to get article: {article_id} not found")

        now = utc_now()
        deadline = _parse_timestamp(article.get("autopublish_deadline"))
        reviewed = bool(article.get("human_reviewed"))

        return {
            "article_id": article_id,
            "status": article.get("status"),
            "has_deadline": deadline is not None,
            "deadline": article.get("autopublish_deadline"),
            "is_overdue": deadline is not None and deadline < now,
            "time_remaining": (deadline - now).total_seconds() if deadline else None,
            "human_reviewed": reviewed,
            "reviewed_at": article.get("reviewed_at"),
            "risk_level": article.get("risk_level"),
            "quality_score": article.get("quality_score"),
            "will_auto_publish": (
                not reviewed
                and deadline is not None
                and deadline <= now
                and article.get("status") == ArticleStatus.READY_TO_PUBLISH.value
            ),
        }


class AutoPublishScheduler:
    """Background task that runs :meth:`AutoPublisher.run_auto_publish_cycle`.

    Args:
        publisher: The auto publisher to drive.
        check_interval_seconds: Seconds between cycles (default: 1 hour).
    """

    def __init__(
        self, publisher: AutoPublisher, check_interval_seconds: int = 3600
    ) -> None:
        self.publisher = publisher
        self.check_interval_seconds = check_interval_seconds
        self._running: bool = False
        self.last_result: Optional[Dict[str, Any]] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run cycles until :meth:`stop` is called or the task is cancelled."""
        self._running = True
        logger.info(
            "[SCHEDULER] Auto-publish scheduler started (interval=%ds)",
            self.check_interval_seconds,
        )

        while self._running:
            try:
                self.last_result = await self.publisher.run_auto_publish_cycle()
            except asyncio.CancelledError:
                logger.info("[SCHEDULER] Auto-publish scheduler cancelled")
                break
            except Exception:
                logger.exception("[SCHEDULER] Unexpected error in auto-publish cycle")

            if not self._running:
                break
            try:
                await asyncio.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                logger.info("[SCHEDULER] Auto-publish scheduler sleep cancelled")
                break

        self._running = False
        logger.info("[SCHEDULER] Auto-publish scheduler stopped")

    async def stop(self) -> None:
        self._running = False
        logger.info("[SCHEDULER] Auto-publish scheduler stop requested")


__all__ = ["SETTING_KEYS", "AutoPublisher", "AutoPublishScheduler"]
