"""
Webhook publishing to WordPress (through n8n).

Articles are validated, POSTed as JSON to the environment's webhook, marked
``published`` in the database and added to the GetEducated site catalog so
later articles can link to them.

Provides:
    - get_webhook_url(): Staging / production webhook from the environment
    - build_webhook_payload(): The JSON body sent to the webhook
    - build_catalog_entry(): ``geteducated_articles`` row for a published URL
    - check_publish_eligibility(): Gate result without publishing
    - PublishService: publish, bulk publish and retry
"""

import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional

import httpx

from src.config import QualityThresholds, get_settings
from src.exceptions import ConfigurationError, PublishError
from src.logging import ComponentLogger, LogComponent
from src.scheduling.prepublish import calculate_risk_level, validate_for_publish
from src.utils import count_words, generate_excerpt, generate_slug, strip_html, utc_now

logger = logging.getLogger("PublishService")

ENVIRONMENTS = ("staging", "production")

WEBHOOK_ENV_VARS: Dict[str, str] = {
    "staging": "N8N_PUBLISH_WEBHOOK_STAGING",
    "production": "N8N_PUBLISH_WEBHOOK_PRODUCTION",
}

BULK_PUBLISH_DELAY_SECONDS = 0.5
WEBHOOK_TIMEOUT_SECONDS = 60.0

GETEDUCATED_BASE_URL = "https://www.geteducated.com/"


# =============================================================================
# PAYLOAD
# =============================================================================


def get_webhook_url(environment: str = "staging") -> str:
    """
    Webhook URL for *environment*; production falls back to staging.

    Raises:
        ConfigurationError: Unknown environment, or no URL configured.
    """
    if environment not in ENVIRONMENTS:
        raise ConfigurationError(
            f"Unknown publish environment '{environment}'. Use one of {ENVIRONMENTS}"
        )

    url = os.environ.get(WEBHOOK_ENV_VARS[environment], "")
    if not url and environment == "production":
        url = os.environ.get(WEBHOOK_ENV_VARS["staging"], "")
    if not url:
        raise ConfigurationError(
            f"No publish webhook configured; set {WEBHOOK_ENV_VARS[environment]}"
        )
    return url


def _contributor(article: Dict[str, Any]) -> Dict[str, Any]:
    return article.get("article_contributors") or {}


def build_webhook_payload(
    article: Dict[str, Any],
    status: str = "draft",
    environment: str = "staging",
) -> Dict[str, Any]:
    """
    JSON body for the publish webhook.

    ``author_display_name`` is the contributor's public display name (the
    real name when none is set); style-proxy names never appear here.
    """
    content = article.get("content") or ""
    contributor = _contributor(article)
    author = article.get("contributor_name") or contributor.get("name")
    excerpt = article.get("excerpt") or generate_excerpt(content)

    return {
        "article_id": article.get("id"),
        "title": article.get("title"),
        "content": content,
        "excerpt": excerpt,
        "author": author,
        "author_display_name": contributor.get("display_name") or author,
        "meta_title": article.get("meta_title") or article.get("title"),
        "meta_description": article.get("meta_description") or excerpt,
        "focus_keyword": article.get("focus_keyword"),
        "slug": article.get("slug") or generate_slug(article.get("title") or ""),
        "faqs": article.get("faqs") or [],
        "status": status,
        "environment": environment,
        "published_at": utc_now().isoformat(),
        "quality_score": article.get("quality_score"),
        "risk_level": article.get("risk_level") or calculate_risk_level(article).value,
        "word_count": article.get("word_count") or count_words(content),
    }


# =============================================================================
# CATALOG SYNC
# =============================================================================

SUBJECT_KEYWORDS: Dict[str, List[str]] = {
    "nursing": ["nursing", "nurse", "bsn", "msn", "dnp", "rn"],
    "business": ["business", "mba", "management", "accounting", "finance", "marketing"],
    "education": ["education", "teaching", "teacher", "med", "edd"],
    "technology": ["technology", "computer", "cybersecurity", "data science", "software"],
    "healthcare": ["healthcare", "health", "medical", "public health"],
    "psychology": ["psychology", "counseling", "mental health"],
    "social_work": ["social work", "msw"],
}


def _has_word(text: str, keyword: str) -> bool:
    return re.search(r"\b" + re.escape(keyword) + r"\b", text) is not None


def detect_content_type(title: str) -> str:
    title = title.lower()
    if any(w in title for w in ("ranking", "best", "top", "cheapest")):
        return "ranking"
    if any(w in title for w in ("career", "job", "salary")):
        return "career"
    if "how to" in title:
        return "how_to"
    return "guide"


def detect_degree_level(title: str) -> Optional[str]:
    title = title.lower()
    if any(_has_word(title, w) for w in ("doctorate", "phd", "dnp", "edd")):
        return "doctorate"
    if any(w in title for w in ("master", "mba", "msn")):
        return "masters"
    if any(w in title for w in ("bachelor", "bsn")):
        return "bachelors"
    if "associate" in title:
        return "associate"
    return None


def detect_subject_area(title: str) -> Optional[str]:
    title = title.lower()
    for subject, keywords in SUBJECT_KEYWORDS.items():
        if any(_has_word(title, kw) for kw in keywords):
            return subject
    return None


def build_catalog_entry(article: Dict[str, Any], published_url: str) -> Dict[str, Any]:
    """``geteducated_articles`` row describing a freshly published article."""
    content = article.get("content") or ""
    text = strip_html(content)
    title = article.get("title") or ""

    degree_level = detect_degree_level(title)
    subject_area = detect_subject_area(title)
    topics = [
        t for t in (
            article.get("focus_keyword"),
            degree_level,
            subject_area.replace("_", " ") if subject_area else None,
        )
        if t
    ]
    now = utc_now().isoformat()

    return {
        "url": published_url,
        "slug": published_url.replace(GETEDUCATED_BASE_URL, "").rstrip("/"),
        "title": title,
        "meta_description": article.get("meta_description") or article.get("excerpt"),
        "excerpt": article.get("excerpt") or text[:300],
        "content_html": content,
        "content_text": text,
        "word_count": count_words(content),
        "content_type": detect_content_type(title),
        "degree_level": degree_level,
        "subject_area": subject_area,
        "topics": topics or None,
        "primary_topic": topics[0] if topics else None,
        "author_name": article.get("contributor_name"),
        "published_at": now,
        "scraped_at": now,
        "needs_rewrite": False,
        "times_linked_to": 0,
    }


# =============================================================================
# ELIGIBILITY
# =============================================================================


def check_publish_eligibility(
    article: Dict[str, Any], thresholds: Optional[QualityThresholds] = None
) -> Dict[str, Any]:
    """Run the publish gate (monetization required) without publishing."""
    validation = validate_for_publish(
        article, require_monetization=True, thresholds=thresholds
    )
    return {
        "eligible": validation["can_publish"],
        "risk_level": validation["risk_level"],
        "quality_score": validation["quality_score"],
        "blocking_issues": validation["blocking_issues"],
        "warnings": validation["warnings"],
        "checks": validation["checks"],
    }


# =============================================================================
# PUBLISH SERVICE
# =============================================================================


class PublishService:
    """
    Sends articles to the publish webhook and records the outcome.

    Args:
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.
        settings: Optional ``Settings``; ``get_settings()`` when omitted.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        db: Any = None,
        settings: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._db = db
        self.settings = settings or get_settings()
        self.transport = transport
        self.log = ComponentLogger(LogComponent.PUBLISHER)

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    async def send_webhook(
        self, payload: Dict[str, Any], environment: str
    ) -> Dict[str, Any]:
        """
        POST *payload* to the webhook.

        Returns:
            The parsed JSON response, or ``{"raw": text}`` for non-JSON bodies.

        Raises:
            PublishError: Non-2xx response.
        """
        url = get_webhook_url(environment)
        async with httpx.AsyncClient(
            timeout=WEBHOOK_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            response = await client.post(url, json=payload)

        if not response.is_success:
            raise PublishError(f"Webhook error: {response.status_code} - {response.text}")

        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def publish_article(
        self,
        article: Dict[str, Any],
        status: str = "draft",
        validate_first: bool = True,
        update_database: bool = True,
        environment: Optional[str] = None,
        require_monetization: bool = True,
        block_unknown_shortcodes: bool = True,
    ) -> Dict[str, Any]:
        """
        Publish one article.

        Never raises for publish failures: the result's ``success`` flag and
        ``error`` carry them.  Database and catalog updates after a
        successful webhook call are logged on failure but do not fail the
        publish.
        """
        environment = environment or self.settings.publish_environment
        article_id = article.get("id")

        if validate_first:
            validation = validate_for_publish(
                article,
                require_monetization=require_monetization,
                block_unknown_shortcodes=block_unknown_shortcodes,
                thresholds=self.settings.thresholds,
            )
            if not validation["can_publish"]:
                logger.warning(
                    "Article %s failed pre-publish validation: %d blocking issue(s)",
                    article_id,
                    len(validation["blocking_issues"]),
                )
                await self.log.warning(
                    "Pre-publish validation failed",
                    data={"article_id": article_id, "blocking_issues": validation["blocking_issues"]},
                )
                return {
                    "success": False,
                    "error": "Validation failed",
                    "blocking_issues": validation["blocking_issues"],
                    "validation": validation,
                    "environment": environment,
                }

        try:
            payload = build_webhook_payload(article, status, environment)
            response = await self.send_webhook(payload, environment)
        except (PublishError, ConfigurationError, httpx.HTTPError) as e:
            logger.error("Publishing article %s failed: %s", article_id, e)
            await self.log.error("Publish failed", error=e, data={"article_id": article_id})
            return {"success": False, "error": str(e), "article_id": article_id}

        published_at = utc_now().isoformat()
        published_url = response.get("url") or response.get("published_url")

        if update_database and article_id:
            await self._record_published(article_id, response, published_url, published_at)
        if published_url:
            await self.sync_to_catalog(article, published_url)

        logger.info("Published article %s to %s", article_id, environment)
        await self.log.info(
            "Article published",
            data={"article_id": article_id, "environment": environment, "url": published_url},
        )
        return {
            "success": True,
            "article_id": article_id,
            "webhook_response": response,
            "published_at": published_at,
            "environment": environment,
        }

    async def _record_published(
        self,
        article_id: str,
        response: Dict[str, Any],
        published_url: Optional[str],
        published_at: str,
    ) -> None:
        updates: Dict[str, Any] = {"status": "published", "published_at": published_at}
        post_id = response.get("post_id") or response.get("wordpress_post_id")
        if post_id:
            updates["wordpress_post_id"] = post_id
        if published_url:
            updates["published_url"] = published_url

        try:
            db = await self._get_db()
            await db.update_article(article_id, updates)
        except Exception as e:
            logger.error("Failed to mark article %s as published: %s", article_id, e)

    async def sync_to_catalog(self, article: Dict[str, Any], published_url: str) -> bool:
        """Add the published article to the site catalog; ``False`` on failure."""
        try:
            db = await self._get_db()
            await db.upsert_catalog_article(build_catalog_entry(article, published_url))
        except Exception as e:
            logger.error("Failed to sync %s to the site catalog: %s", published_url, e)
            return False
        logger.info("Synced %s to the site catalog", published_url)
        return True

    async def bulk_publish(
        self, articles: List[Dict[str, Any]], **options: Any
    ) -> Dict[str, Any]:
        """Publish *articles* one by one with a short pause between them."""
        results: List[Dict[str, Any]] = []
        for index, article in enumerate(articles):
            result = await self.publish_article(article, **options)
            results.append({"article_id": article.get("id"), "title": article.get("title"), **result})
            if index < len(articles) - 1:
                await asyncio.sleep(BULK_PUBLISH_DELAY_SECONDS)

        successful = sum(1 for r in results if r["success"])
        return {
            "total": len(articles),
            "successful": successful,
            "failed": len(articles) - successful,
            "results": results,
        }

    async def retry_publish(self, article_id: str, **options: Any) -> Dict[str, Any]:
        """Fetch *article_id* fresh and publish it again."""
        try:
            db = await self._get_db()
            article = await db.get_article(article_id)
        except Exception as e:
            return {"success": False, "error": f"Failed to fetch article: {e}"}
        if not article:
            return {"success": False, "error": f"Failed to fetch article: {article_id} not found"}
        return await self.publish_article(article, **options)


__all__ = [
    "ENVIRONMENTS",
    "WEBHOOK_ENV_VARS",
    "BULK_PUBLISH_DELAY_SECONDS",
    "get_webhook_url",
    "build_webhook_payload",
    "detect_content_type",
    "detect_degree_level",
    "detect_subject_area",
    "build_catalog_entry",
    "check_publish_eligibility",
    "PublishService",
]
