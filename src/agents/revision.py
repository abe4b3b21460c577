"""
Article revision: editorial feedback and catalog version history.

Two kinds of revision live here:

- **Feedback revisions** of generated articles.  Pending
  ``article_revisions`` comments are handed to Claude, the article content
  is replaced with the revised HTML and the comments are marked addressed.
- **Versioned revisions** of catalog (``geteducated_articles``) pages.  Each
  revision is stored as a numbered ``geteducated_article_versions`` row;
  exactly one version per article is current, and any earlier version can
  be restored.

Provides:
    - RevisionService: revise_with_feedback(), record_version(),
      get_version_history(), restore_version()
"""

import logging
from typing import Any, Dict, List, Optional

from src.exceptions import RevisionError
from src.logging import ComponentLogger, LogComponent
from src.utils import count_words, strip_html, utc_now

logger = logging.getLogger("RevisionService")


class RevisionService:
    """
    Args:
        claude: ``ClaudeClient`` that rewrites content from feedback.
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.
    """

    def __init__(self, claude: Any = None, db: Any = None) -> None:
        if claude is None:
            from src.tools.claude_client import ClaudeClient
            claude = ClaudeClient()
        self.claude = claude
        self._db = db
        self.log = ComponentLogger(LogComponent.REVISION)

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    # ------------------------------------------------------------------
    # Editorial feedback
    # ------------------------------------------------------------------

    async def revise_with_feedback(
        self,
        article_id: str,
        feedback_items: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Apply editorial comments to an article and save the result.

        Args:
            feedback_items: Comments to apply; the article's pending
                ``article_revisions`` rows are used when omitted.

        Returns:
            The updated article row.  When there is no feedback the article
            is returned unchanged.

        Raises:
            RevisionError: The article does not exist.
        """
        db = await self._get_db()
        article = await db.get_article(article_id)
        if not article:
            raise RevisionError(f"Article {article_id} not found")

        if feedback_items is None:
            feedback_items = await db.get_pending_feedback(article_id)
        if not feedback_items:
            logger.info("No pending feedback for article %s", article_id)
            return article

        revised = await self.claude.revise_with_feedback(
            article.get("content") or "", feedback_items
        )
        updated = await db.update_article(article_id, {
            "content": revised,
            "word_count": count_words(revised),
        })
        await db.mark_feedback_addressed(
            [item["id"] for item in feedback_items if item.get("id")], ai_revised=True
        )
        await self.log.info(
            f"Revised article {article_id} from {len(feedback_items)} feedback items",
            data={"article_id": article_id},
        )
        return updated or {**article, "content": revised}

    # ------------------------------------------------------------------
    # Catalog versions
    # ------------------------------------------------------------------

    async def record_version(
        self,
        article: Dict[str, Any],
        revised: Dict[str, Any],
        version_type: str = "ai_revision",
        revision_prompt: Optional[str] = None,
        ai_model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store *revised* as the next current version of a catalog article.

        The first revision of an article also stores its unrevised content
        as version 1 (``original``).  The catalog row is updated to match
        the new version.
        """
        db = await self._get_db()
        article_id = article["id"]
        versions = await db.get_article_versions(article_id)

        if not versions:
            original = await db.insert_article_version(
                self._version_row(article, article, 1, "original", revised_by="system")
            )
            versions = [original]

        number = (versions[0].get("version_number") or 0) + 1
        row = self._version_row(article, revised, number, version_type, revised_by=version_type)
        row["revision_prompt"] = revision_prompt
        row["ai_model_used"] = ai_model
        row["changes_summary"] = revised.get("changes_summary")
        version = await db.insert_article_version(row)
        await db.set_current_version(article_id, version["id"])

        await db.update_catalog_article(article_id, {
            "current_version_id": version["id"],
            "version_count": number,
            "last_revised_at": utc_now().isoformat(),
            "revision_status": "revised",
            "title": row["title"],
            "meta_description": row["meta_description"],
            "content_html": row["content_html"],
            "content_text": row["content_text"],
            "word_count": row["word_count"],
            "faqs": row["faqs"],
        })
        logger.info("Recorded version %d of catalog article %s", number, article_id)
        return version

    @staticmethod
    def _version_row(
        article: Dict[str, Any],
        source: Dict[str, Any],
        number: int,
        version_type: str,
        revised_by: str,
    ) -> Dict[str, Any]:
        content = source.get("content_html") or source.get("content") or ""
        return {
            "article_id": article["id"],
            "version_number": number,
            "version_type": version_type,
            "title": source.get("title") or article.get("title"),
            "meta_description": source.get("meta_description") or article.get("meta_description"),
            "content_html": content,
            "content_text": strip_html(content),
            "word_count": count_words(content),
            "focus_keyword": source.get("focus_keyword") or article.get("focus_keyword"),
            "faqs": source.get("faqs", article.get("faqs")),
            "is_current": False,
            "revised_by": revised_by,
        }

    async def get_version_history(self, article_id: str) -> List[Dict[str, Any]]:
        """Versions of a catalog article, newest first."""
        db = await self._get_db()
        return await db.get_article_versions(article_id)

    async def restore_version(self, article_id: str, version_id: str) -> Dict[str, Any]:
        """Make an earlier version current and copy it back onto the catalog row.

        Raises:
            RevisionError: The version does not exist or belongs to another
                article.
        """
        db = await self._get_db()
        version = await db.get_article_version(version_id)
        if not version or version.get("article_id") != article_id:
            raise RevisionError(f"Version {version_id} not found for article {article_id}")

        await db.set_current_version(article_id, version_id)
        await db.update_catalog_article(article_id, {
            "current_version_id": version_id,
            "title": version.get("title"),
            "meta_description": version.get("meta_description"),
            "content_html": version.get("content_html"),
            "content_text": version.get("content_text"),
            "word_count": version.get("word_count"),
            "faqs": version.get("faqs"),
            "revision_status": "revised",
        })
        await self.log.info(
            f"Restored version {version.get('version_number')} of article {article_id}"
        )
        return version


__all__ = ["RevisionService"]
