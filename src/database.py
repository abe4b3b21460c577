"""
Unified async database client for all engine operations.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Usage::

    from src.database import SupabaseDB, get_db

    # In async context:
    db = await get_db()
    article = await db.insert_article({"title": "...", "content": "..."})

Tables touched: content_ideas, articles, article_contributors,
content_rules_config, system_settings, geteducated_articles, site_articles,
ranking_report_entries, geteducated_schools, monetization_categories,
monetization_levels, degrees, schools, paid_school_degrees, generation_queue,
pipeline_errors, ai_learning_sessions, article_revisions,
geteducated_article_versions, agent_logs.
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, create_async_client

from src.exceptions import DatabaseError, ValidationError
from src.utils import utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key, bypasses RLS

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for the content engine.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # CONTENT IDEAS
    # -----------------------------------------------------------------

    async def get_idea(self, idea_id: str) -> Optional[Dict[str, Any]]:
        """Get a content idea by ID, or ``None``."""
        validate_not_empty(idea_id, "idea_id")

        result = await (
            self.client.table("content_ideas")
            .select("*")
            .eq("id", idea_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_ideas_by_ids(
        self, idea_ids: List[str], status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch several ideas at once, optionally filtered by status.

        Rows come back in database order, not in *idea_ids* order.
        """
        if not idea_ids:
            return []

        query = self.client.table("content_ideas").select("*").in_(
            "id", list(idea_ids)
        )
        if status:
            query = query.eq("status", status)
        result = await query.execute()
        return result.data or []

    async def update_idea(
        self, idea_id: str, updates: Dict[str, Any]
    ) -> None:
        """Apply a partial update to a content idea."""
        validate_not_empty(idea_id, "idea_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        await (
            self.client.table("content_ideas")
            .update(updates)
            .eq("id", idea_id)
            .execute()
        )

    async def get_recent_idea_titles(self, limit: int = 200) -> List[str]:
        """Titles of the newest content ideas, for duplicate filtering."""
        validate_positive(limit, "limit")

        result = await (
            self.client.table("content_ideas")
            .select("title")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [row["title"] for row in (result.data or []) if row.get("title")]

    async def insert_ideas(self, ideas: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert discovered ideas.

        Raises:
            DatabaseError: When the insert returns no data.
        """
        if not ideas:
            return []

        result = await self.client.table("content_ideas").insert(ideas).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data

    async def get_active_learning_session(
        self, session_type: str
    ) -> Optional[Dict[str, Any]]:
        """Active ``ai_learning_sessions`` row for *session_type*, or ``None``."""
        validate_not_empty(session_type, "session_type")

        result = await (
            self.client.table("ai_learning_sessions")
            .select("learned_patterns, improved_prompt, improvement_notes")
            .eq("session_type", session_type)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    # -----------------------------------------------------------------
    # ARTICLES
    # -----------------------------------------------------------------

    async def insert_article(self, article: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an article row and return it (with its generated ``id``).

        Raises:
            ValidationError: If the article has no title or content.
            DatabaseError: When the insert returns no data.
        """
        if not article:
            raise ValidationError("article cannot be None or empty")
        if not article.get("title"):
            raise ValidationError("article must have a title")
        if not article.get("content"):
            raise ValidationError("article must have content")

        result = await self.client.table("articles").insert(article).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        """Get an article with its contributor joined (``article_contributors``)."""
        validate_not_empty(article_id, "article_id")

        result = await (
            self.client.table("articles")
            .select("*, article_contributors(*)")
            .eq("id", article_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def update_article(
        self, article_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Apply a partial update to an article; returns the updated row."""
        validate_not_empty(article_id, "article_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        result = await (
            self.client.table("articles")
            .update(updates)
            .eq("id", article_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_auto_publish_candidates(
        self, deadline_before: str, limit: int
    ) -> List[Dict[str, Any]]:
        """Articles whose auto-publish deadline has passed.

        Only ``ready_to_publish`` articles nobody has reviewed yet are
        returned, earliest deadline first.

        Args:
            deadline_before: ISO timestamp; deadlines at or before it match.
            limit: Maximum rows to return.
        """
        validate_positive(limit, "limit")

        result = await (
            self.client.table("articles")
            .select("*, article_contributors(*)")
            .eq("status", "ready_to_publish")
            .lte("autopublish_deadline", deadline_before)
            .eq("human_reviewed", False)
            .order("autopublish_deadline")
            .limit(limit)
            .execute()
        )
        return result.data or []

    # -----------------------------------------------------------------
    # EDITORIAL FEEDBACK
    # -----------------------------------------------------------------

    async def get_pending_feedback(self, article_id: str) -> List[Dict[str, Any]]:
        """Unaddressed ``article_revisions`` comments, oldest first."""
        validate_not_empty(article_id, "article_id")

        result = await (
            self.client.table("article_revisions")
            .select("*")
            .eq("article_id", article_id)
            .eq("status", "pending")
            .order("created_at")
            .execute()
        )
        return result.data or []

    async def mark_feedback_addressed(
        self, feedback_ids: List[str], ai_revised: bool = False
    ) -> None:
        if not feedback_ids:
            return

        await (
            self.client.table("article_revisions")
            .update({"status": "addressed", "ai_revised": ai_revised})
            .in_("id", list(feedback_ids))
            .execute()
        )

    # -----------------------------------------------------------------
    # CATALOG ARTICLE VERSIONS
    # -----------------------------------------------------------------

    async def get_article_versions(self, article_id: str) -> List[Dict[str, Any]]:
        """Versions of a catalog article, newest first."""
        validate_not_empty(article_id, "article_id")

        result = await (
            self.client.table("geteducated_article_versions")
            .select("*")
            .eq("article_id", article_id)
            .order("version_number", desc=True)
            .execute()
        )
        return result.data or []

    async def get_article_version(self, version_id: str) -> Optional[Dict[str, Any]]:
        validate_not_empty(version_id, "version_id")

        result = await (
            self.client.table("geteducated_article_versions")
            .select("*")
            .eq("id", version_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def insert_article_version(self, version: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a version row and return it.

        Raises:
            DatabaseError: When the insert returns no data.
        """
        if not version or not version.get("article_id"):
            raise ValidationError("version must have an article_id")

        result = await (
            self.client.table("geteducated_article_versions").insert(version).execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def set_current_version(self, article_id: str, version_id: str) -> None:
        """Make *version_id* the only current version of the article."""
        validate_not_empty(article_id, "article_id")
        validate_not_empty(version_id, "version_id")

        await (
            self.client.table("geteducated_article_versions")
            .update({"is_current": False})
            .eq("article_id", article_id)
            .execute()
        )
        await (
            self.client.table("geteducated_article_versions")
            .update({"is_current": True})
            .eq("id", version_id)
            .execute()
        )

    async def update_catalog_article(
        self, article_id: str, updates: Dict[str, Any]
    ) -> None:
        validate_not_empty(article_id, "article_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        await (
            self.client.table("geteducated_articles")
            .update(updates)
            .eq("id", article_id)
            .execute()
        )

    # -----------------------------------------------------------------
    # CONTRIBUTORS & RULES
    # -----------------------------------------------------------------

    async def get_active_contributors(self) -> List[Dict[str, Any]]:
        result = await (
            self.client.table("article_contributors")
            .select("*")
            .eq("is_active", True)
            .execute()
        )
        return result.data or []

    async def get_active_content_rules(self) -> Optional[Dict[str, Any]]:
        """Load the active content-rules document.

        Tries the ``get_active_content_rules`` RPC first and falls back to
        the most recent active ``content_rules_config`` row.  Errors from
        the fallback query propagate; the caller decides on defaults.
        """
        try:
            result = await self.client.rpc("get_active_content_rules").execute()
            data = result.data
            if isinstance(data, list):
                data = data[0] if data else None
            if data:
                return data
        except Exception as e:
            logger.debug("get_active_content_rules RPC unavailable: %s", e)

        result = await (
            self.client.table("content_rules_config")
            .select("*")
            .eq("is_active", True)
            .order("version", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_system_settings(self, keys: List[str]) -> Dict[str, Any]:
        """Return ``{key: value}`` for the requested ``system_settings`` keys."""
        if not keys:
            return {}

        result = await (
            self.client.table("system_settings")
            .select("key, value")
            .in_("key", list(keys))
            .execute()
        )
        return {row["key"]: row.get("value") for row in (result.data or [])}

    # -----------------------------------------------------------------
    # SITE CATALOG (internal-link candidates)
    # -----------------------------------------------------------------

    async def find_relevant_site_articles(
        self,
        topics: List[str],
        subject_area: Optional[str] = None,
        degree_level: Optional[str] = None,
        exclude_urls: Optional[List[str]] = None,
        limit: int = 30,
    ) -> List[Dict[str, Any]]:
        """Server-side relevance search (``find_relevant_ge_articles`` RPC)."""
        validate_positive(limit, "limit")

        result = await self.client.rpc(
            "find_relevant_ge_articles",
            {
                "search_topics": list(topics),
                "search_subject": subject_area,
                "search_degree_level": degree_level,
                "exclude_urls": list(exclude_urls or []),
                "result_limit": limit,
            },
        ).execute()
        return result.data or []

    async def get_catalog_articles(self, limit: int) -> List[Dict[str, Any]]:
        """Catalog rows with crawled text, least-linked first."""
        validate_positive(limit, "limit")

        result = await (
            self.client.table("geteducated_articles")
            .select(
                "id, url, title, excerpt, topics, content_type, degree_level, "
                "subject_area, times_linked_to"
            )
            .not_.is_("content_text", "null")
            .order("times_linked_to")
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def get_legacy_site_articles(self, limit: int) -> List[Dict[str, Any]]:
        validate_positive(limit, "limit")

        result = await (
            self.client.table("site_articles")
            .select("*")
            .order("times_linked_to")
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def increment_article_link_count(self, url: str) -> None:
        """Bump ``times_linked_to`` for a catalog article.

        Uses the ``increment_article_link_count`` RPC; when the function is
        missing the counter is read and written back.
        """
        validate_not_empty(url, "url")

        try:
            await self.client.rpc(
                "increment_article_link_count", {"article_url": url}
            ).execute()
            return
        except Exception as e:
            logger.debug("increment RPC failed for %s, updating manually: %s", url, e)

        result = await (
            self.client.table("geteducated_articles")
            .select("id, times_linked_to")
            .eq("url", url)
            .limit(1)
            .execute()
        )
        if not result.data:
            return
        row = result.data[0]
        await (
            self.client.table("geteducated_articles")
            .update({"times_linked_to": (row.get("times_linked_to") or 0) + 1})
            .eq("id", row["id"])
            .execute()
        )

    async def upsert_catalog_article(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or refresh a ``geteducated_articles`` row keyed by URL.

        Raises:
            ValidationError: If *entry* has no ``url``.
            DatabaseError: When the upsert returns no data.
        """
        if not entry or not entry.get("url"):
            raise ValidationError("catalog entry must have a url")

        result = await (
            self.client.table("geteducated_articles")
            .upsert(entry, on_conflict="url")
            .execute()
        )
        if not result.data:
            raise DatabaseError("Upsert succeeded but returned no data")
        return result.data[0]

    async def catalog_url_exists(self, normalized_url: str) -> bool:
        """True when a catalog row's URL contains *normalized_url*."""
        validate_not_empty(normalized_url, "normalized_url")

        result = await (
            self.client.table("geteducated_articles")
            .select("id")
            .ilike("url", f"%{normalized_url}%")
            .limit(1)
            .execute()
        )
        return bool(result.data)

    # -----------------------------------------------------------------
    # COST DATA & SCHOOLS
    # -----------------------------------------------------------------

    async def search_ranking_entries(
        self,
        keywords: List[str],
        degree_level: Optional[str] = None,
        limit: int = 10,
        prioritize_sponsored: bool = True,
    ) -> List[Dict[str, Any]]:
        """Search ranking-report entries by program/school keywords.

        Sponsored entries come first when *prioritize_sponsored*, then
        cheapest total cost.
        """
        validate_positive(limit, "limit")

        query = self.client.table("ranking_report_entries").select(
            "*, ranking_reports!inner(report_title, report_url, degree_level, "
            "field_of_study)"
        )
        if degree_level:
            query = query.ilike("ranking_reports.degree_level", f"%{degree_level}%")
        if keywords:
            clauses = []
            for kw in keywords:
                clauses.append(f"program_name.ilike.%{kw}%")
                clauses.append(f"school_name.ilike.%{kw}%")
            query = query.or_(",".join(clauses))
        if prioritize_sponsored:
            query = query.order("is_sponsored", desc=True)
        query = query.order("total_cost").limit(limit)

        result = await query.execute()
        return result.data or []

    async def get_known_schools(self, limit: int = 500) -> List[Dict[str, Any]]:
        """School names (and aliases) the site knows about.

        Reads ``geteducated_schools``; when that table is empty the names
        listed in ranking reports are used instead.
        """
        result = await (
            self.client.table("geteducated_schools")
            .select("name, aliases")
            .limit(limit)
            .execute()
        )
        if result.data:
            return result.data

        result = await (
            self.client.table("ranking_report_entries")
            .select("school_name")
            .limit(limit)
            .execute()
        )
        return [
            {"name": row["school_name"], "aliases": []}
            for row in (result.data or [])
            if row.get("school_name")
        ]

    # -----------------------------------------------------------------
    # MONETIZATION TAXONOMY
    # -----------------------------------------------------------------

    async def get_monetization_categories(self) -> List[Dict[str, Any]]:
        result = await (
            self.client.table("monetization_categories")
            .select("*")
            .eq("is_active", True)
            .execute()
        )
        return result.data or []

    async def get_monetization_category(
        self, category_id: int, concentration_id: int
    ) -> Optional[Dict[str, Any]]:
        result = await (
            self.client.table("monetization_categories")
            .select("*")
            .eq("category_id", category_id)
            .eq("concentration_id", concentration_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_monetization_level(self, level_code: int) -> Optional[Dict[str, Any]]:
        result = await (
            self.client.table("monetization_levels")
            .select("*")
            .eq("level_code", level_code)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def find_level_code(self, level_name: str) -> Optional[int]:
        """Level code whose ``level_name`` contains *level_name*, or ``None``."""
        validate_not_empty(level_name, "level_name")

        result = await (
            self.client.table("monetization_levels")
            .select("level_code")
            .ilike("level_name", f"%{level_name}%")
            .limit(1)
            .execute()
        )
        return result.data[0]["level_code"] if result.data else None

    async def get_monetization_levels(self) -> List[Dict[str, Any]]:
        result = await (
            self.client.table("monetization_levels")
            .select("level_code, level_name")
            .eq("is_active", True)
            .order("level_code")
            .execute()
        )
        return result.data or []

    async def get_paid_schools(self) -> List[Dict[str, Any]]:
        """Active paid-client schools with their ``degree_count``, most first."""
        result = await (
            self.client.table("schools")
            .select("id, school_name, school_slug")
            .eq("is_paid_client", True)
            .eq("is_active", True)
            .order("school_name")
            .execute()
        )
        schools = result.data or []

        degrees = await self.client.table("paid_school_degrees").select("school_name").execute()
        counts: Dict[str, int] = {}
        for row in degrees.data or []:
            name = row.get("school_name")
            counts[name] = counts.get(name, 0) + 1

        ranked = [{**s, "degree_count": counts.get(s.get("school_name"), 0)} for s in schools]
        ranked.sort(key=lambda s: s["degree_count"], reverse=True)
        return ranked

    async def query_degree_programs(
        self,
        category_id: Optional[int] = None,
        concentration_id: Optional[int] = None,
        degree_level_code: Optional[int] = None,
        exclude_ids: Optional[List[Any]] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Active degree programs at active schools, sponsored first.

        Filters are applied only when given; *exclude_ids* removes programs
        already used by another slot.
        """
        validate_positive(limit, "limit")

        query = (
            self.client.table("degrees")
            .select(
                "*, schools!inner(id, school_name, school_slug, "
                "geteducated_url, is_sponsored, has_logo, is_active)"
            )
            .eq("is_active", True)
            .eq("schools.is_active", True)
        )
        if category_id:
            query = query.eq("category_id", category_id)
        if concentration_id:
            query = query.eq("concentration_id", concentration_id)
        if degree_level_code:
            query = query.eq("degree_level_code", degree_level_code)
        if exclude_ids:
            query = query.not_.in_("id", list(exclude_ids))

        result = await (
            query.order("is_sponsored", desc=True)
            .order("sponsorship_tier", desc=True)
            .order("program_name")
            .limit(limit)
            .execute()
        )
        return result.data or []

    # -----------------------------------------------------------------
    # GENERATION QUEUE
    # -----------------------------------------------------------------

    async def enqueue_items(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert queue rows.

        Raises:
            DatabaseError: When the insert returns no data.
        """
        if not items:
            return []

        result = await self.client.table("generation_queue").insert(items).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data

    async def get_next_pending_queue_item(
        self, user_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Highest-priority pending item (oldest first on ties), idea joined."""
        query = (
            self.client.table("generation_queue")
            .select("*, content_ideas(*)")
            .eq("status", "pending")
        )
        if user_id:
            query = query.eq("user_id", user_id)

        result = await (
            query.order("priority", desc=True)
            .order("created_at")
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_queue_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        validate_not_empty(item_id, "item_id")

        result = await (
            self.client.table("generation_queue")
            .select("*")
            .eq("id", item_id)
            .execute()
        )
        return result.data[0] if result.data else None

    async def update_queue_item(
        self, item_id: str, updates: Dict[str, Any]
    ) -> None:
        validate_not_empty(item_id, "item_id")
        if not updates:
            raise ValidationError("updates cannot be empty")

        await (
            self.client.table("generation_queue")
            .update(updates)
            .eq("id", item_id)
            .execute()
        )

    async def delete_queue_item(self, item_id: str) -> None:
        validate_not_empty(item_id, "item_id")
        await self.client.table("generation_queue").delete().eq("id", item_id).execute()

    async def delete_completed_queue_items(
        self, user_id: Optional[str] = None
    ) -> int:
        """Delete completed queue rows; returns how many were removed."""
        query = self.client.table("generation_queue").delete().eq(
            "status", "completed"
        )
        if user_id:
            query = query.eq("user_id", user_id)
        result = await query.execute()
        return len(result.data or [])

    async def reset_failed_queue_items(
        self, user_id: Optional[str] = None
    ) -> int:
        """Put failed items back to pending; returns how many were reset."""
        query = (
            self.client.table("generation_queue")
            .update({"status": "pending", "error_message": None,
                     "progress_percentage": 0, "current_stage": None})
            .eq("status", "failed")
        )
        if user_id:
            query = query.eq("user_id", user_id)
        result = await query.execute()
        return len(result.data or [])

    async def get_queue_status_counts(
        self, user_id: Optional[str] = None
    ) -> Dict[str, int]:
        """Count queue rows per status."""
        query = self.client.table("generation_queue").select("status")
        if user_id:
            query = query.eq("user_id", user_id)
        result = await query.execute()

        counts: Dict[str, int] = {}
        for row in result.data or []:
            status = row.get("status") or "unknown"
            counts[status] = counts.get(status, 0) + 1
        return counts

    # -----------------------------------------------------------------
    # AGENT LOGS
    # -----------------------------------------------------------------

    async def insert_agent_log(self, row: Dict[str, Any]) -> None:
        await self.client.table("agent_logs").insert(row).execute()

    async def query_agent_logs(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        level: Optional[int] = None,
        component: Optional[str] = None,
        run_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Newest-first ``agent_logs`` rows matching every given filter."""
        validate_positive(limit, "limit")

        query = self.client.table("agent_logs").select("*")
        if start_time:
            query = query.gte("timestamp", start_time)
        if end_time:
            query = query.lte("timestamp", end_time)
        if level is not None:
            query = query.eq("level", level)
        if component:
            query = query.eq("component", component)
        if run_id:
            query = query.eq("run_id", run_id)
        if search:
            query = query.ilike("message", f"%{search}%")

        result = await query.order("timestamp", desc=True).limit(limit).execute()
        return result.data or []

    # -----------------------------------------------------------------
    # PIPELINE ERRORS
    # -----------------------------------------------------------------

    async def log_pipeline_error(self, error: Dict[str, Any]) -> None:
        """Persist a pipeline failure to ``pipeline_errors``."""
        if not error:
            raise ValidationError("error cannot be None or empty")

        row = dict(error)
        row.setdefault("created_at", utc_now().isoformat())
        await self.client.table("pipeline_errors").insert(row).execute()


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

# One async connection for the entire application.
_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the global async database instance.

    Thread-safe **and** async-safe.  The first call creates the
    :class:`SupabaseDB` singleton; subsequent calls return the same
    instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance


def reset_db() -> None:
    """Drop the cached instance (tests)."""
    global _db_instance
    _db_instance = None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "validate_not_empty",
    "validate_positive",
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "reset_db",
]
