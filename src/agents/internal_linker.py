"""
Internal-link candidates from the GetEducated site catalog.

Candidate lookup falls through three sources:

1. ``find_relevant_ge_articles`` RPC (server-side relevance, top 5)
2. Catalog table scored locally (title words, topics, subject, degree)
3. Legacy ``site_articles`` table scored on title words and topics

Any failure returns no candidates; linking is never fatal to generation.
Link counts are bumped only for URLs found in the linked content
(:func:`find_inserted_links`).
"""

import logging
from typing import Any, Dict, List, Optional

from src.agents.content_validator import INTERNAL_LINK_RE

logger = logging.getLogger(__name__)

MAX_LINK_CANDIDATES = 5


def _title_words(title: str) -> List[str]:
    return [w for w in (title or "").lower().split(" ") if len(w) > 3]


def score_site_article(
    article: Dict[str, Any],
    title_words: List[str],
    subject_area: Optional[str] = None,
    degree_level: Optional[str] = None,
) -> int:
    """Relevance of a catalog row to the article being written."""
    article_words = (article.get("title") or "").lower().split(" ")
    score = 10 * sum(
        1 for word in title_words if any(word in aw for aw in article_words)
    )
    score += 15 * sum(
        1
        for topic in (article.get("topics") or [])
        if any(word in topic.lower() for word in title_words)
    )
    if subject_area and article.get("subject_area") == subject_area:
        score += 20
    if degree_level and article.get("degree_level") == degree_level:
        score += 15
    return score


def _top_scored(scored: List[tuple]) -> List[Dict[str, Any]]:
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return [article for article, score in scored if score > 0][:MAX_LINK_CANDIDATES]


async def get_relevant_site_articles(
    title: str,
    limit: int = 30,
    subject_area: Optional[str] = None,
    degree_level: Optional[str] = None,
    exclude_urls: Optional[List[str]] = None,
    db: Any = None,
) -> List[Dict[str, Any]]:
    """Up to five catalog articles worth linking from an article titled *title*."""
    exclude = list(exclude_urls or [])
    words = _title_words(title)

    try:
        if db is None:
            from src.database import get_db
            db = await get_db()

        rpc_rows = await db.find_relevant_site_articles(
            words,
            subject_area=subject_area,
            degree_level=degree_level,
            exclude_urls=exclude,
            limit=limit,
        )
        if rpc_rows:
            logger.info("Found %d relevant articles via SQL function", len(rpc_rows))
            return [
                {
                    "id": row.get("id"),
                    "url": row.get("url"),
                    "title": row.get("title"),
                    "excerpt": row.get("excerpt"),
                    "topics": row.get("topics"),
                }
                for row in rpc_rows[:MAX_LINK_CANDIDATES]
            ]

        catalog = await db.get_catalog_articles(limit * 2)
        results = _top_scored([
            (article, score_site_article(article, words, subject_area, degree_level))
            for article in catalog
            if article.get("url") not in exclude
        ])
        if results:
            logger.info("Found %d relevant articles from GetEducated catalog", len(results))
            return results

        logger.info("Falling back to legacy site_articles table")
        legacy = await db.get_legacy_site_articles(limit)
        return _top_scored([
            (article, score_site_article(article, words)) for article in legacy
        ])
    except Exception as e:
        logger.error("Error fetching site articles: %s", e)
        return []


async def increment_article_link_counts(urls: List[str], db: Any = None) -> None:
    """Record that each URL was linked once more; per-URL failures are logged."""
    if db is None:
        from src.database import get_db
        db = await get_db()
    for url in urls:
        try:
            await db.increment_article_link_count(url)
        except Exception as e:
            logger.warning("Could not increment link count for %s: %s", url, e)


async def add_internal_links(
    claude: Any, content: str, site_articles: List[Dict[str, Any]]
) -> str:
    """Ask Claude to weave links in; the original content is kept on failure."""
    try:
        return await claude.add_internal_links(content, site_articles)
    except Exception as e:
        logger.error("Error adding internal links: %s", e)
        return content


def find_inserted_links(before: str, after: str) -> List[str]:
    """GetEducated URLs linked in *after* that were not linked in *before*."""
    existing = {m.group(1) for m in INTERNAL_LINK_RE.finditer(before or "")}
    inserted: List[str] = []
    for match in INTERNAL_LINK_RE.finditer(after or ""):
        url = match.group(1)
        if url not in existing and url not in inserted:
            inserted.append(url)
    return inserted


__all__ = [
    "MAX_LINK_CANDIDATES",
    "score_site_article",
    "get_relevant_site_articles",
    "increment_article_link_counts",
    "add_internal_links",
    "find_inserted_links",
]
