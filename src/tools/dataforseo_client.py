"""
Async DataForSEO client for keyword research.

Keyword suggestions come back enriched with a trend label and 0-100
difficulty / opportunity scores so ideas can be ranked without a second
round-trip.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import VendorAPIError
from src.utils import with_retry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def calculate_trend(monthly_searches: Optional[List[Dict[str, Any]]]) -> str:
    """``rising`` / ``declining`` when the last 3 months moved >20%."""
    if not monthly_searches or len(monthly_searches) < 2:
        return "stable"

    recent = monthly_searches[-3:]
    previous = monthly_searches[-6:-3]
    if not previous:
        return "stable"

    avg_recent = sum(m.get("search_volume") or 0 for m in recent) / len(recent)
    avg_previous = sum(m.get("search_volume") or 0 for m in previous) / len(previous)
    if avg_previous == 0:
        return "stable"

    change = (avg_recent - avg_previous) / avg_previous * 100
    if change > 20:
        return "rising"
    if change < -20:
        return "declining"
    return "stable"


def calculate_difficulty(item: Dict[str, Any]) -> int:
    level = item.get("competition_level")
    cpc = item.get("cpc") or 0
    volume = item.get("search_volume") or 0

    score = {"LOW": 10, "MEDIUM": 25, "HIGH": 40}.get(level, 0)

    if cpc < 0.5:
        score += 5
    elif cpc < 2:
        score += 15
    elif cpc < 5:
        score += 25
    else:
        score += 30

    if volume < 500:
        score += 5
    elif volume < 2000:
        score += 15
    elif volume < 10000:
        score += 25
    else:
        score += 30

    return min(100, score)


def calculate_opportunity_score(item: Dict[str, Any]) -> int:
    """Favour 500-5000 monthly searches, low competition, moderate CPC."""
    level = item.get("competition_level")
    cpc = item.get("cpc") or 0
    volume = item.get("search_volume") or 0

    if 500 <= volume <= 5000:
        score = 40
    elif 5000 < volume <= 10000:
        score = 30
    elif 100 < volume < 500:
        score = 25
    elif volume > 10000:
        score = 20
    else:
        score = 10

    score += {"LOW": 40, "MEDIUM": 20}.get(level, 5)

    if 1 <= cpc <= 3:
        score += 20
    elif 3 < cpc <= 5:
        score += 15
    elif 0.5 < cpc < 1:
        score += 15
    elif cpc > 5:
        score += 5
    else:
        score += 10

    return min(100, score)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DataForSeoClient:
    """Async wrapper around the DataForSEO v3 keyword endpoints.

    Args:
        login: API login.  Falls back to ``DATAFORSEO_LOGIN``.
        password: API password.  Falls back to ``DATAFORSEO_PASSWORD``.
    """

    BASE_URL: str = "https://api.dataforseo.com/v3"

    def __init__(
        self, login: Optional[str] = None, password: Optional[str] = None
    ) -> None:
        self.login = login or os.environ.get("DATAFORSEO_LOGIN", "")
        self.password = password or os.environ.get("DATAFORSEO_PASSWORD", "")

    def is_configured(self) -> bool:
        return bool(self.login and self.password)

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError, httpx.TimeoutException),
    )
    async def _post(self, endpoint: str, payload: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not self.is_configured():
            raise VendorAPIError(
                "DataForSEO", "DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD must be set"
            )

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.post(
                f"{self.BASE_URL}{endpoint}",
                auth=(self.login, self.password),
                json=payload,
            )
        if response.status_code >= 400:
            raise VendorAPIError(
                "DataForSEO", response.text, status_code=response.status_code
            )

        data = response.json()
        if data.get("status_code") != 20000:
            raise VendorAPIError("DataForSEO", data.get("status_message", "unknown error"))
        return data

    async def get_keyword_suggestions(
        self,
        seed_keywords: Any,
        location: str = "United States",
        language: str = "English",
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Related keywords with volume, trend and scores, best first."""
        keywords = seed_keywords if isinstance(seed_keywords, list) else [seed_keywords]
        data = await self._post(
            "/keywords_data/google_ads/keywords_for_keywords/live",
            [
                {
                    "location_name": location,
                    "language_name": language,
                    "keywords": keywords,
                    "include_serp_info": False,
                    "sort_by": "search_volume",
                }
            ],
        )

        tasks = data.get("tasks") or [{}]
        result = tasks[0].get("result") or [{}]
        items = result[0].get("items") or []
        enriched = [
            {
                "keyword": item.get("keyword"),
                "search_volume": item.get("search_volume") or 0,
                "competition": item.get("competition"),
                "competition_level": item.get("competition_level"),
                "cpc": item.get("cpc") or 0,
                "monthly_searches": item.get("monthly_searches") or [],
                "trend": calculate_trend(item.get("monthly_searches")),
                "difficulty": calculate_difficulty(item),
                "opportunity_score": calculate_opportunity_score(item),
            }
            for item in items
            if isinstance(item, dict) and (item.get("search_volume") or 0) > 0
        ]
        return self.rank_keywords(enriched)[:limit]

    async def get_search_volume(
        self,
        keywords: Any,
        location: str = "United States",
        language: str = "English",
    ) -> List[Dict[str, Any]]:
        keyword_list = keywords if isinstance(keywords, list) else [keywords]
        data = await self._post(
            "/keywords_data/google_ads/search_volume/live",
            [
                {
                    "location_name": location,
                    "language_name": language,
                    "keywords": keyword_list,
                }
            ],
        )
        tasks = data.get("tasks") or [{}]
        return [
            {
                "keyword": item.get("keyword"),
                "search_volume": item.get("search_volume"),
                "competition": item.get("competition"),
                "cpc": item.get("cpc"),
            }
            for item in (tasks[0].get("result") or [])
        ]

    # ------------------------------------------------------------------
    # Client-side filtering
    # ------------------------------------------------------------------

    @staticmethod
    def filter_keywords(
        keywords: List[Dict[str, Any]],
        min_search_volume: int = 100,
        max_search_volume: float = float("inf"),
        max_difficulty: int = 70,
        min_opportunity_score: int = 50,
        exclude_keywords: Optional[List[str]] = None,
        trend: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        excluded = [e.lower() for e in (exclude_keywords or [])]
        kept = []
        for kw in keywords:
            volume = kw.get("search_volume") or 0
            if volume < min_search_volume or volume > max_search_volume:
                continue
            if (kw.get("difficulty") or 0) > max_difficulty:
                continue
            if (kw.get("opportunity_score") or 0) < min_opportunity_score:
                continue
            text = (kw.get("keyword") or "").lower()
            if any(e in text for e in excluded):
                continue
            if trend and kw.get("trend") != trend:
                continue
            kept.append(kw)
        return kept

    @staticmethod
    def rank_keywords(keywords: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Sort by ``opportunity_score`` descending (stable)."""
        return sorted(
            keywords, key=lambda k: k.get("opportunity_score") or 0, reverse=True
        )


__all__ = [
    "DataForSeoClient",
    "calculate_trend",
    "calculate_difficulty",
    "calculate_opportunity_score",
]
