"""
Cost data context from GetEducated ranking reports.

Ranking reports are the only approved source of tuition figures in
generated content.  Matching entries are formatted into a prompt block so
the draft model quotes these numbers and nothing else.

Provides:
    - detect_degree_level(): Degree level mentioned in a topic
    - extract_keywords(): Search keywords from a topic (max 5)
    - search_cost_data(): Ranking-entry search for one topic
    - get_cost_data_context(): Combined context for an idea
    - format_cost_data_for_prompt(): Prompt block
"""

import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


STOP_WORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare", "ought",
    "used", "what", "which", "who", "whom", "this", "that", "these", "those",
    "how", "best", "top", "most", "online", "degree", "program", "programs",
    "guide", "complete", "ultimate", "your",
])

# First match wins
DEGREE_LEVEL_KEYWORDS = [
    ("Master", ("master", "mba")),
    ("Bachelor", ("bachelor",)),
    ("Associate", ("associate",)),
    ("Doctorate", ("doctorate", "phd", "doctoral")),
    ("Certificate", ("certificate",)),
]

NO_COST_DATA_TEXT = (
    "No specific cost data available from GetEducated ranking reports for this "
    "topic. Use qualitative language instead of specific numbers."
)


def detect_degree_level(topic: str) -> Optional[str]:
    lowered = (topic or "").lower()
    for level, keywords in DEGREE_LEVEL_KEYWORDS:
        if any(k in lowered for k in keywords):
            return level
    return None


def extract_keywords(topic: str) -> List[str]:
    """Unique non-stop-words longer than 2 chars, in order, at most 5."""
    if not topic:
        return []
    cleaned = re.sub(r"[^a-z0-9\s]", "", topic.lower())
    keywords: List[str] = []
    for word in cleaned.split():
        if len(word) > 2 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
    return keywords[:5]


async def search_cost_data(
    db: Any,
    topic: str,
    degree_level: Optional[str] = None,
    limit: int = 10,
    prioritize_sponsored: bool = True,
) -> List[Dict[str, Any]]:
    if not topic:
        return []
    try:
        return await db.search_ranking_entries(
            extract_keywords(topic),
            degree_level=degree_level,
            limit=limit,
            prioritize_sponsored=prioritize_sponsored,
        )
    except Exception as e:
        logger.error("Cost data search error: %s", e)
        return []


async def get_cost_data_context(idea: Dict[str, Any], db: Any = None) -> Dict[str, Any]:
    """
    Ranking-report entries relevant to *idea*.

    Searches the title (15 entries) plus up to three seed topics (5 each),
    de-duplicates by id, puts sponsored entries first then cheapest, and
    keeps the top 10.

    Returns:
        Dict with ``cost_data``, ``degree_level``, ``has_data`` and
        ``prompt_text``.
    """
    if db is None:
        from src.database import get_db
        db = await get_db()

    topic = idea.get("title") or idea.get("description") or ""
    degree_level = detect_degree_level(topic)

    entries = await search_cost_data(db, topic, degree_level, limit=15)
    for seed in (idea.get("seed_topics") or [])[:3]:
        entries.extend(await search_cost_data(db, seed, degree_level, limit=5))

    seen = set()
    unique = []
    for entry in entries:
        key = entry.get("id")
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)

    unique.sort(key=lambda e: (not e.get("is_sponsored"), e.get("total_cost") or 0))
    top = unique[:10]

    return {
        "cost_data": top,
        "degree_level": degree_level,
        "has_data": bool(unique),
        "prompt_text": format_cost_data_for_prompt(top),
    }


def _money(value: Any) -> str:
    return f"${float(value):,.0f}"


def format_cost_data_for_prompt(cost_data: Optional[List[Dict[str, Any]]]) -> str:
    if not cost_data:
        return NO_COST_DATA_TEXT

    lines = [
        "=== APPROVED COST DATA FROM GETEDUCATED RANKING REPORTS ===",
        "",
        "USE ONLY THESE NUMBERS FOR TUITION/COST INFORMATION:",
        "",
    ]
    for entry in cost_data:
        lines.append(f"* {entry.get('school_name')} - {entry.get('program_name')}")
        if entry.get("total_cost"):
            lines.append(f"   Total Cost: {_money(entry['total_cost'])}")
        if entry.get("in_state_cost"):
            lines.append(f"   In-State: {_money(entry['in_state_cost'])}")
        if entry.get("out_of_state_cost"):
            lines.append(f"   Out-of-State: {_money(entry['out_of_state_cost'])}")
        if entry.get("accreditation"):
            lines.append(f"   Accreditation: {entry['accreditation']}")
        if entry.get("is_sponsored"):
            lines.append("   SPONSORED LISTING - Prioritize mentioning this program")
        if entry.get("geteducated_school_url"):
            lines.append(f"   Link to: {entry['geteducated_school_url']}")
        report_url = (entry.get("ranking_reports") or {}).get("report_url")
        if report_url:
            lines.append(f"   Source: {report_url}")
        lines.append("")

    lines.append("=== END APPROVED COST DATA ===")
    lines.append("")
    lines.append("IMPORTANT: Only use the numbers above. Do not invent or estimate costs.")
    lines.append("If mentioning cost, cite GetEducated's ranking reports as the source.")
    return "\n".join(lines) + "\n"


__all__ = [
    "detect_degree_level",
    "extract_keywords",
    "search_cost_data",
    "get_cost_data_context",
    "format_cost_data_for_prompt",
]
