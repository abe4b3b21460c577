"""
Monetization-first content idea discovery.

An idea is only worth writing when it can lead to a degree-program signup,
so the discovery prompt carries the monetizable categories, paid schools
and degree levels, and every idea Grok returns is scored against those
categories before it is kept.

Flow
----
monetization context -> learned preferences -> Grok prompt -> clean
    -> monetization filter -> duplicate filter

Keyword-driven ideas (``ideas_from_keywords``) skip the model entirely:
DataForSEO suggestions are filtered on volume, difficulty and opportunity
and each surviving keyword becomes one idea.

Provides:
    - calculate_similarity() / filter_duplicates(): Edit-distance title dedupe
    - validate_content_type() / detect_content_type(): Idea format
    - build_monetization_prompt_section() / build_learning_context()
    - score_idea_monetization() / filter_by_monetization()
    - parse_ideas_response(): Ideas list from model output
    - generate_idea_title(): Title for a bare keyword
    - IdeaDiscoveryService: discover_ideas(), ideas_from_keywords(), save_ideas()
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from src.exceptions import IdeaDiscoveryError
from src.logging import ComponentLogger, LogComponent
from src.models import IdeaStatus
from src.tools.dataforseo_client import DataForSeoClient
from src.tools.grok_client import GrokClient
from src.utils import strip_code_fences, utc_now

logger = logging.getLogger("IdeaDiscovery")


# =============================================================================
# CONSTANTS
# =============================================================================

DUPLICATE_THRESHOLD: float = 0.7
"""Titles more similar than this to an existing title are dropped."""

MIN_MONETIZATION_SCORE: int = 25

CONTEXT_TTL_SECONDS: int = 300

IDEAS_PER_RUN: int = 12

VALID_CONTENT_TYPES = ("guide", "listicle", "career_guide", "ranking", "explainer", "review")

# Topics no paid school offers online degrees for
BANNED_TOPIC_PATTERNS: List[re.Pattern] = [
    re.compile(r"space\s*(tourism|exploration|careers?)", re.IGNORECASE),
    re.compile(r"astronaut", re.IGNORECASE),
    re.compile(r"forest\s*ranger", re.IGNORECASE),
    re.compile(r"park\s*ranger", re.IGNORECASE),
    re.compile(r"wildlife\s*(officer|warden|conservation)", re.IGNORECASE),
    re.compile(r"marine\s*biology", re.IGNORECASE),
    re.compile(r"archaeology", re.IGNORECASE),
    re.compile(r"paleontology", re.IGNORECASE),
    re.compile(r"zoology", re.IGNORECASE),
    re.compile(r"oceanography", re.IGNORECASE),
    re.compile(r"astronomy", re.IGNORECASE),
    re.compile(r"astrophysics", re.IGNORECASE),
]

SOURCE_DESCRIPTIONS: Dict[str, str] = {
    "reddit": (
        "Reddit discussions in r/college, r/careerguidance, r/education, "
        "r/gradschool, r/MBA, r/nursing"
    ),
    "news": "Current news about higher education, online learning, career trends",
    "trends": "Google Trends for education keywords, emerging career searches",
    "general": "Evergreen content opportunities, seasonal education trends",
}

# Checked in order; the first match wins
CONTENT_TYPE_RULES: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\d+\s*(best|top|ways|tips|steps|things)"), "listicle"),
    (re.compile(r"(career|job|salary|profession|work)"), "career_guide"),
    (
        re.compile(r"(rank|best\s+\w+\s+program|top\s+\w+\s+school|\bvs\b|versus|comparison)"),
        "ranking",
    ),
    (re.compile(r"(what\s+is|how\s+does|explained|understanding|guide\s+to)"), "explainer"),
    (re.compile(r"(review|worth\s+it|honest|experience)"), "review"),
]

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


# =============================================================================
# DUPLICATES & CONTENT TYPES
# =============================================================================


def edit_distance(first: str, second: str) -> int:
    """Levenshtein distance between two strings."""
    previous = list(range(len(second) + 1))
    for i, a in enumerate(first, start=1):
        current = [i]
        for j, b in enumerate(second, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (a != b),
            ))
        previous = current
    return previous[-1]


def calculate_similarity(first: str, second: str) -> float:
    """1.0 for identical titles, 0.0 when either is empty after normalizing.

    Titles are lowercased and stripped of punctuation before comparison.
    """
    s1 = _NON_ALNUM_RE.sub("", (first or "").lower())
    s2 = _NON_ALNUM_RE.sub("", (second or "").lower())
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    longer, shorter = (s1, s2) if len(s1) > len(s2) else (s2, s1)
    return (len(longer) - edit_distance(longer, shorter)) / len(longer)


def filter_duplicates(
    ideas: List[Dict[str, Any]],
    existing_titles: List[str],
    threshold: float = DUPLICATE_THRESHOLD,
) -> List[Dict[str, Any]]:
    """Drop ideas whose title is too close to an existing or earlier kept title."""
    seen = [t for t in existing_titles if t]
    kept = []
    for idea in ideas:
        title = idea.get("title") or ""
        if any(calculate_similarity(title, other) > threshold for other in seen):
            logger.debug("Dropping duplicate idea: %s", title)
            continue
        kept.append(idea)
        seen.append(title)
    return kept


def validate_content_type(content_type: Optional[str]) -> str:
    return content_type if content_type in VALID_CONTENT_TYPES else "guide"


def detect_content_type(title: str) -> str:
    """Guess the article format from its title; ``guide`` when nothing matches."""
    lowered = (title or "").lower()
    for pattern, content_type in CONTENT_TYPE_RULES:
        if pattern.search(lowered):
            return content_type
    return "guide"


def generate_idea_title(keyword: str) -> str:
    """Readable working title for a keyword-research idea."""
    keyword = (keyword or "").strip()
    if not keyword:
        return ""
    lowered = keyword.lower()
    capitalized = keyword[0].upper() + keyword[1:]

    if "how to" in lowered:
        return capitalized
    if "best" in lowered:
        return f"{capitalized} in {utc_now().year}"
    if "salary" in lowered or "pay" in lowered:
        return f"{capitalized}: Complete Guide"
    if "degree" in lowered or "program" in lowered:
        return f"Guide to {capitalized}"
    if "career" in lowered or "job" in lowered:
        return f"{capitalized} Career Path"
    return f"{capitalized} - Complete Guide"


# =============================================================================
# MONETIZATION CONTEXT
# =============================================================================


@dataclass
class MonetizationContext:
    """What the site can monetize: categories, paid schools, degree levels."""

    categories: List[Dict[str, Any]] = field(default_factory=list)
    schools: List[Dict[str, Any]] = field(default_factory=list)
    levels: List[Dict[str, Any]] = field(default_factory=list)
    concentration_count: int = 0

    @classmethod
    def from_rows(
        cls,
        category_rows: List[Dict[str, Any]],
        schools: List[Dict[str, Any]],
        levels: List[Dict[str, Any]],
    ) -> MonetizationContext:
        """Group ``monetization_categories`` rows into categories with concentrations."""
        grouped: Dict[str, Dict[str, Any]] = {}
        for row in sorted(category_rows, key=lambda r: r.get("category") or ""):
            name = row.get("category")
            if not name:
                continue
            entry = grouped.setdefault(
                name, {"id": row.get("category_id"), "name": name, "concentrations": []}
            )
            if row.get("concentration"):
                entry["concentrations"].append(
                    {"id": row.get("concentration_id"), "name": row["concentration"]}
                )
        return cls(
            categories=list(grouped.values()),
            schools=list(schools),
            levels=list(levels),
            concentration_count=len(category_rows),
        )

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "total_categories": len(self.categories),
            "total_concentrations": self.concentration_count,
            "total_paid_schools": len(self.schools),
        }


def build_monetization_prompt_section(context: Optional[MonetizationContext]) -> str:
    """Prompt block listing what can be monetized and what never can."""
    if context is None:
        return ""

    lines = [
        "",
        "=== MONETIZATION REQUIREMENTS (CRITICAL - READ CAREFULLY) ===",
        "",
        "GetEducated.com ONLY makes money when content leads to degree program signups.",
        "Topics with no connection to our paid schools/degrees are WORTHLESS.",
        "",
        "Every idea you suggest MUST:",
        "1. Match one of our monetizable categories below",
        "2. Be relevant to online degree programs",
        "3. Target prospective online students",
        "4. Have potential to drive degree signups",
        "",
        "=== MONETIZABLE CATEGORIES (ONLY suggest topics in these areas) ===",
    ]
    for index, category in enumerate(context.categories, start=1):
        concentrations = ", ".join(c["name"] for c in category["concentrations"])
        lines.append(f"{index}. {category['name']}: {concentrations}")

    lines += ["", "=== PAID SCHOOLS (mention these when relevant) ===", "Top schools by program count:"]
    for school in context.schools[:25]:
        lines.append(
            f"- {school.get('school_name')} ({school.get('degree_count', 0)} online programs)"
        )

    lines += ["", "=== DEGREE LEVELS ==="]
    lines += [f"- {level.get('level_name')}" for level in context.levels]

    lines += [
        "",
        "=== BANNED TOPICS (NEVER suggest these - zero monetization potential) ===",
        "- Space careers, astronomy, astrophysics",
        "- Forest/park ranger careers",
        "- Wildlife conservation careers",
        "- Marine biology, oceanography",
        "- Archaeology, paleontology",
        "- Any topic that can't connect to online degree programs",
        "- Any topic where we have ZERO paid schools offering related degrees",
        "",
        "=== END MONETIZATION REQUIREMENTS ===",
        "",
    ]
    return "\n".join(lines)


def build_learning_context(patterns: Optional[Dict[str, Any]]) -> str:
    """Prompt block built from an ``ai_learning_sessions`` row."""
    if not patterns or not patterns.get("learned_patterns"):
        return ""

    lp = patterns["learned_patterns"]
    parts = ["\n\n=== LEARNED PREFERENCES FROM USER FEEDBACK ===\n"]

    def bullets(heading: str, items: Optional[List[str]]) -> None:
        if items:
            parts.append(f"\n{heading}:\n")
            parts.extend(f"- {item}\n" for item in items)

    bullets("WHAT WORKS WELL (prioritize these patterns)", lp.get("goodPatterns"))
    bullets("WHAT TO AVOID (do not suggest ideas with these patterns)", lp.get("badPatterns"))
    if lp.get("preferredTopics"):
        parts.append(f"\nPREFERRED TOPIC AREAS:\n{', '.join(lp['preferredTopics'])}\n")
    if lp.get("avoidTopics"):
        parts.append(f"\nTOPICS TO AVOID:\n{', '.join(lp['avoidTopics'])}\n")
    title_patterns = lp.get("titlePatterns") or {}
    bullets("GOOD TITLE PATTERNS", title_patterns.get("good"))
    bullets("BAD TITLE PATTERNS (avoid)", title_patterns.get("bad"))
    if lp.get("preferredContentTypes"):
        parts.append(
            f"\nPREFERRED CONTENT TYPES: {', '.join(lp['preferredContentTypes'])}\n"
        )
    if patterns.get("improved_prompt"):
        parts.append(f"\nADDITIONAL INSTRUCTIONS:\n{patterns['improved_prompt']}\n")

    parts.append("\n=== END LEARNED PREFERENCES ===\n")
    return "".join(parts)


def score_idea_monetization(
    idea: Dict[str, Any], context: MonetizationContext
) -> Dict[str, Any]:
    """Score 0-100 for how well an idea maps onto a monetizable category.

    Banned topics score 0.  Otherwise each category earns 15 per category
    word (4+ letters) found in the title or description, 40 per exact
    concentration match and 10 per concentration word; the best category
    wins.
    """
    combined = f"{(idea.get('title') or '').lower()} {(idea.get('description') or '').lower()}"

    for pattern in BANNED_TOPIC_PATTERNS:
        if pattern.search(combined):
            return {
                "score": 0,
                "confidence": "banned",
                "matched_category": None,
                "reason": f"Topic matches banned pattern: {pattern.pattern}",
            }

    best: Optional[Dict[str, Any]] = None
    best_score = 0
    for category in context.categories:
        score = sum(
            15 for word in category["name"].lower().split()
            if len(word) > 3 and word in combined
        )
        for concentration in category["concentrations"]:
            name = concentration["name"].lower()
            if name in combined:
                score += 40
            else:
                score += sum(
                    10 for word in name.split() if len(word) > 3 and word in combined
                )
        if score > best_score:
            best_score = score
            best = {"category_id": category["id"], "category_name": category["name"]}

    final = min(100, best_score)
    if final >= 60:
        confidence = "high"
    elif final >= 30:
        confidence = "medium"
    else:
        confidence = "low"

    return {
        "score": final,
        "confidence": confidence,
        "matched_category": best,
        "reason": f"Matches category: {best['category_name']}" if best else "No category match found",
    }


def filter_by_monetization(
    ideas: List[Dict[str, Any]],
    context: MonetizationContext,
    min_score: int = MIN_MONETIZATION_SCORE,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split ideas into (accepted, rejected) on their monetization score."""
    accepted, rejected = [], []
    for idea in ideas:
        result = score_idea_monetization(idea, context)
        match = result["matched_category"] or {}
        if result["score"] >= min_score:
            accepted.append({
                **idea,
                "monetization_score": result["score"],
                "monetization_confidence": result["confidence"],
                "monetization_category": match.get("category_name"),
                "monetization_category_id": match.get("category_id"),
            })
        else:
            rejected.append({
                **idea,
                "monetization_score": result["score"],
                "rejection_reason": result["reason"],
            })

    for idea in rejected:
        logger.info(
            "Rejected idea %r (score %d): %s",
            idea.get("title"), idea["monetization_score"], idea["rejection_reason"],
        )
    return accepted, rejected


# =============================================================================
# RESPONSE PARSING
# =============================================================================


def parse_ideas_response(text: str) -> List[Dict[str, Any]]:
    """Ideas from a ``{"ideas": [...]}`` reply, tolerating fences and chatter.

    Raises:
        IdeaDiscoveryError: When no JSON can be recovered from *text*.
    """
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError:
        match = _JSON_OBJECT_RE.search(text or "")
        if not match:
            raise IdeaDiscoveryError("Idea response contained no JSON")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise IdeaDiscoveryError(f"Idea response was not valid JSON: {e}") from e

    if isinstance(parsed, dict):
        ideas = parsed.get("ideas") or []
    elif isinstance(parsed, list):
        ideas = parsed
    else:
        ideas = []
    return [idea for idea in ideas if isinstance(idea, dict)]


def clean_idea(idea: Dict[str, Any]) -> Dict[str, Any]:
    keywords = idea.get("target_keywords")
    return {
        "title": (idea.get("title") or "").strip(),
        "description": (idea.get("description") or "").strip(),
        "content_type": validate_content_type(idea.get("content_type")),
        "target_keywords": keywords if isinstance(keywords, list) else [],
        "search_intent": idea.get("search_intent") or "informational",
        "trending_reason": idea.get("trending_reason") or "",
        "why_monetizable": idea.get("why_monetizable") or "",
        "ai_monetization_category": idea.get("monetization_category"),
        "ai_degree_level": idea.get("degree_level"),
        "source": idea.get("source") or "general",
        "discovered_at": utc_now().isoformat(),
    }


# =============================================================================
# SERVICE
# =============================================================================


class IdeaDiscoveryService:
    """Discovers, filters and stores content ideas.

    Args:
        grok: ``GrokClient`` used for trend-driven discovery.
        dataforseo: ``DataForSeoClient`` used for keyword-driven ideas.
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.

    Usage::

        service = IdeaDiscoveryService()
        result = await service.discover_ideas(sources=["news"], custom_topic="nursing")
        await service.save_ideas(result["ideas"], user_id="u1")
    """

    def __init__(
        self,
        grok: Optional[GrokClient] = None,
        dataforseo: Optional[DataForSeoClient] = None,
        db: Any = None,
    ) -> None:
        self.grok = grok or GrokClient()
        self.dataforseo = dataforseo or DataForSeoClient()
        self._db = db
        self._context: Optional[MonetizationContext] = None
        self._context_loaded_at = 0.0
        self.log = ComponentLogger(LogComponent.IDEA_DISCOVERY)

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def get_monetization_context(
        self, force: bool = False
    ) -> Optional[MonetizationContext]:
        """Categories, paid schools and levels, cached for five minutes.

        Returns ``None`` when the taxonomy cannot be loaded.
        """
        if (
            not force
            and self._context is not None
            and time.monotonic() - self._context_loaded_at < CONTEXT_TTL_SECONDS
        ):
            return self._context

        try:
            db = await self._get_db()
            context = MonetizationContext.from_rows(
                await db.get_monetization_categories(),
                await db.get_paid_schools(),
                await db.get_monetization_levels(),
            )
        except Exception as e:
            logger.error("Failed to load monetization context: %s", e)
            return None

        self._context = context
        self._context_loaded_at = time.monotonic()
        return context

    async def get_monetization_stats(self) -> Optional[Dict[str, int]]:
        context = await self.get_monetization_context()
        return context.stats if context is not None else None

    async def load_learned_patterns(self) -> Optional[Dict[str, Any]]:
        try:
            db = await self._get_db()
            return await db.get_active_learning_session("idea_generation")
        except Exception as e:
            logger.warning("Error loading learned patterns: %s", e)
            return None

    async def _recent_titles(self) -> List[str]:
        try:
            db = await self._get_db()
            return await db.get_recent_idea_titles()
        except Exception as e:
            logger.warning("Could not load existing idea titles: %s", e)
            return []

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def build_discovery_prompt(
        self,
        context: MonetizationContext,
        sources: List[str],
        custom_topic: str = "",
        existing_topics: Optional[List[str]] = None,
        top_performing_articles: Optional[List[Dict[str, Any]]] = None,
        learning_context: str = "",
    ) -> str:
        today = utc_now().strftime("%A, %B %d, %Y")
        selected = "\n- ".join(SOURCE_DESCRIPTIONS[s] for s in sources if s in SOURCE_DESCRIPTIONS)

        extras = []
        if custom_topic:
            extras.append(
                f'USER REQUESTED FOCUS: "{custom_topic}" - but it MUST still fit our '
                "monetizable categories!"
            )
        if top_performing_articles:
            extras.append(
                "Top performing articles (generate similar quality topics):\n"
                + "\n".join(f'- "{a.get("title")}"' for a in top_performing_articles)
            )
        if existing_topics:
            extras.append(
                "AVOID these existing topics:\n"
                + "\n".join(f"- {t}" for t in existing_topics[:50])
            )

        return (
            "You are a content strategist for GetEducated.com, a website about ONLINE "
            f"EDUCATION and ONLINE DEGREES.\nToday is {today}.\n"
            f"{build_monetization_prompt_section(context)}\n"
            f"Your task: Generate {IDEAS_PER_RUN} MONETIZABLE content ideas by "
            "researching current trends.\n\n"
            f"SOURCES TO RESEARCH:\n- {selected}\n\n"
            + "".join(f"{extra}\n\n" for extra in extras)
            + learning_context
            + "\nREQUIREMENTS FOR EACH IDEA:\n"
            "1. MUST match one of our monetizable categories\n"
            "2. MUST be relevant to ONLINE DEGREE programs\n"
            "3. MUST target prospective online students\n"
            "4. Should be timely/trending but ONLY within our monetizable areas\n"
            "5. Should drive degree signups, not just traffic\n\n"
            'Return a JSON object:\n{\n  "ideas": [\n    {\n'
            '      "title": "SEO-optimized title (50-60 chars)",\n'
            '      "description": "2-3 sentences explaining the topic",\n'
            '      "monetization_category": "Business|Healthcare|Education|etc.",\n'
            '      "degree_level": "Bachelor|Master|etc.",\n'
            '      "content_type": "guide|listicle|career_guide|ranking|explainer|review",\n'
            '      "target_keywords": ["keyword1", "keyword2"],\n'
            '      "why_monetizable": "This drives signups for X programs at Y schools",\n'
            '      "trending_reason": "Why this is timely",\n'
            '      "source": "reddit|news|trends|general"\n'
            "    }\n  ]\n}\n\n"
            f"Generate exactly {IDEAS_PER_RUN} ideas. EVERY idea must be monetizable - "
            "no exceptions."
        )

    async def discover_ideas(
        self,
        sources: Optional[List[str]] = None,
        custom_topic: str = "",
        existing_topics: Optional[List[str]] = None,
        top_performing_articles: Optional[List[Dict[str, Any]]] = None,
        use_learned_patterns: bool = True,
        strict_monetization: bool = True,
        min_monetization_score: int = MIN_MONETIZATION_SCORE,
        dedupe: bool = True,
    ) -> Dict[str, Any]:
        """
        Ask Grok for trend-driven ideas and keep the monetizable, new ones.

        Args:
            sources: Any of ``reddit``, ``news``, ``trends``, ``general``
                (all four by default).
            custom_topic: Optional focus; ideas must still be monetizable.
            existing_topics: Titles to avoid.  Recent ``content_ideas``
                titles are used when omitted.
            strict_monetization: Reject ideas scoring below
                *min_monetization_score*.
            dedupe: Drop ideas within ``DUPLICATE_THRESHOLD`` of an
                existing title.

        Returns:
            ``{"ideas": [...], "rejected": [...], "stats": {...}}``

        Raises:
            IdeaDiscoveryError: The monetization context could not be
                loaded, or the model call or its output failed.
        """
        context = await self.get_monetization_context()
        if context is None:
            raise IdeaDiscoveryError(
                "Failed to load monetization context - cannot generate ideas "
                "without knowing what we can monetize"
            )

        learning_context = ""
        if use_learned_patterns:
            learning_context = build_learning_context(await self.load_learned_patterns())

        if existing_topics is None:
            existing_topics = await self._recent_titles()

        prompt = self.build_discovery_prompt(
            context,
            list(sources or SOURCE_DESCRIPTIONS),
            custom_topic=custom_topic,
            existing_topics=existing_topics,
            top_performing_articles=top_performing_articles,
            learning_context=learning_context,
        )

        try:
            text = await self.grok.generate(
                [
                    {
                        "role": "system",
                        "content": "You are a content strategist who generates "
                        "monetizable article ideas for an online education site.",
                    },
                    {"role": "user", "content": prompt},
                ]
            )
        except Exception as e:
            await self.log.error("Idea discovery failed", error=e)
            raise IdeaDiscoveryError(f"Failed to discover ideas: {e}") from e

        cleaned = [
            clean_idea(idea)
            for idea in parse_ideas_response(text)
            if idea.get("title") and idea.get("description")
        ]

        if strict_monetization:
            accepted, rejected = filter_by_monetization(cleaned, context, min_monetization_score)
        else:
            accepted, rejected = cleaned, []

        duplicates = 0
        if dedupe:
            unique = filter_duplicates(accepted, existing_topics)
            duplicates = len(accepted) - len(unique)
            accepted = unique

        stats = {
            "generated": len(cleaned),
            "accepted": len(accepted),
            "rejected": len(rejected),
            "duplicates": duplicates,
            "monetization_context": context.stats,
        }
        logger.info(
            "Generated %d ideas, accepted %d, rejected %d, duplicates %d",
            len(cleaned), len(accepted), len(rejected), duplicates,
        )
        await self.log.info("Idea discovery completed", data=stats)
        return {"ideas": accepted, "rejected": rejected, "stats": stats}

    async def ideas_from_keywords(
        self,
        seed_keywords: List[str],
        limit: int = 10,
        min_search_volume: int = 100,
        max_difficulty: int = 70,
        min_opportunity_score: int = 50,
    ) -> List[Dict[str, Any]]:
        """One idea per promising DataForSEO keyword related to *seed_keywords*.

        Raises:
            IdeaDiscoveryError: DataForSEO credentials are not configured.
            VendorAPIError: The DataForSEO request failed.
        """
        if not seed_keywords:
            return []
        if not self.dataforseo.is_configured():
            raise IdeaDiscoveryError("DataForSEO credentials are not configured")

        suggestions = await self.dataforseo.get_keyword_suggestions(
            seed_keywords, limit=limit * 3
        )
        keywords = DataForSeoClient.filter_keywords(
            suggestions,
            min_search_volume=min_search_volume,
            max_difficulty=max_difficulty,
            min_opportunity_score=min_opportunity_score,
        )

        ideas = []
        for kw in keywords:
            title = generate_idea_title(kw["keyword"])
            ideas.append({
                "title": title,
                "description": (
                    f'Article targeting keyword: "{kw["keyword"]}" with '
                    f'{kw.get("search_volume") or 0:,} monthly searches'
                ),
                "content_type": detect_content_type(title),
                "target_keywords": [kw["keyword"]],
                "source": "keyword_research",
                "keyword_research_data": {
                    "primary_keyword": kw["keyword"],
                    "search_volume": kw.get("search_volume"),
                    "difficulty": kw.get("difficulty"),
                    "opportunity_score": kw.get("opportunity_score"),
                    "trend": kw.get("trend"),
                    "cpc": kw.get("cpc"),
                },
            })

        return filter_duplicates(ideas, await self._recent_titles())[:limit]

    async def save_ideas(
        self, ideas: List[Dict[str, Any]], user_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Insert ideas as pending ``content_ideas`` rows; returns the rows."""
        rows = [
            {
                "title": idea["title"],
                "description": idea.get("description"),
                "content_type": idea.get("content_type") or "guide",
                "seed_topics": idea.get("target_keywords") or [],
                "source": idea.get("source"),
                "status": IdeaStatus.PENDING.value,
                "monetization_category": idea.get("monetization_category"),
                "monetization_score": idea.get("monetization_score"),
                "trending_reason": idea.get("trending_reason"),
                "keyword_research_data": idea.get("keyword_research_data"),
                "user_id": user_id,
            }
            for idea in ideas
            if idea.get("title")
        ]
        db = await self._get_db()
        saved = await db.insert_ideas(rows)
        await self.log.info(f"Saved {len(saved)} content ideas")
        return saved


__all__ = [
    "DUPLICATE_THRESHOLD",
    "MIN_MONETIZATION_SCORE",
    "BANNED_TOPIC_PATTERNS",
    "VALID_CONTENT_TYPES",
    "MonetizationContext",
    "edit_distance",
    "calculate_similarity",
    "filter_duplicates",
    "validate_content_type",
    "detect_content_type",
    "generate_idea_title",
    "build_monetization_prompt_section",
    "build_learning_context",
    "score_idea_monetization",
    "filter_by_monetization",
    "parse_ideas_response",
    "clean_idea",
    "IdeaDiscoveryService",
]
