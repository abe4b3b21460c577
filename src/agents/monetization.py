"""
Monetization engine for GetEducated articles.

Decides which degree programs an article promotes, how they render
(``[su_ge-picks]`` / ``[su_ge-qdf]`` shortcodes) and where they go, then
checks the result against the business rules.

Flow:
    match_topic_to_category(title, level)  -> category / concentration / level
    generate_monetization(...)             -> one shortcode per slot
    MonetizationValidator.validate(...)    -> blocking issues and warnings

Program selection per slot:
    1. Exact query on category + concentration + level
    2. Fewer than ``min_programs_required``: add broader category matches
    3. Sponsored programs first, at most ``max_programs_per_school`` each
    4. Programs used by an earlier slot are excluded
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set

from src.agents.shortcodes import (
    GE_QDF,
    build_cta_url,
    generate_ge_picks_shortcode,
    generate_quick_degree_find_shortcode,
)
from src.models import CategoryMatch, MonetizationSlotResult
from src.utils import utc_now

logger = logging.getLogger("Monetization")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class MonetizationConfig:
    min_programs_required: int = 3
    max_programs_per_school: int = 2
    default_max_programs: int = 5
    sponsored_priority_ratio: float = 1.0
    enable_category_fallback: bool = True
    enable_related_concentration_fallback: bool = True


DEFAULT_CONFIG = MonetizationConfig()

SLOT_TYPES: Dict[str, Dict[str, Any]] = {
    "table": {"shortcode_type": "su_ge-picks", "default_max": 5, "min_programs": 3},
    "hero": {"shortcode_type": "su_ge-picks", "default_max": 1, "min_programs": 1},
    "compact": {"shortcode_type": "su_ge-picks", "default_max": 3, "min_programs": 2},
    "qdf": {"shortcode_type": GE_QDF, "default_max": None, "min_programs": 0},
}

ARTICLE_SLOT_CONFIGS: Dict[str, List[Dict[str, Any]]] = {
    "ranking": [
        {"name": "after_intro", "max_programs": 5, "type": "table"},
        {"name": "mid_article", "max_programs": 3, "type": "compact"},
        {"name": "near_conclusion", "max_programs": 1, "type": "hero"},
    ],
    "guide": [
        {"name": "after_intro", "max_programs": 3, "type": "compact"},
        {"name": "near_conclusion", "max_programs": 1, "type": "hero"},
    ],
    "listicle": [
        {"name": "after_intro", "max_programs": 5, "type": "table"},
        {"name": "mid_article", "max_programs": 3, "type": "table"},
    ],
    "explainer": [
        {"name": "after_intro", "max_programs": 3, "type": "compact"},
    ],
    "review": [
        {"name": "after_intro", "max_programs": 1, "type": "hero"},
        {"name": "near_conclusion", "max_programs": 3, "type": "compact"},
    ],
    "default": [
        {"name": "after_intro", "max_programs": 5, "type": "table"},
        {"name": "mid_article", "max_programs": 3, "type": "compact"},
    ],
}

# Slot name -> insert_shortcode_in_content position
SLOT_POSITIONS = {
    "after_intro": "after_intro",
    "mid_article": "mid_content",
    "near_conclusion": "pre_conclusion",
}


def _is_sponsored(program: Dict[str, Any]) -> bool:
    return bool(program.get("is_sponsored") or (program.get("schools") or {}).get("is_sponsored"))


# =============================================================================
# OUTPUT
# =============================================================================


@dataclass
class MonetizationOutput:
    """Result of :meth:`MonetizationEngine.generate_monetization`."""

    success: bool
    error: Optional[str] = None
    article_id: Optional[str] = None
    category_id: Optional[int] = None
    concentration_id: Optional[int] = None
    degree_level_code: Optional[int] = None
    slots: List[MonetizationSlotResult] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_programs_selected(self) -> int:
        return len({pid for slot in self.slots for pid in slot.selected_program_ids})

    @property
    def sponsored_count(self) -> int:
        return sum(
            1 for slot in self.slots for p in slot.selected_programs if p.get("is_sponsored")
        )


# =============================================================================
# ENGINE
# =============================================================================


class MonetizationEngine:
    """
    Slot-based program selection and shortcode generation.

    Args:
        config: Selection tuning; defaults to :data:`DEFAULT_CONFIG`.
        db: SupabaseDB instance (resolved lazily when omitted).
    """

    def __init__(self, config: Optional[MonetizationConfig] = None, db: Any = None) -> None:
        self.config = config or MonetizationConfig()
        self._db = db

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    # -----------------------------------------------------------------
    # TOPIC MATCHING
    # -----------------------------------------------------------------

    async def match_topic_to_category(
        self, topic: str, degree_level: Optional[str] = None
    ) -> CategoryMatch:
        """
        Best taxonomy entry for *topic*.

        Scoring per category row:
            +100 concentration phrase appears in the topic
            +50  category phrase appears in the topic
            +25  per concentration word (>3 chars) overlapping a topic word
            +15  per category word (>3 chars) overlapping a topic word

        Confidence is high above 75, medium above 40, low otherwise.
        """
        if not topic:
            return CategoryMatch(matched=False, error="No topic provided")

        db = await self._get_db()
        try:
            categories = await db.get_monetization_categories()
        except Exception as e:
            logger.error("Failed to load monetization categories: %s", e)
            return CategoryMatch(matched=False, error=str(e))

        topic_lower = topic.lower()
        topic_words = topic_lower.split()

        def overlaps(word: str) -> bool:
            return len(word) > 3 and any(tw in word or word in tw for tw in topic_words)

        best: Optional[Dict[str, Any]] = None
        best_score = 0
        for row in categories:
            category_lower = (row.get("category") or "").lower()
            concentration_lower = (row.get("concentration") or "").lower()

            score = 0
            if concentration_lower and concentration_lower in topic_lower:
                score += 100
            if category_lower and category_lower in topic_lower:
                score += 50
            score += 25 * sum(1 for w in concentration_lower.split() if overlaps(w))
            score += 15 * sum(1 for w in category_lower.split() if overlaps(w))

            # Strictly greater keeps the first row on ties
            if score > best_score:
                best, best_score = row, score

        if best is None:
            return CategoryMatch(matched=False, error="No matching category found")

        level_code = None
        if degree_level:
            try:
                level_code = await db.find_level_code(degree_level)
            except Exception as e:
                logger.warning("Degree level lookup failed for %r: %s", degree_level, e)

        if best_score > 75:
            confidence = "high"
        elif best_score > 40:
            confidence = "medium"
        else:
            confidence = "low"

        return CategoryMatch(
            matched=True,
            category_id=best.get("category_id"),
            concentration_id=best.get("concentration_id"),
            category=best,
            degree_level_code=level_code,
            confidence=confidence,
            score=best_score,
        )

    # -----------------------------------------------------------------
    # GENERATION
    # -----------------------------------------------------------------

    async def validate_input(
        self,
        category_id: Optional[int],
        concentration_id: Optional[int],
        degree_level_code: Optional[int] = None,
    ) -> Dict[str, Any]:
        if not category_id or not concentration_id:
            return {"is_valid": False, "error": "category_id and concentration_id are required"}

        db = await self._get_db()
        category = await db.get_monetization_category(category_id, concentration_id)
        if not category:
            return {
                "is_valid": False,
                "error": f"Invalid category_id ({category_id}) or concentration_id ({concentration_id})",
            }

        if degree_level_code:
            level = await db.get_monetization_level(degree_level_code)
            if not level:
                return {"is_valid": False, "error": f"Invalid degree level code: {degree_level_code}"}

        return {"is_valid": True, "category": category}

    async def generate_monetization(
        self,
        category_id: Optional[int],
        concentration_id: Optional[int],
        degree_level_code: Optional[int] = None,
        article_type: str = "default",
        slots: Optional[List[Dict[str, Any]]] = None,
        article_id: Optional[str] = None,
    ) -> MonetizationOutput:
        """Fill every slot for *article_type* (or the explicit *slots*).

        Invalid taxonomy input returns ``success=False`` with the reason
        rather than raising.
        """
        validation = await self.validate_input(category_id, concentration_id, degree_level_code)
        if not validation["is_valid"]:
            return MonetizationOutput(success=False, error=validation["error"])

        category = validation["category"]
        used_ids: Set[Any] = set()
        results = []
        for slot_config in slots or self.get_slot_configs_for_article_type(article_type):
            slot = await self.process_slot(
                category_id,
                concentration_id,
                degree_level_code,
                slot_config,
                used_ids,
                category=category,
            )
            used_ids.update(slot.selected_program_ids)
            results.append(slot)

        return MonetizationOutput(
            success=True,
            article_id=article_id,
            category_id=category_id,
            concentration_id=concentration_id,
            degree_level_code=degree_level_code,
            slots=results,
            metadata={
                "article_type": article_type,
                "config_used": asdict(self.config),
                "generated_at": utc_now().isoformat(),
            },
        )

    async def process_slot(
        self,
        category_id: int,
        concentration_id: int,
        degree_level_code: Optional[int],
        slot_config: Dict[str, Any],
        used_ids: Set[Any],
        category: Optional[Dict[str, Any]] = None,
    ) -> MonetizationSlotResult:
        slot_type_name = slot_config.get("type", "table")
        slot_type = SLOT_TYPES.get(slot_type_name, SLOT_TYPES["table"])
        max_programs = slot_config.get("max_programs") or slot_type["default_max"] or 0

        programs = await self.select_programs(
            category_id,
            concentration_id,
            degree_level_code,
            max_programs=max_programs,
            sponsored_only=slot_config.get("use_sponsored_only", False),
            exclude_ids=used_ids,
        )

        return MonetizationSlotResult(
            name=slot_config["name"],
            type=slot_type_name,
            shortcode=self.build_slot_shortcode(
                slot_type_name, category_id, concentration_id, degree_level_code, category
            ),
            selected_program_ids=[p.get("id") for p in programs],
            selected_programs=[
                {
                    "id": p.get("id"),
                    "program_name": p.get("program_name"),
                    "school_name": p.get("school_name"),
                    "school_id": p.get("school_id"),
                    "is_sponsored": _is_sponsored(p),
                    "sponsorship_tier": p.get("sponsorship_tier"),
                    "geteducated_url": p.get("geteducated_url"),
                }
                for p in programs
            ],
        )

    # -----------------------------------------------------------------
    # PROGRAM SELECTION
    # -----------------------------------------------------------------

    async def query_programs(
        self,
        category_id: Optional[int],
        concentration_id: Optional[int],
        degree_level_code: Optional[int],
        exclude_ids: Optional[Set[Any]] = None,
    ) -> List[Dict[str, Any]]:
        db = await self._get_db()
        try:
            return await db.query_degree_programs(
                category_id=category_id,
                concentration_id=concentration_id,
                degree_level_code=degree_level_code,
                exclude_ids=sorted(exclude_ids, key=str) if exclude_ids else None,
            )
        except Exception as e:
            logger.error("Program query error: %s", e)
            return []

    async def select_programs(
        self,
        category_id: Optional[int],
        concentration_id: Optional[int],
        degree_level_code: Optional[int],
        max_programs: int,
        sponsored_only: bool = False,
        exclude_ids: Optional[Set[Any]] = None,
    ) -> List[Dict[str, Any]]:
        programs = await self.query_programs(
            category_id, concentration_id, degree_level_code, exclude_ids
        )

        if (
            len(programs) < self.config.min_programs_required
            and self.config.enable_category_fallback
        ):
            broader = await self.query_programs(
                category_id, None, degree_level_code, exclude_ids
            )
            exact_ids = {p.get("id") for p in programs}
            programs = programs + [p for p in broader if p.get("id") not in exact_ids]

        # Per-school cap applies across sponsored and unsponsored together
        sponsored = [p for p in programs if _is_sponsored(p)]
        candidates = sponsored
        if not sponsored_only:
            candidates = sponsored + [p for p in programs if not _is_sponsored(p)]
        selection = self.apply_diversity_rules(candidates)[:max_programs]

        return self.rank_programs(selection)

    def apply_diversity_rules(self, programs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Keep at most ``max_programs_per_school`` programs per school."""
        counts: Dict[Any, int] = {}
        diverse = []
        for program in programs:
            school = program.get("school_id")
            if counts.get(school, 0) < self.config.max_programs_per_school:
                diverse.append(program)
                counts[school] = counts.get(school, 0) + 1
        return diverse

    @staticmethod
    def rank_programs(programs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Sponsored first, then higher tier, then program name."""
        return sorted(
            programs,
            key=lambda p: (
                not _is_sponsored(p),
                -(p.get("sponsorship_tier") or 0),
                (p.get("program_name") or "").lower(),
            ),
        )

    # -----------------------------------------------------------------
    # SHORTCODES
    # -----------------------------------------------------------------

    @staticmethod
    def build_slot_shortcode(
        slot_type: str,
        category_id: int,
        concentration_id: int,
        degree_level_code: Optional[int] = None,
        category: Optional[Dict[str, Any]] = None,
    ) -> str:
        spec = SLOT_TYPES.get(slot_type, SLOT_TYPES["table"])
        if spec["shortcode_type"] == GE_QDF:
            return generate_quick_degree_find_shortcode(header="Find Your Degree")
        return generate_ge_picks_shortcode(
            category=category_id,
            concentration=concentration_id,
            level=degree_level_code,
            cta_url=build_cta_url(degree_level_code, category),
        )

    @staticmethod
    def get_slot_configs_for_article_type(article_type: str) -> List[Dict[str, Any]]:
        return ARTICLE_SLOT_CONFIGS.get(article_type) or ARTICLE_SLOT_CONFIGS["default"]


# =============================================================================
# BUSINESS RULES
# =============================================================================


BLOCKED_DOMAINS = [
    "onlineu.com",
    "usnews.com",
    "niche.com",
    "collegeboard.org",
    "petersons.com",
    "princetonreview.com",
    "cappex.com",
    "collegedata.com",
]

APPROVED_EXTERNAL_DOMAINS = [
    "bls.gov",
    "ed.gov",
    "nces.ed.gov",
    "careeronestop.org",
    "onetcenter.org",
]

_EDU_HREF_RE = re.compile(r"""href=["']https?://[^"']*\.edu[^"']*["']""", re.IGNORECASE)
_COST_RE = re.compile(r"\$[\d,]+(?:\.\d{2})?")
_ATTRIBUTION_RE = re.compile(r"geteducated|ranking report", re.IGNORECASE)


class MonetizationValidator:
    """Checks generated content against GetEducated monetization rules."""

    def __init__(
        self,
        blocked_domains: Optional[List[str]] = None,
        approved_external_domains: Optional[List[str]] = None,
    ) -> None:
        self.blocked_domains = list(blocked_domains or BLOCKED_DOMAINS)
        self.approved_external_domains = list(
            approved_external_domains or APPROVED_EXTERNAL_DOMAINS
        )

    def validate(
        self, output: Optional[MonetizationOutput], content: str
    ) -> Dict[str, Any]:
        issues = self.validate_links(content)

        for slot in (output.slots if output else []):
            if slot.program_count > 0 and not slot.has_sponsored:
                issues.append({
                    "type": "warning",
                    "rule": "sponsored_priority",
                    "message": f'Slot "{slot.name}" has no sponsored programs',
                    "severity": "minor",
                })

        issues.extend(self.validate_cost_data(content))

        blocking = [i for i in issues if i["severity"] == "blocking"]
        return {
            "is_valid": not blocking,
            "issues": issues,
            "blocking_issues": blocking,
            "warnings": [i for i in issues if i["severity"] != "blocking"],
        }

    def validate_links(self, content: str) -> List[Dict[str, Any]]:
        if not content:
            return []

        issues = []
        for domain in self.blocked_domains:
            pattern = rf"https?://([\w.-]*\.)?{re.escape(domain)}"
            if re.search(pattern, content, re.IGNORECASE):
                issues.append({
                    "type": "error",
                    "rule": "blocked_domain",
                    "message": f"Content contains link to blocked competitor domain: {domain}",
                    "severity": "blocking",
                    "domain": domain,
                })

        edu_links = _EDU_HREF_RE.findall(content)
        if edu_links:
            issues.append({
                "type": "warning",
                "rule": "edu_direct_link",
                "message": (
                    f"Content contains {len(edu_links)} direct .edu link(s). "
                    "Use GetEducated school pages instead."
                ),
                "severity": "major",
                "count": len(edu_links),
            })
        return issues

    @staticmethod
    def validate_cost_data(content: str) -> List[Dict[str, Any]]:
        if not content:
            return []
        figures = _COST_RE.findall(content)
        if figures and not _ATTRIBUTION_RE.search(content):
            return [{
                "type": "warning",
                "rule": "cost_attribution",
                "message": (
                    f"Content mentions {len(figures)} cost figure(s) "
                    "without GetEducated attribution"
                ),
                "severity": "minor",
                "suggestion": 'Add "according to GetEducated ranking reports" or similar attribution',
            }]
        return []

    def is_blocked_domain(self, url: Optional[str]) -> bool:
        if not url:
            return False
        lowered = url.lower()
        return any(domain in lowered for domain in self.blocked_domains)

    def is_approved_external_domain(self, url: Optional[str]) -> bool:
        if not url:
            return False
        lowered = url.lower()
        return any(domain in lowered for domain in self.approved_external_domains)


__all__ = [
    "MonetizationConfig",
    "DEFAULT_CONFIG",
    "SLOT_TYPES",
    "ARTICLE_SLOT_CONFIGS",
    "SLOT_POSITIONS",
    "MonetizationOutput",
    "MonetizationEngine",
    "BLOCKED_DOMAINS",
    "APPROVED_EXTERNAL_DOMAINS",
    "MonetizationValidator",
]
