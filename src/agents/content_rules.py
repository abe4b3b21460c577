"""
Content rules: the editable rules document that drives generation.

Rules are read from the database (rpc, then table) and cached for five
minutes; when neither source has an active document the built-in
``DEFAULT_CONTENT_RULES`` are used.

Provides:
    - ContentRulesLoader: Cached loader (rpc -> table -> defaults)
    - build_content_rules_prompt_section(): Prompt block for the draft
    - build_tone_voice_context(): Tone/voice dict for humanization
    - get_quality_thresholds(): QualityThresholds from the rules
    - is_pipeline_step_enabled() / get_pipeline_step_config()
"""

import logging
import time
from typing import Any, Dict, Optional

from src.config import QualityThresholds, get_default_content_rules

logger = logging.getLogger(__name__)

RULES_CACHE_TTL_SECONDS = 5 * 60


class ContentRulesLoader:
    """Loads the active content rules with a 5-minute cache.

    Args:
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.
        ttl: Cache lifetime in seconds.
    """

    def __init__(self, db: Any = None, ttl: float = RULES_CACHE_TTL_SECONDS) -> None:
        self._db = db
        self.ttl = ttl
        self._rules: Optional[Dict[str, Any]] = None
        self._loaded_at: float = 0.0

    async def load(self, force: bool = False) -> Dict[str, Any]:
        if (
            not force
            and self._rules is not None
            and time.monotonic() - self._loaded_at < self.ttl
        ):
            return self._rules

        try:
            if self._db is None:
                from src.database import get_db
                self._db = await get_db()
            rules = await self._db.get_active_content_rules()
        except Exception as e:
            logger.error("Error loading content rules: %s", e)
            rules = None

        if rules:
            logger.info("Loaded content rules, version: %s", rules.get("version"))
        else:
            logger.warning("No content rules config found, using defaults")
            rules = get_default_content_rules()

        self._rules = rules
        self._loaded_at = time.monotonic()
        return rules

    def invalidate(self) -> None:
        self._rules = None
        self._loaded_at = 0.0


# =============================================================================
# PROMPT SECTIONS
# =============================================================================


def build_content_rules_prompt_section(rules: Optional[Dict[str, Any]]) -> str:
    """Hard rules, guidelines and tone as a block appended to the draft prompt."""
    if not rules:
        return ""

    parts = ["\n\n=== CONTENT RULES (MUST FOLLOW) ===\n"]

    hr = rules.get("hard_rules") or {}
    approved = (hr.get("authors") or {}).get("approved_authors") or []
    if approved:
        parts.append(f"\nAPPROVED AUTHORS ONLY: {', '.join(approved)}\n")

    links = hr.get("links")
    if links:
        parts.append("\nLINK RULES:\n")
        if links.get("block_edu_links"):
            parts.append(
                "- NEVER link directly to .edu domains (use GetEducated school pages instead)\n"
            )
        if links.get("block_competitor_links") and links.get("blocked_domains"):
            parts.append(
                f"- NEVER link to competitors: {', '.join(links['blocked_domains'])}\n"
            )

    allowed = (hr.get("external_sources") or {}).get("allowed_domains") or []
    if allowed:
        parts.append(f"\nALLOWED EXTERNAL SOURCES: {', '.join(allowed)}\n")
        parts.append("- Only cite these domains for external data\n")

    gl = rules.get("guidelines") or {}
    parts.append("\n\nCONTENT GUIDELINES:\n")
    if gl.get("word_count"):
        wc = gl["word_count"]
        parts.append(
            f"- Word count: {wc.get('minimum')}-{wc.get('maximum')} words "
            f"(target: {wc.get('target')})\n"
        )
    if gl.get("structure"):
        st = gl["structure"]
        parts.append(
            f"- Use {st.get('min_h2_headings')}-{st.get('max_h2_headings')} H2 headings\n"
        )
    if gl.get("faqs"):
        parts.append(f"- Include {gl['faqs'].get('minimum')}-{gl['faqs'].get('target')} FAQs\n")
    if gl.get("links"):
        ln = gl["links"]
        parts.append(
            f"- Include {ln.get('internal_links_min')}-{ln.get('internal_links_target')} "
            "internal links\n"
        )
        parts.append(
            f"- Include at least {ln.get('external_citations_min')} external citations\n"
        )

    tv = rules.get("tone_voice") or {}
    if tv.get("overall_style"):
        style = tv["overall_style"]
        parts.append(f"\nWRITING STYLE: {style.get('tone')}, {style.get('formality')}\n")
    if tv.get("banned_phrases"):
        parts.append(f"\nBANNED PHRASES (never use): {', '.join(tv['banned_phrases'][:10])}\n")
    if tv.get("preferred_phrases"):
        parts.append(f"\nPREFERRED PHRASES: {', '.join(tv['preferred_phrases'][:10])}\n")
    if (tv.get("anti_hallucination") or {}).get("require_citations_for_statistics"):
        parts.append("\n- Cite sources for all statistics and data\n")
        parts.append("- Do NOT invent or estimate data points\n")

    parts.append("\n=== END CONTENT RULES ===\n")
    return "".join(parts)


def build_tone_voice_context(rules: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not rules or not rules.get("tone_voice"):
        return None

    tv = rules["tone_voice"]
    style = tv.get("overall_style") or {}
    return {
        "tone": style.get("tone") or "conversational",
        "formality": style.get("formality") or "professional",
        "banned_phrases": tv.get("banned_phrases") or [],
        "preferred_phrases": tv.get("preferred_phrases") or [],
        "sentence_variety": tv.get("sentence_variety") or {},
    }


def get_quality_thresholds(rules: Optional[Dict[str, Any]]) -> QualityThresholds:
    return QualityThresholds.from_content_rules(rules)


# =============================================================================
# PIPELINE STEPS
# =============================================================================


def _find_step(rules: Optional[Dict[str, Any]], step_id: str) -> Optional[Dict[str, Any]]:
    for step in (rules or {}).get("pipeline_steps") or []:
        if step.get("id") == step_id:
            return step
    return None


def is_pipeline_step_enabled(rules: Optional[Dict[str, Any]], step_id: str) -> bool:
    """Steps are enabled unless explicitly set ``enabled: false``."""
    step = _find_step(rules, step_id)
    return step is None or step.get("enabled") is not False


def get_pipeline_step_config(rules: Optional[Dict[str, Any]], step_id: str) -> Dict[str, Any]:
    step = _find_step(rules, step_id)
    return dict((step or {}).get("config") or {})


__all__ = [
    "ContentRulesLoader",
    "build_content_rules_prompt_section",
    "build_tone_voice_context",
    "get_quality_thresholds",
    "is_pipeline_step_enabled",
    "get_pipeline_step_config",
]
