"""
Contributor (byline) assignment.

Only the four approved GetEducated authors may be credited.  Each active,
approved contributor is scored against the idea and the highest score
wins; ties keep database order, so the same idea and content type always
get the same author.

Scoring:
    +50  an expertise area appears in a seed topic or the title
    +30  the contributor writes this content type
    +40  the title hits the author's specialty keywords

Provides:
    - APPROVED_AUTHORS / STYLE_PROXIES / AUTHOR_SPECIALTIES
    - score_contributor(): Score one contributor with reasons
    - assign_contributor(): Pick the best contributor with reasoning
    - build_author_prompt(): Author voice section for AI prompts
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from src.models import Contributor

logger = logging.getLogger(__name__)


# =============================================================================
# APPROVED AUTHORS
# =============================================================================

APPROVED_AUTHORS: List[str] = ["Tony Huffman", "Kayleigh Gilbert", "Sara", "Charity"]

# Internal writing-style references; never used as a byline
STYLE_PROXIES: Dict[str, str] = {
    "Tony Huffman": "Kif",
    "Kayleigh Gilbert": "Alicia Carrasco",
    "Sara": "Daniel Catena",
    "Charity": "Julia Tell",
}

# (title keywords, reason recorded when one matches)
AUTHOR_SPECIALTIES: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "Tony Huffman": (
        ("ranking", "best", "top", "affordable", "cheapest", "cost"),
        "Title contains ranking/cost keywords (Tony specialty)",
    ),
    "Kayleigh Gilbert": (
        ("lcsw", "nursing", "healthcare", "social work", "hospitality", "licensure"),
        "Title contains healthcare/social work keywords (Kayleigh specialty)",
    ),
    "Sara": (
        ("technical", "online college", "what degree", "how to", "guide to", "beginner"),
        "Title contains technical/guide keywords (Sara specialty)",
    ),
    "Charity": (
        ("teaching", "teacher", "education degree", "mat ", "med ", "certification"),
        "Title contains teaching/education keywords (Charity specialty)",
    ),
}

DEFAULT_CONTRIBUTOR: Dict[str, Any] = {
    "name": "Tony Huffman",
    "display_name": "Tony Huffman",
    "style_proxy": "Kif",
    "expertise_areas": ["rankings", "cost-analysis", "online-degrees"],
    "content_types": ["ranking", "analysis", "comparison"],
    "writing_style_profile": {"tone": "authoritative", "complexity_level": "intermediate"},
}


def is_approved_author(name: Optional[str]) -> bool:
    return name in APPROVED_AUTHORS


def get_style_proxy(name: str) -> str:
    return STYLE_PROXIES.get(name, name)


# =============================================================================
# SCORING
# =============================================================================


def score_contributor(
    contributor: Dict[str, Any], idea: Dict[str, Any], content_type: str
) -> Dict[str, Any]:
    """Score *contributor* for *idea*; returns score, reasons and match flags."""
    title = (idea.get("title") or "").lower()
    topics = [t.lower() for t in (idea.get("seed_topics") or [])]
    score = 0
    reasons: List[str] = []

    expertise_match = [
        area
        for area in (contributor.get("expertise_areas") or [])
        if any(area.lower() in topic for topic in topics) or area.lower() in title
    ]
    if expertise_match:
        score += 50
        reasons.append(f"Expertise match: {', '.join(expertise_match)}")

    content_type_match = content_type in (contributor.get("content_types") or [])
    if content_type_match:
        score += 30
        reasons.append(f"Content type match: {content_type}")

    specialty = AUTHOR_SPECIALTIES.get(contributor.get("name"))
    if specialty:
        keywords, reason = specialty
        if any(k in title for k in keywords):
            score += 40
            reasons.append(reason)

    return {
        "contributor": contributor,
        "score": score,
        "reasons": reasons,
        "expertise_match": expertise_match,
        "content_type_match": content_type_match,
    }


async def assign_contributor(
    idea: Dict[str, Any], content_type: str, db: Any = None
) -> Dict[str, Any]:
    """
    Pick the best approved contributor for *idea*.

    Returns a dict with ``contributor``, ``reasoning``, ``score``,
    ``alternatives``, ``expertise_match`` and ``content_type_match``.
    ``contributor`` is ``None`` when no approved author is active; a database
    failure falls back to the default Tony Huffman persona.
    """
    try:
        if db is None:
            from src.database import get_db
            db = await get_db()
        contributors = await db.get_active_contributors()
    except Exception as e:
        logger.error("Contributor assignment error: %s", e)
        return {
            "contributor": dict(DEFAULT_CONTRIBUTOR),
            "reasoning": "Error during assignment - using default (Tony Huffman).",
            "score": 0,
            "alternatives": [],
            "expertise_match": [],
            "content_type_match": False,
        }

    approved = [c for c in contributors if is_approved_author(c.get("name"))]
    if not approved:
        logger.error("No approved contributors found in database")
        return {
            "contributor": None,
            "reasoning": "No approved contributors found in database.",
            "score": 0,
            "alternatives": [],
            "expertise_match": [],
            "content_type_match": False,
        }

    # sorted() is stable: ties keep database order
    scored = sorted(
        (score_contributor(c, idea, content_type) for c in approved),
        key=lambda s: s["score"],
        reverse=True,
    )
    selected = scored[0]
    logger.info(
        "Assigned contributor: %s (score: %d)",
        selected["contributor"].get("name"),
        selected["score"],
    )

    return {
        "contributor": selected["contributor"],
        "reasoning": (
            ". ".join(selected["reasons"])
            if selected["reasons"]
            else "Selected as default - no strong topic matches found."
        ),
        "score": selected["score"],
        "alternatives": [
            {
                "name": s["contributor"].get("name"),
                "score": s["score"],
                "reason": "; ".join(s["reasons"]) or "No specific matches",
            }
            for s in scored[1:]
        ],
        "expertise_match": selected["expertise_match"],
        "content_type_match": selected["content_type_match"],
    }


# =============================================================================
# AUTHOR PROMPT
# =============================================================================


def build_author_prompt(contributor: Optional[Dict[str, Any]]) -> str:
    """Author voice section; a custom system prompt replaces the built one."""
    if not contributor:
        return ""

    profile = Contributor.from_row(contributor)
    if profile.custom_system_prompt:
        return profile.custom_system_prompt

    sections: List[str] = []
    if profile.voice_description:
        sections.append(f"## Author Voice\n{profile.voice_description}")
    if profile.writing_guidelines:
        sections.append(f"## Writing Guidelines\n{profile.writing_guidelines}")
    if profile.signature_phrases:
        sections.append(
            "## Signature Phrases to Incorporate\n"
            f"Naturally use phrases like: {', '.join(profile.signature_phrases)}"
        )
    if profile.phrases_to_avoid:
        sections.append(
            "## Phrases to Avoid\n"
            f"NEVER use these words/phrases: {', '.join(profile.phrases_to_avoid)}"
        )
    if profile.target_audience:
        sections.append(f"## Target Audience\n{profile.target_audience}")
    if profile.preferred_structure:
        sections.append(f"## Preferred Article Structure\n{profile.preferred_structure}")
    if profile.intro_style:
        sections.append(f"## Introduction Style\n{profile.intro_style}")
    if profile.conclusion_style:
        sections.append(f"## Conclusion Style\n{profile.conclusion_style}")
    if profile.seo_approach:
        sections.append(f"## SEO Approach\n{profile.seo_approach}")
    if profile.personality_traits:
        sections.append(
            "## Personality Traits to Reflect\n"
            f"Your writing should come across as: {', '.join(profile.personality_traits)}"
        )

    style = profile.writing_style_profile
    if style.get("tone"):
        sections.append(f"## Tone: {style['tone']}")
    if style.get("style_notes"):
        sections.append(f"## Style Notes: {style['style_notes']}")

    if profile.writing_samples:
        excerpts = "\n\n".join(
            f'Example {i}:\n"{sample}"'
            for i, sample in enumerate(profile.writing_samples, start=1)
        )
        sections.append(
            "## Sample Writing Excerpts\n"
            f"Here are examples of this author's style:\n{excerpts}"
        )

    return "\n\n".join(sections)


__all__ = [
    "APPROVED_AUTHORS",
    "STYLE_PROXIES",
    "AUTHOR_SPECIALTIES",
    "DEFAULT_CONTRIBUTOR",
    "is_approved_author",
    "get_style_proxy",
    "score_contributor",
    "assign_contributor",
    "build_author_prompt",
]
