"""
GetEducated WordPress shortcodes.

The site renders monetization and links through three shortcodes:

    [su_ge-picks category="" concentration="" level="" ...][/su_ge-picks]
        Degree picks table (sponsored programs first)
    [su_ge-cta type="internal|external|school|degree" url=""]text[/su_ge-cta]
        Tracked link
    [su_ge-qdf type="simple" header=""][/su_ge-qdf]
        Quick Degree Find widget

Anything else that looks like a shortcode is either a retired legacy tag
(``ge_monetization``, ``degree_table``, ...) or something a model made up.
Neither renders on the live site, so both are reported before publishing.

Provides:
    - generate_ge_picks_shortcode() / generate_quick_degree_find_shortcode()
    - create_internal_link_shortcode() / create_external_citation_shortcode()
    - build_cta_url(): Degree listing URL for a taxonomy match
    - parse_shortcode() / extract_shortcodes()
    - insert_shortcode_in_content(): Place a block at a named position
    - extract_all_shortcode_like_tokens() / find_unknown_shortcodes()
    - find_legacy_shortcodes() / validate_no_unknown_shortcodes()
    - check_monetization_compliance()
"""

import re
from typing import Any, Dict, List, Optional


# =============================================================================
# CONSTANTS
# =============================================================================

GE_PICKS = "su_ge-picks"
GE_CTA = "su_ge-cta"
GE_QDF = "su_ge-qdf"

ALLOWED_SHORTCODE_TAGS = [GE_PICKS, GE_CTA, GE_QDF]

LEGACY_SHORTCODE_TAGS = [
    "ge_monetization",
    "degree_table",
    "degree_offer",
    "ge_internal_link",
    "ge_external_cited",
]

MONETIZATION_TAGS = [GE_PICKS, GE_QDF]

CTA_TYPES = ("internal", "external", "school", "degree")

INSERT_POSITIONS = ("after_intro", "mid_content", "pre_conclusion")

# monetization_levels.level_code -> URL segment
LEVEL_SLUGS = {
    1: "associate",
    2: "bachelor",
    3: "bachelor",  # bachelor completion
    4: "master",
    5: "doctorate",
    6: "certificate",
}

_TOKEN_RE = re.compile(r"\[(/?)([\w-]+)([^\]]*)\]")
_ATTR_RE = re.compile(r'([\w-]+)="([^"]*)"')
_PAIRED_RE = re.compile(
    r"\[(su_ge-picks|su_ge-cta|su_ge-qdf)(\s[^\]]*)?\](.*?)\[/\1\]",
    re.IGNORECASE | re.DOTALL,
)
_H2_BLOCK_RE = re.compile(r"<h2[^>]*>.*?</h2>", re.IGNORECASE | re.DOTALL)
_GE_HOST_RE = re.compile(r"https?://(www\.)?geteducated\.com", re.IGNORECASE)


# =============================================================================
# BUILDERS
# =============================================================================


def _slug_segment(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[^a-z0-9-]", "", re.sub(r"\s+", "-", value.lower()))


def build_cta_url(
    degree_level_code: Optional[int] = None,
    category: Optional[Dict[str, Any]] = None,
) -> str:
    """``/online-degrees/<level>/<category>/<concentration>/`` for a match."""
    url = "/online-degrees/"
    level_slug = LEVEL_SLUGS.get(degree_level_code) if degree_level_code else None
    if level_slug:
        url += f"{level_slug}/"
    if category:
        for key in ("category", "concentration"):
            segment = _slug_segment(category.get(key))
            if segment:
                url += f"{segment}/"
    return url


def generate_ge_picks_shortcode(
    category: Any,
    concentration: Any,
    level: Any = None,
    header: str = "GetEducated's Picks",
    cta_button: str = "View More Degrees",
    cta_url: Optional[str] = None,
) -> str:
    if not category or not concentration:
        raise ValueError("category and concentration are required")

    shortcode = f'[{GE_PICKS} category="{category}" concentration="{concentration}"'
    if level:
        shortcode += f' level="{level}"'
    shortcode += f' header="{header}" cta-button="{cta_button}"'
    if cta_url:
        shortcode += f' cta-url="{cta_url}"'
    return shortcode + f"][/{GE_PICKS}]"


def generate_quick_degree_find_shortcode(
    widget_type: str = "simple", header: str = "Browse Now"
) -> str:
    return f'[{GE_QDF} type="{widget_type}" header="{header}"][/{GE_QDF}]'


def generate_cta_shortcode(url: str, anchor_text: str, cta_type: str = "internal") -> str:
    if cta_type not in CTA_TYPES:
        raise ValueError(f"Unknown CTA type: {cta_type}")
    return f'[{GE_CTA} type="{cta_type}" url="{url}"]{anchor_text}[/{GE_CTA}]'


def create_internal_link_shortcode(url: str, anchor_text: str) -> str:
    """Internal CTA; absolute geteducated.com URLs are made relative."""
    return generate_cta_shortcode(_GE_HOST_RE.sub("", url), anchor_text, "internal")


def create_external_citation_shortcode(url: str, anchor_text: str) -> str:
    return generate_cta_shortcode(url, anchor_text, "external")


# =============================================================================
# PARSING
# =============================================================================


def parse_shortcode(raw: str) -> Dict[str, Any]:
    """
    Parse one paired GetEducated shortcode.

    Returns:
        Dict with ``tag``, ``attributes``, ``content`` and ``is_valid``.
        Unrecognised input comes back with ``is_valid`` False.
    """
    result: Dict[str, Any] = {"tag": None, "attributes": {}, "content": "", "is_valid": False}
    if not raw or not isinstance(raw, str):
        return result

    match = _PAIRED_RE.fullmatch(raw.strip())
    if not match:
        return result

    tag = match.group(1).lower()
    attributes = dict(_ATTR_RE.findall(match.group(2) or ""))
    if tag == GE_PICKS:
        is_valid = bool(attributes.get("category") and attributes.get("concentration"))
    elif tag == GE_CTA:
        is_valid = bool(attributes.get("url"))
    else:
        is_valid = True

    result.update(tag=tag, attributes=attributes, content=match.group(3), is_valid=is_valid)
    return result


def extract_shortcodes(content: str) -> List[Dict[str, Any]]:
    """Every valid paired GetEducated shortcode in *content*, in order."""
    if not content:
        return []
    found = []
    for match in _PAIRED_RE.finditer(content):
        parsed = parse_shortcode(match.group(0))
        if parsed["is_valid"]:
            parsed["raw"] = match.group(0)
            parsed["position"] = match.start()
            found.append(parsed)
    return found


# =============================================================================
# PLACEMENT
# =============================================================================


def _insert_at(content: str, index: int, block: str) -> str:
    return content[:index] + block + content[index:]


def insert_shortcode_in_content(
    content: str, shortcode: str, position: str = "after_intro"
) -> str:
    """
    Insert *shortcode*, wrapped in a ``monetization-block`` paragraph.

    Positions:
        after_intro: after the first ``</p>`` (start of content if none)
        mid_content: after the middle ``<h2>`` when there are at least two,
            else after the first ``</p>`` past the halfway point
        pre_conclusion: before the last ``<h2>`` unless it is also the
            first, else after the last ``</p>``

    Unknown positions append to the end.
    """
    if not content or not shortcode:
        return content

    block = f'\n<p class="monetization-block">{shortcode}</p>\n'

    if position == "after_intro":
        first_p = content.find("</p>")
        if first_p != -1:
            return _insert_at(content, first_p + 4, block)
        return block + content

    if position == "mid_content":
        headings = list(_H2_BLOCK_RE.finditer(content))
        if len(headings) >= 2:
            return _insert_at(content, headings[len(headings) // 2].end(), block)
        next_p = content.find("</p>", len(content) // 2)
        if next_p != -1:
            return _insert_at(content, next_p + 4, block)
        return content + block

    if position == "pre_conclusion":
        first_h2 = content.find("<h2")
        last_h2 = content.rfind("<h2")
        if last_h2 > 0 and last_h2 != first_h2:
            return _insert_at(content, last_h2, block)
        last_p = content.rfind("</p>")
        if last_p != -1:
            return _insert_at(content, last_p + 4, block)
        return content + block

    return content + block


# =============================================================================
# VALIDATION
# =============================================================================


def extract_all_shortcode_like_tokens(content: str) -> List[Dict[str, Any]]:
    """Every ``[tag ...]`` or ``[/tag]`` token, known or not."""
    if not content:
        return []
    return [
        {
            "raw": match.group(0),
            "tag": match.group(2).lower(),
            "is_closing": match.group(1) == "/",
            "attributes": match.group(3).strip(),
            "position": match.start(),
        }
        for match in _TOKEN_RE.finditer(content)
    ]


def find_unknown_shortcodes(
    content: str, custom_allowlist: Optional[List[str]] = None
) -> List[Dict[str, Any]]:
    allowed = {t.lower() for t in ALLOWED_SHORTCODE_TAGS + list(custom_allowlist or [])}
    return [t for t in extract_all_shortcode_like_tokens(content) if t["tag"] not in allowed]


def find_legacy_shortcodes(content: str) -> List[Dict[str, Any]]:
    return [
        t for t in extract_all_shortcode_like_tokens(content)
        if t["tag"] in LEGACY_SHORTCODE_TAGS
    ]


def validate_no_unknown_shortcodes(
    content: str,
    custom_allowlist: Optional[List[str]] = None,
    block_on_unknown: bool = True,
) -> Dict[str, Any]:
    """Pre-publish check: report shortcode-like tokens outside the allowlist."""
    unknown = find_unknown_shortcodes(content, custom_allowlist)
    if not unknown:
        return {
            "is_valid": True,
            "unknown_shortcodes": [],
            "unique_tags": [],
            "message": "All shortcodes are valid",
        }

    unique_tags = list(dict.fromkeys(t["tag"] for t in unknown))
    return {
        "is_valid": not block_on_unknown,
        "unknown_shortcodes": unknown,
        "unique_tags": unique_tags,
        "message": f"Found {len(unknown)} unknown shortcode(s): {', '.join(unique_tags)}",
        "details": [
            {
                "tag": t["tag"],
                "raw": t["raw"][:100] + ("..." if len(t["raw"]) > 100 else ""),
                "position": t["position"],
            }
            for t in unknown
        ],
    }


def check_monetization_compliance(content: str) -> Dict[str, Any]:
    """Whether *content* carries at least one monetization shortcode."""
    monetization = [s for s in extract_shortcodes(content) if s["tag"] in MONETIZATION_TAGS]
    legacy = find_legacy_shortcodes(content)
    picks = sum(1 for s in monetization if s["tag"] == GE_PICKS)

    if not monetization:
        recommendation: Optional[str] = (
            "Add at least one monetization shortcode ([su_ge-picks] recommended)"
        )
    elif legacy:
        recommendation = "Replace legacy shortcodes with [su_ge-picks] / [su_ge-cta]"
    else:
        recommendation = None

    return {
        "has_monetization": bool(monetization),
        "monetization_count": len(monetization),
        "shortcodes": monetization,
        "is_compliant": len(monetization) >= 1,
        "breakdown": {
            "ge_picks": picks,
            "quick_degree_find": len(monetization) - picks,
            "legacy": len(legacy),
        },
        "recommendation": recommendation,
    }


__all__ = [
    "GE_PICKS",
    "GE_CTA",
    "GE_QDF",
    "ALLOWED_SHORTCODE_TAGS",
    "LEGACY_SHORTCODE_TAGS",
    "MONETIZATION_TAGS",
    "LEVEL_SLUGS",
    "build_cta_url",
    "generate_ge_picks_shortcode",
    "generate_quick_degree_find_shortcode",
    "generate_cta_shortcode",
    "create_internal_link_shortcode",
    "create_external_citation_shortcode",
    "parse_shortcode",
    "extract_shortcodes",
    "insert_shortcode_in_content",
    "extract_all_shortcode_like_tokens",
    "find_unknown_shortcodes",
    "find_legacy_shortcodes",
    "validate_no_unknown_shortcodes",
    "check_monetization_compliance",
]
