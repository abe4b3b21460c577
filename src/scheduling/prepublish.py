"""
Pre-publish checks: link compliance, risk scoring and the publish gate.

GetEducated linking rules:
    - No direct ``.edu`` links (school pages on GetEducated instead)
    - No competitor links
    - External links should point at government / nonprofit sources

Risk levels:
    - LOW: safe for auto-publish (quality >= 85, risk score < 20)
    - MEDIUM: review recommended (quality 70-84 or risk score 20-49)
    - HIGH: review required (quality < 70 or risk score >= 50)
    - CRITICAL: publishing blocked (blocking compliance issues)

Provides:
    - LinkValidator: Per-URL and per-document link rules
    - ISSUE_WEIGHTS: Risk points per issue type
    - assess_risk() / calculate_risk_level()
    - validate_for_publish(): The publish gate (``can_publish``)
    - get_validation_summary()
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from src.agents.contributors import APPROVED_AUTHORS
from src.agents.shortcodes import check_monetization_compliance, validate_no_unknown_shortcodes
from src.config import QualityThresholds
from src.models import RiskLevel
from src.utils import count_words

logger = logging.getLogger(__name__)


# =============================================================================
# LINK RULES
# =============================================================================

BLOCKED_COMPETITORS: List[str] = [
    "onlineu.com",
    "usnews.com",
    "affordablecollegesonline.com",
    "toponlinecollegesusa.com",
    "bestcolleges.com",
    "niche.com",
    "collegeconfidential.com",
    "cappex.com",
    "collegeraptor.com",
    "collegesimply.com",
    "graduateguide.com",
    "gradschools.com",
    "petersons.com",
    "princetonreview.com",
    "collegexpress.com",
]

ALLOWED_EXTERNAL_DOMAINS: List[str] = [
    # Bureau of Labor Statistics
    "bls.gov",
    "stats.bls.gov",
    # Government education sites
    "ed.gov",
    "nces.ed.gov",
    "studentaid.gov",
    "fafsa.gov",
    "collegescorecard.ed.gov",
    # Accreditation bodies
    "chea.org",
    "aacsb.edu",
    "abet.org",
    "cacrep.org",
    "ccne-accreditation.org",
    "cswe.org",
    "ncate.org",
    "teac.org",
    # Nonprofit education organizations
    "collegeboard.org",
    "acenet.edu",
    "aacn.nche.edu",
    "naspa.org",
    # Professional associations
    "apa.org",
    "nasw.org",
    "nursingworld.org",
]

GETEDUCATED_DOMAINS: List[str] = ["geteducated.com", "www.geteducated.com"]

_LINK_RE = re.compile(
    r"""<a\s+[^>]*href=["']([^"']+)["'][^>]*>([^<]*)</a>""", re.IGNORECASE
)
_H2_RE = re.compile(r"<h2", re.IGNORECASE)


def _matches_domain(domain: str, candidates: List[str]) -> Optional[str]:
    for candidate in candidates:
        if domain == candidate or domain.endswith("." + candidate):
            return candidate
    return None


class LinkValidator:
    """
    Classifies links and applies the GetEducated linking rules.

    ``.edu`` and competitor links are blocking; external links outside the
    whitelist are warnings; malformed URLs are errors.

    Args:
        blocked_competitors: Competitor domains (defaults to
            ``BLOCKED_COMPETITORS``).
        allowed_external_domains: External whitelist (defaults to
            ``ALLOWED_EXTERNAL_DOMAINS``).
    """

    def __init__(
        self,
        blocked_competitors: Optional[List[str]] = None,
        allowed_external_domains: Optional[List[str]] = None,
    ) -> None:
        self.blocked_competitors = list(blocked_competitors or BLOCKED_COMPETITORS)
        self.allowed_external_domains = list(
            allowed_external_domains or ALLOWED_EXTERNAL_DOMAINS
        )

    def validate_link(self, url: Optional[str]) -> Dict[str, Any]:
        """
        Returns:
            Dict with ``url``, ``is_valid``, ``type`` (internal / external /
            anchor / invalid), ``issues`` and ``severity`` (none / warning /
            error / blocking).
        """
        result: Dict[str, Any] = {
            "url": url,
            "is_valid": True,
            "type": "unknown",
            "issues": [],
            "severity": "none",
        }

        if not url or not isinstance(url, str):
            result.update(is_valid=False, type="invalid", severity="error")
            result["issues"].append("Empty or invalid URL")
            return result

        if url.startswith("#"):
            result["type"] = "anchor"
            return result

        if url.startswith("/"):
            result["type"] = "internal"
            return result

        parsed = urlparse(url)
        domain = (parsed.hostname or "").lower()
        if not parsed.scheme or not domain:
            result.update(is_valid=False, type="invalid", severity="error")
            result["issues"].append("Invalid URL format")
            return result

        if _matches_domain(domain, GETEDUCATED_DOMAINS):
            result["type"] = "internal"
            return result

        result["type"] = "external"

        if domain.endswith(".edu"):
            result.update(is_valid=False, severity="blocking")
            result["issues"].append(
                "Direct .edu links are not allowed. Use GetEducated school pages instead."
            )
            return result

        competitor = _matches_domain(domain, self.blocked_competitors)
        if competitor:
            result.update(is_valid=False, severity="blocking")
            result["issues"].append(
                f"Competitor link detected: {competitor}. This link is not allowed."
            )
            return result

        if not _matches_domain(domain, self.allowed_external_domains):
            result["severity"] = "warning"
            result["issues"].append(
                f"External link to {domain} is not on the approved list. "
                "Consider using BLS, government, or nonprofit sources."
            )

        return result

    @staticmethod
    def extract_links(content: Optional[str]) -> List[Dict[str, str]]:
        if not content:
            return []
        return [
            {"url": m.group(1), "anchor_text": m.group(2) or "", "full_match": m.group(0)}
            for m in _LINK_RE.finditer(content)
        ]

    def validate_content(self, content: Optional[str]) -> Dict[str, Any]:
        """Validate every ``<a href>`` in *content* and tally the results."""
        results: Dict[str, Any] = {
            "is_compliant": True,
            "total_links": 0,
            "internal_links": 0,
            "external_links": 0,
            "anchor_links": 0,
            "invalid_links": 0,
            "blocking_issues": [],
            "warnings": [],
            "errors": [],
            "links": [],
        }

        links = self.extract_links(content)
        results["total_links"] = len(links)

        for link in links:
            check = self.validate_link(link["url"])
            check["anchor_text"] = link["anchor_text"]
            results["links"].append(check)

            counter = f"{check['type']}_links"
            if counter in results:
                results[counter] += 1

            entry = {
                "url": link["url"],
                "anchor_text": link["anchor_text"],
                "issues": check["issues"],
            }
            if check["severity"] == "blocking":
                results["is_compliant"] = False
                results["blocking_issues"].append(entry)
            elif check["severity"] == "error":
                results["errors"].append(entry)
            elif check["severity"] == "warning":
                results["warnings"].append(entry)

        return results

    @staticmethod
    def can_publish(validation: Dict[str, Any]) -> Dict[str, Any]:
        if not validation["is_compliant"]:
            return {
                "can_publish": False,
                "reason": "Content contains blocked links that must be removed before publishing.",
                "blocking_issues": validation["blocking_issues"],
            }
        return {"can_publish": True, "reason": None, "warnings": validation["warnings"]}

    @staticmethod
    def is_school_page(url: Optional[str]) -> bool:
        return bool(url) and "geteducated.com/online-schools/" in url

    @staticmethod
    def is_degree_page(url: Optional[str]) -> bool:
        return bool(url) and "geteducated.com/online-degrees/" in url

    @staticmethod
    def is_ranking_report(url: Optional[str]) -> bool:
        return bool(url) and "geteducated.com/online-college-ratings-and-rankings/" in url

    @staticmethod
    def get_school_page_url(school_name: Optional[str]) -> str:
        if not school_name:
            return ""
        slug = re.sub(r"[^a-z0-9\s-]", "", school_name.lower())
        slug = re.sub(r"-+", "-", re.sub(r"\s+", "-", slug))
        return f"https://www.geteducated.com/online-schools/{slug}/"


# =============================================================================
# RISK ASSESSMENT
# =============================================================================

RISK_QUALITY_LOW: int = 85
RISK_QUALITY_MEDIUM: int = 70

ISSUE_WEIGHTS: Dict[str, int] = {
    # Blocking
    "blocked_link": 100,
    "unauthorized_author": 100,
    "missing_shortcode": 80,
    # Major
    "missing_internal_links": 25,
    "missing_external_links": 20,
    "word_count_low": 20,
    "poor_readability": 15,
    "weak_headings": 15,
    "missing_faqs": 10,
    # Minor
    "word_count_high": 5,
    "external_link_warning": 5,
    "missing_bls_citation": 10,
    "keyword_density_issue": 5,
}

DEFAULT_ISSUE_WEIGHT: int = 10

ISSUE_MESSAGES: Dict[str, str] = {
    "blocked_link": "Contains blocked links (competitors or .edu)",
    "unauthorized_author": "Author is not on the approved list",
    "missing_shortcode": "Monetization links missing required shortcodes",
    "missing_internal_links": "Not enough internal links to GetEducated content",
    "missing_external_links": "Missing authoritative external citations",
    "word_count_low": "Article is below minimum word count (1500 words)",
    "word_count_high": "Article exceeds recommended word count (2500 words)",
    "poor_readability": "Readability score needs improvement",
    "weak_headings": "Heading structure needs improvement",
    "missing_faqs": "Missing FAQ section (minimum 3 questions)",
    "external_link_warning": "External link not on approved whitelist",
    "missing_bls_citation": "Missing BLS citation for salary/career data",
    "keyword_density_issue": "Focus keyword density outside optimal range",
}


def _author_name(article: Dict[str, Any]) -> Optional[str]:
    contributor = article.get("article_contributors") or {}
    return article.get("contributor_name") or contributor.get("name")


def assess_risk(
    article: Dict[str, Any],
    check_links: bool = True,
    check_author: bool = True,
    approved_authors: Optional[List[str]] = None,
    link_validator: Optional[LinkValidator] = None,
) -> Dict[str, Any]:
    """
    Score an article's publishing risk.

    Stored ``risk_flags`` add their ``ISSUE_WEIGHTS`` (10 when unknown);
    blocked links, link warnings, fewer than three internal links and an
    unapproved author add theirs.  Any blocking issue makes the level
    CRITICAL; otherwise the score and the quality score decide.

    Returns:
        Dict with ``risk_level`` (:class:`RiskLevel`), ``risk_score``,
        ``quality_score``, ``issues``, ``blocking_issues``, ``warnings``,
        ``can_auto_publish``, ``requires_review``, ``publish_blocked`` and
        ``summary``.
    """
    approved = approved_authors if approved_authors is not None else APPROVED_AUTHORS
    quality_score = article.get("quality_score") or 0
    score = 0
    issues: List[Dict[str, Any]] = []
    blocking: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []

    for flag in article.get("risk_flags") or []:
        weight = ISSUE_WEIGHTS.get(flag, DEFAULT_ISSUE_WEIGHT)
        score += weight
        issues.append({
            "type": flag,
            "severity": "major" if weight >= 20 else "minor",
            "message": ISSUE_MESSAGES.get(flag, flag),
        })

    content = article.get("content")
    if check_links and content:
        links = (link_validator or LinkValidator()).validate_content(content)
        if not links["is_compliant"]:
            blocking.extend(links["blocking_issues"])
            score += ISSUE_WEIGHTS["blocked_link"] * len(links["blocking_issues"])
        if links["warnings"]:
            warnings.extend(links["warnings"])
            score += ISSUE_WEIGHTS["external_link_warning"] * len(links["warnings"])
        if links["internal_links"] < 3:
            issues.append({
                "type": "missing_internal_links",
                "severity": "major",
                "message": f"Only {links['internal_links']} internal links found (minimum: 3)",
            })
            score += ISSUE_WEIGHTS["missing_internal_links"]

    author = article.get("contributor_name")
    if check_author and author and author not in approved:
        blocking.append({
            "type": "unauthorized_author",
            "message": f'Author "{author}" is not an approved GetEducated author',
        })
        score += ISSUE_WEIGHTS["unauthorized_author"]

    if blocking:
        level = RiskLevel.CRITICAL
    elif score >= 50 or quality_score < RISK_QUALITY_MEDIUM:
        level = RiskLevel.HIGH
    elif score >= 20 or quality_score < RISK_QUALITY_LOW:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    if level == RiskLevel.CRITICAL:
        summary = f"Publishing blocked: {len(blocking)} critical issue(s) must be resolved."
    elif level == RiskLevel.HIGH:
        summary = (
            f"High risk: {len(issues)} issue(s) require attention. "
            f"Quality score: {quality_score}."
        )
    elif level == RiskLevel.MEDIUM:
        summary = (
            f"Review recommended: {len(issues)} minor issue(s). "
            f"Quality score: {quality_score}."
        )
    else:
        summary = f"Ready for publishing. Quality score: {quality_score}."

    return {
        "risk_level": level,
        "risk_score": score,
        "quality_score": quality_score,
        "issues": issues,
        "blocking_issues": blocking,
        "warnings": warnings,
        "can_auto_publish": level == RiskLevel.LOW,
        "requires_review": level != RiskLevel.LOW,
        "publish_blocked": level == RiskLevel.CRITICAL,
        "summary": summary,
    }


def calculate_risk_level(
    article: Dict[str, Any],
    validation: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> RiskLevel:
    """
    Risk level only.

    A *validation* result (from :meth:`LinkValidator.validate_content` or
    :func:`validate_for_publish`) carrying blocking issues forces CRITICAL;
    *options* are passed to :func:`assess_risk`.
    """
    if validation and validation.get("blocking_issues"):
        return RiskLevel.CRITICAL
    return assess_risk(article, **options)["risk_level"]


# =============================================================================
# PUBLISH GATE
# =============================================================================

CHECK_NAMES = ["author", "links", "risk", "quality", "content", "shortcodes"]


def validate_for_publish(
    article: Dict[str, Any],
    require_min_quality_score: Optional[int] = None,
    block_high_risk: bool = True,
    enforce_approved_authors: bool = True,
    check_links: bool = True,
    require_monetization: bool = False,
    block_unknown_shortcodes: bool = True,
    thresholds: Optional[QualityThresholds] = None,
    link_validator: Optional[LinkValidator] = None,
) -> Dict[str, Any]:
    """
    Run every pre-publish check on *article*.

    Blocking: missing or unapproved author, blocked links, CRITICAL risk,
    unknown shortcodes (when *block_unknown_shortcodes*) and missing
    monetization (when *require_monetization*).  Low quality and content
    shortfalls (word count, FAQs, H2 headings) are warnings.

    Returns:
        Dict with ``can_publish`` (no blocking issues), ``blocking_issues``,
        ``warnings``, ``risk_level`` (value string), ``quality_score`` and
        per-check ``checks`` entries of ``{"passed", "message"}``.
    """
    thresholds = thresholds or QualityThresholds()
    min_quality = (
        require_min_quality_score
        if require_min_quality_score is not None
        else thresholds.min_score_to_publish
    )
    validator = link_validator or LinkValidator()
    content = article.get("content") or ""

    blocking: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    checks = {name: {"passed": False, "message": ""} for name in CHECK_NAMES}
    quality_score = article.get("quality_score") or 0

    # ---- Author ----------------------------------------------------------
    author = _author_name(article)
    if not enforce_approved_authors:
        checks["author"] = {"passed": True, "message": "Author check disabled"}
    elif not author:
        checks["author"]["message"] = "No author assigned"
        blocking.append({
            "type": "no_author",
            "message": "Article must have an assigned author before publishing",
        })
    elif author not in APPROVED_AUTHORS:
        checks["author"]["message"] = f'"{author}" is not an approved author'
        blocking.append({
            "type": "unauthorized_author",
            "message": (
                f'Author "{author}" is not approved. '
                f"Only {', '.join(APPROVED_AUTHORS)} are allowed."
            ),
        })
    else:
        checks["author"] = {"passed": True, "message": f"{author} (approved)"}

    # ---- Links -----------------------------------------------------------
    if check_links and content:
        links = validator.validate_content(content)
        gate = validator.can_publish(links)
        if gate["can_publish"]:
            checks["links"] = {
                "passed": True,
                "message": f"{links['internal_links']} internal, {links['external_links']} external",
            }
        else:
            checks["links"]["message"] = gate["reason"]
            blocking.extend(
                {"type": "blocked_link", "message": issue["issues"][0], "url": issue["url"]}
                for issue in links["blocking_issues"]
            )
        warnings.extend(
            {"type": "link_warning", "message": w["issues"][0], "url": w["url"]}
            for w in links["warnings"]
        )
    else:
        checks["links"] = {"passed": True, "message": "Link check skipped"}

    # ---- Risk ------------------------------------------------------------
    risk_level = calculate_risk_level(article, check_links=False, check_author=False)
    if block_high_risk and risk_level >= RiskLevel.HIGH:
        checks["risk"]["message"] = f"{risk_level.value} risk requires manual review"
        if risk_level == RiskLevel.CRITICAL:
            blocking.append({
                "type": "critical_risk",
                "message": "Article has CRITICAL risk level and cannot be published",
            })
    else:
        checks["risk"] = {"passed": True, "message": f"Risk level: {risk_level.value}"}

    # ---- Quality ---------------------------------------------------------
    if quality_score >= min_quality:
        checks["quality"] = {"passed": True, "message": f"Score: {quality_score}/100"}
    else:
        checks["quality"]["message"] = f"Score {quality_score} below minimum {min_quality}"
        warnings.append({
            "type": "low_quality_score",
            "message": (
                f"Quality score ({quality_score}) is below the recommended "
                f"minimum ({min_quality})"
            ),
        })

    # ---- Content requirements --------------------------------------------
    content_issues: List[str] = []
    if count_words(content) < thresholds.min_word_count:
        content_issues.append(f"Word count below {thresholds.min_word_count}")
    if len(article.get("faqs") or []) < thresholds.min_faqs:
        content_issues.append(f"Fewer than {thresholds.min_faqs} FAQ items")
    if len(_H2_RE.findall(content)) < thresholds.min_h2_headings:
        content_issues.append(f"Fewer than {thresholds.min_h2_headings} H2 headings")

    if content_issues:
        checks["content"]["message"] = ", ".join(content_issues)
        warnings.extend({"type": "content_issue", "message": m} for m in content_issues)
    else:
        checks["content"] = {"passed": True, "message": "All content requirements met"}

    # ---- Shortcodes ------------------------------------------------------
    shortcode_problems: List[str] = []
    if block_unknown_shortcodes:
        unknown = validate_no_unknown_shortcodes(content)
        if not unknown["is_valid"]:
            shortcode_problems.append(unknown["message"])
            blocking.append({
                "type": "unknown_shortcode",
                "message": unknown["message"],
                "tags": unknown["unique_tags"],
            })
    if require_monetization:
        compliance = check_monetization_compliance(content)
        if not compliance["is_compliant"]:
            shortcode_problems.append(compliance["recommendation"])
            blocking.append({
                "type": "missing_monetization",
                "message": compliance["recommendation"],
            })

    if shortcode_problems:
        checks["shortcodes"]["message"] = "; ".join(shortcode_problems)
    else:
        checks["shortcodes"] = {"passed": True, "message": "Shortcodes valid"}

    return {
        "can_publish": not blocking,
        "blocking_issues": blocking,
        "warnings": warnings,
        "risk_level": risk_level.value,
        "quality_score": quality_score,
        "checks": checks,
    }


def get_validation_summary(result: Dict[str, Any]) -> Dict[str, Any]:
    checks = result["checks"]
    passed = sum(1 for c in checks.values() if c["passed"])
    return {
        "passed_checks": passed,
        "total_checks": len(checks),
        "percentage": round(passed / len(checks) * 100) if checks else 100,
        "status": "ready" if result["can_publish"] else "blocked",
        "status_message": (
            "Ready to publish"
            if result["can_publish"]
            else f"{len(result['blocking_issues'])} blocking issue(s)"
        ),
    }


__all__ = [
    "BLOCKED_COMPETITORS",
    "ALLOWED_EXTERNAL_DOMAINS",
    "GETEDUCATED_DOMAINS",
    "LinkValidator",
    "ISSUE_WEIGHTS",
    "ISSUE_MESSAGES",
    "assess_risk",
    "calculate_risk_level",
    "validate_for_publish",
    "get_validation_summary",
]
