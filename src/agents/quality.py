"""
Quality scoring and the auto-fix loop.

Provides:
    - QualityContext: Precomputed view of an article passed to every rule
    - QUALITY_RULES: Ordered mapping of issue type -> rule callable
    - ISSUE_PENALTIES: Score penalty per issue type
    - calculate_quality_metrics(): Score an article (100 minus penalties)
    - AUTO_FIX_INSTRUCTIONS / build_auto_fix_prompt(): Claude fix prompt
    - QualityAssuranceLoop: Score -> fix -> rescore until clean or stuck

Every rule has the shape ``rule(ctx) -> List[QualityIssue]``; adding a
check means adding one function and one ``QUALITY_RULES`` entry.  Because
each violated rule only ever subtracts, the score never goes up when more
rules fail.
"""

from __future__ import annotations

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from src.config import QualityThresholds
from src.models import QualityIssue, QualityMetrics
from src.utils import strip_html

logger = logging.getLogger(__name__)


# =============================================================================
# RULE CONTEXT
# =============================================================================

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_INTERNAL_LINK_RE = re.compile(r"<a href", re.IGNORECASE)
_EXTERNAL_LINK_RE = re.compile(r'href="http', re.IGNORECASE)
_H2_RE = re.compile(r"<h2", re.IGNORECASE)


@dataclass
class QualityContext:
    """Article content plus the counts the rules need."""

    content: str
    faqs: List[Dict[str, Any]]
    thresholds: QualityThresholds
    text: str = ""
    word_count: int = 0
    sentence_count: int = 0

    @classmethod
    def build(
        cls,
        content: str,
        faqs: Optional[List[Dict[str, Any]]],
        thresholds: QualityThresholds,
    ) -> QualityContext:
        text = strip_html(content or "")
        words = [w for w in text.split(" ") if w]
        sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
        return cls(
            content=content or "",
            faqs=list(faqs or []),
            thresholds=thresholds,
            text=text,
            word_count=len(words),
            sentence_count=len(sentences),
        )

    @property
    def avg_sentence_length(self) -> float:
        if not self.sentence_count:
            return 0.0
        return self.word_count / self.sentence_count


Rule = Callable[[QualityContext], List[QualityIssue]]


# =============================================================================
# RULES
# =============================================================================


def word_count_low(ctx: QualityContext) -> List[QualityIssue]:
    minimum = ctx.thresholds.min_word_count
    if ctx.word_count < minimum:
        return [QualityIssue("word_count_low", "major", f"{ctx.word_count} < {minimum}")]
    return []


def word_count_high(ctx: QualityContext) -> List[QualityIssue]:
    # min <= max is enforced by QualityThresholds, so this never fires
    # together with word_count_low
    maximum = ctx.thresholds.max_word_count
    if ctx.word_count > maximum:
        return [QualityIssue("word_count_high", "minor", f"{ctx.word_count} > {maximum}")]
    return []


def missing_internal_links(ctx: QualityContext) -> List[QualityIssue]:
    count = len(_INTERNAL_LINK_RE.findall(ctx.content))
    minimum = ctx.thresholds.min_internal_links
    if count < minimum:
        return [QualityIssue("missing_internal_links", "major", f"{count} < {minimum}")]
    return []


def missing_external_links(ctx: QualityContext) -> List[QualityIssue]:
    count = len(_EXTERNAL_LINK_RE.findall(ctx.content))
    minimum = ctx.thresholds.min_external_links
    if count < minimum:
        return [QualityIssue("missing_external_links", "minor", f"{count} < {minimum}")]
    return []


def missing_faqs(ctx: QualityContext) -> List[QualityIssue]:
    minimum = ctx.thresholds.min_faqs
    if len(ctx.faqs) < minimum:
        return [QualityIssue("missing_faqs", "minor", f"{len(ctx.faqs)} < {minimum}")]
    return []


def weak_headings(ctx: QualityContext) -> List[QualityIssue]:
    count = len(_H2_RE.findall(ctx.content))
    minimum = ctx.thresholds.min_h2_headings
    if count < minimum:
        return [QualityIssue("weak_headings", "minor", f"{count} < {minimum}")]
    return []


def poor_readability(ctx: QualityContext) -> List[QualityIssue]:
    maximum = ctx.thresholds.max_avg_sentence_length
    avg = ctx.avg_sentence_length
    if avg > maximum:
        detail = f"avg {round(avg)} words/sentence > {maximum}"
        return [QualityIssue("poor_readability", "minor", detail)]
    return []


QUALITY_RULES: Dict[str, Rule] = {
    "word_count_low": word_count_low,
    "word_count_high": word_count_high,
    "missing_internal_links": missing_internal_links,
    "missing_external_links": missing_external_links,
    "missing_faqs": missing_faqs,
    "weak_headings": weak_headings,
    "poor_readability": poor_readability,
}

ISSUE_PENALTIES: Dict[str, int] = {
    "word_count_low": 15,
    "word_count_high": 5,
    "missing_internal_links": 15,
    "missing_external_links": 10,
    "missing_faqs": 10,
    "weak_headings": 10,
    "poor_readability": 10,
}


# =============================================================================
# SCORING
# =============================================================================


def calculate_quality_metrics(
    content: str,
    faqs: Optional[List[Dict[str, Any]]] = None,
    thresholds: Optional[QualityThresholds] = None,
) -> QualityMetrics:
    """Score *content* against every rule in :data:`QUALITY_RULES`.

    The score starts at 100, loses ``ISSUE_PENALTIES[type]`` per issue and
    is floored at 0.
    """
    thresholds = thresholds or QualityThresholds()
    ctx = QualityContext.build(content, faqs, thresholds)

    issues: List[QualityIssue] = []
    for rule in QUALITY_RULES.values():
        issues.extend(rule(ctx))

    score = 100 - sum(ISSUE_PENALTIES.get(i.type, 0) for i in issues)
    return QualityMetrics(
        score=max(0, score),
        word_count=ctx.word_count,
        issues=issues,
        thresholds_used={
            "min_word_count": thresholds.min_word_count,
            "max_word_count": thresholds.max_word_count,
            "min_internal_links": thresholds.min_internal_links,
            "min_external_links": thresholds.min_external_links,
            "min_faqs": thresholds.min_faqs,
            "min_h2_headings": thresholds.min_h2_headings,
            "max_avg_sentence_length": thresholds.max_avg_sentence_length,
        },
    )


# =============================================================================
# AUTO-FIX PROMPT
# =============================================================================

AUTO_FIX_INSTRUCTIONS: Dict[str, str] = {
    "word_count_low": "Article is too short. Add 200-300 more words with valuable information.",
    "word_count_high": "Article is too long. Condense and remove unnecessary repetition.",
    "missing_internal_links": "Missing internal links. Add 2-3 more relevant internal links if possible.",
    "missing_external_links": "Missing external citations. Add 1-2 authoritative external sources with links.",
    "missing_faqs": "Missing FAQ section. Add {needed} more relevant questions and answers.",
    "weak_headings": "Weak heading structure. Add 2-3 more H2 subheadings to break up content.",
    "poor_readability": "Poor readability. Shorten some long sentences and use simpler language.",
}


def _issue_field(issue: Any, name: str) -> Any:
    if isinstance(issue, dict):
        return issue.get(name)
    return getattr(issue, name, None)


def build_auto_fix_prompt(
    content: str,
    issues: List[Any],
    faqs: Optional[List[Dict[str, Any]]] = None,
    formatting_rules: str = "",
) -> str:
    """Claude prompt listing one instruction line per issue.

    *issues* may be :class:`QualityIssue` objects or plain dicts.
    """
    faq_count = len(faqs or [])
    lines = []
    for issue in issues:
        issue_type = _issue_field(issue, "type")
        template = AUTO_FIX_INSTRUCTIONS.get(issue_type)
        if template is None:
            lines.append(f"- {issue_type}: {_issue_field(issue, 'severity')} issue")
        else:
            lines.append("- " + template.format(needed=max(0, 3 - faq_count)))

    return (
        "You are reviewing an article and need to fix the following quality issues:\n\n"
        "QUALITY ISSUES TO FIX:\n"
        + "\n".join(lines)
        + f"\n\nCURRENT ARTICLE CONTENT:\n{content}\n\n"
        + (f"{formatting_rules}\n\n" if formatting_rules else "")
        + "INSTRUCTIONS:\n"
        "1. Fix ALL the issues listed above\n"
        "2. Maintain the article's overall tone and message\n"
        "3. Keep the existing heading structure unless adding new headings\n"
        "4. For external citations, use real, authoritative sources when possible\n"
        "5. For FAQs, use <h2>Frequently Asked Questions</h2> followed by <h3> "
        "for questions and <p> for answers\n"
        "6. Do NOT remove existing content unless consolidating\n"
        "7. Ensure all HTML tags are properly closed\n\n"
        "OUTPUT ONLY THE COMPLETE FIXED HTML CONTENT (no explanations or commentary)."
    )


# =============================================================================
# QUALITY ASSURANCE LOOP
# =============================================================================


@dataclass
class QualityLoopResult:
    article: Dict[str, Any]
    attempts: int
    final_score: int
    history: List[int] = field(default_factory=list)


class QualityAssuranceLoop:
    """
    Score, auto-fix and rescore an article.

    Each attempt scores the current content.  The loop stops when there are
    no issues, on the last attempt, when a fix does not raise the score, or
    when the fixer raises; in the last three cases the remaining issue types
    become the article's ``risk_flags``.  It never runs more than
    ``max_attempts`` iterations.

    Args:
        fixer: Object with ``async auto_fix_quality_issues(content, issues,
            faqs) -> str`` (normally :class:`~src.tools.claude_client.ClaudeClient`).
        thresholds: Thresholds used for every scoring pass.
    """

    def __init__(self, fixer: Any, thresholds: Optional[QualityThresholds] = None) -> None:
        self.fixer = fixer
        self.thresholds = thresholds or QualityThresholds()

    async def run(
        self,
        article: Dict[str, Any],
        max_attempts: int = 3,
        on_attempt: Optional[Callable[[int, int], Any]] = None,
    ) -> QualityLoopResult:
        current = dict(article)
        history: List[int] = []
        attempt = 0

        while attempt < max_attempts:
            attempt += 1
            if on_attempt:
                notified = on_attempt(attempt, max_attempts)
                if inspect.isawaitable(notified):
                    await notified

            metrics = calculate_quality_metrics(
                current.get("content", ""), current.get("faqs"), self.thresholds
            )
            current["word_count"] = metrics.word_count
            current["quality_score"] = metrics.score
            history.append(metrics.score)
            logger.info(
                "QA attempt %d/%d: score=%d issues=%d",
                attempt,
                max_attempts,
                metrics.score,
                len(metrics.issues),
            )

            if not metrics.issues:
                current["risk_flags"] = []
                break

            if attempt == max_attempts:
                current["risk_flags"] = metrics.issue_types
                break

            try:
                fixed = await self.fixer.auto_fix_quality_issues(
                    current.get("content", ""), metrics.issues, current.get("faqs")
                )
            except Exception as e:
                logger.warning("Auto-fix failed on attempt %d: %s", attempt, e)
                current["risk_flags"] = metrics.issue_types
                break

            current["content"] = fixed
            new_metrics = calculate_quality_metrics(
                fixed, current.get("faqs"), self.thresholds
            )
            logger.info("Auto-fix improvement: %d -> %d", metrics.score, new_metrics.score)

            if new_metrics.score <= metrics.score:
                current["risk_flags"] = metrics.issue_types
                break

        return QualityLoopResult(
            article=current,
            attempts=attempt,
            final_score=current.get("quality_score", 0),
            history=history,
        )


__all__ = [
    "QualityContext",
    "Rule",
    "QUALITY_RULES",
    "ISSUE_PENALTIES",
    "calculate_quality_metrics",
    "AUTO_FIX_INSTRUCTIONS",
    "build_auto_fix_prompt",
    "QualityAssuranceLoop",
    "QualityLoopResult",
]
