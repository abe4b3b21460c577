"""
LangGraph Orchestrator -- the article generation pipeline.

Turns one approved content idea into a finished article dict by running
every stage in a directed graph with error-aware routing and per-node
timeouts.

Flow
----
load_rules -> cost_data -> assign_contributor -> draft -> humanize
    -> internal_links -> monetize -> validate -> quality -> finalize -> END

Any node may divert to ``handle_error`` (-> END).

Key design decisions
--------------------
- **Pure functions**: Every node returns a dict; no direct state mutation.
- **Error routing**: ``@with_error_handling`` converts exceptions to
  ``{"critical_error": ...}`` and every edge checks for that key.  The
  original exception is kept in ``error_exception`` so
  ``GenerationService.generate_article_complete`` can re-raise it.
- **Timeouts**: ``@with_timeout`` wraps async calls; values come from
  ``Settings.node_timeouts`` (``NODE_TIMEOUT_<NAME>`` env overrides).
- **Runtime**: clients, callbacks and the cancellable task handle travel in
  ``state["runtime"]`` so nodes stay module-level functions.
- **Cancellation**: the task's cancel flag is checked before every node.

Provides:
    - with_error_handling / with_timeout: Node decorators
    - GenerationRuntime: Per-run collaborators and progress reporting
    - create_generation_pipeline(): Compiled StateGraph
    - initialize_generation_state(): Fully defaulted GenerationState
    - GenerationTask: Cancellable handle for a background batch
    - GenerationService: Public entry point (single article, batch, settings)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from langgraph.graph import StateGraph, END

from src.agents.content_rules import (
    ContentRulesLoader,
    build_content_rules_prompt_section,
    build_tone_voice_context,
    get_quality_thresholds,
    is_pipeline_step_enabled,
)
from src.agents.content_validator import ContentValidator, get_summary, get_validator
from src.agents.contributors import assign_contributor, build_author_prompt
from src.agents.cost_data import get_cost_data_context
from src.agents.formatting import ensure_proper_html_formatting
from src.agents.humanizer import HumanizerChain, build_default_chain
from src.agents.internal_linker import (
    add_internal_links,
    find_inserted_links,
    get_relevant_site_articles,
    increment_article_link_counts,
)
from src.agents.monetization import (
    SLOT_POSITIONS,
    MonetizationEngine,
    MonetizationOutput,
    MonetizationValidator,
)
from src.agents.quality import QualityAssuranceLoop, calculate_quality_metrics
from src.agents.reasoning import AIReasoningLog
from src.agents.shortcodes import insert_shortcode_in_content
from src.config import HUMANIZATION_PROVIDERS, Settings, get_settings
from src.database import get_db
from src.exceptions import (
    ContentValidationError,
    DraftValidationError,
    GenerationCancelledError,
    GenerationError,
    MonetizationError,
    NodeTimeoutError,
    PipelineBusyError,
    ValidationError,
)
from src.logging import PipelineRunLogger, is_logger_initialized
from src.models import (
    ArticleStatus,
    GenerationStage,
    GenerationState,
    IdeaStatus,
    ProgressUpdate,
)
from src.tools.claude_client import ClaudeClient
from src.tools.grok_client import GrokClient
from src.tools.stealthgpt_client import StealthGptClient
from src.utils import count_words, generate_id, generate_slug, utc_now

logger = logging.getLogger("Orchestrator")

ProgressCallback = Callable[[ProgressUpdate], Union[None, Awaitable[None]]]


# =============================================================================
# CONSTANTS
# =============================================================================

MIN_LINK_CANDIDATES: int = 3
"""Internal linking is skipped when fewer candidate articles are found."""

MAX_LINKS_ADDED: int = 5

DRAFT_RETRY_EXTRA_WORDS: int = 200
"""Added to the target on the single draft regeneration attempt."""

BATCH_TARGET_WORD_COUNT: int = 2000


# =============================================================================
# DECORATORS
# =============================================================================


def with_error_handling(node_name: str = None):
    """Convert unhandled node exceptions into ``critical_error`` state updates.

    The LangGraph conditional edges check ``state.get("critical_error")`` and
    route to ``handle_error`` when present.  This decorator ensures that no
    exception silently kills the graph.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            name = node_name or func.__name__
            node_logger = logging.getLogger(f"Node.{name}")
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                error_msg = f"{type(exc).__name__}: {exc}"
                node_logger.error(
                    "[%s] Exception caught, routing to error handler: %s",
                    name,
                    error_msg,
                )
                return {
                    "critical_error": error_msg,
                    "error_stage": name,
                    "error_exception": exc,
                }

        return wrapper

    return decorator


def with_timeout(timeout_seconds: int = None, node_name: str = None):
    """Add ``asyncio.wait_for`` timeout to an async node function.

    Resolution order for the actual timeout value:
    1. Explicit *timeout_seconds* parameter.
    2. ``Settings.node_timeouts[node_name]`` (or func name with ``_node``
       stripped).
    3. 60 seconds as a last resort.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            actual = timeout_seconds
            if actual is None:
                name = node_name or func.__name__.replace("_node", "")
                actual = get_settings().node_timeouts.get(name, 60)
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=actual)
            except asyncio.TimeoutError:
                name = node_name or func.__name__
                raise NodeTimeoutError(name, actual)

        return wrapper

    return decorator


async def notify_progress(callback: Optional[ProgressCallback], update: ProgressUpdate) -> None:
    """Call a sync or async progress callback."""
    if callback is None:
        return
    result = callback(update)
    if inspect.isawaitable(result):
        await result


# =============================================================================
# RUNTIME
# =============================================================================


@dataclass
class GenerationRuntime:
    """Collaborators shared by every node of one generation run."""

    grok: Any
    claude: Any
    humanizer: HumanizerChain
    monetization_engine: MonetizationEngine
    monetization_validator: MonetizationValidator
    rules_loader: ContentRulesLoader
    validator: ContentValidator
    stealth_settings: Any = None
    db: Any = None
    on_progress: Optional[ProgressCallback] = None
    task: Optional[GenerationTask] = None
    reasoning: AIReasoningLog = field(default_factory=AIReasoningLog)
    run_logger: Optional[PipelineRunLogger] = None

    def raise_if_cancelled(self) -> None:
        if self.task is not None:
            self.task.raise_if_cancelled()

    async def report(
        self,
        message: str,
        percentage: int,
        stage: Optional[GenerationStage] = None,
    ) -> None:
        logger.info("[%d%%] %s", percentage, message)
        await notify_progress(
            self.on_progress,
            ProgressUpdate(
                message=message,
                percentage=percentage,
                stage=stage.value if stage else None,
                timestamp=utc_now(),
            ),
        )

    async def begin(
        self,
        node: str,
        message: str,
        percentage: int,
        stage: GenerationStage,
    ) -> None:
        """Cancellation check, stage timing and progress for a node start."""
        self.raise_if_cancelled()
        if self.run_logger is not None:
            if self.run_logger.current_stage:
                await self.run_logger.end_stage("success")
            await self.run_logger.start_stage(node, percentage)
        await self.report(message, percentage, stage)


# =============================================================================
# NODE FUNCTIONS
#
# Each node receives the full ``GenerationState`` and returns a partial
# update dict.  The ``@with_error_handling`` decorator catches exceptions and
# converts them into ``critical_error`` entries for the router.
# =============================================================================


@with_error_handling(node_name="load_rules")
@with_timeout(node_name="load_rules")
async def load_rules_node(state: GenerationState) -> Dict[str, Any]:
    """Load the content rules and derive thresholds and prompt sections."""
    runtime: GenerationRuntime = state["runtime"]
    idea = state["idea"]
    options = state["options"]

    runtime.reasoning.log(
        "topic_interpretation",
        input_idea=idea.get("title"),
        description=idea.get("description"),
        content_type=options["content_type"],
        target_word_count=options["target_word_count"],
        reasoning=(
            f'Processing idea "{idea.get("title")}" as {options["content_type"]} '
            f'with {options["target_word_count"]} word target.'
        ),
    )

    await runtime.begin(
        "load_rules", "Loading content rules configuration...", 2, GenerationStage.DRAFTING
    )
    rules = await runtime.rules_loader.load()
    thresholds = get_quality_thresholds(rules)
    logger.info("Content rules loaded (version %s)", rules.get("version", 0))

    return {
        "stage": "load_rules",
        "content_rules": rules,
        "thresholds": thresholds,
        "rules_prompt": build_content_rules_prompt_section(rules),
        "tone_voice": build_tone_voice_context(rules),
        "target_word_count": options["target_word_count"] or thresholds.target_word_count,
    }


@with_error_handling(node_name="cost_data")
@with_timeout(node_name="cost_data")
async def cost_data_node(state: GenerationState) -> Dict[str, Any]:
    """Fetch ranking-report cost data for the draft prompt."""
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "cost_data", "Fetching cost data from ranking reports...", 5, GenerationStage.DRAFTING
    )

    context = await get_cost_data_context(state["idea"], db=runtime.db)
    entries = context.get("cost_data") or []
    logger.info("Cost data found: %s", f"{len(entries)} entries" if context["has_data"] else "none")

    if context["has_data"]:
        runtime.reasoning.add_data_source(
            "ranking_reports",
            entries_found=len(entries),
            degree_level=context.get("degree_level"),
        )
        runtime.reasoning.log(
            "cost_data",
            has_data=True,
            entry_count=len(entries),
            reasoning=f"Found {len(entries)} cost data entries from ranking reports.",
        )
    else:
        runtime.reasoning.warn(
            "no_cost_data",
            "No cost data found for this topic. Article may lack specific pricing information.",
            "medium",
        )

    return {"stage": "cost_data", "cost_context": context}


@with_error_handling(node_name="assign_contributor")
@with_timeout(node_name="assign_contributor")
async def assign_contributor_node(state: GenerationState) -> Dict[str, Any]:
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "assign_contributor", "Auto-assigning contributor...", 10, GenerationStage.DRAFTING
    )

    if not state["options"]["auto_assign_contributor"]:
        return {"stage": "assign_contributor", "contributor": None, "author_prompt": ""}

    assignment = await assign_contributor(
        state["idea"], state["options"]["content_type"], db=runtime.db
    )
    contributor = assignment["contributor"]
    runtime.reasoning.log(
        "contributor_selection",
        selected=contributor.get("name") if contributor else "None",
        score=assignment["score"],
        reasoning=assignment["reasoning"] or "No reasoning available",
        alternatives_considered=assignment["alternatives"],
        expertise_match=assignment["expertise_match"],
        content_type_match=assignment["content_type_match"],
    )

    author_prompt = build_author_prompt(contributor)
    if author_prompt:
        logger.info(
            "Using author profile for %s (%d chars)", contributor.get("name"), len(author_prompt)
        )

    return {
        "stage": "assign_contributor",
        "contributor": contributor,
        "author_prompt": author_prompt,
    }


@with_error_handling(node_name="draft")
@with_timeout(node_name="draft")
async def draft_node(state: GenerationState) -> Dict[str, Any]:
    """Grok draft, HTML normalisation and draft validation with one retry.

    Raises:
        GenerationError: The draft step is disabled in the content rules.
        DraftValidationError: The regenerated draft is still blocked.
    """
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "draft", "Generating draft with Grok AI...", 20, GenerationStage.DRAFTING
    )

    if not is_pipeline_step_enabled(state["content_rules"], "draft"):
        raise GenerationError("Draft generation step is disabled in pipeline configuration")

    idea = state["idea"]
    options = state["options"]
    contributor = state.get("contributor") or {}
    draft_kwargs = {
        "content_type": options["content_type"],
        "cost_data_context": (state.get("cost_context") or {}).get("prompt_text"),
        "author_profile": state.get("author_prompt") or None,
        "author_name": contributor.get("name"),
    }

    draft = await runtime.grok.generate_draft(
        idea,
        target_word_count=state["target_word_count"],
        content_rules_context=state.get("rules_prompt") or None,
        **draft_kwargs,
    )
    draft["content"] = ensure_proper_html_formatting(draft.get("content") or "")

    await runtime.report("Validating draft content...", 30, GenerationStage.DRAFTING)

    target = options["target_word_count"]
    check = await runtime.validator.validate(
        draft["content"],
        check_statistics=False,
        check_legislation=False,
        check_school_names=False,
        check_internal_links=False,
        target_word_count=target,
        faqs=draft.get("faqs"),
    )

    retried = False
    if check.is_blocked:
        logger.error(
            "Draft validation BLOCKED: %s", [i.message for i in check.blocking_issues]
        )
        logger.info("Attempting to regenerate draft...")
        retry = await runtime.grok.generate_draft(
            idea,
            target_word_count=target + DRAFT_RETRY_EXTRA_WORDS,
            content_rules_context=state.get("rules_prompt") or None,
            **draft_kwargs,
        )
        retry["content"] = ensure_proper_html_formatting(retry.get("content") or "")
        retry_check = await runtime.validator.validate(
            retry["content"],
            check_school_names=False,
            check_internal_links=False,
            target_word_count=target,
            faqs=retry.get("faqs"),
        )
        if retry_check.is_blocked:
            raise DraftValidationError([i.to_dict() for i in retry_check.blocking_issues])

        draft.update(retry)
        retried = True
        logger.info("Retry draft passed validation")
    else:
        logger.info("Draft validation passed: %s", get_summary(check))

    faq_count = len(draft.get("faqs") or [])
    runtime.reasoning.log(
        "draft_generation",
        model=getattr(runtime.grok, "model", None),
        title_generated=draft.get("title"),
        word_count_estimate=count_words(draft["content"]),
        faqs_generated=faq_count,
        reasoning=(
            "Draft generated on retry after initial validation failure."
            if retried
            else (
                f'Draft generated successfully with Grok AI. Title: "{draft.get("title")}". '
                f"Contains {faq_count} FAQs."
            )
        ),
        retry_attempted=retried,
    )

    return {"stage": "draft", "draft": draft, "content": draft["content"]}


@with_error_handling(node_name="humanize")
@with_timeout(node_name="humanize")
async def humanize_node(state: GenerationState) -> Dict[str, Any]:
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "humanize", "Humanizing content with StealthGPT...", 40, GenerationStage.HUMANIZING
    )

    content = state["draft"]["content"]
    if not is_pipeline_step_enabled(state["content_rules"], "humanize"):
        logger.info("Humanization step disabled in pipeline config - skipping")
        return {"stage": "humanize", "content": content}

    result = await runtime.humanizer.humanize(
        content,
        contributor=state.get("contributor"),
        author_prompt=state.get("author_prompt") or None,
        tone_voice=state.get("tone_voice"),
    )

    settings = runtime.stealth_settings
    runtime.reasoning.log(
        "humanization",
        provider=result.provider,
        mode=getattr(settings, "mode", "default"),
        tone=getattr(settings, "tone", "default"),
        fallbacks=result.failures,
        skipped=result.skipped,
        changes_made="Content processed for natural language patterns and AI detection bypass",
    )

    return {"stage": "humanize", "content": result.content}


@with_error_handling(node_name="internal_links")
@with_timeout(node_name="internal_links")
async def internal_links_node(state: GenerationState) -> Dict[str, Any]:
    """Weave links to catalog articles into the content.

    Needs at least ``MIN_LINK_CANDIDATES`` candidates; lookup and link
    failures leave the content unchanged.
    """
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "internal_links", "Adding internal links...", 55, GenerationStage.LINKING
    )

    content = state["content"]
    if not is_pipeline_step_enabled(state["content_rules"], "internal_links"):
        logger.info("Internal linking step disabled in pipeline config - skipping")
        runtime.reasoning.log(
            "internal_links",
            link_count=0,
            reasoning="Internal linking step was disabled in pipeline configuration.",
        )
        return {"stage": "internal_links", "internal_links_added": 0}

    if not state["options"]["add_internal_links"]:
        return {"stage": "internal_links", "internal_links_added": 0}

    title = state["draft"].get("title") or state["idea"].get("title") or ""
    candidates = await get_relevant_site_articles(title, 30, db=runtime.db)

    inserted: List[str] = []
    if len(candidates) >= MIN_LINK_CANDIDATES:
        linked = await add_internal_links(
            runtime.claude, content, candidates[:MAX_LINKS_ADDED]
        )
        inserted = find_inserted_links(content, linked)
        content = linked
        if inserted:
            try:
                await increment_article_link_counts(inserted, db=runtime.db)
            except Exception as e:
                logger.warning("Could not update article link counts: %s", e)

    if len(candidates) < MIN_LINK_CANDIDATES:
        reasoning = (
            f"Insufficient relevant articles found ({len(candidates)}). "
            f"Need at least {MIN_LINK_CANDIDATES} for internal linking."
        )
    elif inserted:
        reasoning = (
            f"Inserted {len(inserted)} links from {len(candidates)} candidates "
            "for contextual internal linking."
        )
    else:
        reasoning = (
            f"No internal links were inserted from {len(candidates)} candidates."
        )

    titles = {a.get("url"): a.get("title") for a in candidates}
    runtime.reasoning.log(
        "internal_links",
        link_count=len(inserted),
        candidates_found=len(candidates),
        reasoning=reasoning,
        selection_reasoning=[
            {
                "url": url,
                "title": titles.get(url),
                "reason": f'Matched based on topic relevance to "{title}"',
            }
            for url in inserted
        ],
    )

    return {"stage": "internal_links", "content": content, "internal_links_added": len(inserted)}


def _monetization_summary(output: MonetizationOutput, match: Any) -> Dict[str, Any]:
    return {
        "category_id": output.category_id,
        "concentration_id": output.concentration_id,
        "degree_level_code": output.degree_level_code,
        "confidence": match.confidence,
        "total_programs_selected": output.total_programs_selected,
        "sponsored_count": output.sponsored_count,
        "slots": [
            {
                "name": slot.name,
                "type": slot.type,
                "shortcode": slot.shortcode,
                "program_count": slot.program_count,
                "has_sponsored": slot.has_sponsored,
            }
            for slot in output.slots
        ],
    }


@with_error_handling(node_name="monetize")
@with_timeout(node_name="monetize")
async def monetize_node(state: GenerationState) -> Dict[str, Any]:
    """Insert monetization shortcodes; any failure becomes a reasoning warning."""
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "monetize", "Adding monetization shortcodes...", 62, GenerationStage.LINKING
    )

    content = state["content"]
    if not is_pipeline_step_enabled(state["content_rules"], "monetization"):
        logger.info("Monetization step disabled in pipeline config - skipping")
        return {"stage": "monetize", "monetization": None}

    idea = state["idea"]
    topic = idea.get("title") or state["draft"].get("title") or ""
    summary: Optional[Dict[str, Any]] = None

    try:
        match = await runtime.monetization_engine.match_topic_to_category(
            topic, (state.get("cost_context") or {}).get("degree_level")
        )

        output: Optional[MonetizationOutput] = None
        if match.matched:
            logger.info(
                "Matched monetization: category=%s, concentration=%s, confidence=%s",
                match.category_id,
                match.concentration_id,
                match.confidence,
            )
            output = await runtime.monetization_engine.generate_monetization(
                match.category_id,
                match.concentration_id,
                match.degree_level_code,
                article_type=state["options"]["content_type"] or "default",
                article_id=idea.get("id"),
            )
            if not output.success:
                raise MonetizationError(output.error or "Monetization generation failed")

            for slot in output.slots:
                content = insert_shortcode_in_content(
                    content, slot.shortcode, SLOT_POSITIONS.get(slot.name, "after_intro")
                )
                logger.info(
                    "Inserted %s shortcode at %s (%d programs, sponsored: %s)",
                    slot.type,
                    slot.name,
                    slot.program_count,
                    slot.has_sponsored,
                )
            if not output.slots:
                logger.warning("Monetization generation returned no slots")
        else:
            logger.warning("Could not match monetization category: %s", match.error)

        check = runtime.monetization_validator.validate(output, content)
        if check["blocking_issues"]:
            logger.error("Monetization validation blocking issues: %s", check["blocking_issues"])
        elif check["warnings"]:
            logger.warning(
                "Monetization validation warnings: %s",
                [w["message"] for w in check["warnings"]],
            )

        if output is not None:
            summary = _monetization_summary(output, match)
            summary["validation"] = check
            runtime.reasoning.log(
                "monetization_category",
                selected={
                    "category": match.category_id,
                    "concentration": match.concentration_id,
                    "level": match.degree_level_code,
                },
                confidence=match.confidence,
                reasoning=(
                    f'Matched topic "{topic}" to monetization category "{match.category_id}" '
                    f'with concentration "{match.concentration_id}" '
                    f"(confidence: {match.confidence})."
                ),
                sponsored_count=output.sponsored_count,
                slots_generated=len(output.slots),
                total_programs=output.total_programs_selected,
            )
        else:
            runtime.reasoning.warn(
                "monetization_match_failed",
                match.error or "Could not match topic to any monetization category.",
                "medium",
            )
    except Exception as e:
        logger.warning("Monetization shortcode insertion failed: %s", e)
        runtime.reasoning.warn("monetization_error", str(e), "medium")
        return {"stage": "monetize", "monetization": None}

    return {"stage": "monetize", "content": content, "monetization": summary}


@with_error_handling(node_name="validate")
@with_timeout(node_name="validate")
async def validate_node(state: GenerationState) -> Dict[str, Any]:
    """Full pre-QA validation; blocking issues stop the run.

    Raises:
        ContentValidationError: The assembled content is blocked.
    """
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "validate", "Running content validation...", 68, GenerationStage.QUALITY_CHECK
    )

    result = await runtime.validator.validate(
        state["content"],
        target_word_count=state["options"]["target_word_count"],
        faqs=state["draft"].get("faqs"),
    )
    logger.info("Pre-QA validation: %s", get_summary(result))

    if result.is_blocked:
        raise ContentValidationError([i.to_dict() for i in result.blocking_issues])

    return {
        "stage": "validate",
        "validation": {
            "flags": [
                {"type": i.type, "severity": i.severity, "message": i.message}
                for i in result.issues
            ],
            "requires_human_review": result.requires_review,
            "review_reasons": [w.type for w in result.warnings],
            "risk_level": result.risk_level.value,
        },
    }


@with_error_handling(node_name="quality")
@with_timeout(node_name="quality")
async def quality_node(state: GenerationState) -> Dict[str, Any]:
    """Assemble the article and score it, auto-fixing when enabled."""
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin(
        "quality", "Running quality assurance...", 70, GenerationStage.QUALITY_CHECK
    )

    draft = state["draft"]
    contributor = state.get("contributor") or {}
    validation = state["validation"]
    options = state["options"]
    thresholds = state["thresholds"]

    article: Dict[str, Any] = {
        "title": draft.get("title"),
        "content": state["content"],
        "excerpt": draft.get("excerpt"),
        "meta_title": draft.get("meta_title"),
        "meta_description": draft.get("meta_description"),
        "focus_keyword": draft.get("focus_keyword"),
        "slug": generate_slug(draft.get("title") or ""),
        "faqs": draft.get("faqs"),
        "contributor_id": contributor.get("id"),
        "contributor_name": contributor.get("name"),
        "status": ArticleStatus.DRAFTING.value,
        "validation_flags": validation["flags"],
        "requires_human_review": validation["requires_human_review"],
        "review_reasons": list(validation["review_reasons"]),
        "validation_risk_level": validation["risk_level"],
    }

    if not options["auto_fix"]:
        metrics = calculate_quality_metrics(article["content"], article["faqs"], thresholds)
        article["word_count"] = metrics.word_count
        article["quality_score"] = metrics.score
        article["risk_flags"] = metrics.issue_types
        return {"stage": "quality", "article": article, "qa_attempts": 0}

    async def on_attempt(attempt: int, total: int) -> None:
        runtime.raise_if_cancelled()
        await runtime.report(
            f"Auto-fixing quality issues (attempt {attempt}/{total})...",
            70 + attempt * 10,
            GenerationStage.AUTO_FIX,
        )

    qa = await QualityAssuranceLoop(runtime.claude, thresholds).run(
        article, max_attempts=options["max_fix_attempts"], on_attempt=on_attempt
    )
    return {"stage": "quality", "article": qa.article, "qa_attempts": qa.attempts}


@with_error_handling(node_name="finalize")
@with_timeout(node_name="finalize")
async def finalize_node(state: GenerationState) -> Dict[str, Any]:
    """Flag below-threshold scores for review and attach the reasoning log."""
    runtime: GenerationRuntime = state["runtime"]
    await runtime.begin("finalize", "Finalizing article...", 95, GenerationStage.SAVING)

    article = dict(state["article"])
    score = article.get("quality_score") or 0
    threshold = state["options"]["quality_threshold"]
    risk_flags = article.get("risk_flags") or []

    # Below-threshold articles are kept but routed to an editor
    if score < threshold:
        article["requires_human_review"] = True
        if "quality_below_threshold" not in article["review_reasons"]:
            article["review_reasons"].append("quality_below_threshold")

    runtime.reasoning.log(
        "quality_assessment",
        final_score=score,
        word_count=article.get("word_count"),
        issues_remaining=len(risk_flags),
        requires_human_review=article["requires_human_review"],
        meets_threshold=score >= threshold,
        reasoning=(
            f"Article passed quality checks with a score of {score}. Ready for review."
            if score >= threshold
            else (
                f"Article has quality score of {score}. Issues: "
                f"{', '.join(risk_flags) or 'none'}. May need manual review."
            )
        ),
    )

    if not article.get("slug"):
        article["slug"] = generate_slug(article.get("title") or "")
    article["status"] = ArticleStatus.DRAFTING.value
    article["ai_reasoning"] = runtime.reasoning.to_dict()
    logger.info(
        "AI reasoning attached (%d decisions logged)", len(runtime.reasoning.decisions)
    )

    if runtime.run_logger is not None and runtime.run_logger.current_stage:
        await runtime.run_logger.end_stage("success")

    return {"stage": "finalize", "final_content": article}


async def error_handler_node(state: GenerationState) -> Dict[str, Any]:
    """Central error handler -- logs, persists to Supabase, and terminates."""

    err_logger = logging.getLogger("PipelineErrorHandler")
    runtime: Optional[GenerationRuntime] = state.get("runtime")

    critical_error = state.get("critical_error", "Unknown error")
    failed_stage = state.get("error_stage") or "unknown"
    last_stage = state.get("stage", "unknown")
    idea = state.get("idea") or {}

    error_context: Dict[str, Any] = {
        "critical_error": str(critical_error),
        "failed_stage": failed_stage,
        "last_successful_stage": last_stage,
        "accumulated_errors": state.get("errors", []),
        "run_id": state.get("run_id"),
        "idea_id": idea.get("id"),
        "idea_title": idea.get("title"),
        "content_type": (state.get("options") or {}).get("content_type"),
    }

    err_logger.error(
        "Generation failed at stage '%s': %s\nContext: %s",
        failed_stage,
        critical_error,
        error_context,
    )

    if runtime is not None and runtime.run_logger is not None and runtime.run_logger.current_stage:
        await runtime.run_logger.end_stage("failed", {"error": str(critical_error)})

    # Cancellation is not a failure worth a post-mortem row
    if not isinstance(state.get("error_exception"), GenerationCancelledError):
        try:
            db = runtime.db if runtime is not None and runtime.db is not None else await get_db()
            await db.log_pipeline_error({
                "run_id": state.get("run_id"),
                "error_type": type(state.get("error_exception")).__name__
                if state.get("error_exception") is not None
                else "CriticalError",
                "error_message": str(critical_error),
                "stage": failed_stage,
                "context": error_context,
            })
        except Exception as db_exc:
            err_logger.warning("Failed to save error to database: %s", db_exc)

    return {"stage": "error", "final_content": None}


# =============================================================================
# WORKFLOW CONSTRUCTION
# =============================================================================

PIPELINE_NODES: List[tuple] = [
    ("load_rules", load_rules_node),
    ("cost_data", cost_data_node),
    ("assign_contributor", assign_contributor_node),
    ("draft", draft_node),
    ("humanize", humanize_node),
    ("internal_links", internal_links_node),
    ("monetize", monetize_node),
    ("validate", validate_node),
    ("quality", quality_node),
    ("finalize", finalize_node),
]


def create_generation_pipeline() -> Any:
    """Build and compile the LangGraph state machine.

    Returns a compiled ``StateGraph`` ready for ``await pipeline.ainvoke(state)``.
    """

    workflow = StateGraph(GenerationState)

    # ---- Add nodes --------------------------------------------------------
    for name, node in PIPELINE_NODES:
        workflow.add_node(name, node)
    workflow.add_node("handle_error", error_handler_node)

    # ---- Entry point ------------------------------------------------------
    workflow.set_entry_point(PIPELINE_NODES[0][0])

    # ---- Error-aware routing helper ---------------------------------------

    def make_error_aware_router(next_node: str):
        """Return ``handle_error`` if ``critical_error`` is set, else *next_node*."""

        def router(state: GenerationState) -> str:
            if state.get("critical_error"):
                return "handle_error"
            return next_node

        return router

    # ---- Main flow edges (each with error checking) -----------------------
    names = [name for name, _ in PIPELINE_NODES]
    for current, following in zip(names, names[1:] + [END]):
        workflow.add_conditional_edges(
            current,
            make_error_aware_router(following),
            {following: following, "handle_error": "handle_error"},
        )

    workflow.add_edge("handle_error", END)

    return workflow.compile()


def initialize_generation_state(
    idea: Dict[str, Any],
    options: Dict[str, Any],
    runtime: GenerationRuntime,
    run_id: Optional[str] = None,
) -> GenerationState:
    """Create a fully-defaulted ``GenerationState`` for a new run."""

    return GenerationState(
        # Run tracking
        run_id=run_id or generate_id(),
        run_timestamp=utc_now(),
        stage="initialized",
        # Inputs
        idea=idea,
        options=options,
        runtime=runtime,
        # Context
        content_rules={},
        thresholds=None,
        rules_prompt="",
        tone_voice=None,
        target_word_count=options.get("target_word_count", 0),
        cost_context={},
        contributor=None,
        author_prompt=None,
        # Content
        draft={},
        content="",
        internal_links_added=0,
        monetization=None,
        validation=None,
        article={},
        qa_attempts=0,
        # Final output
        final_content=None,
        # Error handling
        critical_error=None,
        error_stage=None,
        error_exception=None,
        errors=[],
        warnings=[],
    )


# =============================================================================
# BACKGROUND TASK HANDLE
# =============================================================================


@dataclass
class GenerationTask:
    """
    Cancellable handle for a running batch.

    ``cancel()`` only sets a flag; the pipeline checks it before every node
    and between ideas, so the current stage always finishes first.
    """

    task_id: str = field(default_factory=generate_id)
    total: int = 0
    completed: int = 0
    failed: int = 0
    progress: int = 0
    message: str = ""
    status: str = "pending"
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    handle: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    def cancel(self) -> None:
        self.cancel_requested = True

    @property
    def cancelled(self) -> bool:
        return self.cancel_requested

    @property
    def is_running(self) -> bool:
        return self.status in ("pending", "running")

    def raise_if_cancelled(self) -> None:
        if self.cancel_requested:
            raise GenerationCancelledError("Generation cancelled")

    async def wait(self) -> Optional[Dict[str, Any]]:
        """Wait for the batch to finish and return its results."""
        if self.handle is not None:
            await self.handle
        return self.results

    def snapshot(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "progress": self.progress,
            "message": self.message,
            "cancel_requested": self.cancel_requested,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


# =============================================================================
# GENERATION SERVICE
# =============================================================================


class GenerationService:
    """
    Public entry point for article generation.

    Owns the vendor clients, the humanizer chain and its settings, and runs
    the compiled pipeline for single ideas and sequential batches.  Only one
    batch may run at a time.

    Args:
        grok: Draft client; a ``GrokClient`` is created when omitted.
        claude: Editing client; a ``ClaudeClient`` is created when omitted
            (needs ``ANTHROPIC_API_KEY``).
        stealthgpt: Humanizer client; a ``StealthGptClient`` when omitted.
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.
        settings: Optional ``Settings``; the global settings when omitted.
    """

    def __init__(
        self,
        grok: Any = None,
        claude: Any = None,
        stealthgpt: Any = None,
        db: Any = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.grok = grok or GrokClient(model=self.settings.grok_model)
        self.claude = claude or ClaudeClient(model=self.settings.claude_model)
        self.stealthgpt = stealthgpt or StealthGptClient()
        self.db = db

        # Per-service copy so runtime changes do not leak into the settings
        self.stealth_settings = replace(self.settings.stealthgpt)
        self.humanizer = build_default_chain(
            self.stealthgpt,
            self.claude,
            self.stealth_settings,
            preferred=self.settings.generation.humanization_provider,
        )

        self.rules_loader = ContentRulesLoader(db)
        self.monetization_engine = MonetizationEngine(db=db)
        self.monetization_validator = MonetizationValidator()
        self.validator = ContentValidator(db) if db is not None else get_validator()
        self.pipeline = create_generation_pipeline()

        self.logger = logging.getLogger("GenerationService")
        self._processing = False
        self._current_task: Optional[GenerationTask] = None

    async def _get_db(self) -> Any:
        if self.db is None:
            self.db = await get_db()
        return self.db

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def resolve_options(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Merge *options* over the configured generation defaults.

        Raises:
            ValidationError: An option name is not recognised.
        """
        defaults = asdict(self.settings.generation)
        defaults.pop("humanization_provider", None)

        options = options or {}
        unknown = sorted(set(options) - set(defaults))
        if unknown:
            raise ValidationError(f"Unknown generation option(s): {', '.join(unknown)}")

        defaults.update({k: v for k, v in options.items() if v is not None})
        return defaults

    # ------------------------------------------------------------------
    # Single article
    # ------------------------------------------------------------------

    async def generate_article_complete(
        self,
        idea: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
        task: Optional[GenerationTask] = None,
    ) -> Dict[str, Any]:
        """Run the full pipeline for one idea and return the article dict.

        The article is not saved; see :meth:`save_article`.

        Raises:
            ValidationError: Unknown option names.
            GenerationError: Any failure; the subclass names the cause
                (``DraftValidationError``, ``ContentValidationError``,
                ``GenerationCancelledError``).
        """
        resolved = self.resolve_options(options)
        run_id = generate_id()

        run_logger = None
        if is_logger_initialized():
            run_logger = PipelineRunLogger(run_id, idea.get("id"))

        runtime = GenerationRuntime(
            grok=self.grok,
            claude=self.claude,
            humanizer=self.humanizer,
            monetization_engine=self.monetization_engine,
            monetization_validator=self.monetization_validator,
            rules_loader=self.rules_loader,
            validator=self.validator,
            stealth_settings=self.stealth_settings,
            db=self.db,
            on_progress=on_progress,
            task=task,
            reasoning=AIReasoningLog(model_used=getattr(self.grok, "model", "grok-3")),
            run_logger=run_logger,
        )

        self.logger.info(
            "[PIPELINE] Starting run %s for idea %s (%s)",
            run_id,
            idea.get("id"),
            resolved["content_type"],
        )
        final_state = await self.pipeline.ainvoke(
            initialize_generation_state(idea, resolved, runtime, run_id)
        )

        failed = bool(final_state.get("critical_error"))
        if run_logger is not None:
            await run_logger.finish("failed" if failed else "success")

        if failed:
            exc = final_state.get("error_exception")
            if isinstance(exc, GenerationError):
                raise exc
            raise GenerationError(
                f"Generation failed at {final_state.get('error_stage')}: "
                f"{final_state.get('critical_error')}"
            ) from exc

        return final_state["final_content"]

    async def save_article(
        self, article: Dict[str, Any], idea_id: str, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Insert the article and mark its idea completed; returns the saved row."""
        db = await self._get_db()
        saved = await db.insert_article({**article, "user_id": user_id})
        await db.update_idea(
            idea_id, {"article_id": saved["id"], "status": IdeaStatus.COMPLETED.value}
        )
        return saved

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._processing or (
            self._current_task is not None and self._current_task.is_running
        )

    async def process_batch(
        self,
        idea_ids: List[str],
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        task: Optional[GenerationTask] = None,
    ) -> Dict[str, Any]:
        """
        Generate and save every approved idea in *idea_ids*, one at a time.

        Progress is scaled so the whole batch spans 0-100.  A failed idea is
        recorded and the batch moves on; a cancel stops before the next idea.

        Returns:
            ``{"successful": [saved rows], "failed": [{"idea", "error"}]}``

        Raises:
            PipelineBusyError: Another batch is already being processed.
        """
        if self._processing:
            raise PipelineBusyError("Already processing")

        self._processing = True
        results: Dict[str, Any] = {"successful": [], "failed": []}

        try:
            db = await self._get_db()
            ideas = await db.get_ideas_by_ids(idea_ids, status=IdeaStatus.APPROVED.value)
            if task is not None:
                task.total = len(ideas)
            if not ideas:
                self.logger.info("No approved ideas to process")
                return results

            per_idea = 100 / len(ideas)

            for i, idea in enumerate(ideas):
                if task is not None and task.cancelled:
                    self.logger.info("Batch cancelled after %d of %d ideas", i, len(ideas))
                    break

                base = i * per_idea
                title = idea.get("title") or ""

                async def scaled(update: ProgressUpdate, base: float = base) -> None:
                    pct = int(base + update.percentage / 100 * per_idea)
                    if task is not None:
                        task.progress = pct
                        task.message = update.message
                    await notify_progress(
                        on_progress,
                        ProgressUpdate(update.message, pct, update.stage, update.timestamp),
                    )

                await scaled(ProgressUpdate(f"Processing {i + 1}/{len(ideas)}: {title[:40]}...", 0))

                try:
                    article = await self.generate_article_complete(
                        idea,
                        {
                            "content_type": idea.get("content_type") or "guide",
                            "target_word_count": BATCH_TARGET_WORD_COUNT,
                            "auto_assign_contributor": True,
                            "add_internal_links": True,
                            "auto_fix": True,
                        },
                        on_progress=scaled,
                        task=task,
                    )
                    saved = await self.save_article(article, idea["id"], user_id)
                    results["successful"].append(saved)
                    if task is not None:
                        task.completed += 1
                except GenerationCancelledError:
                    self.logger.info("Batch cancelled during: %s", title)
                    break
                except Exception as e:
                    self.logger.error("Batch processing failed for: %s: %s", title, e)
                    results["failed"].append({"idea": idea, "error": str(e)})
                    if task is not None:
                        task.failed += 1

            return results

        finally:
            self._processing = False

    def start_batch(
        self,
        idea_ids: List[str],
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationTask:
        """Run :meth:`process_batch` in the background (needs a running loop).

        Raises:
            PipelineBusyError: Another batch is already being processed.
        """
        if self.is_processing:
            raise PipelineBusyError("Already processing")

        task = GenerationTask(total=len(idea_ids))
        self._current_task = task
        task.handle = asyncio.create_task(
            self._run_task(task, idea_ids, user_id, on_progress)
        )
        return task

    async def _run_task(
        self,
        task: GenerationTask,
        idea_ids: List[str],
        user_id: Optional[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        task.status = "running"
        task.started_at = utc_now()
        try:
            task.results = await self.process_batch(idea_ids, user_id, on_progress, task)
            task.status = "cancelled" if task.cancelled else "completed"
        except Exception as e:
            self.logger.error("Background batch %s failed: %s", task.task_id, e)
            task.status = "failed"
            task.error = str(e)
        finally:
            task.finished_at = utc_now()

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_processing": self.is_processing,
            "current_task": self._current_task.snapshot() if self._current_task else None,
            "humanization_provider": self.humanization_provider,
        }

    def stop(self) -> bool:
        """Request cancellation of the running batch; ``False`` if none runs."""
        task = self._current_task
        if task is None or not task.is_running:
            return False
        task.cancel()
        self.logger.info("Cancellation requested for batch %s", task.task_id)
        return True

    # ------------------------------------------------------------------
    # Humanization configuration
    # ------------------------------------------------------------------

    @property
    def humanization_provider(self) -> str:
        return self.humanizer.preferred

    def set_humanization_provider(self, provider: str) -> None:
        if provider not in HUMANIZATION_PROVIDERS:
            raise ValidationError('Invalid humanization provider. Use "stealthgpt" or "claude"')
        self.humanizer.set_preferred(provider)
        self.logger.info("Humanization provider set to: %s", provider)

    def get_humanization_provider(self) -> str:
        return self.humanization_provider

    def update_stealth_settings(self, **settings: Any) -> Dict[str, Any]:
        """Apply valid StealthGPT settings; invalid values are ignored."""
        self.stealth_settings.update(
            tone=settings.get("tone"),
            mode=settings.get("mode"),
            detector=settings.get("detector"),
            business=settings.get("business"),
            double_passing=settings.get("double_passing"),
        )
        current = self.get_stealth_settings()
        self.logger.info("StealthGPT settings updated: %s", current)
        return current

    def get_stealth_settings(self) -> Dict[str, Any]:
        return asdict(self.stealth_settings)

    def is_stealthgpt_available(self) -> bool:
        return self.stealthgpt.is_configured()

    # ------------------------------------------------------------------
    # Standalone helpers
    # ------------------------------------------------------------------

    async def humanize_content(
        self, content: str, contributor: Optional[Dict[str, Any]] = None
    ) -> str:
        """Humanize existing HTML with the configured provider chain."""
        result = await self.humanizer.humanize(
            content,
            contributor=contributor,
            author_prompt=build_author_prompt(contributor) or None,
        )
        return result.content

    async def generate_ideas(self, topic: str, count: int = 5) -> List[Dict[str, Any]]:
        return await self.grok.generate_ideas([topic], count)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Decorators
    "with_error_handling",
    "with_timeout",
    # Runtime
    "ProgressCallback",
    "notify_progress",
    "GenerationRuntime",
    # Nodes
    "load_rules_node",
    "cost_data_node",
    "assign_contributor_node",
    "draft_node",
    "humanize_node",
    "internal_links_node",
    "monetize_node",
    "validate_node",
    "quality_node",
    "finalize_node",
    "error_handler_node",
    # Workflow
    "PIPELINE_NODES",
    "create_generation_pipeline",
    "initialize_generation_state",
    # Service
    "GenerationTask",
    "GenerationService",
]
