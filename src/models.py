"""
Centralized shared data types for the Perdia content engine.

This module is the single source of truth for the data models passed between
the generation pipeline, the queue and the publishing layer. Database rows
stay plain dicts at the storage boundary; the types here describe the values
the engine computes itself.

Hierarchy of types
------------------
- **Enums**: ``IdeaStatus``, ``ArticleStatus``, ``QueueStatus``,
  ``RiskLevel``, ``ContentType``, ``IssueSeverity``, ``GenerationStage``
- **Inputs**: ``ContentIdea``, ``Contributor``
- **Quality models**: ``QualityIssue``, ``QualityMetrics``
- **Validation models**: ``ValidationIssue``, ``ValidationResult``
- **Monetization models**: ``CategoryMatch``, ``MonetizationSlotResult``
- **Progress**: ``ProgressUpdate``
- **Orchestrator state**: ``GenerationState`` (``TypedDict``)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict


# =============================================================================
# ENUMS
# =============================================================================


class IdeaStatus(str, Enum):
    """Lifecycle of a content idea: pending -> approved/rejected -> completed."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ArticleStatus(str, Enum):
    """
    Article workflow states.

    ``PUBLISHED`` and ``ARCHIVED`` are terminal.
    """

    IDEA = "idea"
    DRAFTING = "drafting"
    REFINEMENT = "refinement"
    QA_REVIEW = "qa_review"
    READY_TO_PUBLISH = "ready_to_publish"
    PUBLISHED = "published"
    ARCHIVED = "archived"

    @property
    def is_terminal(self) -> bool:
        return self in (ArticleStatus.PUBLISHED, ArticleStatus.ARCHIVED)


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RiskLevel(str, Enum):
    """
    Validation risk level with ordering.

    ``RiskLevel.LOW < RiskLevel.HIGH`` compares by severity rank, not by
    string value.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self.value]

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Optional[str], default: "RiskLevel" = None) -> "RiskLevel":
        """Parse a stored risk level; unknown values map to *default* (LOW)."""
        try:
            return cls(str(value).upper())
        except ValueError:
            return default or cls.LOW


_RISK_RANK: Dict[str, int] = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "CRITICAL": 3}


class ContentType(str, Enum):
    """Article formats the draft prompt and slot layouts understand."""

    GUIDE = "guide"
    LISTICLE = "listicle"
    RANKING = "ranking"
    EXPLAINER = "explainer"
    REVIEW = "review"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    WARNING = "warning"


class GenerationStage(str, Enum):
    """Queue-visible stages of a generation run."""

    DRAFTING = "drafting"
    HUMANIZING = "humanizing"
    LINKING = "linking"
    QUALITY_CHECK = "quality_check"
    AUTO_FIX = "auto_fix"
    SAVING = "saving"


# =============================================================================
# INPUT MODELS
# =============================================================================


@dataclass
class ContentIdea:
    """
    A proposed article.

    Only ``title`` is required by the pipeline; everything else enriches the
    draft prompt or the contributor/monetization matching.
    """

    title: str
    id: Optional[str] = None
    description: Optional[str] = None
    seed_topics: List[str] = field(default_factory=list)
    content_type: Optional[str] = None
    status: IdeaStatus = IdeaStatus.PENDING
    keyword_research_data: Optional[Dict[str, Any]] = None
    monetization_category: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ContentIdea":
        """Build from a ``content_ideas`` row, ignoring unknown columns."""
        try:
            status = IdeaStatus(row.get("status") or "pending")
        except ValueError:
            status = IdeaStatus.PENDING
        return cls(
            title=row.get("title") or "",
            id=row.get("id"),
            description=row.get("description"),
            seed_topics=list(row.get("seed_topics") or []),
            content_type=row.get("content_type"),
            status=status,
            keyword_research_data=row.get("keyword_research_data"),
            monetization_category=row.get("monetization_category"),
        )


@dataclass
class Contributor:
    """
    A byline persona.

    ``display_name`` is the public byline; ``style_proxy`` is an internal
    writing-style reference and must never appear as a byline.
    """

    name: str
    id: Optional[str] = None
    display_name: Optional[str] = None
    style_proxy: Optional[str] = None
    expertise_areas: List[str] = field(default_factory=list)
    content_types: List[str] = field(default_factory=list)
    writing_style: Optional[str] = None
    voice_description: Optional[str] = None
    writing_guidelines: Optional[str] = None
    signature_phrases: List[str] = field(default_factory=list)
    phrases_to_avoid: List[str] = field(default_factory=list)
    target_audience: Optional[str] = None
    preferred_structure: Optional[str] = None
    intro_style: Optional[str] = None
    conclusion_style: Optional[str] = None
    seo_approach: Optional[str] = None
    personality_traits: List[str] = field(default_factory=list)
    writing_style_profile: Dict[str, Any] = field(default_factory=dict)
    writing_samples: List[str] = field(default_factory=list)
    custom_system_prompt: Optional[str] = None
    wordpress_contributor_id: Optional[int] = None
    is_active: bool = True

    @property
    def byline(self) -> str:
        return self.display_name or self.name

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Contributor":
        """Build from an ``article_contributors`` row."""
        return cls(
            name=row.get("name") or "",
            id=row.get("id"),
            display_name=row.get("display_name"),
            style_proxy=row.get("style_proxy"),
            expertise_areas=list(row.get("expertise_areas") or []),
            content_types=list(row.get("content_types") or []),
            writing_style=row.get("writing_style"),
            voice_description=row.get("voice_description"),
            writing_guidelines=row.get("writing_guidelines"),
            signature_phrases=list(row.get("signature_phrases") or []),
            phrases_to_avoid=list(row.get("phrases_to_avoid") or []),
            target_audience=row.get("target_audience"),
            preferred_structure=row.get("preferred_structure"),
            intro_style=row.get("intro_style"),
            conclusion_style=row.get("conclusion_style"),
            seo_approach=row.get("seo_approach"),
            personality_traits=list(row.get("personality_traits") or []),
            writing_style_profile=dict(row.get("writing_style_profile") or {}),
            writing_samples=list(row.get("writing_samples") or []),
            custom_system_prompt=row.get("custom_system_prompt"),
            wordpress_contributor_id=row.get("wordpress_contributor_id"),
            is_active=row.get("is_active", True),
        )


# =============================================================================
# QUALITY MODELS
# =============================================================================


@dataclass
class QualityIssue:
    """A single violated quality rule."""

    type: str
    severity: str
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QualityMetrics:
    """
    Result of one quality-scoring pass.

    ``score`` starts at 100 and loses a fixed penalty per violated rule,
    floored at 0.
    """

    score: int
    word_count: int
    issues: List[QualityIssue] = field(default_factory=list)
    thresholds_used: Dict[str, Any] = field(default_factory=dict)

    @property
    def issue_types(self) -> List[str]:
        return [i.type for i in self.issues]


# =============================================================================
# VALIDATION MODELS
# =============================================================================


@dataclass
class ValidationIssue:
    """
    A content-validation finding.

    ``matches`` carries the offending snippets; ``extra`` holds check-specific
    detail (link lists, truncation ending).
    """

    type: str
    severity: str
    message: str
    matches: List[Any] = field(default_factory=list)
    recommendation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
        }
        if self.matches:
            data["matches"] = self.matches
        if self.recommendation:
            data["recommendation"] = self.recommendation
        data.update(self.extra)
        return data


@dataclass
class ValidationResult:
    is_valid: bool = True
    is_blocked: bool = False
    requires_review: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    blocking_issues: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def issues(self) -> List[ValidationIssue]:
        """Blocking issues first, then warnings."""
        return [*self.blocking_issues, *self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "is_blocked": self.is_blocked,
            "requires_review": self.requires_review,
            "risk_level": self.risk_level.value,
            "issues": [i.to_dict() for i in self.issues],
            "warnings": [i.to_dict() for i in self.warnings],
            "blocking_issues": [i.to_dict() for i in self.blocking_issues],
            "metrics": dict(self.metrics),
        }


# =============================================================================
# MONETIZATION MODELS
# =============================================================================


@dataclass
class CategoryMatch:
    """Best monetization category for a topic (``matched=False`` on miss)."""

    matched: bool
    category_id: Optional[int] = None
    concentration_id: Optional[int] = None
    category: Optional[Dict[str, Any]] = None
    degree_level_code: Optional[int] = None
    confidence: str = "low"
    score: int = 0
    error: Optional[str] = None


@dataclass
class MonetizationSlotResult:
    """One filled monetization slot."""

    name: str
    type: str
    shortcode: str
    selected_program_ids: List[Any] = field(default_factory=list)
    selected_programs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def program_count(self) -> int:
        return len(self.selected_program_ids)

    @property
    def has_sponsored(self) -> bool:
        return any(p.get("is_sponsored") for p in self.selected_programs)


# =============================================================================
# PROGRESS
# =============================================================================


@dataclass
class ProgressUpdate:
    """Passed to progress callbacks after every pipeline stage."""

    message: str
    percentage: int
    stage: Optional[str] = None
    timestamp: Optional[datetime] = None


# =============================================================================
# GENERATION STATE (LangGraph TypedDict)
#
# The state object that flows through the generation graph. Every node reads
# from and writes partial updates to this dict.
# =============================================================================


class GenerationState(TypedDict, total=False):
    """
    ``total=False`` marks every key optional so the state can be populated
    incrementally as it flows through the graph.
    """

    # -----------------------------------------------------------------
    # RUN TRACKING
    # -----------------------------------------------------------------
    run_id: str
    run_timestamp: datetime
    stage: str

    # -----------------------------------------------------------------
    # INPUTS
    # -----------------------------------------------------------------
    idea: Dict[str, Any]
    options: Dict[str, Any]
    runtime: Any  # GenerationRuntime; clients, callbacks and the task handle

    # -----------------------------------------------------------------
    # CONTEXT
    # -----------------------------------------------------------------
    content_rules: Dict[str, Any]
    thresholds: Any  # QualityThresholds
    rules_prompt: str
    tone_voice: Optional[Dict[str, Any]]
    target_word_count: int
    cost_context: Dict[str, Any]
    contributor: Optional[Dict[str, Any]]
    author_prompt: Optional[str]

    # -----------------------------------------------------------------
    # CONTENT
    # -----------------------------------------------------------------
    draft: Dict[str, Any]
    content: str
    internal_links_added: int
    monetization: Optional[Dict[str, Any]]
    validation: Optional[Dict[str, Any]]
    article: Dict[str, Any]
    qa_attempts: int

    # -----------------------------------------------------------------
    # FINAL OUTPUT
    # -----------------------------------------------------------------
    final_content: Optional[Dict[str, Any]]

    # -----------------------------------------------------------------
    # ERROR HANDLING
    # -----------------------------------------------------------------
    critical_error: Optional[str]
    error_stage: Optional[str]
    error_exception: Optional[BaseException]
    errors: List[str]
    warnings: List[str]


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Enums
    "IdeaStatus",
    "ArticleStatus",
    "QueueStatus",
    "RiskLevel",
    "ContentType",
    "IssueSeverity",
    "GenerationStage",
    # Inputs
    "ContentIdea",
    "Contributor",
    # Quality
    "QualityIssue",
    "QualityMetrics",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Monetization
    "CategoryMatch",
    "MonetizationSlotResult",
    # Progress
    "ProgressUpdate",
    # State
    "GenerationState",
]
