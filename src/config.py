"""
Centralized configuration loader for the Perdia content engine.

Loads settings from YAML files and environment variables, providing
sensible defaults when configuration files are absent.

Provides:
    - QualityThresholds: Quality-scoring thresholds with env var overrides
    - StealthGptSettings: Humanization engine options (validated)
    - AutoPublishConfig: Auto-publish defaults
    - GenerationDefaults: Default options for a generation run
    - DEFAULT_CONTENT_RULES: Built-in content rules document
    - Settings: Global application settings loaded from YAML + env vars
    - get_settings(): Singleton accessor for Settings
    - validate_env(): Startup validation of required environment variables
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from src.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Load .env file (no-op if file does not exist)
# ---------------------------------------------------------------------------
load_dotenv()

# ---------------------------------------------------------------------------
# Project root directory (parent of src/)
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent

logger = logging.getLogger(__name__)


def _apply_env_overrides(target: Any, env_overrides: Dict[str, tuple]) -> None:
    """Set attributes on *target* from environment variables.

    Raises:
        ConfigurationError: If a variable is set but cannot be cast.
    """
    for env_key, (attr_name, cast_fn) in env_overrides.items():
        env_val = os.environ.get(env_key)
        if env_val is not None:
            try:
                setattr(target, attr_name, cast_fn(env_val))
            except (ValueError, TypeError) as exc:
                raise ConfigurationError(
                    f"Invalid value for env var {env_key}='{env_val}': {exc}"
                ) from exc


def _parse_bool(value: str) -> bool:
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# ===========================================================================
# DEFAULT CONTENT RULES
# Used when the database holds no active content_rules_config row.
# ===========================================================================

DEFAULT_CONTENT_RULES: Dict[str, Any] = {
    "version": 0,
    "hard_rules": {
        "authors": {
            "approved_authors": ["Tony Huffman", "Kayleigh Gilbert", "Sara", "Charity"],
            "require_author_assignment": True,
            "enforce_approved_only": True,
        },
        "links": {
            "blocked_domains": ["onlineu.com", "usnews.com", "niche.com"],
            "blocked_patterns": [],
            "block_edu_links": True,
            "block_competitor_links": True,
        },
        "external_sources": {
            "allowed_domains": ["bls.gov", "ed.gov", "nces.ed.gov"],
            "require_whitelist": True,
        },
        "monetization": {
            "require_monetization_shortcode": True,
            "block_unknown_shortcodes": True,
            "block_legacy_shortcodes": True,
        },
        "publishing": {
            "require_human_review": True,
            "block_high_risk": True,
            "block_critical_risk": True,
        },
    },
    "guidelines": {
        "word_count": {"minimum": 1500, "target": 2000, "maximum": 2500},
        "structure": {"min_h2_headings": 3, "max_h2_headings": 8},
        "faqs": {"minimum": 3, "target": 5},
        "links": {
            "internal_links_min": 3,
            "internal_links_target": 5,
            "external_citations_min": 2,
        },
        "quality": {
            "minimum_score_to_publish": 70,
            "minimum_score_auto_publish": 80,
            "target_score": 85,
        },
        "readability": {"target_flesch_score": 60, "max_avg_sentence_length": 25},
    },
    "tone_voice": {
        "overall_style": {
            "tone": "conversational",
            "formality": "professional but approachable",
        },
        "banned_phrases": [
            "utilize", "in order to", "at the end of the day", "synergy", "leverage",
        ],
        "preferred_phrases": ["use", "to", "ultimately", "work together", "apply"],
        "sentence_variety": {
            "vary_length": True,
            "avoid_starting_with_same_word": True,
        },
        "anti_hallucination": {
            "require_citations_for_statistics": True,
            "no_invented_data": True,
        },
    },
    "pipeline_steps": [
        {"id": "draft", "name": "Draft Generation", "enabled": True, "provider": "grok"},
        {"id": "humanize", "name": "Humanization", "enabled": True, "provider": "stealthgpt"},
        {"id": "internal_links", "name": "Internal Linking", "enabled": True},
        {"id": "monetization", "name": "Monetization", "enabled": True},
        {"id": "quality_check", "name": "Quality Check", "enabled": True},
    ],
    "author_content_mapping": {},
    "shortcode_rules": {"allowed_shortcodes": [], "legacy_shortcodes_blocked": []},
}


def get_default_content_rules() -> Dict[str, Any]:
    """Return a deep copy of :data:`DEFAULT_CONTENT_RULES` safe to mutate."""
    return copy.deepcopy(DEFAULT_CONTENT_RULES)


# ===========================================================================
# QUALITY THRESHOLDS
# ===========================================================================


@dataclass
class QualityThresholds:
    """
    Single source of truth for quality-scoring thresholds.

    Defaults mirror the built-in content rules; the active content rules
    document (see :meth:`from_content_rules`) takes precedence at run time.
    Env vars allow tuning without a database change.

    Usage::

        thresholds = QualityThresholds.from_content_rules(rules)
        if metrics.word_count < thresholds.min_word_count: ...
    """

    min_word_count: int = 1500
    max_word_count: int = 2500
    target_word_count: int = 2000
    min_internal_links: int = 3
    min_external_links: int = 2
    min_faqs: int = 3
    min_h2_headings: int = 3
    max_avg_sentence_length: int = 25
    min_score_to_publish: int = 70
    min_score_auto_publish: int = 80
    target_score: int = 85

    def __post_init__(self) -> None:
        """Override thresholds from environment variables if set."""
        _apply_env_overrides(self, {
            "QUALITY_MIN_WORD_COUNT": ("min_word_count", int),
            "QUALITY_MAX_WORD_COUNT": ("max_word_count", int),
            "QUALITY_MIN_INTERNAL_LINKS": ("min_internal_links", int),
            "QUALITY_MIN_EXTERNAL_LINKS": ("min_external_links", int),
            "QUALITY_MIN_FAQS": ("min_faqs", int),
            "QUALITY_MIN_H2_HEADINGS": ("min_h2_headings", int),
            "QUALITY_MAX_AVG_SENTENCE_LENGTH": ("max_avg_sentence_length", int),
        })
        if self.min_word_count > self.max_word_count:
            raise ConfigurationError(
                f"min_word_count ({self.min_word_count}) exceeds "
                f"max_word_count ({self.max_word_count})"
            )

    @classmethod
    def from_content_rules(cls, rules: Optional[Dict[str, Any]]) -> "QualityThresholds":
        """
        Derive thresholds from a content-rules document.

        Missing or falsy guideline values fall back to the dataclass
        defaults, matching how the rules editor stores partial documents.
        """
        if not rules or not rules.get("guidelines"):
            return cls()

        gl = rules["guidelines"]
        defaults = cls.__dataclass_fields__

        def pick(section: str, key: str, attr: str) -> int:
            value = (gl.get(section) or {}).get(key)
            return value or defaults[attr].default

        return cls(
            min_word_count=pick("word_count", "minimum", "min_word_count"),
            max_word_count=pick("word_count", "maximum", "max_word_count"),
            target_word_count=pick("word_count", "target", "target_word_count"),
            min_internal_links=pick("links", "internal_links_min", "min_internal_links"),
            min_external_links=pick("links", "external_citations_min", "min_external_links"),
            min_faqs=pick("faqs", "minimum", "min_faqs"),
            min_h2_headings=pick("structure", "min_h2_headings", "min_h2_headings"),
            max_avg_sentence_length=pick(
                "readability", "max_avg_sentence_length", "max_avg_sentence_length"
            ),
            min_score_to_publish=pick(
                "quality", "minimum_score_to_publish", "min_score_to_publish"
            ),
            min_score_auto_publish=pick(
                "quality", "minimum_score_auto_publish", "min_score_auto_publish"
            ),
            target_score=pick("quality", "target_score", "target_score"),
        )


# ===========================================================================
# HUMANIZATION SETTINGS
# ===========================================================================

STEALTHGPT_TONES: List[str] = ["Standard", "HighSchool", "College", "PhD"]
STEALTHGPT_MODES: List[str] = ["Low", "Medium", "High"]
STEALTHGPT_DETECTORS: List[str] = ["gptzero", "turnitin"]
HUMANIZATION_PROVIDERS: List[str] = ["stealthgpt", "claude"]


@dataclass
class StealthGptSettings:
    """
    Options passed to the StealthGPT humanizer.

    ``update()`` ignores values outside the allowed option lists instead of
    raising, so a bad ``system_settings`` row never aborts a queue run.
    """

    tone: str = "College"
    mode: str = "High"
    detector: str = "gptzero"
    business: bool = True
    double_passing: bool = False

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "STEALTHGPT_TONE": ("tone", str),
            "STEALTHGPT_MODE": ("mode", str),
            "STEALTHGPT_DETECTOR": ("detector", str),
            "STEALTHGPT_BUSINESS": ("business", _parse_bool),
            "STEALTHGPT_DOUBLE_PASSING": ("double_passing", _parse_bool),
        })
        if self.tone not in STEALTHGPT_TONES:
            raise ConfigurationError(f"Unknown StealthGPT tone '{self.tone}'")
        if self.mode not in STEALTHGPT_MODES:
            raise ConfigurationError(f"Unknown StealthGPT mode '{self.mode}'")
        if self.detector not in STEALTHGPT_DETECTORS:
            raise ConfigurationError(f"Unknown StealthGPT detector '{self.detector}'")

    def update(
        self,
        tone: Optional[str] = None,
        mode: Optional[str] = None,
        detector: Optional[str] = None,
        business: Optional[bool] = None,
        double_passing: Optional[bool] = None,
    ) -> None:
        if tone in STEALTHGPT_TONES:
            self.tone = tone
        if mode in STEALTHGPT_MODES:
            self.mode = mode
        if detector in STEALTHGPT_DETECTORS:
            self.detector = detector
        if isinstance(business, bool):
            self.business = business
        if isinstance(double_passing, bool):
            self.double_passing = double_passing

    def as_options(self) -> Dict[str, Any]:
        """Options dict for :class:`~src.tools.stealthgpt_client.StealthGptClient`."""
        return {
            "tone": self.tone,
            "mode": self.mode,
            "detector": self.detector,
            "business": self.business,
        }


# ===========================================================================
# AUTO-PUBLISH AND GENERATION DEFAULTS
# ===========================================================================


@dataclass
class AutoPublishConfig:
    """Defaults for the auto-publish cycle (overridden by ``system_settings``)."""

    enabled: bool = False
    days_until_auto_publish: int = 5
    max_risk_level: str = "LOW"
    min_quality_score: int = 80
    max_articles_per_run: int = 10

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "AUTO_PUBLISH_ENABLED": ("enabled", _parse_bool),
            "AUTO_PUBLISH_DAYS": ("days_until_auto_publish", int),
            "AUTO_PUBLISH_MAX_ARTICLES": ("max_articles_per_run", int),
        })


@dataclass
class GenerationDefaults:
    """Default options for ``generate_article_complete``."""

    content_type: str = "guide"
    target_word_count: int = 2000
    auto_assign_contributor: bool = True
    add_internal_links: bool = True
    auto_fix: bool = True
    max_fix_attempts: int = 3
    quality_threshold: int = 85
    humanization_provider: str = "stealthgpt"

    def __post_init__(self) -> None:
        _apply_env_overrides(self, {
            "GENERATION_MAX_FIX_ATTEMPTS": ("max_fix_attempts", int),
            "GENERATION_TARGET_WORD_COUNT": ("target_word_count", int),
            "HUMANIZATION_PROVIDER": ("humanization_provider", str),
        })
        if self.humanization_provider not in HUMANIZATION_PROVIDERS:
            raise ConfigurationError(
                f"Invalid humanization provider '{self.humanization_provider}'. "
                f"Use one of {HUMANIZATION_PROVIDERS}"
            )
        if self.max_fix_attempts < 1:
            raise ConfigurationError("max_fix_attempts must be at least 1")


# ===========================================================================
# GLOBAL SETTINGS
# ===========================================================================


@dataclass
class Settings:
    """
    Global application settings.

    Loaded from ``config/settings.yaml`` when available, falling back to
    sensible defaults. Environment variables override YAML values for
    secrets and deployment-specific configuration.
    """

    # LLM settings
    claude_model: str = "claude-sonnet-4-5-20250929"
    grok_model: str = "grok-3"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Publishing
    publish_environment: str = "staging"

    # Nested configs
    generation: GenerationDefaults = field(default_factory=GenerationDefaults)
    stealthgpt: StealthGptSettings = field(default_factory=StealthGptSettings)
    auto_publish: AutoPublishConfig = field(default_factory=AutoPublishConfig)
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)

    # Node timeouts (seconds)
    node_timeouts: Dict[str, int] = field(default_factory=lambda: {
        "load_rules": 15,
        "cost_data": 30,
        "assign_contributor": 15,
        "draft": 300,
        "humanize": 600,
        "internal_links": 180,
        "monetize": 60,
        "validate": 60,
        "quality": 600,
        "finalize": 10,
    })

    @classmethod
    def from_yaml(cls, path: Optional[Path] = None) -> "Settings":
        """
        Load settings from a YAML file.

        If the file does not exist, returns an instance with all defaults.

        Raises:
            ConfigurationError: If the YAML file exists but cannot be parsed,
                or a nested section holds an unknown key.
        """
        path = path or PROJECT_ROOT / "config" / "settings.yaml"

        data: Dict[str, Any] = {}
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(
                    f"Failed to parse settings YAML at {path}: {exc}"
                ) from exc

        def build(section: str, config_cls: type) -> Any:
            section_data = data.get(section) or {}
            unknown = [k for k in section_data if k not in config_cls.__dataclass_fields__]
            if unknown:
                raise ConfigurationError(
                    f"Unknown keys in '{section}' section of {path}: {unknown}"
                )
            return config_cls(**section_data)

        # -----------------------------------------------------------------
        # Node timeouts (YAML + env var overrides)
        # -----------------------------------------------------------------
        node_timeouts = cls.__dataclass_fields__["node_timeouts"].default_factory()  # type: ignore[misc]
        node_timeouts.update(data.get("node_timeouts") or {})
        for timeout_key in list(node_timeouts):
            env_key = f"NODE_TIMEOUT_{timeout_key.upper()}"
            env_val = os.environ.get(env_key)
            if env_val is not None:
                try:
                    node_timeouts[timeout_key] = int(env_val)
                except (ValueError, TypeError):
                    logger.warning(
                        "Invalid value for %s='%s', using default", env_key, env_val
                    )

        return cls(
            claude_model=data.get("claude_model", "claude-sonnet-4-5-20250929"),
            grok_model=data.get("grok_model", "grok-3"),
            log_level=os.environ.get("LOG_LEVEL", data.get("log_level", "INFO")),
            log_dir=data.get("log_dir", "logs"),
            publish_environment=os.environ.get(
                "PUBLISH_ENVIRONMENT", data.get("publish_environment", "staging")
            ),
            generation=build("generation", GenerationDefaults),
            stealthgpt=build("stealthgpt", StealthGptSettings),
            auto_publish=build("auto_publish", AutoPublishConfig),
            thresholds=build("thresholds", QualityThresholds),
            node_timeouts=node_timeouts,
        )


# ===========================================================================
# SINGLETON SETTINGS ACCESSOR
# ===========================================================================

_settings_instance: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global Settings singleton.

    On first call, loads from ``config/settings.yaml`` (or defaults).
    Subsequent calls return the cached instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings.from_yaml()
    return _settings_instance


def reset_settings() -> None:
    """Reset the cached Settings singleton (tests, config reloads)."""
    global _settings_instance
    _settings_instance = None


# ===========================================================================
# ENVIRONMENT VARIABLE VALIDATION
# ===========================================================================

REQUIRED_ENV_VARS: List[str] = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "ANTHROPIC_API_KEY",
]

OPTIONAL_ENV_VARS: List[str] = [
    "XAI_API_KEY",
    "STEALTHGPT_API_KEY",
    "DATAFORSEO_LOGIN",
    "DATAFORSEO_PASSWORD",
    "N8N_PUBLISH_WEBHOOK_STAGING",
    "N8N_PUBLISH_WEBHOOK_PRODUCTION",
]


def validate_env(strict: bool = True) -> Dict[str, bool]:
    """
    Validate that required environment variables are set.

    Args:
        strict: If ``True``, raise ``ConfigurationError`` when any required
            variable is missing. If ``False``, return the status dict
            without raising.

    Returns:
        Dict mapping variable name to presence status (``True`` if set).

    Raises:
        ConfigurationError: If ``strict=True`` and required vars are missing.
    """
    status: Dict[str, bool] = {}
    missing: List[str] = []

    for var in REQUIRED_ENV_VARS:
        present = bool(os.environ.get(var))
        status[var] = present
        if not present:
            missing.append(var)

    for var in OPTIONAL_ENV_VARS:
        status[var] = bool(os.environ.get(var))

    if strict and missing:
        raise ConfigurationError(
            f"Missing required environment variables: {missing}. "
            f"Copy .env.example to .env and fill in the values."
        )

    return status


# ===========================================================================
# PUBLIC API
# ===========================================================================

__all__ = [
    # Configuration classes
    "QualityThresholds",
    "StealthGptSettings",
    "AutoPublishConfig",
    "GenerationDefaults",
    "Settings",
    # Content rules
    "DEFAULT_CONTENT_RULES",
    "get_default_content_rules",
    # Option lists
    "STEALTHGPT_TONES",
    "STEALTHGPT_MODES",
    "STEALTHGPT_DETECTORS",
    "HUMANIZATION_PROVIDERS",
    # Settings accessor
    "get_settings",
    "reset_settings",
    # Environment validation
    "validate_env",
    "REQUIRED_ENV_VARS",
    "OPTIONAL_ENV_VARS",
    # Constants
    "PROJECT_ROOT",
]
