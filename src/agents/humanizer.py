"""
Humanization provider chain.

Rewrites the Grok draft so it reads as human-written.  Providers are tried
in order:

    1. **StealthGPT** -- chunked stealthify passes (optionally double-passed)
    2. **Claude** -- persona-aware rewrite prompt

A provider that is not configured is skipped; one that fails is logged and
the next is tried.  When every provider fails ``HumanizationError`` is
raised.  The chosen provider is simply moved to the front of the chain.

Provides:
    - HumanizationProvider: Provider interface
    - StealthGptProvider / ClaudeProvider: The two concrete providers
    - HumanizerChain: Ordered fallback chain
    - HumanizationResult: Output plus which provider produced it
    - detect_ai_patterns(): Leftover AI phrases in a text
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.agents.formatting import ensure_proper_html_formatting
from src.config import HUMANIZATION_PROVIDERS, StealthGptSettings
from src.exceptions import HumanizationError
from src.tools.claude_client import HUMANIZE_BANNED_PHRASES
from src.utils import strip_html


# =============================================================================
# AI PATTERN DETECTION
# =============================================================================


def detect_ai_patterns(text: str) -> List[str]:
    """Banned AI phrases and monotone rhythm still present in *text*."""
    plain = strip_html(text)
    lowered = plain.lower()
    found = [
        f"AI phrase: '{phrase}'"
        for phrase in HUMANIZE_BANNED_PHRASES
        if phrase.lower() in lowered
    ]

    sentences = [s.strip() for s in re.split(r"[.!?]+", plain) if s.strip()]
    if len(sentences) >= 4:
        lengths = [len(s.split()) for s in sentences]
        avg_len = sum(lengths) / len(lengths)
        avg_deviation = sum(abs(n - avg_len) for n in lengths) / len(lengths)
        if avg_deviation < 2.0:
            found.append(
                "Monotonous sentence length: low variation "
                f"(avg deviation {avg_deviation:.1f} words)"
            )
    return found


# =============================================================================
# PROVIDERS
# =============================================================================


@dataclass
class HumanizationRequest:
    contributor: Optional[Dict[str, Any]] = None
    author_prompt: Optional[str] = None
    tone_voice: Optional[Dict[str, Any]] = None


class HumanizationProvider:
    """One way of humanizing content."""

    name: str = ""

    def is_configured(self) -> bool:
        raise NotImplementedError

    async def humanize(self, content: str, request: HumanizationRequest) -> str:
        raise NotImplementedError


class StealthGptProvider(HumanizationProvider):
    """StealthGPT chunked humanization using the current settings."""

    name = "stealthgpt"

    def __init__(self, client: Any, settings: Optional[StealthGptSettings] = None) -> None:
        self.client = client
        self.settings = settings or StealthGptSettings()

    def is_configured(self) -> bool:
        return self.client.is_configured()

    async def humanize(self, content: str, request: HumanizationRequest) -> str:
        options = self.settings.as_options()
        if self.settings.double_passing:
            return await self.client.humanize_with_double_passing(content, **options)
        return await self.client.humanize_long_content(content, **options)


class ClaudeProvider(HumanizationProvider):
    """Claude rewrite in the contributor's voice."""

    name = "claude"

    def __init__(self, client: Any) -> None:
        self.client = client

    def is_configured(self) -> bool:
        return self.client is not None

    async def humanize(self, content: str, request: HumanizationRequest) -> str:
        return await self.client.humanize(
            content,
            contributor=request.contributor,
            author_prompt=request.author_prompt,
            tone_voice=request.tone_voice,
        )


# =============================================================================
# CHAIN
# =============================================================================


@dataclass
class HumanizationResult:
    content: str
    provider: str
    failures: List[Dict[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class HumanizerChain:
    """
    Ordered humanization fallback.

    Args:
        providers: Providers in the order they should be tried.

    Usage::

        chain = HumanizerChain([StealthGptProvider(stealth), ClaudeProvider(claude)])
        chain.set_preferred("claude")
        result = await chain.humanize(draft_html, contributor=persona)
    """

    def __init__(self, providers: List[HumanizationProvider]) -> None:
        if not providers:
            raise ValueError("HumanizerChain needs at least one provider")
        self.providers = list(providers)
        self.logger = logging.getLogger("Humanizer")

    @property
    def order(self) -> List[str]:
        return [p.name for p in self.providers]

    @property
    def preferred(self) -> str:
        return self.providers[0].name

    def set_preferred(self, name: str) -> None:
        """Move provider *name* to the front; the rest keep their order."""
        if name not in HUMANIZATION_PROVIDERS or name not in self.order:
            raise ValueError('Invalid humanization provider. Use "stealthgpt" or "claude"')
        self.providers.sort(key=lambda p: p.name != name)

    def get(self, name: str) -> Optional[HumanizationProvider]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    async def humanize(
        self,
        content: str,
        contributor: Optional[Dict[str, Any]] = None,
        author_prompt: Optional[str] = None,
        tone_voice: Optional[Dict[str, Any]] = None,
    ) -> HumanizationResult:
        """Humanize *content* with the first provider that succeeds.

        Raises:
            HumanizationError: No configured provider succeeded.
        """
        request = HumanizationRequest(contributor, author_prompt, tone_voice)
        failures: List[Dict[str, str]] = []
        skipped: List[str] = []

        for provider in self.providers:
            if not provider.is_configured():
                self.logger.info("Skipping %s: not configured", provider.name)
                skipped.append(provider.name)
                continue

            self.logger.info("Humanizing with %s...", provider.name)
            try:
                humanized = await provider.humanize(content, request)
            except Exception as exc:
                self.logger.warning(
                    "%s failed, falling back: %s", provider.name, exc
                )
                failures.append({"provider": provider.name, "error": str(exc)})
                continue

            if not humanized or not humanized.strip():
                self.logger.warning("%s returned empty content", provider.name)
                failures.append({"provider": provider.name, "error": "empty result"})
                continue

            leftover = detect_ai_patterns(humanized)
            if leftover:
                self.logger.info(
                    "%d AI patterns remain after %s", len(leftover), provider.name
                )
            return HumanizationResult(
                content=ensure_proper_html_formatting(humanized),
                provider=provider.name,
                failures=failures,
                skipped=skipped,
            )

        details = "; ".join(f"{f['provider']}: {f['error']}" for f in failures)
        raise HumanizationError(
            f"All humanization providers failed ({details or 'none configured'})"
        )


def build_default_chain(
    stealthgpt: Any,
    claude: Any,
    settings: Optional[StealthGptSettings] = None,
    preferred: str = "stealthgpt",
) -> HumanizerChain:
    chain = HumanizerChain([StealthGptProvider(stealthgpt, settings), ClaudeProvider(claude)])
    chain.set_preferred(preferred)
    return chain


__all__ = [
    "detect_ai_patterns",
    "HumanizationRequest",
    "HumanizationProvider",
    "StealthGptProvider",
    "ClaudeProvider",
    "HumanizationResult",
    "HumanizerChain",
    "build_default_chain",
]
