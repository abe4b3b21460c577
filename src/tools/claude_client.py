"""
Async Claude API client for editing passes.

Uses the ``anthropic`` Python SDK (``AsyncAnthropic``) to interact with
Anthropic's Messages API.  Grok writes the first draft; Claude does every
rewrite that follows: humanization fallback, quality auto-fix, internal
linking and editorial revisions.

Key features:
    - Automatic retry with exponential backoff via ``@with_retry``
    - Token usage tracking (input + output)
    - Structured JSON generation with markdown-fence stripping
    - GetEducated editing prompts (humanize, auto-fix, links, feedback)

If all retry attempts are exhausted the original ``anthropic`` exception
propagates wrapped in ``RetryExhaustedError``.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from anthropic import AsyncAnthropic

from src.agents.quality import build_auto_fix_prompt
from src.utils import strip_code_fences, with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

HTML_FORMATTING_RULES = """=== CRITICAL HTML FORMATTING RULES ===

Your output MUST be properly formatted HTML with:
1. <h2> tags for major section headings
2. <h3> tags for subsections
3. <p> tags wrapping EVERY paragraph of text
4. <ul> and <li> tags for bulleted lists
5. <ol> and <li> tags for numbered lists
6. <strong> or <b> tags for bold text
7. <em> or <i> tags for italic text
8. <a href="..."> tags for any links

NEVER output plain text without HTML tags. Every paragraph MUST be wrapped in <p> tags.

=== END HTML FORMATTING RULES ==="""

HUMANIZE_BANNED_PHRASES: List[str] = [
    "It's important to note that",
    "In today's digital age",
    "In conclusion",
    "Delve into",
    "Dive deep",
    "At the end of the day",
    "Game changer",
    "Revolutionary",
    "Cutting-edge",
    "Leverage",
    "Robust",
    "Seamless",
    "Navigate the landscape",
    "Embark on a journey",
]

GETEDUCATED_PRESERVE_RULES = """=== GETEDUCATED CONTENT RULES (MUST PRESERVE) ===

1. LINKING RULES:
   - All school mentions should link to GetEducated school pages (geteducated.com/online-schools/...)
   - All degree mentions should link to GetEducated degree database (geteducated.com/online-degrees/...)
   - NEVER create links to .edu school websites
   - External links ONLY to BLS, government sites, nonprofit education orgs
   - NEVER link to competitors (onlineu.com, usnews.com, etc.)

2. COST DATA:
   - Preserve all cost data exactly as written (sourced from GetEducated ranking reports)
   - Keep "in-state" and "out-of-state" cost distinctions

3. STRUCTURE:
   - Preserve article navigation sections and all shortcodes
   - Maintain FAQ sections with all questions/answers
   - Keep "How we researched this" attribution

=== END GETEDUCATED RULES ==="""


class ClaudeClient:
    """Async Claude API client.

    Args:
        api_key: Anthropic API key.  Falls back to the
            ``ANTHROPIC_API_KEY`` environment variable.
        model: Model identifier.

    Raises:
        KeyError: If no API key is provided and the environment variable
            is missing.

    Usage::

        claude = ClaudeClient()
        html = await claude.humanize(draft_html, contributor=persona)
        fixed = await claude.auto_fix_quality_issues(html, issues, faqs)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.client = AsyncAnthropic(
            api_key=api_key or os.environ["ANTHROPIC_API_KEY"],
        )
        self.model = model
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    # ------------------------------------------------------------------
    # Text generation
    # ------------------------------------------------------------------

    async def _create(self, **kwargs: Any) -> str:
        response = await self.client.messages.create(model=self.model, **kwargs)

        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens

        logger.debug(
            "Claude call: in=%d out=%d tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response.content[0].text

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Generate a plain-text response for a single user prompt."""
        kwargs: Dict[str, Any] = {
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return await self._create(**kwargs)

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate_structured(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> Dict[str, Any]:
        """Generate a JSON response at temperature 0.3.

        Markdown code fences are stripped before parsing.

        Raises:
            json.JSONDecodeError: If the model returns invalid JSON.
        """
        kwargs: Dict[str, Any] = {
            "messages": [
                {
                    "role": "user",
                    "content": f"{prompt}\n\n"
                    "IMPORTANT: Return ONLY valid JSON, no markdown, no explanation.",
                }
            ],
            "max_tokens": max_tokens,
            "temperature": 0.3,
        }
        if system:
            kwargs["system"] = system
        text = await self._create(**kwargs)
        return json.loads(strip_code_fences(text))

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate_with_messages(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Generate a response from a full conversation history."""
        kwargs: Dict[str, Any] = {
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return await self._create(**kwargs)

    # ------------------------------------------------------------------
    # Editing passes
    # ------------------------------------------------------------------

    async def humanize(
        self,
        content: str,
        contributor: Optional[Dict[str, Any]] = None,
        author_prompt: Optional[str] = None,
        tone_voice: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Rewrite *content* so it reads as human-written (temp 0.9)."""
        prompt = self.build_humanization_prompt(
            content, contributor, author_prompt, tone_voice
        )
        return await self.generate(prompt, max_tokens=4500, temperature=0.9)

    @staticmethod
    def build_humanization_prompt(
        content: str,
        contributor: Optional[Dict[str, Any]] = None,
        author_prompt: Optional[str] = None,
        tone_voice: Optional[Dict[str, Any]] = None,
    ) -> str:
        sections: List[str] = [
            "You are a highly skilled human writer working for GetEducated.com, "
            "an online education resource. Rewrite the following AI-generated "
            "content so it reads as written by a person while keeping "
            "GetEducated's content standards."
        ]

        if author_prompt:
            sections.append(author_prompt)
        elif contributor:
            # display_name is the byline; style_proxy is for voice matching only
            byline = contributor.get("display_name") or contributor.get("name")
            style = contributor.get("writing_style_profile") or {}
            lines = [
                "=== GETEDUCATED AUTHOR PROFILE ===",
                f"Public Byline (REAL NAME): {byline}",
                f"Internal Style Proxy: {contributor.get('style_proxy') or ''} "
                "(for voice matching only - NEVER publish this name)",
                "",
                "VOICE & TONE:",
                contributor.get("voice_description")
                or style.get("style_notes")
                or "Professional education content writer",
            ]
            if contributor.get("signature_phrases"):
                lines.append("SIGNATURE PHRASES TO USE:")
                lines.extend(f'- "{p}"' for p in contributor["signature_phrases"])
            if contributor.get("phrases_to_avoid"):
                lines.append("PHRASES TO AVOID:")
                lines.extend(f'- "{p}"' for p in contributor["phrases_to_avoid"])
            lines.append("=== END AUTHOR PROFILE ===")
            sections.append("\n".join(lines))

        if tone_voice:
            tone_lines = [
                "TONE & VOICE:",
                f"- Tone: {tone_voice.get('tone', 'conversational')}",
                f"- Formality: {tone_voice.get('formality', 'professional')}",
            ]
            if tone_voice.get("banned_phrases"):
                tone_lines.append(
                    "- Never use: " + ", ".join(tone_voice["banned_phrases"][:10])
                )
            if tone_voice.get("preferred_phrases"):
                tone_lines.append(
                    "- Prefer: " + ", ".join(tone_voice["preferred_phrases"][:10])
                )
            sections.append("\n".join(tone_lines))

        sections.append(f"ORIGINAL CONTENT:\n{content}")
        sections.append(GETEDUCATED_PRESERVE_RULES)
        sections.append(HTML_FORMATTING_RULES)
        sections.append(
            "HUMANIZATION TECHNIQUES:\n"
            "1. Use unexpected word choices and avoid predictable transitions\n"
            "2. Mix very short sentences with longer, complex ones\n"
            "3. Write as an education expert helping prospective students\n"
            "4. Use contractions naturally and vary paragraph lengths\n"
            "5. Keep all factual information, headings, links and HTML intact\n\n"
            "BANNED AI PHRASES (never use these):\n"
            + "\n".join(f'- "{p}"' for p in HUMANIZE_BANNED_PHRASES)
        )
        sections.append(
            "OUTPUT ONLY THE REWRITTEN HTML CONTENT. DO NOT include "
            "explanations or meta-commentary."
        )
        return "\n\n".join(sections)

    async def auto_fix_quality_issues(
        self,
        content: str,
        issues: List[Any],
        faqs: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        """Rewrite *content* to resolve the given quality issues (temp 0.7)."""
        prompt = build_auto_fix_prompt(content, issues, faqs, HTML_FORMATTING_RULES)
        return await self.generate(prompt, max_tokens=4500, temperature=0.7)

    async def add_internal_links(
        self, content: str, site_articles: List[Dict[str, Any]]
    ) -> str:
        """Weave 3-5 links to *site_articles* into *content*."""
        article_lines = "\n".join(
            f"- [{a.get('title', '')}]({a.get('url', '')})" for a in site_articles
        )
        prompt = (
            "Add 3-5 contextual internal links to this article content.\n\n"
            f"ARTICLE CONTENT:\n{content}\n\n"
            f"AVAILABLE ARTICLES TO LINK TO:\n{article_lines}\n\n"
            f"{HTML_FORMATTING_RULES}\n\n"
            "INSTRUCTIONS:\n"
            "1. Add links where genuinely relevant\n"
            "2. Use natural anchor text\n"
            "3. Distribute throughout article\n"
            '4. Use HTML format: <a href="URL">anchor text</a>\n'
            "5. Aim for 3-5 links total\n"
            "6. Preserve all existing HTML formatting\n\n"
            "OUTPUT ONLY THE UPDATED HTML CONTENT with links added."
        )
        return await self.generate(prompt, max_tokens=4500, temperature=0.7)

    async def revise_with_feedback(
        self, content: str, feedback_items: List[Dict[str, Any]]
    ) -> str:
        """Apply editorial feedback comments to *content*."""
        feedback_text = "\n\n".join(
            f"{index}. [{str(item.get('category', 'general')).upper()}] "
            f"{item.get('severity', '')}: \"{item.get('selected_text', '')}\"\n"
            f"   Issue: {item.get('comment', '')}"
            for index, item in enumerate(feedback_items, start=1)
        )
        prompt = (
            "You are a content editor revising this article based on "
            f"editorial feedback.\n\nCURRENT CONTENT:\n{content}\n\n"
            f"EDITORIAL FEEDBACK:\n{feedback_text}\n\n"
            "INSTRUCTIONS:\n"
            "1. Address each piece of feedback carefully\n"
            "2. Make necessary revisions to the content\n"
            "3. Maintain the overall structure and tone\n"
            "4. Keep all other content unchanged\n"
            "5. Preserve HTML formatting\n\n"
            "OUTPUT ONLY THE REVISED HTML CONTENT."
        )
        return await self.generate(prompt, max_tokens=4500, temperature=0.7)

    # ------------------------------------------------------------------
    # Usage tracking
    # ------------------------------------------------------------------

    @property
    def usage_stats(self) -> Dict[str, int]:
        """Cumulative token usage since this client was instantiated."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }

    def reset_usage(self) -> None:
        self._total_input_tokens = 0
        self._total_output_tokens = 0


# ---------------------------------------------------------------------------
# MODULE-LEVEL FACTORY
# ---------------------------------------------------------------------------


def get_claude(
    api_key: Optional[str] = None,
    model: str = DEFAULT_MODEL,
) -> ClaudeClient:
    """Create and return a new :class:`ClaudeClient` instance."""
    return ClaudeClient(api_key=api_key, model=model)


__all__ = ["ClaudeClient", "get_claude", "HTML_FORMATTING_RULES", "DEFAULT_MODEL"]
