"""
Async Grok (xAI) client for article drafting.

Uses ``httpx`` to call the xAI chat-completions endpoint.  The generation
pipeline relies on this client for the first draft of every article and
for idea generation from seed topics.

Transient HTTP errors are retried with exponential backoff; a non-2xx
response is turned into a ``VendorAPIError`` carrying the status code.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from src.agents.content_validator import ANTI_HALLUCINATION_RULES
from src.exceptions import VendorAPIError
from src.utils import strip_code_fences, with_retry

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = (
    "You are an expert content writer who creates high-quality, engaging "
    "articles. You write in a natural, conversational style with varied "
    "sentence structure."
)

CONTENT_STRUCTURES: Dict[str, str] = {
    "guide": """
- Introduction (why this matters)
- Main sections with H2 headings
- Step-by-step instructions or explanations
- Examples and use cases
- Best practices
- Common mistakes to avoid
- Conclusion with key takeaways""",
    "listicle": """
- Engaging introduction
- Clear list items with H2 headings
- Each item should have 2-3 paragraphs of explanation
- Use numbers or bullets
- Conclusion that ties it together""",
    "ranking": """
- Introduction explaining ranking criteria
- Ranked list items (e.g., #1, #2, #3)
- Each item with pros/cons
- Clear explanation of why it's ranked that way
- Conclusion with winner summary""",
    "explainer": """
- Introduction (what is this?)
- Background/context
- How it works
- Why it matters
- Real-world examples
- Conclusion""",
    "review": """
- Introduction
- Overview of product/service
- Features breakdown
- Pros and cons
- Who it's for
- Final verdict""",
}

DRAFT_BANNED_PHRASES: List[str] = [
    "In today's digital age",
    "In conclusion",
    "It's important to note that",
    "Delve into",
    "Dive deep",
    "At the end of the day",
    "Game changer",
    "Revolutionary",
    "Cutting-edge",
]

GETEDUCATED_RULES = """=== CRITICAL GETEDUCATED CONTENT RULES ===

1. COST DATA:
   - ALL cost/tuition information MUST reference GetEducated ranking reports
   - Format cost mentions as "According to GetEducated's ranking reports, [school] costs $X including all fees"
   - Include BOTH in-state and out-of-state costs when available
   - NEVER invent or estimate costs - only use data from ranking reports

2. SCHOOL/DEGREE REFERENCES:
   - NEVER invent or fabricate school names (e.g., "University A", "College B", "[School Name]")
   - Only mention specific schools if they appear in the cost data provided above
   - When mentioning degree types generically, use phrases like "many accredited programs" or "leading online universities"
   - NEVER suggest linking directly to school .edu websites
   - If no specific school data is provided, discuss programs in general terms without naming institutions

3. EXTERNAL SOURCES:
   - For salary/job outlook data, reference Bureau of Labor Statistics (BLS)
   - For education statistics, reference NCES, Department of Education
   - Accreditation info should reference official accreditation bodies (AACSB, ABET, etc.)
   - NEVER reference competitor sites (onlineu.com, usnews.com, affordablecollegesonline.com)

4. CONTENT FOCUS:
   - All content must be relevant to ONLINE students
   - Emphasize affordability, flexibility, and career outcomes
   - Discuss accreditation requirements where relevant
   - Help readers make informed decisions about their education

5. STRUCTURE REQUIREMENTS:
   - DO NOT include school recommendation sections (these will be added via shortcodes later)
   - Include article navigation suggestions (anchor links to major sections)
   - Minimum 3 FAQ items relevant to the topic with COMPLETE answers (no truncation)
   - Include a "How we researched this" note mentioning GetEducated's methodology
   - ALWAYS include a proper conclusion section - never end the article abruptly

6. SHORTCODES - CRITICAL:
   - DO NOT generate any shortcodes in the content - they will be added programmatically later
   - DO NOT use these fake shortcode formats: [degree_table], [degree_offer], [ge_monetization], [ge_internal_link], [ge_external_cited]
   - The REAL GetEducated shortcodes are: [su_ge-picks], [su_ge-cta], [su_ge-qdf]
   - If you need to indicate where a degree list should go, just write: <!-- MONETIZATION BLOCK: degree picks for [topic] -->

=== END GETEDUCATED RULES ==="""

DRAFT_JSON_FORMAT = """FORMAT YOUR RESPONSE AS JSON:
{
  "title": "Compelling article title (60-70 characters)",
  "excerpt": "Brief 1-2 sentence summary (150-160 characters)",
  "content": "Full article in HTML format with proper heading tags",
  "meta_title": "SEO-optimized title (50-60 characters)",
  "meta_description": "SEO description (150-160 characters)",
  "focus_keyword": "Primary keyword for SEO",
  "faqs": [
    {"question": "Question 1", "answer": "Answer 1"},
    {"question": "Question 2", "answer": "Answer 2"},
    {"question": "Question 3", "answer": "Answer 3"}
  ]
}"""


class GrokClient:
    """Async wrapper around the xAI chat-completions API.

    Args:
        api_key: xAI API key.  Falls back to the ``XAI_API_KEY``
            environment variable.
        model: Model name; ``grok-3`` unless configured otherwise.

    Usage::

        grok = GrokClient()
        draft = await grok.generate_draft(idea, content_type="guide")
        ideas = await grok.generate_ideas(["online mba", "nursing"], count=5)
    """

    BASE_URL: str = "https://api.x.ai/v1"
    DEFAULT_MAX_TOKENS: int = 12000

    def __init__(
        self, api_key: Optional[str] = None, model: str = "grok-3"
    ) -> None:
        self.api_key: str = api_key or os.environ.get("XAI_API_KEY", "")
        self.model = model

    def is_configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Core request
    # ------------------------------------------------------------------

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError, httpx.TimeoutException),
    )
    async def generate(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.8,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a chat completion and return the assistant text.

        Raises:
            VendorAPIError: On a non-2xx response or a malformed body.
        """
        if not self.api_key:
            raise VendorAPIError("Grok", "XAI_API_KEY is not set")

        async with httpx.AsyncClient(timeout=180.0) as client:
            response = await client.post(
                f"{self.BASE_URL}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens or self.DEFAULT_MAX_TOKENS,
                    "stream": False,
                },
            )

        if response.status_code >= 400:
            raise VendorAPIError(
                "Grok",
                self._error_message(response),
                status_code=response.status_code,
            )

        data = response.json()
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise VendorAPIError("Grok", f"unexpected response shape: {e}") from e

        logger.debug(
            "Grok completion: model=%s, chars=%d", self.model, len(text or "")
        )
        return text or ""

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
            if body.get("message"):
                return body["message"]
        return response.text

    @staticmethod
    def parse_json_response(text: str) -> Any:
        """Parse model output as JSON, tolerating a markdown fence.

        Raises:
            VendorAPIError: If the text is not valid JSON.
        """
        try:
            return json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            raise VendorAPIError("Grok", f"response was not valid JSON: {e}") from e

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    async def generate_draft(
        self,
        idea: Dict[str, Any],
        content_type: str = "guide",
        target_word_count: int = 2000,
        cost_data_context: Optional[str] = None,
        author_profile: Optional[str] = None,
        author_name: Optional[str] = None,
        content_rules_context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Draft an article for *idea*.

        Returns:
            Dict with ``title``, ``excerpt``, ``content``, ``meta_title``,
            ``meta_description``, ``focus_keyword`` and ``faqs``.
        """
        prompt = self.build_draft_prompt(
            idea,
            content_type,
            target_word_count,
            cost_data_context=cost_data_context,
            author_name=author_name,
            content_rules_context=content_rules_context,
        )

        system_prompt = DEFAULT_SYSTEM_PROMPT
        if author_profile:
            system_prompt = (
                "You are an expert content writer creating content for "
                "GetEducated.com. You are writing as "
                f"{author_name or 'a professional author'}.\n\n"
                "=== AUTHOR PROFILE & WRITING STYLE ===\n"
                f"{author_profile}\n"
                "=== END AUTHOR PROFILE ===\n\n"
                "Follow the author's voice, style, and guidelines precisely. "
                "This will ensure consistency across all articles by this author."
            )

        text = await self.generate(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=0.8,
            max_tokens=self.DEFAULT_MAX_TOKENS,
        )
        draft = self.parse_json_response(text)
        if not isinstance(draft, dict):
            raise VendorAPIError("Grok", "draft response was not a JSON object")
        draft.setdefault("faqs", [])
        return draft

    def build_draft_prompt(
        self,
        idea: Dict[str, Any],
        content_type: str,
        target_word_count: int,
        cost_data_context: Optional[str] = None,
        author_name: Optional[str] = None,
        content_rules_context: Optional[str] = None,
    ) -> str:
        sections: List[str] = [
            f"Generate a comprehensive {content_type} article based on this "
            "content idea for GetEducated.com, an online education resource.",
            ANTI_HALLUCINATION_RULES,
        ]
        if cost_data_context:
            sections.append(cost_data_context)
        if author_name:
            sections.append(
                f"AUTHOR: This article is being written by {author_name}. "
                "Follow the author profile in the system prompt precisely."
            )

        idea_lines = [
            "CONTENT IDEA:",
            f"Title: {idea.get('title', '')}",
            f"Description: {idea.get('description') or 'Not provided'}",
        ]
        keyword_data = idea.get("keyword_research_data") or {}
        if keyword_data.get("primary_keyword"):
            idea_lines.append(f"Primary Keyword: {keyword_data['primary_keyword']}")
        if idea.get("seed_topics"):
            idea_lines.append(f"Topics to cover: {', '.join(idea['seed_topics'])}")
        sections.append("\n".join(idea_lines))

        sections.append(
            "REQUIREMENTS:\n"
            f"- Target word count: {target_word_count} words\n"
            f"- Content type: {content_type}\n"
            "- Include an engaging introduction that hooks prospective online students\n"
            "- Use clear headings and subheadings (H2, H3)\n"
            "- Write in a conversational, natural tone that empathizes with readers' education goals\n"
            "- Provide actionable guidance and practical insights (but DO NOT fabricate statistics or specific data)\n"
            "- Vary sentence length (short punchy sentences mixed with longer explanatory ones)\n"
            "- IMPORTANT: Complete the entire article including a proper conclusion - do not cut off mid-sentence"
        )
        sections.append(GETEDUCATED_RULES)
        if content_rules_context:
            sections.append(content_rules_context.strip())
        sections.append(
            "STRUCTURE:"
            + CONTENT_STRUCTURES.get(content_type, CONTENT_STRUCTURES["guide"])
        )
        sections.append(
            "BANNED PHRASES (never use these):\n"
            + "\n".join(f'- "{p}"' for p in DRAFT_BANNED_PHRASES)
        )
        sections.append(DRAFT_JSON_FORMAT)
        sections.append("Generate the article now:")
        return "\n\n".join(sections)

    # ------------------------------------------------------------------
    # Ideas & metadata
    # ------------------------------------------------------------------

    async def generate_ideas(
        self, seed_topics: List[str], count: int = 10
    ) -> List[Dict[str, Any]]:
        """Generate *count* article ideas for the given seed topics."""
        prompt = (
            f"Generate {count} unique, specific content ideas for articles "
            f"about: {', '.join(seed_topics)}\n\n"
            "REQUIREMENTS:\n"
            "- Each idea should be specific and actionable\n"
            "- Include a variety of content types (guides, listicles, how-tos, explanations)\n"
            "- Focus on long-tail, specific angles rather than broad topics\n"
            "- Avoid generic or overused ideas\n\n"
            "FORMAT YOUR RESPONSE AS JSON:\n"
            '{\n  "ideas": [\n    {\n'
            '      "title": "Specific article title",\n'
            '      "description": "Brief description of what the article covers",\n'
            '      "content_type": "guide|listicle|explainer|review|ranking",\n'
            '      "target_keywords": ["keyword1", "keyword2"],\n'
            '      "estimated_word_count": 2000\n'
            "    }\n  ]\n}\n\n"
            "Generate the ideas now:"
        )
        text = await self.generate(
            [
                {
                    "role": "system",
                    "content": "You are a content strategist who generates "
                    "creative, specific article ideas.",
                },
                {"role": "user", "content": prompt},
            ]
        )
        parsed = self.parse_json_response(text)
        return list(parsed.get("ideas") or []) if isinstance(parsed, dict) else []

    async def generate_metadata(
        self, article_content: str, focus_keyword: str
    ) -> Dict[str, Any]:
        """SEO ``meta_title`` / ``meta_description`` / ``slug`` for an article."""
        prompt = (
            "Given this article content and focus keyword, generate optimized "
            f"SEO metadata.\n\nFOCUS KEYWORD: {focus_keyword}\n\n"
            f"ARTICLE EXCERPT:\n{article_content[:500]}...\n\n"
            "Generate:\n"
            "1. SEO-optimized meta title (50-60 characters, include focus keyword)\n"
            "2. Compelling meta description (150-160 characters, include focus keyword)\n"
            "3. URL slug (lowercase, hyphens, keyword-rich)\n\n"
            'FORMAT AS JSON:\n{\n  "meta_title": "title here",\n'
            '  "meta_description": "description here",\n  "slug": "url-slug-here"\n}'
        )
        text = await self.generate(
            [
                {
                    "role": "system",
                    "content": "You are an SEO expert who writes compelling "
                    "metadata that ranks well and gets clicks.",
                },
                {"role": "user", "content": prompt},
            ]
        )
        return self.parse_json_response(text)


__all__ = ["GrokClient", "CONTENT_STRUCTURES", "DRAFT_BANNED_PHRASES"]
