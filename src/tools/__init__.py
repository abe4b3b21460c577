"""
External vendor clients for the Perdia content engine.

This package provides async clients for the AI and SEO services used by the
generation pipeline:

- GrokClient: xAI Grok chat completions for first drafts and idea generation
- ClaudeClient: Anthropic Claude for humanization fallback, auto-fix and links
- StealthGptClient: StealthGPT rephrasing for AI-detection bypass
- DataForSeoClient: DataForSEO keyword suggestions and search volume
"""

from src.tools.claude_client import ClaudeClient
from src.tools.grok_client import GrokClient
from src.tools.stealthgpt_client import StealthGptClient
from src.tools.dataforseo_client import DataForSeoClient

__all__ = [
    "ClaudeClient",
    "GrokClient",
    "StealthGptClient",
    "DataForSeoClient",
]
