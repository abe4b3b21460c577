"""
Tests for src.agents.humanizer.

Covers:
    - detect_ai_patterns(): banned phrases and monotone sentence rhythm
    - StealthGptProvider / ClaudeProvider delegation
    - HumanizerChain ordering, skipping, fallback and total failure
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.agents.humanizer import (
    ClaudeProvider,
    HumanizationProvider,
    HumanizationRequest,
    HumanizerChain,
    StealthGptProvider,
    build_default_chain,
    detect_ai_patterns,
)
from src.config import StealthGptSettings
from src.exceptions import HumanizationError


class FakeProvider(HumanizationProvider):
    def __init__(self, name, result=None, error=None, configured=True):
        self.name = name
        self.result = result
        self.error = error
        self.configured = configured
        self.calls = 0

    def is_configured(self):
        return self.configured

    async def humanize(self, content, request):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


# =============================================================================
# AI pattern detection
# =============================================================================


class TestDetectAiPatterns:
    def test_banned_phrase(self):
        found = detect_ai_patterns("<p>Let's delve into the details of online MBAs.</p>")
        assert "AI phrase: 'Delve into'" in found

    def test_monotone_rhythm(self):
        text = "One two three four. Five six seven eight. Nine ten eleven twelve. A b c d."
        found = detect_ai_patterns(text)
        assert any(f.startswith("Monotonous sentence length") for f in found)

    def test_varied_text_is_clean(self):
        text = (
            "Short one. This sentence is considerably longer than the first one was. "
            "Tiny. Here is another fairly long sentence that adds even more variety."
        )
        assert detect_ai_patterns(text) == []


# =============================================================================
# Providers
# =============================================================================


class TestStealthGptProvider:
    @pytest.mark.asyncio
    async def test_single_pass_with_settings_options(self):
        client = MagicMock()
        client.humanize_long_content = AsyncMock(return_value="<p>human</p>")
        provider = StealthGptProvider(client, StealthGptSettings(tone="PhD"))

        result = await provider.humanize("<p>draft</p>", HumanizationRequest())

        assert result == "<p>human</p>"
        kwargs = client.humanize_long_content.call_args.kwargs
        assert kwargs["tone"] == "PhD"
        assert kwargs["detector"] == "gptzero"

    @pytest.mark.asyncio
    async def test_double_passing(self):
        client = MagicMock()
        client.humanize_with_double_passing = AsyncMock(return_value="<p>twice</p>")
        provider = StealthGptProvider(client, StealthGptSettings(double_passing=True))

        assert await provider.humanize("<p>draft</p>", HumanizationRequest()) == "<p>twice</p>"

    def test_configured_follows_client(self):
        client = MagicMock()
        client.is_configured.return_value = False
        assert StealthGptProvider(client).is_configured() is False


class TestClaudeProvider:
    @pytest.mark.asyncio
    async def test_passes_persona(self):
        client = MagicMock()
        client.humanize = AsyncMock(return_value="<p>voice</p>")
        persona = {"name": "Sara"}

        await ClaudeProvider(client).humanize(
            "<p>draft</p>",
            HumanizationRequest(contributor=persona, tone_voice={"tone": "warm"}),
        )

        kwargs = client.humanize.call_args.kwargs
        assert kwargs["contributor"] is persona
        assert kwargs["tone_voice"] == {"tone": "warm"}

    def test_not_configured_without_client(self):
        assert ClaudeProvider(None).is_configured() is False


# =============================================================================
# Chain
# =============================================================================


class TestHumanizerChain:
    def test_requires_providers(self):
        with pytest.raises(ValueError):
            HumanizerChain([])

    def test_set_preferred_moves_to_front(self):
        chain = HumanizerChain([FakeProvider("stealthgpt"), FakeProvider("claude")])
        chain.set_preferred("claude")
        assert chain.order == ["claude", "stealthgpt"]
        assert chain.preferred == "claude"

    def test_set_preferred_rejects_unknown(self):
        chain = HumanizerChain([FakeProvider("stealthgpt"), FakeProvider("claude")])
        with pytest.raises(ValueError, match="Invalid humanization provider"):
            chain.set_preferred("gpt4")

    def test_get(self):
        claude = FakeProvider("claude")
        chain = HumanizerChain([FakeProvider("stealthgpt"), claude])
        assert chain.get("claude") is claude
        assert chain.get("other") is None

    @pytest.mark.asyncio
    async def test_first_provider_wins(self):
        stealth = FakeProvider("stealthgpt", result="<h2>A</h2><p>human</p>")
        claude = FakeProvider("claude", result="<p>claude</p>")

        result = await HumanizerChain([stealth, claude]).humanize("<p>draft</p>")

        assert result.provider == "stealthgpt"
        assert result.content.strip() == "<h2>A</h2><p>human</p>"
        assert claude.calls == 0

    @pytest.mark.asyncio
    async def test_unconfigured_provider_skipped(self):
        stealth = FakeProvider("stealthgpt", configured=False)
        claude = FakeProvider("claude", result="<h2>A</h2><p>claude</p>")

        result = await HumanizerChain([stealth, claude]).humanize("<p>draft</p>")

        assert result.provider == "claude"
        assert result.skipped == ["stealthgpt"]
        assert stealth.calls == 0

    @pytest.mark.asyncio
    async def test_failure_falls_back(self):
        stealth = FakeProvider("stealthgpt", error=RuntimeError("quota exceeded"))
        claude = FakeProvider("claude", result="<h2>A</h2><p>claude</p>")

        result = await HumanizerChain([stealth, claude]).humanize("<p>draft</p>")

        assert result.provider == "claude"
        assert result.failures == [{"provider": "stealthgpt", "error": "quota exceeded"}]

    @pytest.mark.asyncio
    async def test_empty_result_falls_back(self):
        stealth = FakeProvider("stealthgpt", result="   ")
        claude = FakeProvider("claude", result="<h2>A</h2><p>claude</p>")

        result = await HumanizerChain([stealth, claude]).humanize("<p>draft</p>")

        assert result.provider == "claude"
        assert result.failures[0]["error"] == "empty result"

    @pytest.mark.asyncio
    async def test_plain_text_result_is_formatted(self):
        claude = FakeProvider("claude", result="Key Points\n\nOnline programs are flexible.")
        result = await HumanizerChain([claude]).humanize("<p>draft</p>")
        assert result.content == "<h3>Key Points</h3>\n\n<p>Online programs are flexible.</p>"

    @pytest.mark.asyncio
    async def test_all_fail_raises(self):
        chain = HumanizerChain([
            FakeProvider("stealthgpt", error=RuntimeError("down")),
            FakeProvider("claude", error=RuntimeError("overloaded")),
        ])
        with pytest.raises(HumanizationError, match="stealthgpt: down; claude: overloaded"):
            await chain.humanize("<p>draft</p>")

    @pytest.mark.asyncio
    async def test_none_configured_raises(self):
        chain = HumanizerChain([FakeProvider("stealthgpt", configured=False)])
        with pytest.raises(HumanizationError, match="none configured"):
            await chain.humanize("<p>draft</p>")


def test_build_default_chain_preferred_claude():
    stealth = MagicMock()
    chain = build_default_chain(stealth, MagicMock(), preferred="claude")
    assert chain.order == ["claude", "stealthgpt"]
