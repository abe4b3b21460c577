"""
Tests for src.utils module.

Covers:
    - utc_now() / ensure_utc(): timezone handling for TIMESTAMPTZ columns
    - generate_id(): UUID4 strings
    - with_retry(): backoff for transient vendor failures
    - generate_slug / strip_html / count_words / generate_excerpt
    - strip_code_fences(): cleaning model output before JSON parsing
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest

from src.exceptions import RetryExhaustedError
from src.utils import (
    count_words,
    ensure_utc,
    generate_excerpt,
    generate_id,
    generate_slug,
    strip_code_fences,
    strip_html,
    utc_now,
    with_retry,
)


# ===========================================================================
# Time and ids
# ===========================================================================


def test_utc_now_is_timezone_aware():
    assert utc_now().tzinfo == timezone.utc


def test_ensure_utc_treats_naive_as_utc():
    """A naive datetime keeps its wall-clock value and gains UTC."""
    result = ensure_utc(datetime(2025, 6, 15, 12, 0, 0))
    assert result == datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_ensure_utc_converts_other_zones():
    plus_five = timezone(timedelta(hours=5))
    result = ensure_utc(datetime(2025, 6, 15, 17, 0, tzinfo=plus_five))
    assert result.tzinfo == timezone.utc
    assert result.hour == 12


def test_generate_id_is_unique_uuid4():
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(UUID(i).version == 4 for i in ids)


# ===========================================================================
# with_retry()
# ===========================================================================


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_failure():
    """A vendor call that fails once is retried after base_delay."""
    calls = {"count": 0}

    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, base_delay=2.0)
        async def fetch_draft():
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConnectionError("reset by peer")
            return "<p>draft</p>"

        assert await fetch_draft() == "<p>draft</p>"

    assert calls["count"] == 2
    mock_sleep.assert_called_once_with(2.0)


@pytest.mark.asyncio
async def test_with_retry_raises_retry_exhausted_with_last_error():
    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, base_delay=1.0, operation_name="humanize")
        async def humanize():
            raise TimeoutError("vendor timeout")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await humanize()

    assert exc_info.value.operation == "humanize"
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.last_error, TimeoutError)
    # Backoff doubles: 1.0 then 2.0, no sleep after the last attempt
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@patch("src.utils.time_module.sleep")
def test_with_retry_does_not_retry_unlisted_exceptions(mock_sleep):
    @with_retry(max_attempts=3, retryable_exceptions=(ConnectionError,))
    def parse():
        raise ValueError("bad json")

    with pytest.raises(ValueError, match="bad json"):
        parse()
    mock_sleep.assert_not_called()


def test_with_retry_preserves_name():
    @with_retry()
    async def generate_draft():
        pass

    assert generate_draft.__name__ == "generate_draft"


# ===========================================================================
# Text helpers
# ===========================================================================


class TestGenerateSlug:
    def test_basic_title(self):
        assert generate_slug("Best Online MBA Programs 2025") == "best-online-mba-programs-2025"

    def test_drops_punctuation_and_collapses_hyphens(self):
        assert generate_slug("RN-to-BSN:  What's  Next?") == "rn-to-bsn-whats-next"

    def test_truncates_to_sixty_characters(self):
        assert len(generate_slug("word " * 40)) == 60

    def test_idempotent(self):
        slug = generate_slug("Cheapest Online Master's in Nursing Education")
        assert generate_slug(slug) == slug

    def test_empty_title(self):
        assert generate_slug("") == ""


class TestHtmlText:
    def test_strip_html_removes_tags_and_collapses_whitespace(self):
        assert strip_html("<h2>Cost</h2>\n<p>Tuition   is  <b>low</b>.</p>") == "Cost Tuition is low ."

    def test_strip_html_empty(self):
        assert strip_html("") == ""

    def test_count_words_ignores_tags(self):
        assert count_words("<p>One two</p><p>three <a href='/x'>four</a></p>") == 4

    def test_count_words_empty(self):
        assert count_words("<p></p>") == 0


class TestGenerateExcerpt:
    def test_short_text_returned_whole(self):
        assert generate_excerpt("<p>Short intro.</p>") == "Short intro."

    def test_long_text_cut_at_word_boundary(self):
        html = "<p>" + "tuition " * 50 + "</p>"
        excerpt = generate_excerpt(html, max_length=40)
        assert excerpt.endswith("...")
        assert not excerpt[:-3].endswith(" ")
        assert len(excerpt) <= 43
        assert all(word == "tuition" for word in excerpt[:-3].split(" "))


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_unchanged(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'
