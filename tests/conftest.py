"""Shared fixtures for the Perdia content engine test suite."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear all API keys so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
        "XAI_API_KEY",
        "STEALTHGPT_API_KEY",
        "DATAFORSEO_LOGIN",
        "DATAFORSEO_PASSWORD",
        "N8N_PUBLISH_WEBHOOK_STAGING",
        "N8N_PUBLISH_WEBHOOK_PRODUCTION",
        "PUBLISH_ENVIRONMENT",
        "HUMANIZATION_PROVIDER",
        "AUTO_PUBLISH_ENABLED",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test reads settings from a clean environment."""
    from src.config import reset_settings

    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    ``client.table(...)`` returns a chainable query mock whose ``execute``
    is an ``AsyncMock``; set ``table_mock.execute.return_value`` to control
    the rows a query returns.
    """
    client = MagicMock()
    table_mock = MagicMock()
    for method in (
        "select", "insert", "update", "upsert", "delete", "eq", "neq", "gte",
        "lte", "order", "limit", "range", "single", "in_", "is_", "ilike", "or_",
    ):
        getattr(table_mock, method).return_value = table_mock

    table_mock.not_ = table_mock
    table_mock.execute = AsyncMock(return_value=MagicMock(data=[], count=0))
    client.table.return_value = table_mock
    client.table_mock = table_mock

    rpc_mock = MagicMock()
    rpc_mock.execute = AsyncMock(return_value=MagicMock(data=None))
    client.rpc.return_value = rpc_mock
    client.rpc_mock = rpc_mock
    return client


# ---------------------------------------------------------------------------
# Sample domain data
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_idea():
    """An approved content idea row."""
    return {
        "id": "idea-1",
        "title": "Online MBA Programs: Costs and Career Outcomes",
        "description": "Compare accredited online MBA programs by cost.",
        "content_type": "guide",
        "target_keywords": ["online mba", "mba cost"],
        "status": "approved",
    }


@pytest.fixture
def sample_article_html():
    """Article HTML with a picks shortcode, three H2s, internal links and a citation."""
    paragraph = (
        "<p>Online MBA programs vary widely in cost, format and accreditation. "
        "Students should compare tuition, fees and outcomes before enrolling.</p>"
    )
    return (
        "<p>An online MBA can be an affordable path to leadership roles.</p>"
        '[su_ge-picks category="Business" concentration="MBA" header="GetEducated Picks" '
        'cta-button="View More Degrees"][/su_ge-picks]'
        "<h2>What Does an Online MBA Cost?</h2>"
        + paragraph * 3
        + '<p>See <a href="https://www.geteducated.com/online-degrees/business/">business degrees</a>.</p>'
        "<h2>Accreditation Matters</h2>"
        + paragraph * 3
        + '<p>Read <a href="https://www.geteducated.com/online-college-ratings-and-rankings/">rankings</a> '
        'and <a href="/online-schools/">school profiles</a>.</p>'
        "<h2>Career Outcomes</h2>"
        + paragraph * 3
        + '<p>Salary data from <a href="https://www.bls.gov/ooh/management/">BLS</a>.</p>'
    )


@pytest.fixture
def sample_article(sample_article_html):
    """A saved article row ready for the publish gate."""
    return {
        "id": "article-1",
        "title": "Online MBA Programs: Costs and Career Outcomes",
        "content": sample_article_html,
        "excerpt": "Compare online MBA costs and outcomes.",
        "meta_title": "Online MBA Costs",
        "meta_description": "Compare online MBA program costs and outcomes.",
        "focus_keyword": "online mba",
        "slug": "online-mba-programs-costs-and-career-outcomes",
        "faqs": [
            {"question": "Is an online MBA worth it?", "answer": "Often, yes."},
            {"question": "How long does it take?", "answer": "About two years."},
            {"question": "Is it accredited?", "answer": "Look for AACSB."},
        ],
        "status": "ready_to_publish",
        "quality_score": 90,
        "risk_flags": [],
        "contributor_name": "Tony Huffman",
        "article_contributors": {"name": "Tony Huffman", "display_name": "Tony Huffman"},
    }
