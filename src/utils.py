"""
Shared utility functions used throughout the Perdia content engine.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - @with_retry: Decorator with exponential backoff for transient failures
    - generate_slug(title): URL slug for an article title
    - strip_html / count_words / generate_excerpt: HTML text helpers
    - strip_code_fences(text): Remove markdown fences around model output
"""

from datetime import datetime, timezone
import re
import uuid
import asyncio
import logging
import time as time_module
from functools import wraps
from typing import Callable, TypeVar, Any, Tuple, Type, Optional

from src.exceptions import RetryExhaustedError

T = TypeVar("T")


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of ``datetime.now()`` for every value written to a
    TIMESTAMPTZ column (``published_at``, ``autopublish_deadline``, ...).
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a UUID4 string (run ids, task ids, queue item ids)."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient vendor failures (rate limits, timeouts).
# Eventually raises if all attempts fail.
# ===========================================================================


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    Works with both synchronous and asynchronous functions. Delays grow as
    ``base_delay * 2 ** (attempt - 1)``. Exceptions not listed in
    *retryable_exceptions* propagate immediately.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Delay in seconds before the first retry.
        retryable_exceptions: Exception types that trigger a retry.
        operation_name: Name used in log messages; defaults to the
            wrapped function's ``__name__``.

    Raises:
        RetryExhaustedError: When all retry attempts have been exhausted.

    Usage::

        @with_retry(
            max_attempts=3,
            retryable_exceptions=(httpx.HTTPError, httpx.TimeoutException),
        )
        async def _post(self, payload):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        time_module.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator


# ===========================================================================
# TEXT / HTML HELPERS
# ===========================================================================

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def generate_slug(title: str) -> str:
    """
    Build a URL slug from an article title.

    Lowercases, drops anything outside ``[a-z0-9 -]``, turns whitespace runs
    into hyphens, collapses repeated hyphens and truncates to 60 characters.
    Applying it to its own output returns the same slug.
    """
    slug = (title or "").lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:60]


def strip_html(html: str) -> str:
    """Replace tags with spaces and collapse whitespace."""
    if not html:
        return ""
    text = _TAG_RE.sub(" ", html)
    return _WS_RE.sub(" ", text).strip()


def count_words(html: str) -> int:
    """Count words in an HTML fragment (tags ignored)."""
    text = strip_html(html)
    if not text:
        return 0
    return len([w for w in text.split(" ") if w])


def generate_excerpt(html: str, max_length: int = 160) -> str:
    """
    Plain-text excerpt of at most *max_length* characters.

    Text longer than the limit is cut at the last word boundary and
    suffixed with ``...``.
    """
    text = strip_html(html)
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    last_space = cut.rfind(" ")
    if last_space > 0:
        cut = cut[:last_space]
    return cut + "..."


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1 :]
        else:
            cleaned = cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()
