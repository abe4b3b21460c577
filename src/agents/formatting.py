"""
HTML formatting repair for model output.

Models sometimes return plain text despite HTML instructions.  Content that
already has ``<p>`` and ``<h2>``/``<h3>`` tags only gets spacing cleanup;
anything else is split into blocks and wrapped.
"""

import logging
import re
from typing import Pattern

logger = logging.getLogger(__name__)

_HAS_P_RE = re.compile(r"<p[^>]*>", re.IGNORECASE)
_HAS_HEADING_RE = re.compile(r"<h[23][^>]*>", re.IGNORECASE)
_BLOCK_END_RES = [
    re.compile(r"(</h[23]>)(?!\s*<)", re.IGNORECASE),
    re.compile(r"(</p>)(?!\s*<)", re.IGNORECASE),
    re.compile(r"(</ul>)(?!\s*<)", re.IGNORECASE),
    re.compile(r"(</ol>)(?!\s*<)", re.IGNORECASE),
]
_SEGMENT_SPLIT_RE = re.compile(r"\n\s*\n|<br\s*/?>\s*<br\s*/?>", re.IGNORECASE)
_ALREADY_WRAPPED_RE = re.compile(r"^<(h[123456]|p|ul|ol|div)", re.IGNORECASE)
_BULLET_RE = re.compile(r"^[-*•]\s")
_BULLET_STRIP_RE = re.compile(r"^[-*•]\s*")
_NUMBERED_RE = re.compile(r"^\d+[.)]\s")
_NUMBERED_STRIP_RE = re.compile(r"^\d+[.)]\s*")


def _wrap_list(segment: str, tag: str, strip_re: Pattern) -> str:
    items = [line for line in re.split(r"[\n\r]+", segment) if line.strip()]
    lis = "\n".join(f"<li>{strip_re.sub('', item).strip()}</li>" for item in items)
    return f"<{tag}>\n{lis}\n</{tag}>"


def _wrap_segment(segment: str) -> str:
    if _ALREADY_WRAPPED_RE.match(segment):
        return segment
    if _BULLET_RE.match(segment):
        return _wrap_list(segment, "ul", _BULLET_STRIP_RE)
    if _NUMBERED_RE.match(segment):
        return _wrap_list(segment, "ol", _NUMBERED_STRIP_RE)
    if len(segment) < 100 and not segment.endswith((".", "?", "!")):
        return f"<h3>{segment.replace('**', '').strip()}</h3>"
    return f"<p>{segment}</p>"


def ensure_proper_html_formatting(content: str) -> str:
    """Return *content* with paragraphs, lists and headings wrapped in tags."""
    if not content:
        return content

    if _HAS_P_RE.search(content) and _HAS_HEADING_RE.search(content):
        for pattern in _BLOCK_END_RES:
            content = pattern.sub(r"\1\n\n", content)
        return content

    logger.warning("Content missing proper HTML formatting - attempting to fix")
    segments = (s.strip() for s in _SEGMENT_SPLIT_RE.split(content))
    return "\n\n".join(_wrap_segment(s) for s in segments if s)


__all__ = ["ensure_proper_html_formatting"]
