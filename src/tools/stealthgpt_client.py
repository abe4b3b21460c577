"""
Async StealthGPT client for content humanization.

Long articles are split into ~1200-character chunks along heading and
paragraph boundaries; each chunk is rephrased iteratively until the API's
``howLikelyToBeDetected`` score reaches the detection threshold (higher is
better) or the iteration budget runs out, keeping the best-scoring version.
"""

import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional

import httpx

from src.exceptions import VendorAPIError
from src.utils import with_retry

logger = logging.getLogger(__name__)


_H2_SPLIT_RE = re.compile(r"(?=<h2)", re.IGNORECASE)
_H3_SPLIT_RE = re.compile(r"(?=<h3)", re.IGNORECASE)
_PARAGRAPH_SPLIT_RE = re.compile(r"(</p>|<br\s*/?>|\n\n)", re.IGNORECASE)


class StealthGptClient:
    """Async wrapper around the StealthGPT ``/stealthify`` endpoint.

    Args:
        api_key: StealthGPT token.  Falls back to ``STEALTHGPT_API_KEY``.
        detection_threshold: Score (0-100) at which iteration stops.
        max_iterations: Rephrasing passes per chunk.
    """

    BASE_URL: str = "https://stealthgpt.ai/api"
    OPTIMAL_CHUNK_SIZE: int = 1200
    MAX_CHUNK_SIZE: int = 1500
    MIN_CHUNK_SIZE: int = 50

    ITERATION_DELAY: float = 0.3
    CHUNK_DELAY: float = 0.5
    PASS_DELAY: float = 1.0

    def __init__(
        self,
        api_key: Optional[str] = None,
        detection_threshold: int = 85,
        max_iterations: int = 3,
    ) -> None:
        self.api_key: str = api_key or os.environ.get("STEALTHGPT_API_KEY", "")
        self.detection_threshold = max(0, min(100, detection_threshold))
        self.max_iterations = max_iterations
        self.default_options: Dict[str, Any] = {
            "tone": "College",
            "mode": "High",
            "business": True,
            "isMultilingual": False,
            "detector": "gptzero",
        }

    def is_configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError, httpx.TimeoutException),
    )
    async def _stealthify(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.is_configured():
            raise VendorAPIError("StealthGPT", "STEALTHGPT_API_KEY is not set")

        async with httpx.AsyncClient(timeout=120.0) as client:
            response = await client.post(
                f"{self.BASE_URL}/stealthify",
                headers={
                    "api-token": self.api_key,
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        if response.status_code >= 400:
            raise VendorAPIError(
                "StealthGPT", response.text, status_code=response.status_code
            )
        return response.json()

    def _payload(self, prompt: str, rephrase: bool, options: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**self.default_options, **{k: v for k, v in options.items() if v is not None}}
        return {
            "prompt": prompt,
            "rephrase": rephrase,
            "tone": merged["tone"],
            "mode": merged["mode"],
            "business": merged["business"],
            "isMultilingual": merged["isMultilingual"],
            "detector": merged["detector"],
        }

    # ------------------------------------------------------------------
    # Humanization
    # ------------------------------------------------------------------

    async def humanize_chunk(
        self,
        content: str,
        max_iterations: Optional[int] = None,
        detection_threshold: Optional[int] = None,
        **options: Any,
    ) -> Dict[str, Any]:
        """Rephrase one chunk until it scores at or above the threshold.

        Returns:
            ``{"result", "detection_score", "iterations"}``.  When the
            threshold is never met the best-scoring rephrase is returned.

        Raises:
            VendorAPIError: When the API returns an empty result.
        """
        max_iterations = max_iterations or self.max_iterations
        threshold = (
            self.detection_threshold
            if detection_threshold is None
            else detection_threshold
        )

        current = content
        best_content, best_score = content, 0
        iterations = 0

        while iterations < max_iterations:
            iterations += 1
            data = await self._stealthify(self._payload(current, True, options))
            if not data.get("result"):
                raise VendorAPIError("StealthGPT", "returned empty result")

            current = data["result"]
            score = data.get("howLikelyToBeDetected") or 0
            logger.debug("StealthGPT iteration %d: score=%s", iterations, score)

            if score > best_score:
                best_content, best_score = current, score

            if score >= threshold:
                return {
                    "result": current,
                    "detection_score": score,
                    "iterations": iterations,
                }

            if iterations < max_iterations:
                await asyncio.sleep(self.ITERATION_DELAY)

        logger.info(
            "StealthGPT max iterations reached, best score %s (target %s)",
            best_score,
            threshold,
        )
        return {
            "result": best_content,
            "detection_score": best_score,
            "iterations": iterations,
        }

    async def humanize(self, content: str, **options: Any) -> str:
        """Humanize *content* as a single chunk."""
        result = await self.humanize_chunk(content, **options)
        return result["result"]

    @staticmethod
    def split_by_headings(content: str) -> List[str]:
        parts = [p for p in _H2_SPLIT_RE.split(content) if p.strip()]
        if len(parts) > 1:
            return parts
        h3_parts = [p for p in _H3_SPLIT_RE.split(content) if p.strip()]
        if len(h3_parts) > 1:
            return h3_parts
        return [content]

    def split_into_optimal_chunks(self, content: str) -> List[str]:
        """Split HTML into chunks of roughly ``OPTIMAL_CHUNK_SIZE`` chars.

        Sections (by ``<h2>``, then ``<h3>``) that fit in
        ``MAX_CHUNK_SIZE`` stay whole; larger ones are split at paragraph
        boundaries.  Chunks shorter than 50 characters are dropped.
        """
        chunks: List[str] = []
        for section in self.split_by_headings(content):
            if len(section) <= self.MAX_CHUNK_SIZE:
                chunks.append(section)
                continue

            current = ""
            for piece in _PARAGRAPH_SPLIT_RE.split(section):
                if current and len(current) + len(piece) > self.OPTIMAL_CHUNK_SIZE:
                    chunks.append(current.strip())
                    current = ""
                current += piece
                if len(current) >= self.OPTIMAL_CHUNK_SIZE:
                    chunks.append(current.strip())
                    current = ""
            if current.strip():
                chunks.append(current.strip())

        return [c for c in chunks if len(c.strip()) >= self.MIN_CHUNK_SIZE]

    async def humanize_long_content(self, content: str, **options: Any) -> str:
        """Humanize a full article chunk by chunk.

        A chunk that fails keeps its original text; chunks are re-joined
        with blank lines.
        """
        chunks = self.split_into_optimal_chunks(content)
        logger.info(
            "StealthGPT processing %d chars in %d chunks", len(content), len(chunks)
        )

        humanized: List[str] = []
        total_score = 0
        for index, chunk in enumerate(chunks):
            try:
                result = await self.humanize_chunk(chunk, **options)
                humanized.append(result["result"])
                total_score += result["detection_score"]
                if index < len(chunks) - 1:
                    await asyncio.sleep(self.CHUNK_DELAY)
            except Exception as e:
                logger.warning(
                    "StealthGPT chunk %d/%d failed, keeping original: %s",
                    index + 1,
                    len(chunks),
                    e,
                )
                humanized.append(chunk)

        if chunks:
            logger.info(
                "StealthGPT complete, avg score %d", round(total_score / len(chunks))
            )
        return "\n\n".join(humanized)

    async def humanize_with_double_passing(self, content: str, **options: Any) -> str:
        """Two full passes; the second uses two iterations per chunk."""
        first_pass = await self.humanize_long_content(content, **options)
        await asyncio.sleep(self.PASS_DELAY)
        second_options = {**options, "max_iterations": 2}
        return await self.humanize_long_content(first_pass, **second_options)

    async def generate(self, prompt: str, **options: Any) -> str:
        """Generate new text from *prompt* (no rephrasing)."""
        data = await self._stealthify(self._payload(prompt, False, options))
        if not data.get("result"):
            raise VendorAPIError("StealthGPT", "returned empty result")
        return data["result"]


__all__ = ["StealthGptClient"]
