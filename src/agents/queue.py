"""
Generation queue backed by the ``generation_queue`` table.

Items are drained strictly one at a time: highest priority first, oldest
first on ties.  Each item moves pending -> processing -> completed/failed;
a cancelled run leaves it ``cancelled``.  While an item runs, its
``progress_percentage`` and ``current_stage`` columns follow the pipeline's
progress updates.

Provides:
    - stage_for_message(): Map a progress message to a GenerationStage
    - GenerationQueue: enqueue, inspect, retry and drain queue items
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from src.agents.orchestrator import ProgressCallback, notify_progress
from src.exceptions import GenerationCancelledError, GenerationError, ValidationError
from src.logging import ComponentLogger, LogComponent
from src.models import GenerationStage, ProgressUpdate, QueueStatus
from src.utils import utc_now

logger = logging.getLogger("GenerationQueue")

DEFAULT_PRIORITY = 5

# Checked in order; the first keyword found in the lowercased message wins
_STAGE_KEYWORDS = [
    ("auto-fix", GenerationStage.AUTO_FIX),
    ("humaniz", GenerationStage.HUMANIZING),
    ("link", GenerationStage.LINKING),
    ("monetization", GenerationStage.LINKING),
    ("validation", GenerationStage.QUALITY_CHECK),
    ("quality", GenerationStage.QUALITY_CHECK),
    ("finaliz", GenerationStage.SAVING),
    ("saving", GenerationStage.SAVING),
    ("draft", GenerationStage.DRAFTING),
    ("cost data", GenerationStage.DRAFTING),
    ("contributor", GenerationStage.DRAFTING),
    ("content rules", GenerationStage.DRAFTING),
]


def stage_for_message(message: str) -> Optional[GenerationStage]:
    """Best-effort stage for a progress message without an explicit stage."""
    text = (message or "").lower()
    for keyword, stage in _STAGE_KEYWORDS:
        if keyword in text:
            return stage
    return None


class GenerationQueue:
    """
    Sequential work queue for article generation.

    Args:
        db: Optional ``SupabaseDB``; the shared instance is used when omitted.

    Usage::

        queue = GenerationQueue()
        await queue.enqueue(["idea-1", "idea-2"], user_id="u1")
        summary = await queue.run(service, user_id="u1")
    """

    def __init__(self, db: Any = None) -> None:
        self._db = db
        self.log = ComponentLogger(LogComponent.QUEUE)

    async def _get_db(self) -> Any:
        if self._db is None:
            from src.database import get_db
            self._db = await get_db()
        return self._db

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        idea_ids: List[str],
        user_id: Optional[str] = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> List[Dict[str, Any]]:
        if not idea_ids:
            raise ValidationError("idea_ids cannot be empty")

        db = await self._get_db()
        rows = await db.enqueue_items([
            {
                "idea_id": idea_id,
                "user_id": user_id,
                "status": QueueStatus.PENDING.value,
                "priority": priority,
                "progress_percentage": 0,
            }
            for idea_id in idea_ids
        ])
        logger.info("Queued %d idea(s) at priority %d", len(rows), priority)
        return rows

    async def next_pending(self, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        db = await self._get_db()
        return await db.get_next_pending_queue_item(user_id)

    async def _update(self, item_id: str, updates: Dict[str, Any]) -> None:
        db = await self._get_db()
        await db.update_queue_item(item_id, updates)

    async def update_progress(
        self,
        item_id: str,
        percentage: int,
        stage: Optional[GenerationStage] = None,
    ) -> None:
        updates: Dict[str, Any] = {"progress_percentage": max(0, min(100, int(percentage)))}
        if stage is not None:
            updates["current_stage"] = GenerationStage(stage).value
        await self._update(item_id, updates)

    async def mark_processing(self, item_id: str) -> None:
        await self._update(item_id, {
            "status": QueueStatus.PROCESSING.value,
            "started_at": utc_now().isoformat(),
            "progress_percentage": 0,
        })

    async def mark_completed(self, item_id: str, article_id: Optional[str]) -> None:
        await self._update(item_id, {
            "status": QueueStatus.COMPLETED.value,
            "completed_at": utc_now().isoformat(),
            "article_id": article_id,
            "progress_percentage": 100,
        })

    async def mark_failed(self, item_id: str, error_message: str) -> None:
        await self._update(item_id, {
            "status": QueueStatus.FAILED.value,
            "completed_at": utc_now().isoformat(),
            "error_message": error_message,
        })

    async def mark_cancelled(self, item_id: str) -> None:
        await self._update(item_id, {
            "status": QueueStatus.CANCELLED.value,
            "completed_at": utc_now().isoformat(),
        })

    async def retry(self, item_id: str) -> None:
        """Put a failed or cancelled item back to pending from scratch."""
        await self._update(item_id, {
            "status": QueueStatus.PENDING.value,
            "progress_percentage": 0,
            "current_stage": None,
            "error_message": None,
            "started_at": None,
            "completed_at": None,
        })

    async def retry_failed(self, user_id: Optional[str] = None) -> int:
        db = await self._get_db()
        return await db.reset_failed_queue_items(user_id)

    async def set_priority(self, item_id: str, priority: int) -> None:
        await self._update(item_id, {"priority": priority})

    async def remove(self, item_id: str) -> None:
        db = await self._get_db()
        await db.delete_queue_item(item_id)

    async def clear_completed(self, user_id: Optional[str] = None) -> int:
        db = await self._get_db()
        removed = await db.delete_completed_queue_items(user_id)
        logger.info("Cleared %d completed queue item(s)", removed)
        return removed

    async def stats(self, user_id: Optional[str] = None) -> Dict[str, int]:
        """Counts per status (every status present, zero if empty) plus ``total``."""
        db = await self._get_db()
        counts = await db.get_queue_status_counts(user_id)
        result = {status.value: counts.get(status.value, 0) for status in QueueStatus}
        result["total"] = sum(counts.values())
        return result

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_item(
        self,
        service: Any,
        item: Dict[str, Any],
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        task: Any = None,
    ) -> Dict[str, Any]:
        """
        Generate and save the article for one queue item.

        Returns:
            The saved article row.

        Raises:
            GenerationCancelledError: The task was cancelled; the item is
                marked ``cancelled``.
            Exception: Any generation or save failure, after the item is
                marked ``failed``.
        """
        item_id = item["id"]
        idea = item.get("content_ideas")
        if not idea:
            db = await self._get_db()
            idea = await db.get_idea(item["idea_id"])
        if not idea:
            message = f"Content idea {item.get('idea_id')} not found"
            await self.mark_failed(item_id, message)
            raise GenerationError(message)

        await self.mark_processing(item_id)
        await self.log.info(
            f"Processing queue item {item_id}",
            data={"idea_id": idea.get("id"), "title": idea.get("title")},
        )

        async def track(update: ProgressUpdate) -> None:
            stage = (
                GenerationStage(update.stage) if update.stage else stage_for_message(update.message)
            )
            # A failed progress write never fails the item
            try:
                await self.update_progress(item_id, update.percentage, stage)
            except Exception as e:
                logger.warning("Could not record progress for %s: %s", item_id, e)
            await notify_progress(on_progress, update)

        try:
            article = await service.generate_article_complete(
                idea,
                {"content_type": idea.get("content_type") or "guide", "auto_fix": True},
                on_progress=track,
                task=task,
            )
            await track(ProgressUpdate("Saving article...", 98, GenerationStage.SAVING.value))
            saved = await service.save_article(article, idea["id"], item.get("user_id") or user_id)
        except GenerationCancelledError:
            await self.mark_cancelled(item_id)
            await self.log.warning(f"Queue item {item_id} cancelled")
            raise
        except Exception as e:
            await self.mark_failed(item_id, str(e))
            await self.log.error(f"Queue item {item_id} failed", error=e)
            raise

        await self.mark_completed(item_id, saved.get("id"))
        await self.log.info(
            f"Queue item {item_id} completed", data={"article_id": saved.get("id")}
        )
        return saved

    async def process_next(
        self,
        service: Any,
        user_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        task: Any = None,
    ) -> Optional[Dict[str, Any]]:
        """Process the next pending item; ``None`` when the queue is empty."""
        item = await self.next_pending(user_id)
        if item is None:
            return None
        return await self.process_item(service, item, user_id, on_progress, task)

    async def run(
        self,
        service: Any,
        user_id: Optional[str] = None,
        task: Any = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """
        Drain the queue sequentially until it is empty or *task* is cancelled.

        Failed items are recorded and skipped.  Returns a summary with
        ``processed``, ``completed``, ``failed``, ``cancelled`` and
        ``articles``.
        """
        summary: Dict[str, Any] = {
            "processed": 0,
            "completed": 0,
            "failed": 0,
            "cancelled": False,
            "articles": [],
        }
        attempted = set()

        while True:
            if task is not None and task.cancelled:
                summary["cancelled"] = True
                break

            item = await self.next_pending(user_id)
            if item is None:
                break
            if item["id"] in attempted:
                # The status update did not stick; stop instead of looping
                logger.error("Queue item %s is still pending after processing", item["id"])
                break
            attempted.add(item["id"])

            summary["processed"] += 1
            try:
                saved = await self.process_item(service, item, user_id, on_progress, task)
            except GenerationCancelledError:
                summary["cancelled"] = True
                break
            except Exception as e:
                logger.error("Queue item %s failed: %s", item["id"], e)
                summary["failed"] += 1
                if task is not None:
                    task.failed += 1
                continue

            summary["completed"] += 1
            summary["articles"].append(saved)
            if task is not None:
                task.completed += 1

        logger.info(
            "Queue run finished: %d processed, %d completed, %d failed%s",
            summary["processed"],
            summary["completed"],
            summary["failed"],
            " (cancelled)" if summary["cancelled"] else "",
        )
        return summary


__all__ = ["DEFAULT_PRIORITY", "stage_for_message", "GenerationQueue"]
