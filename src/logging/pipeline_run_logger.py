"""Stage timing for one article generation run.

``PipelineRunLogger`` sets the run context on the global ``AgentLogger``
and records each stage's start, end, outcome and duration:

1. Instantiate with the run id (and the idea being generated).
2. ``start_stage()`` / ``end_stage()`` around each pipeline node.
3. ``finish()`` when the run ends; returns the summary dict.
"""

from typing import Any, Dict, List, Optional

from src.logging.agent_logger import get_logger
from src.logging.models import LogComponent
from src.utils import utc_now


class PipelineRunLogger:
    """Per-stage timing and status for a generation run.

    Parameters:
        run_id: Unique identifier for this run.
        idea_id: Content idea being generated, recorded in the summary.
    """

    def __init__(self, run_id: str, idea_id: Optional[str] = None) -> None:
        self.run_id = run_id
        self.idea_id = idea_id
        self.logger = get_logger()
        self.logger.set_context(run_id=run_id)

        self.start_time = utc_now()
        self.stages: List[Dict[str, Any]] = []

    @property
    def current_stage(self) -> Optional[str]:
        if self.stages and self.stages[-1]["status"] == "running":
            return self.stages[-1]["stage"]
        return None

    async def start_stage(self, stage: str, percentage: Optional[int] = None) -> None:
        self.stages.append({
            "stage": stage,
            "start": utc_now(),
            "end": None,
            "status": "running",
            "percentage": percentage,
            "duration_ms": None,
            "data": None,
        })
        await self.logger.info(
            LogComponent.ORCHESTRATOR,
            f"Stage started: {stage}",
            data={"percentage": percentage} if percentage is not None else None,
        )

    async def end_stage(
        self, status: str = "success", data: Optional[Dict[str, Any]] = None
    ) -> None:
        """Close the most recent stage; a no-op before any stage started."""
        if not self.stages:
            return

        stage = self.stages[-1]
        stage["end"] = utc_now()
        stage["status"] = status
        stage["duration_ms"] = int((stage["end"] - stage["start"]).total_seconds() * 1000)
        stage["data"] = data

        await self.logger.info(
            LogComponent.ORCHESTRATOR,
            f"Stage completed: {stage['stage']} ({status})",
            duration_ms=stage["duration_ms"],
        )

    async def finish(self, status: str = "success") -> Dict[str, Any]:
        """Log and return the run summary, then clear the logger context."""
        end_time = utc_now()
        total_ms = int((end_time - self.start_time).total_seconds() * 1000)

        summary: Dict[str, Any] = {
            "run_id": self.run_id,
            "idea_id": self.idea_id,
            "status": status,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "total_duration_ms": total_ms,
            "stages": [
                {
                    **s,
                    "start": s["start"].isoformat() if s["start"] else None,
                    "end": s["end"].isoformat() if s["end"] else None,
                }
                for s in self.stages
            ],
        }

        await self.logger.info(
            LogComponent.GENERATION_SERVICE,
            f"Generation run completed: {status}",
            data=summary,
            duration_ms=total_ms,
        )
        self.logger.clear_context()
        return summary

    def get_summary_text(self) -> str:
        """Plain-text summary for CLI output."""
        lines: List[str] = [f"Generation Run: {self.run_id}", ""]
        for stage in self.stages:
            marker = "[OK]" if stage["status"] == "success" else "[FAIL]"
            lines.append(f"{marker} {stage['stage']}: {stage.get('duration_ms') or 0}ms")
        total = sum(s.get("duration_ms") or 0 for s in self.stages)
        lines.append(f"\nTotal: {total}ms")
        return "\n".join(lines)
