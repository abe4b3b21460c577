"""
Per-generation AI reasoning log.

Records why the pipeline made each decision (contributor, monetization
category, retries, ...) so editors can see it next to the article.  The
finished log is stored on the article as ``ai_reasoning``.
"""

from typing import Any, Dict, List, Optional

from src.utils import utc_now


class AIReasoningLog:
    """Decisions, warnings and data sources for one generation run."""

    def __init__(self, model_used: str = "grok-3", temperature: float = 0.8) -> None:
        self.generated_at = utc_now().isoformat()
        self.model_used = model_used
        self.temperature = temperature
        self.decisions: Dict[str, Dict[str, Any]] = {}
        self.warnings: List[Dict[str, Any]] = []
        self.data_sources: List[Dict[str, Any]] = []

    def log(self, category: str, **data: Any) -> None:
        """Record the decision for *category* (a later call replaces it)."""
        self.decisions[category] = {**data, "logged_at": utc_now().isoformat()}

    def warn(self, warning_type: str, message: str, severity: str = "medium") -> None:
        self.warnings.append({
            "type": warning_type,
            "message": message,
            "severity": severity,
            "logged_at": utc_now().isoformat(),
        })

    def add_data_source(self, source: str, **metadata: Any) -> None:
        self.data_sources.append({
            "source": source,
            **metadata,
            "logged_at": utc_now().isoformat(),
        })

    def decision(self, category: str) -> Optional[Dict[str, Any]]:
        return self.decisions.get(category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "model_used": self.model_used,
            "temperature": self.temperature,
            "decisions": dict(self.decisions),
            "warnings": list(self.warnings),
            "data_sources": list(self.data_sources),
            "finalized_at": utc_now().isoformat(),
        }


__all__ = ["AIReasoningLog"]
