"""Structured log records: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Severity with the same numeric values as the stdlib ``logging`` levels.

    Compare on ``.value``; names sort wrongly as strings.
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        return self.name.lower()


class LogComponent(Enum):
    """All engine components that can produce logs."""

    # Pipeline
    ORCHESTRATOR = "orchestrator"
    GENERATION_SERVICE = "generation_service"
    QUEUE = "queue"
    CONTENT_RULES = "content_rules"
    COST_DATA = "cost_data"
    CONTRIBUTORS = "contributors"
    HUMANIZER = "humanizer"
    INTERNAL_LINKER = "internal_linker"
    MONETIZATION = "monetization"
    VALIDATOR = "validator"
    QUALITY = "quality"
    IDEA_DISCOVERY = "idea_discovery"
    REVISION = "revision"

    # Publishing
    PUBLISHER = "publisher"
    AUTO_PUBLISH = "auto_publish"
    PREPUBLISH = "prepublish"

    # Vendor clients
    GROK_CLIENT = "grok_client"
    CLAUDE_CLIENT = "claude_client"
    STEALTHGPT_CLIENT = "stealthgpt_client"
    DATAFORSEO_CLIENT = "dataforseo_client"

    # Infrastructure
    STARTUP = "startup"
    CONFIG = "config"
    DATABASE = "database"
    SCHEDULER = "scheduler"


_LEVEL_TAGS = {
    LogLevel.DEBUG: "[DEBUG]",
    LogLevel.INFO: "[INFO]",
    LogLevel.WARNING: "[WARN]",
    LogLevel.ERROR: "[ERROR]",
    LogLevel.CRITICAL: "[CRIT]",
}


@dataclass
class LogEntry:
    """One structured log event.

    ``run_id`` ties entries to a generation run and ``article_id`` to the
    article it produced or touched.
    """

    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    run_id: Optional[str] = None
    article_id: Optional[str] = None

    data: Dict[str, Any] = field(default_factory=dict)

    error_type: Optional[str] = None
    error_traceback: Optional[str] = None

    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Row for the ``agent_logs`` table."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "run_id": self.run_id,
            "article_id": self.article_id,
            "data": self.data,
            "error_type": self.error_type,
            "error_traceback": self.error_traceback,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """One JSON line for the log files."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(cls, row: Dict[str, Any]) -> "LogEntry":
        return cls(
            timestamp=datetime.fromisoformat(row["timestamp"]),
            level=LogLevel(row["level"]),
            component=LogComponent(row["component"]),
            message=row["message"],
            run_id=row.get("run_id"),
            article_id=row.get("article_id"),
            data=row.get("data") or {},
            error_type=row.get("error_type"),
            error_traceback=row.get("error_traceback"),
            duration_ms=row.get("duration_ms"),
        )

    def to_readable(self) -> str:
        """``[INFO] [12:00:00] [queue] message (15ms)``"""
        msg = (
            f"{_LEVEL_TAGS.get(self.level, '[???]')} "
            f"[{self.timestamp.strftime('%H:%M:%S')}] "
            f"[{self.component.value}] {self.message}"
        )
        if self.duration_ms:
            msg += f" ({self.duration_ms}ms)"
        return msg
