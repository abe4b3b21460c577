"""Central structured logger with file and Supabase outputs.

``AgentLogger`` writes every entry as a JSON line to local files (via
``aiofiles``) and, when a database is attached, to the ``agent_logs`` table.
Entries are also forwarded to the stdlib ``logging`` tree so console
handlers configured by ``run.py`` see them.  A ring buffer serves
``get_recent()`` without I/O.

Global helpers:
    - ``init_logger()``  -- create and register the singleton
    - ``get_logger()``   -- retrieve it (raises if not initialised)
    - ``is_logger_initialized()`` -- whether ``init_logger()`` has run
"""

import asyncio
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import aiofiles

from src.logging.models import LogComponent, LogEntry, LogLevel
from src.utils import utc_now

_stdlib_logger = logging.getLogger("perdia")


class AgentLogger:
    """Structured logging for every engine component.

    Parameters:
        log_dir: Directory for log files (created if missing).
        db: Optional ``SupabaseDB`` with ``insert_agent_log`` and
            ``query_agent_logs``.
        min_level: Minimum level written to the database.
        forward_to_stdlib: Also emit each entry on the ``perdia.<component>``
            stdlib logger.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        forward_to_stdlib: bool = True,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.db = db
        self.min_level = min_level
        self.forward_to_stdlib = forward_to_stdlib

        self._run_id: Optional[str] = None
        self._article_id: Optional[str] = None

        self._main_log = self.log_dir / "engine.log"
        self._error_log = self.log_dir / "errors.log"
        self._debug_log = self.log_dir / "debug.log"

        self._recent_logs: List[LogEntry] = []
        self._max_recent: int = 1000

        self._handlers: List[Callable[[LogEntry], None]] = []

        # Keep references so pending database writes are not garbage collected
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def set_context(
        self, run_id: Optional[str] = None, article_id: Optional[str] = None
    ) -> None:
        if run_id is not None:
            self._run_id = run_id
        if article_id is not None:
            self._article_id = article_id

    def clear_context(self) -> None:
        self._run_id = None
        self._article_id = None

    def add_handler(self, handler: Callable[[LogEntry], None]) -> None:
        """Register a synchronous callback invoked for every entry."""
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            run_id=self._run_id,
            article_id=self._article_id,
            data=data or {},
            duration_ms=duration_ms,
        )

        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        self._recent_logs.append(entry)
        if len(self._recent_logs) > self._max_recent:
            self._recent_logs.pop(0)

        if self.forward_to_stdlib:
            _stdlib_logger.getChild(component.value).log(level.value, message)

        await self._write_to_file(entry)

        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_db(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception as exc:
                _stdlib_logger.warning("Log handler %r failed: %s", handler, exc)

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        run_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Most recent entries from the in-memory buffer, oldest first."""
        logs = self._recent_logs.copy()
        if level is not None:
            logs = [e for e in logs if e.level == level]
        if component is not None:
            logs = [e for e in logs if e.component == component]
        if run_id is not None:
            logs = [e for e in logs if e.run_id == run_id]
        return logs[-limit:]

    async def query_logs(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        run_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[LogEntry]:
        """Query ``agent_logs``; uses the in-memory buffer without a database."""
        if self.db is None:
            return self.get_recent(limit, level, component, run_id)

        rows = await self.db.query_agent_logs(
            start_time=start_time.isoformat() if start_time else None,
            end_time=end_time.isoformat() if end_time else None,
            level=level.value if level else None,
            component=component.value if component else None,
            run_id=run_id,
            search=search,
            limit=limit,
        )
        return [LogEntry.from_dict(row) for row in rows]

    async def flush(self) -> None:
        """Wait for pending database writes; call before shutdown."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """``engine.log`` gets everything, ``errors.log`` ERROR and above,
        ``debug.log`` DEBUG only."""
        json_line = entry.to_json() + "\n"

        targets = [self._main_log]
        if entry.level.value >= LogLevel.ERROR.value:
            targets.append(self._error_log)
        if entry.level == LogLevel.DEBUG:
            targets.append(self._debug_log)

        for path in targets:
            async with aiofiles.open(path, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_db(self, entry: LogEntry) -> None:
        try:
            await self.db.insert_agent_log(entry.to_dict())
        except Exception as exc:
            # stderr, not the logger: logging this through self would recurse
            print(f"[LOGGING] Failed to write to Supabase: {exc}", file=sys.stderr)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[AgentLogger] = None


def init_logger(
    log_dir: str = "logs",
    db: Any = None,
    min_level: LogLevel = LogLevel.INFO,
    forward_to_stdlib: bool = True,
) -> AgentLogger:
    """Create and register the global ``AgentLogger``."""
    global _logger
    _logger = AgentLogger(
        log_dir=log_dir,
        db=db,
        min_level=min_level,
        forward_to_stdlib=forward_to_stdlib,
    )
    return _logger


def get_logger() -> AgentLogger:
    """
    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger


def is_logger_initialized() -> bool:
    return _logger is not None


def reset_logger() -> None:
    """Forget the global logger (tests)."""
    global _logger
    _logger = None
