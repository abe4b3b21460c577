"""Per-component logger and timed-operation context manager.

``ComponentLogger`` binds one ``LogComponent`` to the global ``AgentLogger``
so call sites only pass the message::

    log = ComponentLogger(LogComponent.PUBLISHER)
    await log.info("Webhook accepted", data={"article_id": article_id})

``TimedOperation`` (from ``ComponentLogger.timed()``) logs how long a block
took and whether it raised; exceptions always propagate.
"""

from typing import Any, Optional

from src.logging.agent_logger import get_logger, is_logger_initialized
from src.logging.models import LogComponent
from src.utils import utc_now


class ComponentLogger:
    """Structured logging for one component.

    Calls are no-ops until ``init_logger()`` has run, so library code can
    log unconditionally.
    """

    def __init__(self, component: LogComponent) -> None:
        self.component = component

    async def _emit(self, method: str, message: str, **kwargs: Any) -> None:
        if not is_logger_initialized():
            return
        await getattr(get_logger(), method)(self.component, message, **kwargs)

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self._emit("debug", message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self._emit("info", message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self._emit("warning", message, **kwargs)

    async def error(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> None:
        await self._emit("error", message, error=error, **kwargs)

    async def critical(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> None:
        await self._emit("critical", message, error=error, **kwargs)

    def timed(self, message: str) -> "TimedOperation":
        """
        Usage::

            async with log.timed("Publishing article"):
                await publish_article(article)
        """
        return TimedOperation(self, message)


class TimedOperation:
    """Logs ``Starting:`` on entry and ``Completed:``/``Failed:`` with
    ``duration_ms`` on exit."""

    def __init__(self, logger: ComponentLogger, message: str) -> None:
        self.logger = logger
        self.message = message
        self.start_time = None
        self.duration_ms: Optional[int] = None

    async def __aenter__(self) -> "TimedOperation":
        self.start_time = utc_now()
        await self.logger.debug(f"Starting: {self.message}")
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        self.duration_ms = int((utc_now() - self.start_time).total_seconds() * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc_val if isinstance(exc_val, Exception) else None,
                duration_ms=self.duration_ms,
            )
        else:
            await self.logger.info(
                f"Completed: {self.message}", duration_ms=self.duration_ms
            )
