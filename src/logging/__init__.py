"""Structured logging for the Perdia content engine."""
from src.logging.models import LogLevel, LogComponent, LogEntry
from src.logging.agent_logger import (
    AgentLogger,
    init_logger,
    get_logger,
    is_logger_initialized,
    reset_logger,
)
from src.logging.component_logger import ComponentLogger, TimedOperation
from src.logging.pipeline_run_logger import PipelineRunLogger

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "AgentLogger", "init_logger", "get_logger", "is_logger_initialized", "reset_logger",
    "ComponentLogger", "TimedOperation",
    "PipelineRunLogger",
]
