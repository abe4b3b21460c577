"""Tests for the logging package: models, AgentLogger, ComponentLogger and PipelineRunLogger."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.logging import (
    AgentLogger,
    ComponentLogger,
    LogComponent,
    LogEntry,
    LogLevel,
    PipelineRunLogger,
    get_logger,
    init_logger,
    is_logger_initialized,
    reset_logger,
)


# ---------------------------------------------------------------------------
# Fixed timestamp used across all tests for determinism
# ---------------------------------------------------------------------------
FIXED_TS = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def global_logger(tmp_path):
    """Register a global AgentLogger writing into tmp_path."""
    logger = init_logger(log_dir=str(tmp_path), forward_to_stdlib=False)
    yield logger
    reset_logger()


def _read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


# ===================================================================
# LogLevel / LogComponent
# ===================================================================


class TestLogLevel:
    """LogLevel mirrors the stdlib numeric levels."""

    def test_numeric_values(self) -> None:
        assert [lvl.value for lvl in LogLevel] == [10, 20, 30, 40, 50]

    def test_name_str_returns_lowercase(self) -> None:
        assert LogLevel.WARNING.name_str == "warning"
        assert LogLevel.CRITICAL.name_str == "critical"


class TestLogComponent:
    """Every pipeline stage and vendor client has a component."""

    @pytest.mark.parametrize(
        "member,value",
        [
            ("ORCHESTRATOR", "orchestrator"),
            ("QUEUE", "queue"),
            ("HUMANIZER", "humanizer"),
            ("MONETIZATION", "monetization"),
            ("PUBLISHER", "publisher"),
            ("STEALTHGPT_CLIENT", "stealthgpt_client"),
            ("DATABASE", "database"),
        ],
    )
    def test_values(self, member: str, value: str) -> None:
        assert LogComponent[member].value == value

    def test_values_are_unique(self) -> None:
        values = [c.value for c in LogComponent]
        assert len(values) == len(set(values))


# ===================================================================
# LogEntry
# ===================================================================


class TestLogEntry:
    """LogEntry defaults and serialization."""

    @staticmethod
    def _make_entry(**overrides) -> LogEntry:
        defaults = dict(
            timestamp=FIXED_TS,
            level=LogLevel.INFO,
            component=LogComponent.QUEUE,
            message="Queue item started",
        )
        defaults.update(overrides)
        return LogEntry(**defaults)

    def test_optional_fields_default_to_none(self) -> None:
        entry = self._make_entry()
        assert entry.run_id is None
        assert entry.article_id is None
        assert entry.duration_ms is None
        assert entry.data == {}

    def test_data_default_is_independent_per_instance(self) -> None:
        entry_a = self._make_entry()
        entry_b = self._make_entry()
        entry_a.data["key"] = "value"
        assert "key" not in entry_b.data

    def test_to_dict_keys(self) -> None:
        """to_dict() produces one agent_logs row."""
        assert set(self._make_entry().to_dict()) == {
            "timestamp",
            "level",
            "level_name",
            "component",
            "message",
            "run_id",
            "article_id",
            "data",
            "error_type",
            "error_traceback",
            "duration_ms",
        }

    def test_to_json_matches_to_dict(self) -> None:
        entry = self._make_entry(
            level=LogLevel.ERROR,
            run_id="run-x",
            article_id="article-y",
            data={"score": 92},
            duration_ms=250,
        )
        parsed = json.loads(entry.to_json())

        assert parsed == entry.to_dict()
        assert parsed["level"] == 40
        assert parsed["level_name"] == "error"
        assert parsed["timestamp"] == FIXED_TS.isoformat()

    def test_to_json_serializes_unknown_types_as_strings(self) -> None:
        entry = self._make_entry(data={"when": FIXED_TS})
        assert json.loads(entry.to_json())["data"]["when"] == str(FIXED_TS)

    def test_from_dict_restores_entry(self) -> None:
        entry = self._make_entry(
            level=LogLevel.WARNING,
            component=LogComponent.PUBLISHER,
            article_id="a-1",
            duration_ms=12,
        )
        restored = LogEntry.from_dict(entry.to_dict())

        assert restored == entry

    def test_to_readable_full_format(self) -> None:
        """[LEVEL] [HH:MM:SS] [component] message (Nms)"""
        entry = self._make_entry(
            level=LogLevel.WARNING,
            component=LogComponent.STEALTHGPT_CLIENT,
            message="Slow API call",
            duration_ms=1200,
        )
        assert entry.to_readable() == "[WARN] [12:00:00] [stealthgpt_client] Slow API call (1200ms)"

    def test_to_readable_without_duration(self) -> None:
        assert self._make_entry(level=LogLevel.CRITICAL).to_readable() == (
            "[CRIT] [12:00:00] [queue] Queue item started"
        )


# ===================================================================
# AgentLogger
# ===================================================================


class TestAgentLogger:
    """File outputs, context, ring buffer and database writes."""

    @pytest.mark.asyncio
    async def test_files_by_level(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)

        await logger.debug(LogComponent.QUEUE, "debug line")
        await logger.info(LogComponent.QUEUE, "info line")
        await logger.error(LogComponent.QUEUE, "error line")

        assert [r["message"] for r in _read_lines(tmp_path / "engine.log")] == [
            "debug line",
            "info line",
            "error line",
        ]
        assert [r["message"] for r in _read_lines(tmp_path / "errors.log")] == ["error line"]
        assert [r["message"] for r in _read_lines(tmp_path / "debug.log")] == ["debug line"]

    @pytest.mark.asyncio
    async def test_context_applied_and_cleared(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)

        logger.set_context(run_id="run-1", article_id="article-1")
        await logger.info(LogComponent.ORCHESTRATOR, "inside run")
        logger.clear_context()
        await logger.info(LogComponent.ORCHESTRATOR, "outside run")

        inside, outside = logger.get_recent()
        assert (inside.run_id, inside.article_id) == ("run-1", "article-1")
        assert outside.run_id is None

    @pytest.mark.asyncio
    async def test_error_details_captured(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)
        try:
            raise ValueError("bad slug")
        except ValueError as e:
            await logger.error(LogComponent.PUBLISHER, "Publish failed", error=e)

        entry = logger.get_recent(limit=1)[0]
        assert entry.error_type == "ValueError"
        assert "bad slug" in entry.error_traceback

    @pytest.mark.asyncio
    async def test_get_recent_filters(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)
        await logger.info(LogComponent.QUEUE, "a")
        await logger.warning(LogComponent.HUMANIZER, "b")
        await logger.info(LogComponent.HUMANIZER, "c")

        assert [e.message for e in logger.get_recent(component=LogComponent.HUMANIZER)] == ["b", "c"]
        assert [e.message for e in logger.get_recent(level=LogLevel.WARNING)] == ["b"]
        assert [e.message for e in logger.get_recent(limit=2)] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_ring_buffer_bounded(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)
        logger._max_recent = 3
        for i in range(5):
            await logger.info(LogComponent.QUEUE, f"m{i}")

        assert [e.message for e in logger.get_recent()] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_db_writes_respect_min_level(self, tmp_path) -> None:
        db = MagicMock()
        db.insert_agent_log = AsyncMock()
        logger = AgentLogger(
            log_dir=str(tmp_path), db=db, min_level=LogLevel.WARNING, forward_to_stdlib=False
        )

        await logger.info(LogComponent.QUEUE, "skipped")
        await logger.error(LogComponent.QUEUE, "stored")
        await logger.flush()

        db.insert_agent_log.assert_awaited_once()
        assert db.insert_agent_log.call_args.args[0]["message"] == "stored"

    @pytest.mark.asyncio
    async def test_db_failure_does_not_raise(self, tmp_path, capsys) -> None:
        db = MagicMock()
        db.insert_agent_log = AsyncMock(side_effect=RuntimeError("offline"))
        logger = AgentLogger(log_dir=str(tmp_path), db=db, forward_to_stdlib=False)

        await logger.info(LogComponent.DATABASE, "hello")
        await logger.flush()

        assert "Failed to write to Supabase: offline" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_handlers_called_and_isolated(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)
        seen = []

        def broken(entry):
            raise RuntimeError("boom")

        logger.add_handler(broken)
        logger.add_handler(lambda entry: seen.append(entry.message))

        await logger.info(LogComponent.QUEUE, "x")

        assert seen == ["x"]

    @pytest.mark.asyncio
    async def test_query_logs_without_db_uses_buffer(self, tmp_path) -> None:
        logger = AgentLogger(log_dir=str(tmp_path), forward_to_stdlib=False)
        await logger.info(LogComponent.QUEUE, "a")

        assert [e.message for e in await logger.query_logs()] == ["a"]

    @pytest.mark.asyncio
    async def test_query_logs_from_db(self, tmp_path) -> None:
        row = LogEntry(FIXED_TS, LogLevel.ERROR, LogComponent.PUBLISHER, "Webhook 500").to_dict()
        db = MagicMock()
        db.query_agent_logs = AsyncMock(return_value=[row])
        logger = AgentLogger(log_dir=str(tmp_path), db=db, forward_to_stdlib=False)

        entries = await logger.query_logs(level=LogLevel.ERROR, component=LogComponent.PUBLISHER)

        assert entries[0].message == "Webhook 500"
        kwargs = db.query_agent_logs.call_args.kwargs
        assert kwargs["level"] == 40
        assert kwargs["component"] == "publisher"


class TestGlobalLogger:
    def test_get_logger_before_init_raises(self) -> None:
        reset_logger()
        assert is_logger_initialized() is False
        with pytest.raises(RuntimeError, match="not initialized"):
            get_logger()

    def test_init_registers_singleton(self, global_logger) -> None:
        assert is_logger_initialized() is True
        assert get_logger() is global_logger


# ===================================================================
# ComponentLogger / TimedOperation
# ===================================================================


class TestComponentLogger:
    @pytest.mark.asyncio
    async def test_noop_without_global_logger(self) -> None:
        reset_logger()
        await ComponentLogger(LogComponent.QUEUE).info("nothing happens")

    @pytest.mark.asyncio
    async def test_binds_component(self, global_logger) -> None:
        await ComponentLogger(LogComponent.MONETIZATION).warning("No sponsored programs")

        entry = global_logger.get_recent(limit=1)[0]
        assert entry.component == LogComponent.MONETIZATION
        assert entry.level == LogLevel.WARNING

    @pytest.mark.asyncio
    async def test_timed_success(self, global_logger) -> None:
        log = ComponentLogger(LogComponent.PUBLISHER)

        async with log.timed("Publishing article") as op:
            pass

        started, completed = global_logger.get_recent()
        assert started.message == "Starting: Publishing article"
        assert completed.message == "Completed: Publishing article"
        assert completed.duration_ms == op.duration_ms

    @pytest.mark.asyncio
    async def test_timed_failure_propagates(self, global_logger) -> None:
        log = ComponentLogger(LogComponent.PUBLISHER)

        with pytest.raises(RuntimeError):
            async with log.timed("Publishing article"):
                raise RuntimeError("webhook down")

        failed = global_logger.get_recent(limit=1)[0]
        assert failed.message == "Failed: Publishing article"
        assert failed.level == LogLevel.ERROR
        assert failed.error_type == "RuntimeError"


# ===================================================================
# PipelineRunLogger
# ===================================================================


class TestPipelineRunLogger:
    @pytest.mark.asyncio
    async def test_stages_and_summary(self, global_logger) -> None:
        run = PipelineRunLogger("run-42", idea_id="idea-1")

        await run.start_stage("generate_draft", percentage=10)
        assert run.current_stage == "generate_draft"
        await run.end_stage()
        await run.start_stage("humanize", percentage=40)
        await run.end_stage(status="failed", data={"error": "quota"})
        assert run.current_stage is None

        summary = await run.finish(status="failed")

        assert summary["run_id"] == "run-42"
        assert summary["idea_id"] == "idea-1"
        assert [s["stage"] for s in summary["stages"]] == ["generate_draft", "humanize"]
        assert summary["stages"][1]["data"] == {"error": "quota"}
        assert isinstance(summary["stages"][0]["start"], str)

    @pytest.mark.asyncio
    async def test_run_context_set_then_cleared(self, global_logger) -> None:
        run = PipelineRunLogger("run-7")
        await run.start_stage("validate")

        assert global_logger.get_recent(limit=1)[0].run_id == "run-7"

        await run.finish()
        await global_logger.info(LogComponent.QUEUE, "after")
        assert global_logger.get_recent(limit=1)[0].run_id is None

    @pytest.mark.asyncio
    async def test_end_stage_before_start_is_noop(self, global_logger) -> None:
        run = PipelineRunLogger("run-8")
        await run.end_stage()
        assert run.stages == []

    @pytest.mark.asyncio
    async def test_summary_text(self, global_logger) -> None:
        run = PipelineRunLogger("run-9")
        await run.start_stage("draft")
        await run.end_stage()
        await run.start_stage("publish")
        await run.end_stage(status="failed")

        text = run.get_summary_text()
        assert text.startswith("Generation Run: run-9")
        assert "[OK] draft:" in text
        assert "[FAIL] publish:" in text
        assert "Total:" in text
