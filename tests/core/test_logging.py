"""Tests for structured logging module."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest
import structlog

from crm.core.logging import (
    _NOISE_LOGGERS,
    _owner_context,
    add_otel_context,
    add_owner_context,
    configure_logging,
    current_owner,
    owner_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and owner context between tests."""
    token = _owner_context.set(None)
    yield
    _owner_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# ContextVar accessors
# ---------------------------------------------------------------------------


class TestOwnerContext:
    def test_scoped_by_context_manager(self):
        with owner_context("owner-1"):
            assert current_owner() == "owner-1"
        assert current_owner() is None

    def test_default_is_none(self):
        assert current_owner() is None

    def test_nested_scopes_restore_previous(self):
        with owner_context("outer"):
            with owner_context("inner"):
                assert current_owner() == "inner"
            assert current_owner() == "outer"

    async def test_isolated_between_tasks(self):
        async def _owner_in_task(owner: str) -> str | None:
            with owner_context(owner):
                await asyncio.sleep(0)
                return current_owner()

        results = await asyncio.gather(_owner_in_task("a"), _owner_in_task("b"))
        assert results == ["a", "b"]
        assert current_owner() is None


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


class TestAddOwnerContext:
    def test_injects_owner(self):
        with owner_context("owner-7"):
            result = add_owner_context(None, "info", {"event": "test"})
        assert result["owner"] == "owner-7"

    def test_handles_unset_context(self):
        result = add_owner_context(None, "info", {"event": "test"})
        assert result["owner"] is None


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] != "0" * 32
            assert len(result["trace_id"]) == 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_noise_loggers_suppressed(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_reconfigure_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestLogFile:
    def test_file_lands_under_crm_subdir(self, tmp_path: Path):
        configure_logging(log_root=tmp_path, service_name="worker")
        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename.endswith("crm/worker.log")

    def test_file_output_is_json_with_owner(self, tmp_path: Path):
        configure_logging(fmt="text", log_root=tmp_path, service_name="jsontest")
        with owner_context("owner-9"):
            logging.getLogger("crm.test").info("hello structured world")

        content = (tmp_path / "crm" / "jsontest.log").read_text().strip()
        data = json.loads(content.splitlines()[-1])
        assert data["event"] == "hello structured world"
        assert data["owner"] == "owner-9"

    def test_reconfigure_closes_previous_file_handler(self, tmp_path: Path):
        configure_logging(log_root=tmp_path)
        old = next(h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler))
        assert old.stream is not None

        configure_logging(log_root=tmp_path)

        assert old.stream is None
        assert old not in logging.getLogger().handlers
