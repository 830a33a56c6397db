"""Unit tests for logging setup."""

from __future__ import annotations

import json
import logging

import structlog

from infracc.core.logging import configure_logging


class TestConfigureLogging:
    """Test that stdlib loggers render through structlog."""

    def test_level_override(self):
        configure_logging("DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_handlers_use_processor_formatter(self):
        configure_logging("INFO")

        handlers = logging.getLogger().handlers
        assert handlers
        assert all(isinstance(h.formatter, structlog.stdlib.ProcessorFormatter) for h in handlers)

    def test_json_output_includes_bound_context(self):
        configure_logging("INFO", log_format="json")
        formatter = logging.getLogger().handlers[0].formatter
        record = logging.LogRecord("infracc.test", logging.INFO, __file__, 1, "flushed 3 records", None, None)

        with structlog.contextvars.bound_contextvars(ingest_run="abc12345"):
            payload = json.loads(formatter.format(record))

        assert payload["event"] == "flushed 3 records"
        assert payload["ingest_run"] == "abc12345"
        assert payload["level"] == "info"
        assert payload["logger"] == "infracc.test"
