"""
Tests for structlog configuration.
"""

from __future__ import annotations

import io
import json

import structlog

from envelope_api.api.settings import Settings
from envelope_api.observability import logging as envelope_logging
from envelope_api.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_break,
)


def _json_lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_output(self):
        stream = io.StringIO()
        configure_logging(Settings(_env_file=None), log_format="json", stream=stream)

        get_logger("tests.logging").info("incoming_request", method="GET", url="/x")

        [entry] = _json_lines(stream)
        assert entry["event"] == "incoming_request"
        assert entry["level"] == "info"
        assert entry["logger"] == "tests.logging"
        assert entry["method"] == "GET"
        assert "timestamp" in entry

    def test_level_filters(self):
        stream = io.StringIO()
        configure_logging(Settings(_env_file=None), level="warning", log_format="json", stream=stream)

        log = get_logger("tests.logging")
        log.info("quiet")
        log.warning("loud")

        assert [e["event"] for e in _json_lines(stream)] == ["loud"]

    def test_context_binding(self):
        stream = io.StringIO()
        configure_logging(Settings(_env_file=None), log_format="json", stream=stream)

        bind_context(request_id="req-1")
        get_logger("tests.logging").info("bound")
        clear_context()
        get_logger("tests.logging").info("unbound")

        bound, unbound = _json_lines(stream)
        assert bound["request_id"] == "req-1"
        assert "request_id" not in unbound
        assert structlog.contextvars.get_contextvars() == {}


class TestLogBreak:
    def test_console_mode_writes_separator(self):
        stream = io.StringIO()
        configure_logging(Settings(_env_file=None), log_format="console", stream=stream)
        log_break()
        assert stream.getvalue() == "\n"

    def test_json_mode_stays_line_delimited(self):
        stream = io.StringIO()
        configure_logging(Settings(_env_file=None), log_format="json", stream=stream)
        log_break()
        assert stream.getvalue() == ""
        assert envelope_logging._BREAK_STREAM is None
