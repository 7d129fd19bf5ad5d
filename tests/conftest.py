"""
Shared pytest fixtures for envelope-api tests.

This module provides:
- A raw ASGI scope/receive/send harness for unit-testing stages, the
  normalizer and the responder without a server
- Settings factories with logging quietened
- structlog reset between tests so log capture stays isolated
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest
import structlog

from envelope_api.api.normalizer import ErrorNormalizer
from envelope_api.api.responder import TerminalResponder
from envelope_api.api.settings import Settings
from envelope_api.core.context import RequestContext
from envelope_api.core.envelope import ResponseAccumulator


# =============================================================================
# ASGI harness
# =============================================================================


class RecordingSend:
    """ASGI ``send`` that records every message."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def starts(self) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == "http.response.start"]

    @property
    def status(self) -> int:
        return self.starts[0]["status"]

    @property
    def headers(self) -> dict[str, str]:
        return {k.decode().lower(): v.decode() for k, v in self.starts[0]["headers"]}

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")

    def json(self) -> Any:
        return json.loads(self.body)


def make_scope(
    method: str = "GET",
    path: str = "/",
    headers: dict[str, str] | None = None,
    query_string: bytes = b"",
) -> dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query_string,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": ("127.0.0.1", 51000),
        "server": ("testserver", 80),
    }


def make_receive(body: bytes = b"") -> Callable[[], Any]:
    pending = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive() -> dict[str, Any]:
        if pending:
            return pending.pop(0)
        return {"type": "http.disconnect"}

    return receive


@pytest.fixture
def make_context() -> Callable[..., tuple[RequestContext, RecordingSend]]:
    """Build a fresh ``(context, send)`` pair for a fake request."""

    def _make(
        method: str = "GET",
        path: str = "/",
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        query_string: bytes = b"",
    ) -> tuple[RequestContext, RecordingSend]:
        send = RecordingSend()
        scope = make_scope(method, path, headers, query_string)
        ctx = RequestContext.from_scope(scope, make_receive(body), send)
        return ctx, send

    return _make


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(service_name="test-api", service_version="9.9.9", log_level="WARNING")


@pytest.fixture
def accumulator() -> ResponseAccumulator:
    return ResponseAccumulator()


@pytest.fixture
def responder() -> TerminalResponder:
    return TerminalResponder()


@pytest.fixture
def normalizer(accumulator: ResponseAccumulator, responder: TerminalResponder) -> ErrorNormalizer:
    return ErrorNormalizer(accumulator, responder)


@pytest.fixture
def exposing_normalizer(accumulator: ResponseAccumulator, responder: TerminalResponder) -> ErrorNormalizer:
    return ErrorNormalizer(accumulator, responder, expose_stack=True)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Ensure every test starts from structlog's default configuration."""
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
