"""
Terminal responder — the single writer of every response.

Tags:
    responder, terminal-write, duration, envelope

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse, Response

from envelope_api.core.context import RequestContext
from envelope_api.core.errors import ConsistencyError
from envelope_api.observability.logging import get_logger, log_break

logger = get_logger(__name__)


class TerminalResponder:
    """Serialize the envelope and end the request exactly once."""

    def __init__(self, log: Any = None) -> None:
        self._log = log or logger

    async def complete(self, ctx: RequestContext, response: Response | None = None) -> None:
        """Write the response for *ctx*.

        The envelope is serialized before the responded flag is set, so a
        payload that cannot be rendered still leaves the request open for
        the error path.

        Raises:
            ConsistencyError: The request was already responded.
        """
        if ctx.responded:
            raise ConsistencyError(f"response already written for {ctx.method} {ctx.path}")

        duration = ctx.elapsed_ms()
        if response is None:
            meta = ctx.envelope.setdefault("meta", {})
            meta["duration"] = f"{duration}ms"
            response = JSONResponse(ctx.envelope, status_code=ctx.transport.status_code)

        ctx.mark_responded()

        self._log.info(
            "request_duration",
            duration=duration,
            unit="ms",
            status=response.status_code,
        )
        log_break()

        await ctx.transport.send(response)
