"""
Dispatch stage — hand the request to the business-logic handler.

A handler is any callable taking the request context and returning a
mapping (merged into the envelope), ``None``, or an awaitable of either.
Plain functions run in a worker thread, so blocking handlers do not stall
the event loop and still honour the dispatch timeout.
Failures are raised; the pipeline routes them to the error normalizer::

    async def get_widgets(ctx: RequestContext) -> dict:
        if ctx.path != "/widgets":
            raise DomainError("not_found", "No such resource.", status=404)
        return {"widgets": [...]}
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Union

from envelope_api.api.pipeline import StageOutcome
from envelope_api.core.context import RequestContext
from envelope_api.core.envelope import ResponseAccumulator
from envelope_api.core.errors import DomainError

HandlerResult = Union[Mapping[str, Any], None]
Handler = Callable[[RequestContext], Union[HandlerResult, Awaitable[HandlerResult]]]


async def not_found(ctx: RequestContext) -> HandlerResult:
    """Default handler: every request is a 404."""
    raise DomainError(
        "not_found",
        f"No resource at {ctx.method} {ctx.path}.",
        status=404,
    )


class DispatchStage:
    """Invoke the handler and terminate with the accumulated envelope."""

    name = "dispatch"

    def __init__(
        self,
        handler: Handler,
        accumulator: ResponseAccumulator,
        timeout: float | None = None,
    ) -> None:
        self._handler = handler
        self._accumulator = accumulator
        self._timeout = timeout

    async def process(self, ctx: RequestContext) -> StageOutcome:
        payload = await self._invoke(ctx)
        if payload is not None and not isinstance(payload, Mapping):
            raise TypeError(
                f"handler must return a mapping or None, got {type(payload).__name__}"
            )
        self._accumulator.merge(ctx, payload)
        return StageOutcome.respond()

    async def _invoke(self, ctx: RequestContext) -> Any:
        if self._timeout is None:
            return await self._call(ctx)
        try:
            return await asyncio.wait_for(self._call(ctx), self._timeout)
        except asyncio.TimeoutError as exc:
            raise DomainError(
                "request_timeout",
                "The request took too long to process.",
                status=504,
                cause=exc,
            ) from exc

    async def _call(self, ctx: RequestContext) -> Any:
        # Plain callables run in a worker thread.
        if inspect.iscoroutinefunction(self._handler):
            return await self._handler(ctx)
        result = await asyncio.to_thread(self._handler, ctx)
        if inspect.isawaitable(result):
            result = await result
        return result
