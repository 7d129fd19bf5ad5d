"""
Application factory.

``create_app()`` wires the accumulator, normalizer, responder and stages into
a :class:`Pipeline`, wraps it in an :class:`EnvelopeServer` ASGI endpoint, and
mounts that at the root of a ``Starlette`` application.

Manifesto:
    The app factory is the single composition root. Stages receive the
    services they need here, once, and are reused for every request.

Tags:
    envelope-api, app-factory, composition-root, starlette

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.routing import Mount
from starlette.types import Receive, Scope, Send

from envelope_api.api.normalizer import ErrorNormalizer
from envelope_api.api.pipeline import Pipeline, Stage
from envelope_api.api.responder import TerminalResponder
from envelope_api.api.settings import Settings, get_settings
from envelope_api.api.stages import Handler, default_stages
from envelope_api.core.context import RequestContext
from envelope_api.core.envelope import ResponseAccumulator
from envelope_api.core.errors import ConsistencyError
from envelope_api.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

logger = get_logger(__name__)


class EnvelopeServer:
    """ASGI endpoint running every HTTP request through the pipeline."""

    def __init__(self, pipeline: Pipeline, log: Any = None) -> None:
        self.pipeline = pipeline
        self._log = log or logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket":
            await send({"type": "websocket.close", "code": 1003})
            return
        if scope["type"] != "http":
            return

        ctx = RequestContext.from_scope(scope, receive, send)
        bind_context(request_id=ctx.request_id)
        try:
            await self.pipeline.run(ctx)
        except ConsistencyError as exc:
            self._log.critical(
                "consistency_violation",
                error=str(exc),
                method=ctx.method,
                path=ctx.path,
                state=ctx.state.value,
            )
            raise
        finally:
            clear_context()
            await ctx.request.close()


@asynccontextmanager
async def lifespan(app: Starlette) -> AsyncIterator[None]:
    """Application lifespan — startup / shutdown hooks."""
    settings: Settings = app.state.settings
    configure_logging(settings)
    logger.info(
        "server_started",
        name=settings.service_name,
        version=settings.service_version,
        stack_traces=settings.stack_traces,
        stages=app.state.pipeline.stage_names,
    )
    yield
    logger.info("server_stopped")


def build_pipeline(
    settings: Settings,
    handler: Handler | None = None,
    stages: Sequence[Stage] | None = None,
) -> Pipeline:
    """Assemble the pipeline and its services for *settings*."""
    accumulator = ResponseAccumulator()
    responder = TerminalResponder()
    normalizer = ErrorNormalizer(accumulator, responder, expose_stack=settings.stack_traces)
    if stages is None:
        stages = default_stages(settings, accumulator, handler)
    return Pipeline(stages, normalizer, responder)


def create_app(
    *,
    settings: Settings | None = None,
    handler: Handler | None = None,
    stages: Sequence[Stage] | None = None,
) -> Starlette:
    """Build and return a fully-configured application.

    Parameters
    ----------
    settings : Settings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    handler : Handler | None
        Business-logic handler for the dispatch stage. Defaults to a
        handler answering every request with ``not_found``.
    stages : Sequence[Stage] | None
        Replace the default stage sequence entirely.
    """
    settings = settings or get_settings()
    pipeline = build_pipeline(settings, handler=handler, stages=stages)

    app = Starlette(routes=[Mount("/", app=EnvelopeServer(pipeline))], lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    return app
