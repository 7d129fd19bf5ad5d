"""
Standard request-processing stages.

Manifesto:
    Each stage does one thing and is replaceable. The default order is
    CORS → response init → body decoding → dispatch; servers with different
    needs pass their own sequence to ``create_app(stages=...)``.

Tags:
    envelope-api, stages, cors, body-parsing, dispatch

Doc-Types:
    api-reference
"""

from __future__ import annotations

from envelope_api.api.decoding import BodyDecoder
from envelope_api.api.pipeline import Stage
from envelope_api.api.settings import Settings
from envelope_api.api.stages.body import BodyDecodingStage
from envelope_api.api.stages.cors import CorsStage
from envelope_api.api.stages.dispatch import DispatchStage, Handler, not_found
from envelope_api.api.stages.response_init import ResponseInitStage
from envelope_api.core.envelope import ResponseAccumulator


def default_stages(
    settings: Settings,
    accumulator: ResponseAccumulator,
    handler: Handler | None = None,
) -> tuple[Stage, ...]:
    """Build the standard stage tuple from *settings*."""
    return (
        CorsStage(
            allow_origins=settings.cors_origins,
            allow_credentials=settings.cors_allow_credentials,
        ),
        ResponseInitStage(
            accumulator,
            service_name=settings.service_name,
            service_version=settings.service_version,
        ),
        BodyDecodingStage(BodyDecoder(max_body_size=settings.max_body_size)),
        DispatchStage(
            handler or not_found,
            accumulator,
            timeout=settings.dispatch_timeout_seconds,
        ),
    )


__all__ = [
    "BodyDecodingStage",
    "CorsStage",
    "DispatchStage",
    "Handler",
    "ResponseInitStage",
    "default_stages",
    "not_found",
]
