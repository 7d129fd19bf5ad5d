"""CORS stage — cross-origin headers and preflight short-circuit."""

from __future__ import annotations

from collections.abc import Sequence

from starlette.middleware.cors import CORSMiddleware

from envelope_api.api.pipeline import StageOutcome
from envelope_api.core.context import RequestContext


class CorsStage:
    """Apply a CORS policy without touching the envelope.

    The policy itself is starlette's :class:`CORSMiddleware`; this stage only
    asks it which headers to send. Preflight requests are answered directly
    with the policy's response.
    """

    name = "cors"

    def __init__(
        self,
        allow_origins: Sequence[str] = ("*",),
        allow_credentials: bool = False,
        allow_methods: Sequence[str] = ("*",),
        allow_headers: Sequence[str] = ("*",),
    ) -> None:
        self.policy = CORSMiddleware(
            app=None,  # type: ignore[arg-type]
            allow_origins=allow_origins,
            allow_credentials=allow_credentials,
            allow_methods=allow_methods,
            allow_headers=allow_headers,
        )

    async def process(self, ctx: RequestContext) -> StageOutcome:
        headers = ctx.request.headers
        origin = headers.get("origin")
        if origin is None:
            return StageOutcome.proceed()

        if ctx.method == "OPTIONS" and "access-control-request-method" in headers:
            return StageOutcome.respond(self.policy.preflight_response(request_headers=headers))

        for name, value in self.policy.simple_headers.items():
            ctx.transport.set_header(name, value)

        allow_all = self.policy.allow_all_origins
        if (allow_all and "cookie" in headers) or (not allow_all and self.policy.is_allowed_origin(origin=origin)):
            ctx.transport.set_header("Access-Control-Allow-Origin", origin)
            ctx.transport.set_header("Vary", "Origin")
        return StageOutcome.proceed()
