"""Body-decoding stage."""

from __future__ import annotations

from envelope_api.api.decoding import BodyDecoder
from envelope_api.api.pipeline import StageOutcome
from envelope_api.core.context import RequestContext
from envelope_api.core.errors import DecodeError


class BodyDecodingStage:
    """Decode the request body into ``ctx.body``.

    A :class:`DecodeError` routes the request to the error path instead of
    dispatch.
    """

    name = "body"

    def __init__(self, decoder: BodyDecoder) -> None:
        self._decoder = decoder

    async def process(self, ctx: RequestContext) -> StageOutcome:
        try:
            ctx.body = await self._decoder.decode(ctx.request)
        except DecodeError as exc:
            return StageOutcome.fail(exc)
        return StageOutcome.proceed()
