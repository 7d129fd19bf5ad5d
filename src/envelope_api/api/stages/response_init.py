"""Response-init stage — arrival time, baseline meta, access log."""

from __future__ import annotations

from typing import Any

from envelope_api.api.pipeline import StageOutcome
from envelope_api.core.context import RequestContext
from envelope_api.core.envelope import ResponseAccumulator
from envelope_api.observability.logging import get_logger

logger = get_logger(__name__)


class ResponseInitStage:
    """Seed the envelope with ``meta.name`` and ``meta.version``."""

    name = "response_init"

    def __init__(
        self,
        accumulator: ResponseAccumulator,
        service_name: str,
        service_version: str,
        log: Any = None,
    ) -> None:
        self._accumulator = accumulator
        self._baseline = {"meta": {"name": service_name, "version": service_version}}
        self._log = log or logger

    async def process(self, ctx: RequestContext) -> StageOutcome:
        ctx.mark_arrival()
        self._log.info("incoming_request", method=ctx.method, url=ctx.url, ip=ctx.client)
        self._accumulator.merge(ctx, self._baseline)
        return StageOutcome.proceed()
