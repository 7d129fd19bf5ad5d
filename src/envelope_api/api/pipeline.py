"""
Stage pipeline — ordered, short-circuiting request processing.

Manifesto:
    Stages say what should happen next by returning a tagged outcome; they
    never call the next stage, the error path, and the terminal write
    themselves. Only the pipeline acts on an outcome, so a stage cannot
    trigger more than one of them.

Architecture:
    ::

        ctx ──▶ stage 1 ──▶ stage 2 ──▶ ... ──▶ stage n ──▶ responder
                  │            │                   │
                  │ FAIL       │ RESPOND           │ (exception)
                  ▼            ▼                   ▼
              normalizer    responder          normalizer

Tags:
    pipeline, stages, middleware, short-circuit

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from starlette.responses import Response

from envelope_api.core.context import RequestContext
from envelope_api.core.errors import ConsistencyError

if TYPE_CHECKING:
    from envelope_api.api.normalizer import ErrorNormalizer
    from envelope_api.api.responder import TerminalResponder


class OutcomeKind(str, Enum):
    CONTINUE = "CONTINUE"
    FAIL = "FAIL"
    RESPOND = "RESPOND"


@dataclass(frozen=True, slots=True)
class StageOutcome:
    """What a stage wants the pipeline to do next."""

    kind: OutcomeKind
    failure: BaseException | None = None
    response: Response | None = None

    @classmethod
    def proceed(cls) -> StageOutcome:
        return _CONTINUE

    @classmethod
    def fail(cls, failure: BaseException) -> StageOutcome:
        return cls(OutcomeKind.FAIL, failure=failure)

    @classmethod
    def respond(cls, response: Response | None = None) -> StageOutcome:
        """Terminate with the envelope, or with a pre-built *response*."""
        return cls(OutcomeKind.RESPOND, response=response)


_CONTINUE = StageOutcome(OutcomeKind.CONTINUE)


@runtime_checkable
class Stage(Protocol):
    """A named, request-stateless unit of the pipeline."""

    name: str

    async def process(self, ctx: RequestContext) -> StageOutcome:
        ...


class Pipeline:
    """Run stages in order against one request context.

    The stage tuple is fixed at construction and shared by every request.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        normalizer: ErrorNormalizer,
        responder: TerminalResponder,
    ) -> None:
        self._stages: tuple[Stage, ...] = tuple(stages)
        self._normalizer = normalizer
        self._responder = responder

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    async def run(self, ctx: RequestContext) -> None:
        ctx.begin()

        for stage in self._stages:
            try:
                outcome = await stage.process(ctx)
            except ConsistencyError:
                raise
            except Exception as exc:
                outcome = StageOutcome.fail(exc)

            if outcome.kind is OutcomeKind.CONTINUE:
                if ctx.responded:
                    raise ConsistencyError(
                        f"stage {stage.name!r} continued after the response was written"
                    )
                continue

            if outcome.kind is OutcomeKind.FAIL:
                await self._normalizer.handle(ctx, outcome.failure, stage=stage.name)
                return

            await self._complete(ctx, outcome.response, stage=stage.name)
            return

        await self._complete(ctx)

    async def _complete(
        self,
        ctx: RequestContext,
        response: Response | None = None,
        stage: str | None = None,
    ) -> None:
        """Write the response; a failure before the write goes to the error path."""
        try:
            await self._responder.complete(ctx, response)
        except ConsistencyError:
            raise
        except Exception as exc:
            if ctx.responded:
                raise
            await self._normalizer.handle(ctx, exc, stage=stage)
