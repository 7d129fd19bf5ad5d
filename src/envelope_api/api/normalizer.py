"""
Error normalizer — folds any failure into the canonical error envelope.

Every failure that reaches the normalizer is resolved to exactly one
:class:`~envelope_api.core.errors.NormalizedError`, merged into the request's
envelope as::

    {"meta": {"success": false, "status": <int>}, "error": {"id": ..., "message": ...}}

and handed to the terminal responder. The HTTP status lives in
``meta.status`` only.

Policy:
    =========================  ================  ======  =======
    failure                    error.id          status  log
    =========================  ================  ======  =======
    DomainError                its code          its/500 warning
    HTTPException              status phrase     its     warning
    DecodeError (4xx)          invalid_body      its     warning
    DecodeError (other/None)   server_error      500     error
    anything else              server_error      500     error
    ConsistencyError           (re-raised, never normalized)
    =========================  ================  ======  =======

Manifesto:
    The client always gets the same envelope shape. Stack traces always
    reach the server log, and reach the client only when the operator
    turned ``stack_traces`` on.

Tags:
    error-handling, normalization, envelope, logging

Doc-Types:
    api-reference
"""

from __future__ import annotations

import traceback
from http import HTTPStatus
from typing import Any

from starlette.exceptions import HTTPException

from envelope_api.api.responder import TerminalResponder
from envelope_api.core.context import RequestContext
from envelope_api.core.envelope import ResponseAccumulator
from envelope_api.core.errors import (
    ConsistencyError,
    EnvelopeError,
    ErrorKind,
    NormalizedError,
    UnknownError,
)
from envelope_api.observability.logging import get_logger, log_break

logger = get_logger(__name__)

INVALID_BODY_MESSAGE = "The body of your request is invalid."
SERVER_ERROR_MESSAGE = "The server encountered an unknown error."

FALLBACK_ERROR: dict[str, Any] = {"id": "server_error", "message": SERVER_ERROR_MESSAGE}


def stack_lines(exc: BaseException) -> tuple[str, ...]:
    """Format *exc* (with its chain) as an ordered tuple of non-blank lines."""
    text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return tuple(line for line in text.split("\n") if line.strip())


def _code_for_status(status: int) -> str:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        return "http_error"
    return phrase.lower().replace("-", "_").replace(" ", "_").replace("'", "")


class ErrorNormalizer:
    """Turn failures into error envelopes and terminate the request."""

    def __init__(
        self,
        accumulator: ResponseAccumulator,
        responder: TerminalResponder,
        *,
        expose_stack: bool = False,
        log: Any = None,
    ) -> None:
        self._accumulator = accumulator
        self._responder = responder
        self._expose_stack = expose_stack
        self._log = log or logger

    @property
    def expose_stack(self) -> bool:
        return self._expose_stack

    # ── Normalization ────────────────────────────────────────────────────

    def normalize(self, failure: BaseException) -> NormalizedError:
        """Resolve *failure* to a :class:`NormalizedError` and log it.

        Envelope errors are resolved by their :class:`ErrorKind` tag; anything
        else is a starlette ``HTTPException`` or an unknown failure.

        Raises:
            ConsistencyError: *failure* is itself a consistency violation.
        """
        kind = failure.kind if isinstance(failure, EnvelopeError) else None

        match kind:
            case ErrorKind.CONSISTENCY:
                raise failure
            case ErrorKind.DOMAIN:
                normalized = NormalizedError(
                    id=failure.code,
                    status=failure.status or 500,
                    message=failure.message,
                    stack=stack_lines(failure),
                    details=failure.details,
                )
                self._warn(normalized)
            case ErrorKind.DECODE if failure.is_client_error:
                normalized = NormalizedError(
                    id="invalid_body",
                    status=failure.status,
                    message=INVALID_BODY_MESSAGE,
                    stack=stack_lines(failure),
                    cause=self._cause_of(failure),
                )
                self._warn(normalized)
            case ErrorKind.DECODE:
                normalized = NormalizedError(
                    id="server_error",
                    status=500,
                    message=SERVER_ERROR_MESSAGE,
                    stack=stack_lines(failure),
                    cause=self._cause_of(failure),
                )
                self._error(normalized, failure)
            case ErrorKind.UNKNOWN:
                normalized = self._unknown(failure)
                self._error(normalized, failure.cause or failure)
            case None if isinstance(failure, HTTPException):
                normalized = NormalizedError(
                    id=_code_for_status(failure.status_code),
                    status=failure.status_code,
                    message=str(failure.detail),
                    stack=stack_lines(failure),
                )
                self._warn(normalized)
            case _:
                normalized = self._unknown(UnknownError(failure))
                self._error(normalized, failure)

        if isinstance(failure, EnvelopeError):
            failure.handled = True
        return normalized

    def fragment(self, normalized: NormalizedError) -> dict[str, Any]:
        """Envelope fragment for *normalized*, honouring stack exposure."""
        return {
            "meta": {"success": False, "status": normalized.status},
            "error": normalized.to_payload(expose_stack=self._expose_stack),
        }

    def _unknown(self, wrapper: EnvelopeError) -> NormalizedError:
        origin = wrapper.cause or wrapper
        return NormalizedError(
            id=wrapper.code,
            status=500,
            message=wrapper.message,
            stack=stack_lines(origin),
            cause=NormalizedError(
                id=type(origin).__name__,
                status=500,
                message=str(origin),
            ),
        )

    @staticmethod
    def _cause_of(failure: EnvelopeError) -> NormalizedError | None:
        if failure.cause is None:
            return None
        return NormalizedError(
            id=type(failure.cause).__name__,
            status=failure.status or 500,
            message=str(failure.cause),
        )

    def _warn(self, normalized: NormalizedError) -> None:
        self._log.warning(
            "request_failed",
            code=normalized.id,
            message=normalized.message,
            status=normalized.status,
            traceback="\n".join(normalized.stack or ()),
        )
        log_break()

    def _error(self, normalized: NormalizedError, original: BaseException) -> None:
        self._log.error(
            "error_occurred",
            code=normalized.id,
            message=normalized.message,
            status=normalized.status,
            error_type=type(original).__name__,
            cause=repr(original),
            traceback="\n".join(normalized.stack or ()),
        )
        log_break()

    # ── Error path ───────────────────────────────────────────────────────

    async def handle(
        self,
        ctx: RequestContext,
        failure: BaseException,
        stage: str | None = None,
    ) -> None:
        """Normalize *failure* into ``ctx``'s envelope and write the response.

        Only the first failure for a request is written; later ones are
        logged and dropped. Never raises, except for consistency violations
        and transport failures after the response has started.
        """
        if isinstance(failure, ConsistencyError):
            raise failure

        if not ctx.claim_error_path():
            self._log.warning(
                "failure_after_termination",
                stage=stage,
                state=ctx.state.value,
                error=repr(failure),
            )
            return

        try:
            normalized = self.normalize(failure)
            self._accumulator.merge(ctx, self.fragment(normalized), status=normalized.status)
            await self._responder.complete(ctx)
            return
        except ConsistencyError:
            raise
        except Exception as exc:
            if ctx.responded:
                raise
            self._log.error(
                "normalization_failed",
                stage=stage,
                error=repr(exc),
                original=repr(failure),
            )

        self._fallback(ctx)
        await self._responder.complete(ctx)

    def _fallback(self, ctx: RequestContext) -> None:
        """Replace the envelope with a minimal hard-coded ``server_error``."""
        meta = ctx.envelope.get("meta")
        identity = {}
        if isinstance(meta, dict):
            identity = {key: meta[key] for key in ("name", "version") if isinstance(meta.get(key), str)}
        ctx.envelope.clear()
        self._accumulator.merge(
            ctx,
            {"meta": {**identity, "success": False, "status": 500}, "error": dict(FALLBACK_ERROR)},
            status=500,
        )
