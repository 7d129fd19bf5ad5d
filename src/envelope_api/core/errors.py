"""
Structured error types for the envelope API core.

Every failure that reaches the error normalizer is one of four tagged kinds.
The kind decides the HTTP status, the log severity, and whether the request
can be recovered with a client-visible envelope at all.

Manifesto:
    - **Tagged kinds:** Each error carries an ``ErrorKind`` so the normalizer
      resolves it with a ``match`` instead of ad-hoc ``isinstance`` chains
    - **Stable ids:** Clients branch on ``error.id``, never on messages
    - **Fatal consistency:** Composition bugs are never turned into a
      friendly envelope

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     EnvelopeError                         │
        │               (kind, code, message, status)               │
        ├──────────────┬──────────────┬──────────────┬─────────────┤
        │ DomainError  │ DecodeError  │ UnknownError │ Consistency │
        │ (DOMAIN)     │ (DECODE)     │ (UNKNOWN)    │ Error       │
        │ expected     │ malformed    │ forced 500   │ (fatal)     │
        │ business     │ request body │ wraps cause  │             │
        └──────────────┴──────────────┴──────────────┴─────────────┘

Examples:
    >>> err = DomainError("not_found", "No such widget.", status=404)
    >>> err.kind
    <ErrorKind.DOMAIN: 'DOMAIN'>
    >>> err.to_dict()
    {'id': 'not_found', 'message': 'No such widget.', 'status': 404}

Tags:
    error-handling, exception-hierarchy, envelope, normalization

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Tag attached to every :class:`EnvelopeError`."""

    DOMAIN = "DOMAIN"             # Known code/message/status
    DECODE = "DECODE"             # Malformed request body
    UNKNOWN = "UNKNOWN"           # Anything unrecognized
    CONSISTENCY = "CONSISTENCY"   # Internal invariant violation


class EnvelopeError(Exception):
    """Base class for all errors understood by the error normalizer.

    Attributes:
        kind: Tag used by the normalizer to pick a policy.
        code: Stable machine-readable identifier (``error.id``).
        message: Human-readable message.
        status: HTTP status code, or ``None`` when the raiser did not decide.
        details: Extra structured context, rendered as ``error.details``.
        handled: Bookkeeping flag set once the normalizer has consumed the
            error. Never rendered into a payload.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_code: str = "server_error"
    default_status: int | None = None

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status if status is not None else self.default_status
        self.cause = cause
        self.details: dict[str, Any] = {}
        self.handled = False
        if cause is not None:
            self.__cause__ = cause

    @property
    def is_client_error(self) -> bool:
        return self.status is not None and 400 <= self.status < 500

    def to_dict(self) -> dict[str, Any]:
        """Public fields only, for logging."""
        result: dict[str, Any] = {"id": self.code, "message": self.message}
        if self.status is not None:
            result["status"] = self.status
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, status={self.status!r})"


class DomainError(EnvelopeError):
    """Expected business failure with a known code.

    Handlers raise this for anything a client can act on::

        raise DomainError("not_found", "No such widget.", status=404)
    """

    kind = ErrorKind.DOMAIN

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: int | None = None,
        details: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, code=code, status=status, cause=cause)
        self.details = dict(details) if details else {}


class DecodeError(EnvelopeError):
    """The request body could not be decoded.

    ``status`` is whatever the body decoder reported. A 4xx status means the
    client sent malformed input; anything else, including no status at all,
    is treated as a server failure.
    """

    kind = ErrorKind.DECODE
    default_code = "invalid_body"


class UnknownError(EnvelopeError):
    """Wrapper for a failure nobody anticipated. Always a 500."""

    kind = ErrorKind.UNKNOWN
    default_code = "server_error"
    default_status = 500

    def __init__(
        self,
        cause: BaseException,
        message: str = "An unknown error occurred processing the request.",
    ) -> None:
        super().__init__(message, cause=cause)


class ConsistencyError(EnvelopeError):
    """An invariant of the request lifecycle was violated.

    Raised on a merge after the response was written, a second terminal
    write, or an illegal state transition. It indicates a bug in stage
    composition and is never recovered into a client envelope.
    """

    kind = ErrorKind.CONSISTENCY
    default_code = "consistency_violation"
    default_status = 500


@dataclass(frozen=True)
class NormalizedError:
    """Canonical error shape produced by the error normalizer."""

    id: str
    status: int
    message: str
    stack: tuple[str, ...] | None = None
    cause: NormalizedError | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self, *, expose_stack: bool = False) -> dict[str, Any]:
        """Render the client-facing ``error`` object.

        ``status`` is omitted; it travels in ``meta.status``. ``stack`` and
        ``cause`` are only rendered when *expose_stack* is set.
        """
        payload: dict[str, Any] = {"id": self.id, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        if expose_stack:
            if self.stack:
                payload["stack"] = list(self.stack)
            if self.cause is not None:
                payload["cause"] = self.cause.to_payload(expose_stack=True)
        return payload
