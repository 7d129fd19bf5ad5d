"""Core primitives: errors, the response envelope, request context and transport.

Manifesto:
    Nothing in ``core`` knows about stages or configuration. These types
    are the contract every stage and handler codes against.

Tags:
    envelope-api, core, primitives

Doc-Types:
    api-reference
"""

from envelope_api.core.context import RequestContext, RequestState
from envelope_api.core.envelope import ResponseAccumulator, deep_merge
from envelope_api.core.errors import (
    ConsistencyError,
    DecodeError,
    DomainError,
    EnvelopeError,
    ErrorKind,
    NormalizedError,
    UnknownError,
)
from envelope_api.core.transport import Transport

__all__ = [
    "ConsistencyError",
    "DecodeError",
    "DomainError",
    "EnvelopeError",
    "ErrorKind",
    "NormalizedError",
    "RequestContext",
    "RequestState",
    "ResponseAccumulator",
    "Transport",
    "UnknownError",
    "deep_merge",
]
