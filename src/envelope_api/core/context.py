"""
Per-request context and lifecycle state machine.

::

    RECEIVING ──▶ PROCESSING ──▶ ERRORING ──▶ RESPONDED
                       │                          ▲
                       └──────────────────────────┘

``RESPONDED`` is absorbing. Every transition happens under the context's
lock, so two failure paths racing to terminate a request cannot both win.

Tags:
    request-context, state-machine, lifecycle

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from starlette.requests import Request
from starlette.types import Receive, Scope, Send

from envelope_api.core.errors import ConsistencyError
from envelope_api.core.transport import Transport

REQUEST_ID_HEADER = "X-Request-ID"


class RequestState(str, Enum):
    """Lifecycle of a single request."""

    RECEIVING = "RECEIVING"
    PROCESSING = "PROCESSING"
    ERRORING = "ERRORING"
    RESPONDED = "RESPONDED"


_ALLOWED_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.RECEIVING: frozenset({RequestState.PROCESSING}),
    RequestState.PROCESSING: frozenset({RequestState.ERRORING, RequestState.RESPONDED}),
    RequestState.ERRORING: frozenset({RequestState.RESPONDED}),
    RequestState.RESPONDED: frozenset(),
}


@dataclass
class RequestContext:
    """Everything one request owns while it moves through the pipeline.

    Attributes:
        request: The inbound starlette request.
        transport: Where the single response is written.
        envelope: The response envelope, shared by reference with all stages.
        request_id: Correlation id, taken from ``X-Request-ID`` or generated.
        body: Decoded request body, set by the body-decoding stage.
        arrived_at: Wall-clock arrival time, set by the response-init stage.
    """

    request: Request
    transport: Transport
    envelope: dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    body: Any = None
    arrived_at: datetime | None = None
    _created: float = field(default_factory=time.perf_counter, init=False, repr=False)
    _arrival: float | None = field(default=None, init=False, repr=False)
    _state: RequestState = field(default=RequestState.RECEIVING, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_scope(cls, scope: Scope, receive: Receive, send: Send) -> RequestContext:
        """Build a context for an ASGI ``http`` scope."""
        request = Request(scope, receive)
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        transport = Transport(scope, receive, send)
        transport.set_header(REQUEST_ID_HEADER, request_id)
        return cls(request=request, transport=transport, request_id=request_id)

    # ── Identity ─────────────────────────────────────────────────────────

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.url.path

    @property
    def url(self) -> str:
        query = self.request.url.query
        return f"{self.path}?{query}" if query else self.path

    @property
    def client(self) -> str:
        return self.request.client.host if self.request.client else "unknown"

    # ── Timing ───────────────────────────────────────────────────────────

    def mark_arrival(self) -> None:
        """Stamp the arrival time used for ``meta.duration``."""
        self.arrived_at = datetime.now(timezone.utc)
        self._arrival = time.perf_counter()

    def elapsed_ms(self) -> int:
        """Whole milliseconds since arrival; never negative."""
        start = self._arrival if self._arrival is not None else self._created
        return max(0, round((time.perf_counter() - start) * 1000))

    # ── State ────────────────────────────────────────────────────────────

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def responded(self) -> bool:
        return self._state is RequestState.RESPONDED

    def set_status(self, status_code: int) -> None:
        """Set the outgoing HTTP status (handlers use this on success paths)."""
        self.transport.set_status(status_code)

    def transition(self, target: RequestState) -> None:
        """Move to *target* or raise :class:`ConsistencyError`."""
        with self._lock:
            if target not in _ALLOWED_TRANSITIONS[self._state]:
                raise ConsistencyError(
                    f"illegal request state transition {self._state.value} -> {target.value}"
                )
            self._state = target

    def begin(self) -> None:
        self.transition(RequestState.PROCESSING)

    def claim_error_path(self) -> bool:
        """Atomically enter ``ERRORING``.

        Returns ``False`` when another failure already claimed the error path
        or the response was already written.
        """
        with self._lock:
            if self._state is not RequestState.PROCESSING:
                return False
            self._state = RequestState.ERRORING
            return True

    def mark_responded(self) -> None:
        """Atomically check-and-set the responded flag."""
        with self._lock:
            if self._state is RequestState.RESPONDED:
                raise ConsistencyError(f"response already written for {self.method} {self.path}")
            if RequestState.RESPONDED not in _ALLOWED_TRANSITIONS[self._state]:
                raise ConsistencyError(
                    f"cannot respond from state {self._state.value}"
                )
            self._state = RequestState.RESPONDED
