"""Thin wrapper around the ASGI ``send`` channel for one request."""

from __future__ import annotations

from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from envelope_api.core.errors import ConsistencyError


class Transport:
    """Collects status and headers, then writes a single response.

    Status and headers can change freely until :meth:`send` starts the
    response. After that, the status is frozen, since it went out with the
    headers.
    """

    def __init__(self, scope: Scope, receive: Receive, send: Send) -> None:
        self._scope = scope
        self._receive = receive
        self._send = send
        self.status_code = 200
        self.headers: dict[str, str] = {}
        self.started = False

    def set_status(self, status_code: int) -> None:
        if self.started:
            raise ConsistencyError(
                f"cannot set status {status_code} after the response has started"
            )
        if not 100 <= status_code <= 599:
            raise ValueError(f"invalid HTTP status code: {status_code}")
        self.status_code = status_code

    def set_header(self, name: str, value: str) -> None:
        if self.started:
            raise ConsistencyError(f"cannot set header {name!r} after the response has started")
        self.headers[name] = value

    async def send(self, response: Response) -> None:
        """Write *response*, adding any collected headers it does not set itself."""
        if self.started:
            raise ConsistencyError("response already sent")
        self.started = True
        for name, value in self.headers.items():
            if name not in response.headers:
                response.headers[name] = value
        await response(self._scope, self._receive, self._send)
