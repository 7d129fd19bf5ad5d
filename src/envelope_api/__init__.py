"""
envelope-api — request-handling core for JSON API servers.

Every request runs through an ordered pipeline of stages that build one
shared response envelope, with failures normalized into the same envelope
shape and exactly one terminal write per request.

Usage:
    from envelope_api import create_app, DomainError

    async def handler(ctx):
        if ctx.path != "/items":
            raise DomainError("not_found", "No such resource.", status=404)
        return {"items": [1, 2]}

    app = create_app(handler=handler)
"""

__version__ = "0.1.0"

from envelope_api.api.app import create_app  # noqa: E402
from envelope_api.api.settings import Settings, get_settings  # noqa: E402
from envelope_api.core.context import RequestContext  # noqa: E402
from envelope_api.core.errors import (  # noqa: E402
    ConsistencyError,
    DecodeError,
    DomainError,
    UnknownError,
)

__all__ = [
    "ConsistencyError",
    "DecodeError",
    "DomainError",
    "RequestContext",
    "Settings",
    "UnknownError",
    "__version__",
    "create_app",
    "get_settings",
]
