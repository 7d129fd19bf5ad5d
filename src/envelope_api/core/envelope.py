"""
Response accumulator — the per-request envelope and its merge rules.

Stages never build a response themselves. They hand fragments to the
accumulator, which folds them into the one envelope owned by the request
context. The terminal responder is the only code that reads the envelope
back out.

Manifesto:
    Independent stages must be able to contribute to the same response
    without knowing about each other. A recursive merge that keeps every
    independent key is the whole contract.

Merge rules:
    ========================  ===================================
    target / fragment value   result
    ========================  ===================================
    mapping / mapping         merged recursively
    sequence / sequence       concatenated (target first)
    anything else             fragment value overwrites
    ========================  ===================================

    Strings and bytes are scalars, not sequences.

Tags:
    envelope, response, merge, accumulator

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from envelope_api.core.errors import ConsistencyError

if TYPE_CHECKING:
    from envelope_api.core.context import RequestContext


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def deep_merge(target: dict[str, Any], fragment: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge *fragment* into *target* in place and return *target*.

    >>> deep_merge({"meta": {"name": "api"}}, {"meta": {"version": "1"}})
    {'meta': {'name': 'api', 'version': '1'}}
    >>> deep_merge({"items": [1]}, {"items": [2]})
    {'items': [1, 2]}
    """
    if not fragment:
        return target

    for key, value in fragment.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deep_merge(current, value)
        elif _is_sequence(current) and _is_sequence(value):
            target[key] = list(current) + copy.deepcopy(list(value))
        elif isinstance(value, Mapping):
            target[key] = deep_merge({}, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def fragment_status(fragment: Mapping[str, Any] | None) -> int | None:
    """Return ``meta.status`` from a fragment, if it carries one."""
    if not fragment:
        return None
    meta = fragment.get("meta")
    if isinstance(meta, Mapping):
        status = meta.get("status")
        if isinstance(status, int) and not isinstance(status, bool):
            return status
    return None


class ResponseAccumulator:
    """Merge fragments into a request's envelope.

    The accumulator itself is stateless; one instance is shared by every
    stage and every request.
    """

    def merge(
        self,
        ctx: RequestContext,
        fragment: Mapping[str, Any] | None,
        status: int | None = None,
    ) -> dict[str, Any]:
        """Fold *fragment* into ``ctx.envelope``.

        When a status is given, or the fragment carries ``meta.status``, the
        transport is told to use it before any body is written.

        Raises:
            ConsistencyError: The request was already responded.
        """
        if ctx.responded:
            raise ConsistencyError(
                f"merge into envelope after response was written ({ctx.method} {ctx.path})"
            )

        deep_merge(ctx.envelope, fragment)

        if status is None:
            status = fragment_status(fragment)
        if status is not None:
            ctx.transport.set_status(status)
        return ctx.envelope
