"""
Request body decoding.

Supports the three body formats a JSON API server typically accepts: JSON,
URL-encoded forms and multipart forms. Anything else is left undecoded.

Status reporting follows the usual body-parser conventions:

- 400: the body is malformed (bad JSON, bad form data, bad encoding)
- 413: the body exceeds ``max_body_size``
- ``None``: the decoder itself failed; the normalizer treats this as a 500
"""

from __future__ import annotations

import json
from typing import Any

from starlette.formparsers import MultiPartException
from starlette.requests import Request

from envelope_api.core.errors import DecodeError

JSON_CONTENT_TYPES = ("application/json",)
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _media_type(request: Request) -> str:
    content_type = request.headers.get("content-type", "")
    return content_type.split(";", 1)[0].strip().lower()


def _is_json(media_type: str) -> bool:
    return media_type in JSON_CONTENT_TYPES or media_type.endswith("+json")


class BodyDecoder:
    """Decode a request body according to its content type.

    Parameters
    ----------
    max_body_size:
        Largest accepted body in bytes.
    strict:
        Only accept a JSON object or array at the top level.
    """

    def __init__(self, max_body_size: int = 100 * 1024, strict: bool = True) -> None:
        self.max_body_size = max_body_size
        self.strict = strict

    async def decode(self, request: Request) -> Any:
        """Return the decoded body, or ``None`` for unsupported content types.

        Raises:
            DecodeError: The body is malformed, too large, or could not be read.
        """
        media_type = _media_type(request)
        if not (_is_json(media_type) or media_type in FORM_CONTENT_TYPES):
            return None

        self._check_declared_length(request)

        try:
            if _is_json(media_type):
                return self._decode_json(await self._read(request))
            return await self._decode_form(request)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(f"body decoder failed: {exc}", cause=exc) from exc

    def _check_declared_length(self, request: Request) -> None:
        declared = request.headers.get("content-length")
        if declared is None:
            return
        try:
            length = int(declared)
        except ValueError as exc:
            raise DecodeError("invalid Content-Length header", status=400, cause=exc) from exc
        if length > self.max_body_size:
            raise DecodeError(
                f"request entity too large ({length} > {self.max_body_size} bytes)",
                status=413,
            )

    async def _read(self, request: Request) -> bytes:
        raw = await request.body()
        if len(raw) > self.max_body_size:
            raise DecodeError(
                f"request entity too large ({len(raw)} > {self.max_body_size} bytes)",
                status=413,
            )
        return raw

    def _decode_json(self, raw: bytes) -> Any:
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"malformed JSON body: {exc}", status=400, cause=exc) from exc
        if self.strict and not isinstance(parsed, (dict, list)):
            raise DecodeError("JSON body must be an object or an array", status=400)
        return parsed

    async def _decode_form(self, request: Request) -> dict[str, Any]:
        try:
            form = await request.form()
        except MultiPartException as exc:
            raise DecodeError(f"malformed form body: {exc}", status=400, cause=exc) from exc

        decoded: dict[str, Any] = {}
        for key, value in form.multi_items():
            if key in decoded:
                existing = decoded[key]
                decoded[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
            else:
                decoded[key] = value
        return decoded
