"""
Server settings.

Read once at startup and frozen afterwards; every request shares the same
read-only instance. All values can be overridden with environment variables
prefixed with ``ENVELOPE_`` (``ENVELOPE_STACK_TRACES=true``) or a ``.env``
file.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from envelope_api import __version__


class Settings(BaseSettings):
    """Settings for the envelope API server.

    Order of precedence (highest → lowest):
        1. Constructor arguments
        2. Environment variables (``ENVELOPE_SERVICE_NAME``, etc.)
        3. ``.env`` file
        4. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="ENVELOPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Envelope ─────────────────────────────────────────────────────────
    service_name: str = Field(default="envelope-api", description="Reported as meta.name")
    service_version: str = Field(default=__version__, description="Reported as meta.version")
    stack_traces: bool = Field(
        default=False,
        description="Expose stack traces and causes in client error envelopes",
    )

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8000, description="Bind port")

    # ── Observability ────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["console", "json"] = Field(default="console", description="Log renderer")

    # ── CORS ─────────────────────────────────────────────────────────────
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")
    cors_allow_credentials: bool = Field(default=False, description="Allow credentialed CORS requests")

    # ── Request handling ─────────────────────────────────────────────────
    max_body_size: int = Field(default=100 * 1024, gt=0, description="Largest accepted body in bytes")
    dispatch_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Fail dispatch with request_timeout after this many seconds",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings — loaded once per process."""
    return Settings()
