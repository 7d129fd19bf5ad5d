"""
CLI: ``envelope-api`` — run and inspect the server.
"""

from __future__ import annotations

import json

import typer

from envelope_api import __version__
from envelope_api.api.settings import get_settings

app = typer.Typer(
    name="envelope-api",
    help="envelope-api — JSON API server core.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"envelope-api {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """envelope-api CLI."""


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default from settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default from settings)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str = typer.Option("info", "--log-level", help="uvicorn log level"),
) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    typer.echo(f"Starting {settings.service_name} {settings.service_version} on {host}:{port}")
    uvicorn.run(
        "envelope_api.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


@app.command("config")
def show_config() -> None:
    """Print the effective settings as JSON."""
    typer.echo(json.dumps(get_settings().model_dump(), indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
