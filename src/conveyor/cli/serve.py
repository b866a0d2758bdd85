"""
CLI: ``conveyor serve`` - start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from conveyor.cli.utils import console, load_settings
from conveyor.core.logging import configure_logging


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    database: str | None = typer.Option(None, "--database", "-d"),
    triggers: list[str] | None = typer.Option(None, "--triggers", "-t", help="Definition file or directory"),
) -> None:
    """Start the conveyor REST API server."""
    from conveyor.api import create_app

    settings = load_settings(database, triggers)
    configure_logging(settings.log_level, json_format=settings.json_logs)
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"[bold green]Starting conveyor API[/bold green] on {host}:{port}{settings.api_prefix}")
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=settings.log_level.lower())
