"""
CLI utility helpers: engine sessions and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from conveyor.core.errors import ConveyorError
from conveyor.core.settings import ConveyorSettings, get_settings
from conveyor.engine import Engine

console = Console()
err_console = Console(stderr=True)


# ── Settings / engine helpers ────────────────────────────────────────────


def load_settings(database: str | None = None, triggers: list[str] | None = None) -> ConveyorSettings:
    """Environment settings with command-line overrides applied."""
    settings = get_settings()
    update: dict[str, Any] = {}
    if database:
        update["database_path"] = database
    if triggers:
        update["trigger_paths"] = list(triggers)
    return settings.model_copy(update=update) if update else settings


def load_plugins(engine: Engine, targets: list[str] | None) -> None:
    """Call each ``module:function`` with the engine to register handlers and tools."""
    for target in targets or []:
        module_name, _, attr = target.partition(":")
        module = importlib.import_module(module_name)
        register = getattr(module, attr or "register")
        register(engine)


@contextmanager
def engine_session(
    database: str | None = None,
    *,
    triggers: list[str] | None = None,
    plugins: list[str] | None = None,
) -> Iterator[Engine]:
    """Open an engine for one command; report ``ConveyorError`` and exit 1."""
    engine: Engine | None = None
    try:
        engine = Engine.from_settings(load_settings(database, triggers))
        load_plugins(engine, plugins)
        yield engine
    except ConveyorError as exc:
        fail(exc.message, code=type(exc).__name__)
    finally:
        if engine is not None:
            engine.close()


def fail(message: str, *, code: str = "ERROR") -> None:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def parse_json_option(value: str | None, name: str) -> dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{name} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise typer.BadParameter(f"{name} must be a JSON object")
    return parsed


# ── Output helpers ───────────────────────────────────────────────────────


def output_records(
    items: list[dict[str, Any]],
    *,
    columns: list[str],
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a list of record dicts as a Rich table (or JSON)."""
    if as_json:
        console.print_json(json.dumps(items, default=str))
        return
    if not items:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(col)) for col in columns))
    console.print(table)


def output_record(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a single dict as key-value pairs (or JSON)."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for key, value in data.items():
        console.print(f"  [cyan]{key}[/cyan]: {_cell(value)}")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


__all__ = [
    "console",
    "err_console",
    "load_settings",
    "load_plugins",
    "engine_session",
    "fail",
    "parse_json_option",
    "output_records",
    "output_record",
]
