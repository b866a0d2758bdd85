"""
CLI: ``conveyor db`` - database management commands.
"""

from __future__ import annotations

import typer

from conveyor.cli.utils import console, load_settings, output_record
from conveyor.core.database import TABLES, connect, create_tables

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Initialise database schema (create tables). Safe to re-run."""
    settings = load_settings(database)
    conn = connect(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
    try:
        create_tables(conn)
    finally:
        conn.close()
    if json_out:
        output_record({"database": settings.database_path, "tables": list(TABLES.values())}, as_json=True)
        return
    console.print(f"[green]Initialised[/green] {settings.database_path}")
    for table in TABLES.values():
        console.print(f"  [cyan]{table}[/cyan]")
