"""
Root Typer application for the conveyor CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from conveyor import __version__
from conveyor.core.logging import configure_logging

app = Typer(
    name="conveyor",
    help="conveyor - durable job queue and event-triggered action pipelines.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"conveyor {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """conveyor CLI - manage jobs, workers, trigger runs and the database."""
    configure_logging("DEBUG" if verbose else "WARNING", json_format=False)


# ── Sub-command registration ─────────────────────────────────────────────

from conveyor.cli.db import app as db_app  # noqa: E402
from conveyor.cli.jobs import app as jobs_app  # noqa: E402
from conveyor.cli.runs import app as runs_app  # noqa: E402
from conveyor.cli.serve import serve  # noqa: E402
from conveyor.cli.triggers import app as triggers_app  # noqa: E402
from conveyor.cli.worker import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(worker_app, name="worker", help="Background job worker.")
app.add_typer(jobs_app, name="jobs", help="Enqueue and inspect jobs.")
app.add_typer(runs_app, name="runs", help="Trigger run management.")
app.add_typer(triggers_app, name="triggers", help="Trigger definitions and executions.")
app.command("serve", help="Start the API server.")(serve)


if __name__ == "__main__":
    app()
