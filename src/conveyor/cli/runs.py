"""
CLI: ``conveyor runs`` - trigger run inspection and administration.
"""

from __future__ import annotations

import typer

from conveyor.cli.utils import console, engine_session, output_record, output_records
from conveyor.triggers.models import RunStatus

app = typer.Typer(no_args_is_help=True)

RUN_COLUMNS = ["id", "trigger_slug", "entity_id", "status", "attempts", "scheduled_for", "error_message"]


@app.command("list")
def list_runs(
    status: RunStatus | None = typer.Option(None, "--status", "-s"),
    trigger_slug: str | None = typer.Option(None, "--trigger", "-t"),
    org_id: str | None = typer.Option(None, "--org", "-o"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List trigger runs, newest first."""
    with engine_session(database) as engine:
        runs = engine.supervisor.list_runs(status, trigger_slug, org_id=org_id, limit=limit)
        output_records([run.to_dict() for run in runs], columns=RUN_COLUMNS, as_json=json_out, title="Runs")


@app.command("stats")
def stats(
    org_id: str | None = typer.Option(None, "--org", "-o"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Count runs per status."""
    with engine_session(database) as engine:
        output_record(engine.supervisor.get_run_stats(org_id), as_json=json_out, title="Run Stats")


@app.command("retry")
def retry(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Re-queue a failed or dead run now, with attempts reset."""
    with engine_session(database) as engine:
        run = engine.supervisor.retry_run(run_id)
        console.print(f"[green]Retrying[/green] {run.id} (job {run.job_id})")


@app.command("cancel")
def cancel(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Cancel a pending run."""
    with engine_session(database) as engine:
        engine.supervisor.cancel_run(run_id)
        console.print(f"[green]Cancelled[/green] {run_id}")
