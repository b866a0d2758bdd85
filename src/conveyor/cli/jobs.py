"""
CLI: ``conveyor jobs`` - enqueue and inspect jobs.
"""

from __future__ import annotations

import typer

from conveyor.cli.utils import console, engine_session, output_record, output_records, parse_json_option
from conveyor.core.timestamps import add_ms
from conveyor.execution.models import JobStatus

app = typer.Typer(no_args_is_help=True)

JOB_COLUMNS = ["id", "job_type", "status", "priority", "attempts", "max_attempts", "scheduled_for", "error_message"]


@app.command("enqueue")
def enqueue(
    job_type: str = typer.Argument(..., help="Handler name"),
    org_id: str = typer.Option("default", "--org", "-o", help="Owning tenant"),
    payload: str | None = typer.Option(None, "--payload", help="JSON object payload"),
    idempotency_key: str | None = typer.Option(None, "--key", "-k", help="Idempotency key"),
    priority: int = typer.Option(0, "--priority"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),
    entity_id: str | None = typer.Option(None, "--entity"),
    delay_ms: int = typer.Option(0, "--delay-ms", min=0, help="Not claimable for this many ms"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Enqueue a job. A repeated --key returns the existing job."""
    body = parse_json_option(payload, "--payload")
    with engine_session(database) as engine:
        scheduled_for = add_ms(engine.clock(), delay_ms) if delay_ms else None
        result = engine.jobs.submit(
            org_id,
            job_type,
            body,
            idempotency_key=idempotency_key,
            priority=priority,
            scheduled_for=scheduled_for,
            max_attempts=max_attempts,
            entity_id=entity_id,
        )
        if json_out:
            output_record({"job_id": result.job_id, "created": result.created}, as_json=True)
        elif result.created:
            console.print(f"[green]Enqueued[/green] {result.job_id}")
        else:
            console.print(f"[yellow]Already enqueued[/yellow] {result.job_id}")


@app.command("list")
def list_jobs(
    status: JobStatus | None = typer.Option(None, "--status", "-s"),
    job_type: str | None = typer.Option(None, "--type"),
    org_id: str | None = typer.Option(None, "--org", "-o"),
    limit: int = typer.Option(50, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List jobs, newest first."""
    with engine_session(database) as engine:
        jobs = engine.jobs.list_jobs(status=status, job_type=job_type, org_id=org_id, limit=limit)
        output_records([job.to_dict() for job in jobs], columns=JOB_COLUMNS, as_json=json_out, title="Jobs")


@app.command("show")
def show(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one job."""
    with engine_session(database) as engine:
        output_record(engine.jobs.require(job_id).to_dict(), as_json=json_out, title=job_id)


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Job ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Cancel a pending job."""
    with engine_session(database) as engine:
        if engine.jobs.cancel(job_id):
            console.print(f"[green]Cancelled[/green] {job_id}")
            return
        job = engine.jobs.require(job_id)
        console.print(f"[red]Not cancelled[/red]: {job_id} is {job.status.value}")
        raise typer.Exit(code=1)


@app.command("stats")
def stats(
    org_id: str | None = typer.Option(None, "--org", "-o"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Count jobs per status."""
    with engine_session(database) as engine:
        output_record(engine.jobs.stats(org_id), as_json=json_out, title="Job Stats")
