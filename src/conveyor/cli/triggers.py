"""
CLI: ``conveyor triggers`` - trigger definitions and execution history.
"""

from __future__ import annotations

import typer

from conveyor.cli.utils import console, engine_session, fail, output_records
from conveyor.core.errors import TriggerDefinitionError
from conveyor.triggers.definitions import load_definitions

app = typer.Typer(no_args_is_help=True)

TRIGGER_COLUMNS = ["slug", "entity_type", "action", "enabled", "scheduled", "actions"]
EXECUTION_COLUMNS = ["id", "event_type", "entity_id", "run_id", "totalActions", "error", "created_at"]


@app.command("validate")
def validate(
    paths: list[str] = typer.Argument(..., help="Definition files or directories"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate trigger definition files without touching the database."""
    try:
        definitions = load_definitions(paths)
    except TriggerDefinitionError as exc:
        fail(exc.message, code="TriggerDefinitionError")
        return
    if not json_out:
        console.print(f"[green]{len(definitions)} trigger definition(s) valid[/green]")
    output_records(
        [d.to_summary() for d in definitions],
        columns=TRIGGER_COLUMNS,
        as_json=json_out,
        title="Triggers",
    )


@app.command("list")
def list_triggers(
    triggers: list[str] | None = typer.Option(None, "--triggers", "-t", help="Definition file or directory"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the configured trigger definitions."""
    with engine_session(database, triggers=triggers) as engine:
        definitions = engine.triggers.list_definitions()
        output_records(
            [d.to_summary() for d in definitions],
            columns=TRIGGER_COLUMNS,
            as_json=json_out,
            title="Triggers",
        )


@app.command("executions")
def executions(
    slug: str = typer.Argument(..., help="Trigger slug"),
    org_id: str | None = typer.Option(None, "--org", "-o"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Execution events for a trigger, newest first."""
    with engine_session(database) as engine:
        events = engine.supervisor.list_executions(slug, limit, org_id=org_id)
        output_records(
            [e.to_dict() for e in events],
            columns=EXECUTION_COLUMNS,
            as_json=json_out,
            title=f"Executions: {slug}",
        )
