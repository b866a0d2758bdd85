"""
CLI: ``conveyor worker`` - start the background job worker.
"""

from __future__ import annotations

import typer

from conveyor.cli.utils import console, engine_session
from conveyor.core.logging import configure_logging

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    triggers: list[str] | None = typer.Option(None, "--triggers", "-t", help="Trigger definition file or directory"),
    plugins: list[str] | None = typer.Option(
        None, "--plugin", "-p", help="module:function called with the engine to register handlers and tools"
    ),
    threads: int | None = typer.Option(None, "--threads", "-w", help="Concurrent handler threads"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between polls"),
    batch_size: int | None = typer.Option(None, "--batch-size", help="Max jobs to claim per poll"),
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),
    until_idle: bool = typer.Option(False, "--until-idle", help="Drain due jobs, then exit"),
) -> None:
    """Start a worker that claims due jobs and runs their handlers.

    ``trigger.run`` jobs are always handled; other job types need a plugin
    that registers their handlers.

    Example::

        conveyor worker start --triggers triggers/ --plugin myapp.jobs:register
        conveyor worker start --database /data/conveyor.db --threads 8
    """
    with engine_session(database, triggers=triggers, plugins=plugins) as engine:
        settings = engine.settings
        configure_logging(settings.log_level, json_format=settings.json_logs)

        overrides = {}
        if threads is not None:
            overrides["max_workers"] = threads
        if poll_interval is not None:
            overrides["poll_interval"] = poll_interval
        if batch_size is not None:
            overrides["batch_size"] = batch_size
        worker = engine.create_worker(worker_id, **overrides)

        if until_idle:
            processed = worker.run_until_idle()
            console.print(f"Processed [bold]{processed}[/bold] job(s)")
            return

        console.print(
            f"[bold green]Starting conveyor worker[/bold green] {worker.worker_id} "
            f"(handlers={', '.join(engine.handlers.list_handlers())}, triggers={len(engine.triggers)})"
        )
        try:
            worker.start()
        except KeyboardInterrupt:
            worker.stop()
            console.print("\n[yellow]Worker stopped by user[/yellow]")
