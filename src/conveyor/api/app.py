"""
FastAPI application factory.

``create_app()`` wires the engine, routers and error handlers into a single
``FastAPI`` instance. Pass an existing :class:`~conveyor.engine.Engine` (tests,
embedding) or let the lifespan build one from settings and close it on
shutdown.

Example:
    >>> engine = Engine.from_settings(ConveyorSettings(database_path=":memory:"))
    >>> app = create_app(engine)
    >>> # uvicorn.run(app, host="127.0.0.1", port=8600)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from conveyor import __version__
from conveyor.api.errors import install_error_handlers
from conveyor.api.routers import events, health, jobs, runs, triggers
from conveyor.core.logging import get_logger
from conveyor.core.settings import ConveyorSettings, get_settings
from conveyor.engine import Engine

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the engine on startup when none was supplied; close what we opened."""
    owned = False
    if getattr(app.state, "engine", None) is None:
        app.state.engine = Engine.from_settings(app.state.settings)
        owned = True
    logger.info("api.starting", version=__version__, database=app.state.settings.database_path)
    yield
    if owned:
        app.state.engine.close()
        app.state.engine = None
    logger.info("api.stopped")


def create_app(engine: Engine | None = None, *, settings: ConveyorSettings | None = None) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    engine : Engine | None
        Serve this engine. When ``None`` one is created from ``settings``
        during the application lifespan.
    settings : ConveyorSettings | None
        Override settings. Defaults to the engine's settings, then to the
        cached :func:`get_settings` singleton.
    """
    if settings is None:
        settings = engine.settings if engine is not None else get_settings()

    app = FastAPI(
        title="conveyor",
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    app.state.engine = engine

    # ── Exception handlers ───────────────────────────────────────────
    install_error_handlers(app)

    # ── Routers ──────────────────────────────────────────────────────
    prefix = settings.api_prefix
    app.include_router(health.router, prefix=prefix, tags=["health"])
    app.include_router(jobs.router, prefix=prefix, tags=["jobs"])
    app.include_router(runs.router, prefix=prefix, tags=["runs"])
    app.include_router(triggers.router, prefix=prefix, tags=["triggers"])
    app.include_router(events.router, prefix=prefix, tags=["events"])

    return app


__all__ = ["create_app", "lifespan"]
