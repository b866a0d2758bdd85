"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from conveyor import __version__
from conveyor.api.deps import EngineDep
from conveyor.api.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(engine: EngineDep):
    engine.jobs.stats()
    return HealthResponse(
        status="ok",
        version=__version__,
        database=engine.settings.database_path,
        triggers=len(engine.triggers),
        handlers=engine.handlers.list_handlers(),
    )
