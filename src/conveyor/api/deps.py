"""
FastAPI dependency injection.

Usage in routers::

    from conveyor.api.deps import EngineDep

    @router.get("/things")
    def list_things(engine: EngineDep):
        ...

The engine is created once per application (see ``create_app``) and
lives on ``app.state.engine``; routers never open connections themselves.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from conveyor.engine import Engine


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("Engine not initialised; is the application lifespan running?")
    return engine


EngineDep = Annotated[Engine, Depends(get_engine)]

__all__ = ["get_engine", "EngineDep"]
