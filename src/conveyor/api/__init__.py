"""FastAPI admin surface over an :class:`~conveyor.engine.Engine`."""

from conveyor.api.app import create_app

__all__ = ["create_app"]
