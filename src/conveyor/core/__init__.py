"""Shared primitives: errors, logging, settings, timestamps and the SQLite schema."""

from conveyor.core.errors import (
    ConfigurationError,
    ConveyorError,
    ErrorCategory,
    InvalidTransitionError,
    NotFoundError,
    PermanentHandlerError,
    TransientHandlerError,
)
from conveyor.core.logging import LogContext, configure_logging, get_logger
from conveyor.core.settings import ConveyorSettings, get_settings

__all__ = [
    "ConfigurationError",
    "ConveyorError",
    "ErrorCategory",
    "InvalidTransitionError",
    "NotFoundError",
    "PermanentHandlerError",
    "TransientHandlerError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "ConveyorSettings",
    "get_settings",
]
