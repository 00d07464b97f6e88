"""
Core module initialization for the Elta CRM backend.

Settings, logging, database sessions, authentication and domain errors.
"""

from .settings import settings, get_settings
from .logging import configure_logging, get_logger, LogContext

__all__ = [
    "settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "LogContext",
]
