"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from tableside.core.config import get_settings, Settings, EnvironmentMode
from tableside.core.exceptions import (
    TablesideError,
    ValidationError,
    SessionClosedError,
    NotFoundError,
    SyncFailure,
    AuthenticationError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "TablesideError",
    "ValidationError",
    "SessionClosedError",
    "NotFoundError",
    "SyncFailure",
    "AuthenticationError",
]
