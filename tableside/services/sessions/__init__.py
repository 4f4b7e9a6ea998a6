"""
Session Service Factory

Usage:
    from tableside.services.sessions import get_session_service

    service = get_session_service()
    session = await service.create_session(5, "Asha", 2, items)
"""

import logging
from functools import lru_cache

from tableside.core.config import get_settings
from tableside.services.sessions.rules import parse_table_number, session_key
from tableside.services.sessions.service import (
    ClearResult,
    RecoveryOutcome,
    RecoveryResult,
    SessionService,
)
from tableside.services.store import get_document_store

logger = logging.getLogger(__name__)


@lru_cache()
def get_session_service() -> SessionService:
    """Session service bound to the configured document store."""
    return SessionService(get_document_store(), get_settings())


def reset_session_service() -> None:
    get_session_service.cache_clear()
    logger.debug("Session service cache cleared")


__all__ = [
    "get_session_service",
    "reset_session_service",
    "SessionService",
    "RecoveryOutcome",
    "RecoveryResult",
    "ClearResult",
    "parse_table_number",
    "session_key",
]
