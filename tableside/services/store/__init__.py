"""
Document Store Factory

Provides a single entry point for obtaining the document store. Session
and menu services never construct a store themselves; they receive one
from here (or from a test fixture).

Usage:
    from tableside.services.store import get_document_store

    # Returns InMemoryDocumentStore or SqlDocumentStore based on ENV_MODE
    store = get_document_store()

Environment Switching:
    - ENV_MODE=development → InMemoryDocumentStore (no database, no Redis)
    - ENV_MODE=staging → SqlDocumentStore + Redis fan-out
    - ENV_MODE=production → SqlDocumentStore + Redis fan-out
"""

import logging
from functools import lru_cache

from tableside.core.config import get_settings
from tableside.database import get_session_maker
from tableside.services.store.base import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentSnapshot,
    StoreError,
    StoreQuery,
    Subscription,
    VersionConflictError,
)
from tableside.services.store.memory import InMemoryDocumentStore
from tableside.services.store.sql import SqlDocumentStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_document_store() -> BaseDocumentStore:
    """
    Get the configured document store instance.

    The instance is cached so every request and live feed in the process
    shares one store (and one listener registry).
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Document Store: Using InMemoryDocumentStore (development mode)")
        return InMemoryDocumentStore(
            min_latency=settings.store_min_latency,
            max_latency=settings.store_max_latency,
        )

    logger.info(
        f"Document Store: Using SqlDocumentStore "
        f"({settings.env_mode.value} mode)"
    )
    return SqlDocumentStore(
        get_session_maker(),
        redis_url=settings.redis_url,
        channel_prefix=settings.sync_channel_prefix,
    )


def reset_document_store() -> None:
    """
    Clear the cached store instance.

    The next call to get_document_store() will create a new instance.
    """
    get_document_store.cache_clear()
    logger.debug("Document store cache cleared")


__all__ = [
    "get_document_store",
    "reset_document_store",
    "BaseDocumentStore",
    "DocumentNotFoundError",
    "DocumentSnapshot",
    "StoreError",
    "StoreQuery",
    "Subscription",
    "VersionConflictError",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
