"""
In-Memory Document Store Implementation

Keeps every collection in process memory. Used in development mode
(ENV_MODE=development) and by the test suite to:
    - Run the complete dining flow without PostgreSQL or Redis
    - Reproduce concurrent writers with simulated round-trip latency
    - Inspect the exact documents clients would see

Behavior:
    - Documents are deep-copied on the way in and out
    - Writes are serialised by the store lock; reads are not
    - Optional random latency (min..max seconds) before every call
"""

import asyncio
import copy
import logging
import random
import uuid
from collections import defaultdict
from typing import Any, Callable, Optional

from tableside.services.store.base import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentSnapshot,
    StoreQuery,
    VersionConflictError,
)

logger = logging.getLogger(__name__)


def generate_document_id() -> str:
    """20-character opaque id, the same width hosted document stores use."""
    return uuid.uuid4().hex[:20]


class InMemoryDocumentStore(BaseDocumentStore):
    """
    Dict-backed document store.

    Attributes:
        min_latency: Minimum simulated round-trip in seconds
        max_latency: Maximum simulated round-trip in seconds

    Example:
        >>> store = InMemoryDocumentStore(min_latency=0.01, max_latency=0.05)
        >>> snapshot = await store.add("orders", {"tableNumber": 5})
        >>> (await store.get("orders", snapshot.id)).version
        1
    """

    def __init__(
        self,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        super().__init__()
        self.min_latency = min_latency
        self.max_latency = max(min_latency, max_latency)
        self._id_factory = id_factory or generate_document_id
        # collection -> document id -> (data, version)
        self._collections: dict[str, dict[str, tuple[dict[str, Any], int]]] = defaultdict(dict)

    @property
    def provider_name(self) -> str:
        return "memory"

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _snapshot(self, document_id: str, entry: tuple[dict[str, Any], int]) -> DocumentSnapshot:
        data, version = entry
        return DocumentSnapshot(id=document_id, data=copy.deepcopy(data), version=version)

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        await self._simulate_latency()
        entry = self._collections[collection].get(document_id)
        if entry is None:
            return None
        return self._snapshot(document_id, entry)

    async def query(self, query: StoreQuery) -> list[DocumentSnapshot]:
        await self._simulate_latency()
        return await self._evaluate(query)

    async def _evaluate(self, query: StoreQuery) -> list[DocumentSnapshot]:
        documents = self._collections[query.collection]
        return query.apply(
            self._snapshot(document_id, entry) for document_id, entry in documents.items()
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add(self, collection: str, data: dict[str, Any]) -> DocumentSnapshot:
        await self._simulate_latency()
        async with self._write_lock:
            document_id = self._id_factory()
            entry = (copy.deepcopy(data), 1)
            self._collections[collection][document_id] = entry
            await self._publish(collection)
        logger.debug(f"Added {collection}/{document_id}")
        return self._snapshot(document_id, entry)

    async def update(
        self,
        collection: str,
        document_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> DocumentSnapshot:
        await self._simulate_latency()
        async with self._write_lock:
            entry = self._collections[collection].get(document_id)
            if entry is None:
                raise DocumentNotFoundError(f"{collection}/{document_id} does not exist")

            data, version = entry
            if expected_version is not None and version != expected_version:
                raise VersionConflictError(
                    f"{collection}/{document_id} is at version {version}, "
                    f"expected {expected_version}"
                )

            merged = {**data, **copy.deepcopy(fields)}
            entry = (merged, version + 1)
            self._collections[collection][document_id] = entry
            await self._publish(collection)
        return self._snapshot(document_id, entry)

    async def delete(self, collection: str, document_id: str) -> None:
        await self._simulate_latency()
        async with self._write_lock:
            if self._collections[collection].pop(document_id, None) is None:
                raise DocumentNotFoundError(f"{collection}/{document_id} does not exist")
            await self._publish(collection)
        logger.debug(f"Deleted {collection}/{document_id}")

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "provider": self.provider_name,
            "collections": {
                name: len(documents) for name, documents in self._collections.items()
            },
            "listeners": len(self._listeners),
        }
