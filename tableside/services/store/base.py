"""
Document Store Abstract Base Class

Defines the interface contract for the real-time document store every
session and menu operation goes through. Both InMemoryDocumentStore and
SqlDocumentStore implement it, so the session logic behaves identically
regardless of which store is active.

Contract:
    - Point reads return a snapshot (id, data, version) or None.
    - Writes are single-document merges of top-level fields; there are no
      multi-document transactions.
    - An update may carry ``expected_version`` to become a compare-and-set.
    - Subscriptions push the FULL matching document set, first immediately
      and then after every committed change, in commit order.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class StoreError(Exception):
    """The store call itself failed."""


class DocumentNotFoundError(StoreError):
    """The addressed document does not exist."""


class VersionConflictError(StoreError):
    """The document changed between the read and a compare-and-set write."""


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class DocumentSnapshot:
    """
    One document as read from the store.

    Attributes:
        id: Store-assigned opaque identifier
        data: Top-level fields, a private copy owned by the caller
        version: Bumped on every committed write to the document
    """
    id: str
    data: dict[str, Any]
    version: int = 1


@dataclass(frozen=True)
class StoreQuery:
    """
    A live or one-shot query over one collection.

    Attributes:
        collection: Collection name
        filters: Equality filters as ``(field, value)`` pairs
        document_id: Restrict the result to a single document
        order_by: Field to sort on (documents missing it sort last)
        descending: Sort direction
        limit: Maximum number of documents returned
    """
    collection: str
    filters: tuple[tuple[str, Any], ...] = ()
    document_id: Optional[str] = None
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def matches(self, snapshot: DocumentSnapshot) -> bool:
        if self.document_id is not None and snapshot.id != self.document_id:
            return False
        return all(snapshot.data.get(name) == value for name, value in self.filters)

    def apply(self, snapshots: Iterable[DocumentSnapshot]) -> list[DocumentSnapshot]:
        """
        Filter, sort and limit snapshots given in insertion order.

        Documents with equal sort keys keep insertion order in the requested
        direction, so a descending query puts the newest insert first.
        """
        selected = [snapshot for snapshot in snapshots if self.matches(snapshot)]

        if self.order_by:
            keyed = [s for s in selected if s.data.get(self.order_by) is not None]
            missing = [s for s in selected if s.data.get(self.order_by) is None]
            if self.descending:
                keyed.reverse()
            keyed.sort(key=lambda s: s.data[self.order_by], reverse=self.descending)
            selected = keyed + missing

        if self.limit is not None:
            selected = selected[: self.limit]
        return selected


ChangeCallback = Callable[[list[DocumentSnapshot]], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


async def call_maybe_async(callback: Callable[[Any], Any], argument: Any) -> None:
    result = callback(argument)
    if inspect.isawaitable(result):
        await result


# =============================================================================
# SUBSCRIPTION HANDLE
# =============================================================================

@dataclass(eq=False)
class Subscription:
    """
    Registration handle for a live query.

    Pushes are queued per subscriber and delivered by a dedicated task,
    so each subscriber sees result sets in commit order and a callback may
    itself call back into the store. ``cancel()`` unregisters and is
    idempotent; the handle also works as a (async) context manager.
    """
    store: "BaseDocumentStore"
    query: StoreQuery
    on_change: ChangeCallback
    on_error: Optional[ErrorCallback] = None
    active: bool = True
    _queue: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    def push(self, item: Union[list[DocumentSnapshot], Exception]) -> None:
        if self.active:
            self._queue.put_nowait(item)

    def start(self) -> None:
        self._task = asyncio.create_task(self._deliver())

    async def _deliver(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, Exception):
                    await self._report(item)
                else:
                    await call_maybe_async(self.on_change, item)
            except Exception as exc:
                await self._report(exc)
            finally:
                self._queue.task_done()

    async def _report(self, exc: Exception) -> None:
        if self.on_error is None:
            logger.error(
                f"Subscription on '{self.query.collection}' failed: {exc}"
            )
            return
        try:
            await call_maybe_async(self.on_error, exc)
        except Exception:
            logger.exception("Subscription error callback failed")

    async def drain(self) -> None:
        """Wait until every queued push has been delivered."""
        await self._queue.join()

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._unregister(self)
        if self._task is not None:
            self._task.cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.cancel()


# =============================================================================
# STORE INTERFACE
# =============================================================================

class BaseDocumentStore(ABC):
    """
    Abstract base class for document stores.

    Subclasses implement storage and ``_evaluate``; the listener registry
    and push fan-out live here. Implementations must hold ``_write_lock``
    while committing and call ``_publish(collection)`` before releasing
    it, which keeps pushes in commit order.
    """

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()
        self._listeners: set[Subscription] = set()

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the storage provider."""
        pass

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        """Point read. Returns None if the document does not exist."""
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> DocumentSnapshot:
        """Create a document with a store-assigned id."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        document_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> DocumentSnapshot:
        """
        Merge top-level fields into an existing document.

        Args:
            collection: Collection name
            document_id: Document to update
            fields: Fields to overwrite; others are left untouched
            expected_version: If given, only write when the stored version
                still equals it

        Returns:
            The document as committed

        Raises:
            DocumentNotFoundError: The document does not exist
            VersionConflictError: The version moved since it was read
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """Remove a document. Raises DocumentNotFoundError if missing."""
        pass

    @abstractmethod
    async def _evaluate(self, query: StoreQuery) -> list[DocumentSnapshot]:
        """Run a query without simulated latency or locking."""
        pass

    async def query(self, query: StoreQuery) -> list[DocumentSnapshot]:
        """One-shot query."""
        return await self._evaluate(query)

    async def subscribe(
        self,
        query: StoreQuery,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Register a live query.

        The current result set is pushed right away, then again after
        every committed change to the query's collection.
        """
        subscription = Subscription(self, query, on_change, on_error)
        async with self._write_lock:
            self._listeners.add(subscription)
            await self._push(subscription)
        subscription.start()
        logger.debug(f"Subscribed to '{query.collection}' ({len(self._listeners)} listeners)")
        return subscription

    def _unregister(self, subscription: Subscription) -> None:
        self._listeners.discard(subscription)

    async def _push(self, subscription: Subscription) -> None:
        try:
            subscription.push(await self._evaluate(subscription.query))
        except StoreError as exc:
            subscription.push(exc)

    async def _publish(self, collection: str) -> None:
        """Push fresh result sets to every listener on ``collection``."""
        for subscription in list(self._listeners):
            if subscription.query.collection == collection:
                await self._push(subscription)

    async def start(self) -> None:
        """Start background work (cross-process listeners). Optional."""
        return None

    async def close(self) -> None:
        """Cancel every subscription and release resources."""
        for subscription in list(self._listeners):
            subscription.cancel()

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """
        Check if the store is reachable.

        Returns:
            Dict with status and provider-specific details
        """
        pass
