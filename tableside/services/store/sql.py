"""
SQL Document Store Implementation

Production document store: every document is one row of the
``stored_documents`` table (PostgreSQL via async SQLAlchemy), and change
notices fan out to other API processes through Redis pub/sub.

Behavior:
    - Compare-and-set writes use ``UPDATE ... WHERE version = :expected``
      and check the affected row count
    - Plain merges also go through the version column, so a concurrent
      writer in another process can never interleave inside one merge
    - After each commit, local subscribers are refreshed and a notice
      ``{"origin", "collection", "id"}`` is published on
      ``{channel_prefix}:{collection}``
    - ``start()`` runs a listener that refreshes local subscribers when
      another process publishes a notice

Environment Variables Required:
    DATABASE_URL: Async SQLAlchemy URL
    REDIS_URL: Redis URL for change fan-out (optional; without it only
        subscribers in this process are notified)
"""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tableside.models import StoredDocument
from tableside.services.store.base import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentSnapshot,
    StoreError,
    StoreQuery,
    VersionConflictError,
)
from tableside.services.store.memory import generate_document_id

logger = logging.getLogger(__name__)


class SqlDocumentStore(BaseDocumentStore):
    """
    Async SQLAlchemy document store with Redis change fan-out.

    Attributes:
        channel_prefix: Prefix of the Redis channels change notices go to
        origin: Random id of this process, used to skip our own notices
    """

    # Seconds before resubscribing after Redis drops; doubles up to the max
    listener_retry_delay = 1.0
    listener_max_delay = 30.0

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        redis_url: Optional[str] = None,
        channel_prefix: str = "tableside:changes",
    ):
        super().__init__()
        self._session_maker = session_maker
        self._redis = aioredis.from_url(redis_url, decode_responses=True) if redis_url else None
        self.channel_prefix = channel_prefix
        self.origin = uuid.uuid4().hex
        self._listener_task: Optional[asyncio.Task] = None

        logger.info(
            f"SqlDocumentStore initialized "
            f"(fan-out: {'redis' if self._redis else 'local only'})"
        )

    @property
    def provider_name(self) -> str:
        return "sql"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(f"Document store query failed: {exc}")
            raise StoreError(str(exc)) from exc

    @staticmethod
    def _snapshot(row: StoredDocument) -> DocumentSnapshot:
        return DocumentSnapshot(id=row.id, data=dict(row.data or {}), version=row.version)

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, collection: str, document_id: str) -> Optional[DocumentSnapshot]:
        async with self._session() as session:
            row = await session.get(StoredDocument, (collection, document_id))
            return self._snapshot(row) if row is not None else None

    async def _evaluate(self, query: StoreQuery) -> list[DocumentSnapshot]:
        statement = select(StoredDocument).where(StoredDocument.collection == query.collection)
        statement = statement.order_by(StoredDocument.created_at)
        if query.document_id is not None:
            statement = statement.where(StoredDocument.id == query.document_id)

        async with self._session() as session:
            rows = (await session.execute(statement)).scalars().all()
            # Equality filters and ordering run on the decoded JSON
            return query.apply(self._snapshot(row) for row in rows)

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add(self, collection: str, data: dict[str, Any]) -> DocumentSnapshot:
        document_id = generate_document_id()
        async with self._write_lock:
            async with self._session() as session:
                row = StoredDocument(
                    collection=collection, id=document_id, data=dict(data), version=1,
                    created_at=datetime.now(timezone.utc),
                )
                snapshot = self._snapshot(row)
                session.add(row)
                await session.commit()
            await self._publish(collection)
        await self._announce(collection, document_id)
        return snapshot

    async def update(
        self,
        collection: str,
        document_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> DocumentSnapshot:
        async with self._write_lock:
            async with self._session() as session:
                row = await session.get(StoredDocument, (collection, document_id))
                if row is None:
                    raise DocumentNotFoundError(f"{collection}/{document_id} does not exist")
                if expected_version is not None and row.version != expected_version:
                    raise VersionConflictError(
                        f"{collection}/{document_id} is at version {row.version}, "
                        f"expected {expected_version}"
                    )

                read_version = row.version
                merged = {**(row.data or {}), **fields}
                result = await session.execute(
                    update(StoredDocument)
                    .where(
                        StoredDocument.collection == collection,
                        StoredDocument.id == document_id,
                        StoredDocument.version == read_version,
                    )
                    .values(data=merged, version=read_version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    await session.rollback()
                    raise VersionConflictError(
                        f"{collection}/{document_id} changed during the write"
                    )
                await session.commit()
                snapshot = DocumentSnapshot(id=document_id, data=merged, version=read_version + 1)
            await self._publish(collection)
        await self._announce(collection, document_id)
        return snapshot

    async def delete(self, collection: str, document_id: str) -> None:
        async with self._write_lock:
            async with self._session() as session:
                result = await session.execute(
                    delete(StoredDocument).where(
                        StoredDocument.collection == collection,
                        StoredDocument.id == document_id,
                    )
                )
                if result.rowcount != 1:
                    raise DocumentNotFoundError(f"{collection}/{document_id} does not exist")
                await session.commit()
            await self._publish(collection)
        await self._announce(collection, document_id)

    # =========================================================================
    # REDIS FAN-OUT
    # =========================================================================

    async def _announce(self, collection: str, document_id: str) -> None:
        """Tell other processes that ``collection`` changed."""
        if self._redis is None:
            return
        notice = json.dumps({"origin": self.origin, "collection": collection, "id": document_id})
        try:
            await self._redis.publish(f"{self.channel_prefix}:{collection}", notice)
        except RedisError as exc:
            # The write is committed; remote dashboards catch up on their next change.
            logger.warning(f"Change notice for {collection}/{document_id} not published: {exc}")

    async def start(self) -> None:
        if self._redis is None or self._listener_task is not None:
            return
        self._listener_task = asyncio.create_task(self._listen())
        self._listener_task.add_done_callback(self._listener_stopped)
        logger.info(f"Listening for change notices on {self.channel_prefix}:*")

    @staticmethod
    def _listener_stopped(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Change-notice listener stopped: {task.exception()!r}")

    async def _listen(self) -> None:
        """Relay remote notices to local subscribers, resubscribing when Redis drops."""
        delay = self.listener_retry_delay
        while True:
            pubsub = self._redis.pubsub()
            try:
                await pubsub.psubscribe(f"{self.channel_prefix}:*")
                delay = self.listener_retry_delay
                async for message in pubsub.listen():
                    await self._handle_notice(message)
                logger.warning("Change-notice stream ended, resubscribing")
            except RedisError as exc:
                logger.warning(f"Change-notice listener lost Redis: {exc}; retrying in {delay:g}s")
            finally:
                try:
                    await pubsub.aclose()
                except RedisError as exc:
                    logger.debug(f"Closing a broken pubsub connection failed: {exc}")

            await asyncio.sleep(delay)
            delay = min(max(delay * 2, self.listener_retry_delay), self.listener_max_delay)
            # Notices sent while disconnected are gone
            await self._refresh_all()

    async def _handle_notice(self, message: dict[str, Any]) -> None:
        if message.get("type") != "pmessage":
            return
        try:
            notice = json.loads(message["data"])
            collection = notice["collection"]
        except (TypeError, ValueError, KeyError):
            logger.warning(f"Ignoring malformed change notice: {message.get('data')!r}")
            return
        if notice.get("origin") == self.origin:
            return
        async with self._write_lock:
            await self._publish(collection)

    async def _refresh_all(self) -> None:
        collections = {subscription.query.collection for subscription in self._listeners}
        async with self._write_lock:
            for collection in collections:
                await self._publish(collection)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def close(self) -> None:
        await super().close()
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error(f"Change-notice listener had already failed: {exc!r}")
            self._listener_task = None
        if self._redis is not None:
            await self._redis.aclose()

    async def health_check(self) -> dict[str, Any]:
        status: dict[str, Any] = {"status": "healthy", "provider": self.provider_name}
        try:
            async with self._session() as session:
                await session.execute(text("SELECT 1"))
            status["database"] = "connected"
        except StoreError as exc:
            status["status"] = "unhealthy"
            status["database"] = str(exc)

        if self._redis is not None:
            try:
                await self._redis.ping()
                status["redis"] = "connected"
            except RedisError as exc:
                status["status"] = "degraded"
                status["redis"] = str(exc)
        return status
