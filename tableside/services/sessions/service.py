"""
Session Service

The session state machine over the document store. Diner operations
(create, append, request bill, mark downloaded) and chef operations
(kitchen status, accept bill, force close, acknowledge extras, clear
closed) all go through here.

Write discipline:
    - Guarded transitions (append, request bill, accept bill, mark
      downloaded) read the current document and write with
      compare-and-set against the version they read; on a conflict they
      re-read and re-check, up to ``max_append_attempts`` times.
    - Chef overrides (kitchen status, force close, acknowledge) are
      single blind merges; last write wins on those fields.
    - Every write is one document-level merge and stamps ``updatedAt``.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Sequence

from tableside.core.config import Settings, get_settings
from tableside.core.exceptions import NotFoundError, SyncFailure
from tableside.schemas import KitchenStatus, LineItem, Session, SessionStatus
from tableside.services.sessions import rules
from tableside.services.store import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentSnapshot,
    StoreError,
    StoreQuery,
    Subscription,
    VersionConflictError,
)
from tableside.services.store.base import call_maybe_async

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_batch_id() -> str:
    return str(uuid.uuid4())


class RecoveryOutcome(str, Enum):
    RESUMED = "resumed"
    CLOSED = "closed"
    NONE = "none"


@dataclass
class RecoveryResult:
    """
    Result of looking up a diner's session.

    Attributes:
        outcome: RESUMED (open session found), CLOSED (the diner's latest
            session is finished and must be dismissed) or NONE
        session: The session found, when there is one worth showing
        message: Text for the diner
    """
    outcome: RecoveryOutcome
    session: Optional[Session] = None
    message: str = ""


@dataclass
class ClearResult:
    """Outcome of clearing closed sessions; failures do not stop the sweep."""
    deleted: list[Session] = field(default_factory=list)
    failed: list[Session] = field(default_factory=list)

    @property
    def failed_tables(self) -> list[str]:
        return [f"Table {session.table_number}" for session in self.failed]


class SessionService:
    """
    Async session operations against an injected document store.

    Args:
        store: Document store (in-memory in development and tests)
        settings: Application settings, defaults to get_settings()
        clock: Returns the current aware datetime
        id_factory: Generates batch ids
    """

    def __init__(
        self,
        store: BaseDocumentStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = generate_batch_id,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.collection = self.settings.sessions_collection
        self.clock = clock
        self.id_factory = id_factory

    # =========================================================================
    # STORE ACCESS
    # =========================================================================

    @contextmanager
    def _store_call(self, session_id: Optional[str], action: str) -> Iterator[None]:
        """Translate store errors into the domain taxonomy."""
        try:
            yield
        except VersionConflictError:
            raise
        except DocumentNotFoundError:
            raise NotFoundError(f"Session {session_id} no longer exists")
        except StoreError as exc:
            logger.error(f"Store failure during {action} ({session_id}): {exc}")
            raise SyncFailure(f"Could not {action}: {exc}") from exc

    async def _read(self, session_id: str, action: str) -> DocumentSnapshot:
        with self._store_call(session_id, action):
            snapshot = await self.store.get(self.collection, session_id)
        if snapshot is None:
            raise NotFoundError(f"Session {session_id} no longer exists")
        return snapshot

    async def _guarded_write(
        self,
        session_id: str,
        action: str,
        build: Callable[[Session, dict[str, Any]], Optional[dict[str, Any]]],
    ) -> Session:
        """
        Read, check, compare-and-set; repeat on conflict.

        ``build`` raises if the transition is not allowed from the current
        state, returns None if the transition already happened, and
        otherwise returns the fields to write.
        """
        attempts = self.settings.max_append_attempts
        for attempt in range(1, attempts + 1):
            snapshot = await self._read(session_id, action)
            session = Session.from_document(snapshot.id, snapshot.data)

            fields = build(session, snapshot.data)
            if fields is None:
                logger.info(f"Session {session_id}: {action} already applied")
                return session

            try:
                with self._store_call(session_id, action):
                    committed = await self.store.update(
                        self.collection, session_id, fields,
                        expected_version=snapshot.version,
                    )
            except VersionConflictError:
                logger.warning(
                    f"Session {session_id}: {action} raced another writer "
                    f"(attempt {attempt}/{attempts}), re-reading"
                )
                continue
            return Session.from_document(committed.id, committed.data)

        raise SyncFailure(
            f"Could not {action} for session {session_id}: "
            f"document kept changing after {attempts} attempts"
        )

    async def _merge(self, session_id: str, action: str, fields: dict[str, Any]) -> Session:
        """Blind merge; last write wins, so a conflicting write is just re-applied."""
        attempts = self.settings.max_append_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self._store_call(session_id, action):
                    committed = await self.store.update(self.collection, session_id, fields)
            except VersionConflictError:
                logger.warning(
                    f"Session {session_id}: {action} collided with another write "
                    f"(attempt {attempt}/{attempts}), re-applying"
                )
                continue
            return Session.from_document(committed.id, committed.data)

        raise SyncFailure(
            f"Could not {action} for session {session_id}: "
            f"store kept reporting concurrent writes after {attempts} attempts"
        )

    # =========================================================================
    # DINER OPERATIONS
    # =========================================================================

    async def create_session(
        self,
        table_number: Any,
        customer_name: Optional[str],
        number_of_people: Any,
        items: Sequence[LineItem],
    ) -> Session:
        """
        Start a session with the diner's first order.

        The caller must keep the returned id (device storage); it is the
        only reliable key for reaching the session again.

        Raises:
            ValidationError: Missing table, empty name, party < 1, no items
            SyncFailure: The store write failed
        """
        table, name, party, items = rules.validate_new_session(
            table_number, customer_name, number_of_people, items
        )
        fields = rules.new_session_fields(table, name, party, items, self.clock())

        with self._store_call(None, "create session"):
            snapshot = await self.store.add(self.collection, fields)

        logger.info(
            f"Session {snapshot.id} created: table {table}, {name} "
            f"({party} guests), total {fields['sessionTotal']}"
        )
        return Session.from_document(snapshot.id, snapshot.data)

    async def get_session(self, session_id: str) -> Session:
        snapshot = await self._read(session_id, "load session")
        return Session.from_document(snapshot.id, snapshot.data)

    async def recover_session(
        self,
        table_number: Any,
        customer_name: Optional[str] = None,
    ) -> RecoveryResult:
        """
        Find the most recent session for a table (and name, if given).

        Without a name the latest session at the table is taken whoever
        it belongs to; two diners sharing a table without names can pick
        up each other's session.
        """
        table = rules.require_table_number(table_number)
        name = (customer_name or "").strip()

        filters: tuple[tuple[str, Any], ...] = (("tableNumber", table),)
        if name:
            filters += (("customerName", name),)

        query = StoreQuery(
            self.collection,
            filters=filters,
            order_by="createdAt",
            descending=True,
            limit=1,
        )
        with self._store_call(None, "recover session"):
            found = await self.store.query(query)

        if not found:
            return RecoveryResult(RecoveryOutcome.NONE, message="No open session for this table")

        session = Session.from_document(found[0].id, found[0].data)

        if session.session_status == SessionStatus.ACTIVE:
            logger.info(f"Session {session.id} resumed at table {table}")
            return RecoveryResult(
                RecoveryOutcome.RESUMED,
                session,
                f"Welcome back! Your session has {len(session.session_items)} initial items.",
            )
        if session.session_status == SessionStatus.BILL_REQUESTED:
            logger.info(f"Session {session.id} resumed at table {table} (bill requested)")
            return RecoveryResult(
                RecoveryOutcome.RESUMED,
                session,
                "Welcome back! Bill is pending chef approval...",
            )

        # Closed: only the same diner sees the closed notice; anyone else starts fresh
        if name and session.customer_name == name:
            return RecoveryResult(
                RecoveryOutcome.CLOSED,
                session,
                "Your session has been closed. Start a new order to continue.",
            )
        return RecoveryResult(RecoveryOutcome.NONE, message="No open session for this table")

    async def append_extra_batch(self, session_id: str, items: Sequence[LineItem]) -> Session:
        """
        Append an immutable batch of extra items to an active session.

        The new batch list and total are built from the document as read
        just before the write, and the write only lands if nobody else
        wrote in between, so concurrent appends never lose a batch.

        Raises:
            ValidationError: No items
            SessionClosedError: Session is not active
            NotFoundError: Session was deleted
            SyncFailure: Store failure or persistent contention
        """
        items = rules.validate_items(items)
        batch_id = self.id_factory()

        def build(session: Session, current: dict[str, Any]) -> dict[str, Any]:
            rules.ensure_can_append(session)
            return rules.extra_batch_fields(current, batch_id, items, self.clock())

        session = await self._guarded_write(session_id, "add extra items", build)
        logger.info(
            f"Session {session_id}: batch {batch_id} appended "
            f"({len(items)} lines), total now {session.session_total}"
        )
        return session

    async def request_bill(self, session_id: str) -> Session:
        def build(session: Session, current: dict[str, Any]) -> Optional[dict[str, Any]]:
            if not rules.ensure_can_request_bill(session):
                return None
            return rules.bill_request_fields(self.clock())

        session = await self._guarded_write(session_id, "request bill", build)
        logger.info(f"Session {session_id}: bill requested")
        return session

    async def mark_downloaded(self, session_id: str) -> Session:
        """Diner has generated the invoice: bill downloaded, session closed."""
        def build(session: Session, current: dict[str, Any]) -> Optional[dict[str, Any]]:
            if not rules.ensure_can_mark_downloaded(session):
                return None
            return rules.downloaded_fields(self.clock())

        session = await self._guarded_write(session_id, "download bill", build)
        logger.info(f"Session {session_id}: bill downloaded, session closed")
        return session

    # =========================================================================
    # CHEF OPERATIONS
    # =========================================================================

    async def accept_bill(self, session_id: str) -> Session:
        def build(session: Session, current: dict[str, Any]) -> Optional[dict[str, Any]]:
            if not rules.ensure_can_accept_bill(session):
                return None
            return rules.bill_accept_fields(self.clock())

        session = await self._guarded_write(session_id, "accept bill", build)
        logger.info(f"Session {session_id}: bill accepted")
        return session

    async def force_close(self, session_id: str) -> Session:
        """
        Close a session from any open state.

        An override rather than a guarded transition; closing a session
        that is already closed changes nothing.
        """
        session = await self.get_session(session_id)
        if session.session_status == SessionStatus.CLOSED:
            logger.info(f"Session {session_id}: already closed")
            return session

        session = await self._merge(session_id, "close session", rules.close_fields(self.clock()))
        logger.info(f"Session {session_id}: force-closed by chef")
        return session

    async def update_kitchen_status(self, session_id: str, status: KitchenStatus) -> Session:
        """Any kitchen status may be set at any time."""
        session = await self._merge(
            session_id, "update kitchen status", rules.kitchen_status_fields(status, self.clock())
        )
        logger.info(f"Session {session_id}: kitchen status -> {session.status.value}")
        return session

    async def acknowledge_extras(self, session_id: str) -> Session:
        return await self._merge(
            session_id, "acknowledge extras", rules.acknowledge_fields(self.clock())
        )

    async def list_sessions(self) -> list[Session]:
        """All sessions, most recently updated first."""
        query = StoreQuery(self.collection, order_by="updatedAt", descending=True)
        with self._store_call(None, "list sessions"):
            snapshots = await self.store.query(query)
        return [Session.from_document(s.id, s.data) for s in snapshots]

    @staticmethod
    def split_by_state(sessions: Sequence[Session]) -> tuple[list[Session], list[Session]]:
        """
        Returns:
            (open sessions, closed sessions), each keeping the input order
        """
        open_sessions = [s for s in sessions if s.session_status != SessionStatus.CLOSED]
        closed = [s for s in sessions if s.session_status == SessionStatus.CLOSED]
        return open_sessions, closed

    async def clear_closed_sessions(self) -> ClearResult:
        """Delete every closed session, carrying on past individual failures."""
        _, closed = self.split_by_state(await self.list_sessions())
        result = ClearResult()

        for session in closed:
            try:
                with self._store_call(session.id, "delete session"):
                    await self.store.delete(self.collection, session.id)
            except (NotFoundError, SyncFailure) as exc:
                logger.warning(f"Could not clear session {session.id}: {exc}")
                result.failed.append(session)
                continue
            result.deleted.append(session)

        logger.info(
            f"Cleared {len(result.deleted)} closed sessions"
            + (f", {len(result.failed)} failed" if result.failed else "")
        )
        return result

    # =========================================================================
    # LIVE FEEDS
    # =========================================================================

    async def watch_sessions(
        self,
        on_change: Callable[[list[Session]], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> Subscription:
        """Chef dashboard feed: all sessions by last update, re-sent on every change."""
        async def deliver(snapshots: list[DocumentSnapshot]) -> None:
            await call_maybe_async(
                on_change, [Session.from_document(s.id, s.data) for s in snapshots]
            )

        query = StoreQuery(self.collection, order_by="updatedAt", descending=True)
        return await self.store.subscribe(query, deliver, on_error)

    async def watch_session(
        self,
        session_id: str,
        on_change: Callable[[Optional[Session]], Any],
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> Subscription:
        """Diner feed for one session; a deleted session arrives as None."""
        async def deliver(snapshots: list[DocumentSnapshot]) -> None:
            session = (
                Session.from_document(snapshots[0].id, snapshots[0].data) if snapshots else None
            )
            await call_maybe_async(on_change, session)

        query = StoreQuery(self.collection, document_id=session_id)
        return await self.store.subscribe(query, deliver, on_error)
