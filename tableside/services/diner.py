"""
Diner Context

Everything one diner device holds locally: the table from the QR code,
the diner's name and party size, the staged cart and the last synced
copy of their session.

Local vs synced state:
    - The cart is local and may change optimistically.
    - ``session`` (and with it sessionStatus / billStatus) only changes
      after a confirmed write or an authoritative push, and an older
      copy never replaces a newer one.
"""

import logging
from typing import Any, Optional

from tableside.core.config import Settings, get_settings
from tableside.core.exceptions import NotFoundError, SessionClosedError, ValidationError
from tableside.schemas import BillStatus, MenuItem, Portion, Session, SessionStatus
from tableside.services.billing import Invoice, build_invoice
from tableside.services.cart import Cart
from tableside.services.sessions import (
    RecoveryOutcome,
    RecoveryResult,
    SessionService,
    parse_table_number,
)
from tableside.services.sessions.rules import parse_positive_int
from tableside.services.store import Subscription

logger = logging.getLogger(__name__)

CUSTOMER_NAME_KEY = "restaurant_customerName"
NUMBER_OF_PEOPLE_KEY = "restaurant_numberOfPeople"
SESSION_ID_KEY = "restaurant_sessionId"


class DeviceStorage:
    """Key/value storage that survives page reloads on the diner's device."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = str(value)

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)


class DinerContext:
    """
    One diner device at one table.

    Args:
        service: Session service
        table_number: Raw table parameter from the QR link
        storage: Device storage, restored name/party/session id come from here
    """

    def __init__(
        self,
        service: SessionService,
        table_number: Any,
        storage: Optional[DeviceStorage] = None,
        settings: Optional[Settings] = None,
    ):
        self.service = service
        self.settings = settings or get_settings()
        self.table_number = parse_table_number(table_number)
        self.storage = storage or DeviceStorage()
        self.cart = Cart()

        self.customer_name = self.storage.get(CUSTOMER_NAME_KEY) or ""
        people = self.storage.get(NUMBER_OF_PEOPLE_KEY)
        self.number_of_people: Optional[int] = parse_positive_int(people)
        self.session_id: Optional[str] = self.storage.get(SESSION_ID_KEY)

        self.session: Optional[Session] = None
        self.session_closed = False
        self._subscription: Optional[Subscription] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def in_session(self) -> bool:
        return self.session_id is not None and not self.session_closed

    @property
    def bill_status(self) -> Optional[BillStatus]:
        return self.session.bill_status if self.session else None

    @property
    def bill_requested(self) -> bool:
        return (
            self.session is not None
            and self.session.session_status == SessionStatus.BILL_REQUESTED
        )

    def set_customer(self, customer_name: str, number_of_people: Optional[int]) -> None:
        self.customer_name = customer_name
        self.number_of_people = number_of_people
        self.storage.set(CUSTOMER_NAME_KEY, customer_name)
        if number_of_people is not None:
            self.storage.set(NUMBER_OF_PEOPLE_KEY, number_of_people)

    def _adopt(self, session: Session) -> None:
        """Take an authoritative copy unless we already hold a newer one."""
        current = self.session
        if (
            current is not None
            and current.id == session.id
            and current.updated_at is not None
            and session.updated_at is not None
            and session.updated_at < current.updated_at
        ):
            logger.debug(f"Ignoring stale copy of session {session.id}")
            return

        self.session = session
        self.session_id = session.id
        self.storage.set(SESSION_ID_KEY, session.id)

        if session.session_status == SessionStatus.CLOSED:
            self._enter_closed()

    def _enter_closed(self) -> None:
        self.session_closed = True
        self.session_id = None
        self.storage.remove(SESSION_ID_KEY)
        self.cart.clear()
        self.cart.locked = True

    def _reset_session(self) -> None:
        self.session = None
        self.session_id = None
        self.session_closed = False
        self.storage.remove(SESSION_ID_KEY)
        self.cart.locked = False

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def recover(self) -> RecoveryResult:
        """
        Look up this diner's session for the table.

        On resume the cart starts empty (submitted items live only on the
        session) and empty name/party fields are filled from the session.
        """
        if self.table_number is None:
            self._reset_session()
            self.cart.clear()
            return RecoveryResult(RecoveryOutcome.NONE, message="No table selected")

        result = await self.service.recover_session(self.table_number, self.customer_name or None)

        if result.outcome == RecoveryOutcome.RESUMED:
            session = result.session
            self.session_closed = False
            self.cart.locked = False
            self._adopt(session)
            self.cart.clear()
            if not self.customer_name:
                self.customer_name = session.customer_name
                self.storage.set(CUSTOMER_NAME_KEY, session.customer_name)
            if not self.number_of_people:
                self.number_of_people = session.number_of_people
                self.storage.set(NUMBER_OF_PEOPLE_KEY, session.number_of_people)
        elif result.outcome == RecoveryOutcome.CLOSED:
            self.session = result.session
            self._enter_closed()
        else:
            self._reset_session()
            self.cart.clear()

        logger.info(f"Table {self.table_number}: recovery -> {result.outcome.value}")
        return result

    def add_to_cart(
        self,
        menu_item: MenuItem,
        portion: Portion = Portion.FULL,
        price: Optional[float] = None,
        quantity: int = 1,
    ):
        return self.cart.add_item(menu_item, portion, price, quantity)

    def remove_from_cart(self, line_id: str) -> None:
        self.cart.remove_item(line_id)

    async def place_order(self) -> Session:
        """
        Commit the cart: start a session, or append a batch to the open one.

        The cart is cleared only after the write is confirmed.
        """
        if self.session_closed:
            raise SessionClosedError("Session closed. Please start a new order.")
        if self.cart.is_empty:
            raise ValidationError("Your cart is empty")

        items = self.cart.snapshot()
        if self.session_id is None:
            session = await self.service.create_session(
                self.table_number, self.customer_name, self.number_of_people, items
            )
            self.set_customer(session.customer_name, session.number_of_people)
        else:
            try:
                session = await self.service.append_extra_batch(self.session_id, items)
            except NotFoundError:
                self._reset_session()
                raise

        self._adopt(session)
        self.cart.clear()
        return session

    async def request_bill(self) -> Session:
        if self.session_id is None:
            raise ValidationError("There is no open session to bill")
        try:
            session = await self.service.request_bill(self.session_id)
        except NotFoundError:
            self._reset_session()
            raise
        self._adopt(session)
        return session

    async def download_bill(self) -> Invoice:
        """
        Produce the invoice once the chef has approved the bill, then
        record the download (which closes the session).
        """
        if self.session_id is None:
            raise ValidationError("There is no open session to bill")

        session = await self.service.get_session(self.session_id)
        if session.bill_status != BillStatus.ACCEPTED:
            self._adopt(session)
            raise SessionClosedError("Bill is waiting for chef approval")

        invoice = build_invoice(session, self.settings)
        closed = await self.service.mark_downloaded(session.id)
        self._adopt(closed)
        return invoice

    def apply_push(self, session: Optional[Session]) -> None:
        """
        Authoritative update from the session feed. A vanished session
        (cleared by the chef) resets local session state.
        """
        if session is None:
            if self.session_closed:
                # The closed notice stays until the diner dismisses it
                self.session = None
                return
            if self.session_id is not None:
                logger.info(f"Session {self.session_id} no longer exists; resetting")
            self._reset_session()
            return
        if self.session_id is not None and session.id != self.session_id:
            return
        self._adopt(session)

    async def watch(self) -> Subscription:
        """Follow the current session; pushes go through apply_push."""
        if self.session_id is None:
            raise ValidationError("There is no session to follow")
        self.stop_watching()
        self._subscription = await self.service.watch_session(self.session_id, self.apply_push)
        return self._subscription

    def stop_watching(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def start_new_order(self) -> None:
        """Dismiss the closed-session notice and forget the previous diner."""
        self.stop_watching()
        self._reset_session()
        self.cart.clear()
        self.customer_name = ""
        self.number_of_people = None
        self.storage.remove(CUSTOMER_NAME_KEY)
        self.storage.remove(NUMBER_OF_PEOPLE_KEY)
