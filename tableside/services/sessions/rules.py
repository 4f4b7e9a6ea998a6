"""
Session Transition Rules

Pure functions: key derivation, input validation, one guard per guarded
transition and one field builder per transition. Nothing here touches the
store, so the rules can be checked without any I/O.

Every builder returns the full set of fields the transition writes,
always including ``updatedAt``.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from tableside.core.exceptions import SessionClosedError, ValidationError
from tableside.schemas import (
    BillStatus,
    KitchenStatus,
    LineItem,
    Session,
    SessionStatus,
)

_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"[0-9]+")


# =============================================================================
# KEYS & INPUT
# =============================================================================

def session_key(table_number: int, customer_name: str) -> str:
    """
    Recovery key for a table visit, e.g. ``table5_asha_rao``.

    Args:
        table_number: Table from the QR code
        customer_name: Display name as typed by the diner
    """
    normalized = _WHITESPACE.sub("_", customer_name.strip().lower())
    return f"table{table_number}_{normalized}"


def parse_positive_int(raw: Any) -> Optional[int]:
    """
    Read a positive whole number from a QR parameter or device storage.

    Only ASCII digits are accepted.

    Returns:
        A positive integer, or None when the value is missing or malformed
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not _DIGITS.fullmatch(text):
            return None
        value = int(text)
    return value if value > 0 else None


def parse_table_number(raw: Any) -> Optional[int]:
    """Table number carried by the QR link, or None."""
    return parse_positive_int(raw)


def require_table_number(raw: Any) -> int:
    table_number = parse_table_number(raw)
    if table_number is None:
        raise ValidationError("A valid table number is required; scan the table's QR code")
    return table_number


def validate_items(items: Iterable[LineItem]) -> list[LineItem]:
    items = list(items)
    if not items:
        raise ValidationError("At least one item is required")
    return items


def validate_new_session(
    table_number: Any,
    customer_name: Optional[str],
    number_of_people: Any,
    items: Iterable[LineItem],
) -> tuple[int, str, int, list[LineItem]]:
    """
    Check every createSession precondition before any store call.

    Returns:
        (table number, trimmed name, party size, items)

    Raises:
        ValidationError: On the first failed precondition
    """
    table = require_table_number(table_number)

    name = (customer_name or "").strip()
    if not name:
        raise ValidationError("Please enter your name")

    try:
        party = int(number_of_people)
    except (TypeError, ValueError):
        raise ValidationError("Please enter the number of people")
    if party <= 0:
        raise ValidationError("Number of people must be at least 1")

    return table, name, party, validate_items(items)


# =============================================================================
# MONEY
# =============================================================================

def items_total(items: Iterable[LineItem]) -> Decimal:
    """Sum of price x quantity, computed in Decimal."""
    return sum(
        (Decimal(str(item.price)) * item.quantity for item in items),
        Decimal("0"),
    )


def as_number(amount: Decimal) -> float:
    """Decimal to the JSON number stored on the document."""
    return float(amount)


# =============================================================================
# GUARDS
# =============================================================================

def ensure_can_append(session: Session) -> None:
    if session.session_status != SessionStatus.ACTIVE:
        raise SessionClosedError(
            f"Session {session.id} is {session.session_status.value}; "
            f"no more items can be added"
        )


def ensure_can_request_bill(session: Session) -> bool:
    """
    Returns:
        False when the bill was already requested (retry of the same call)
    """
    if session.session_status == SessionStatus.BILL_REQUESTED:
        return False
    if session.session_status != SessionStatus.ACTIVE:
        raise SessionClosedError(f"Session {session.id} is closed")
    return True


def ensure_can_accept_bill(session: Session) -> bool:
    """
    Returns:
        False when the bill is already accepted (retry of the same call)
    """
    if session.session_status == SessionStatus.CLOSED:
        raise SessionClosedError(f"Session {session.id} is closed")
    if session.session_status != SessionStatus.BILL_REQUESTED:
        raise SessionClosedError(f"No bill has been requested for session {session.id}")
    if session.bill_status == BillStatus.ACCEPTED:
        return False
    if session.bill_status != BillStatus.PENDING:
        raise SessionClosedError(
            f"Bill for session {session.id} is not pending "
            f"(currently {session.bill_status.value if session.bill_status else 'none'})"
        )
    return True


def ensure_can_mark_downloaded(session: Session) -> bool:
    """
    Returns:
        False when the bill is already downloaded (retry of the same call)
    """
    if session.bill_status == BillStatus.DOWNLOADED:
        return False
    if session.bill_status != BillStatus.ACCEPTED:
        raise SessionClosedError(
            f"Bill for session {session.id} has not been approved by the chef yet"
        )
    return True


# =============================================================================
# FIELD BUILDERS
# =============================================================================

def new_session_fields(
    table_number: int,
    customer_name: str,
    number_of_people: int,
    items: list[LineItem],
    now: datetime,
) -> dict[str, Any]:
    timestamp = now.isoformat()
    return {
        "customerName": customer_name,
        "numberOfPeople": number_of_people,
        "tableNumber": table_number,
        "sessionId": session_key(table_number, customer_name),
        "sessionStatus": SessionStatus.ACTIVE.value,
        "sessionItems": [item.to_document() for item in items],
        "sessionTotal": as_number(items_total(items)),
        "status": KitchenStatus.WAITING.value,
        "createdAt": timestamp,
        "updatedAt": timestamp,
        "extrasBatches": [],
        "billStatus": None,
        "hasNewExtras": False,
    }


def extra_batch_fields(
    current: dict[str, Any],
    batch_id: str,
    items: list[LineItem],
    now: datetime,
) -> dict[str, Any]:
    """
    Append one batch on top of the freshly read document.

    ``current`` is the raw stored data, so previously appended batches are
    carried over exactly as stored and the total grows from the stored
    value rather than from any client-side copy.
    """
    batch_total = items_total(items)
    batch = {
        "batchId": batch_id,
        "items": [item.to_document() for item in items],
        "batchTotal": as_number(batch_total),
        "timestamp": now.isoformat(),
    }
    previous_total = Decimal(str(current.get("sessionTotal") or 0))
    return {
        "extrasBatches": [*(current.get("extrasBatches") or []), batch],
        "sessionTotal": as_number(previous_total + batch_total),
        "status": KitchenStatus.WAITING.value,
        "hasNewExtras": True,
        "updatedAt": now.isoformat(),
    }


def bill_request_fields(now: datetime) -> dict[str, Any]:
    return {
        "sessionStatus": SessionStatus.BILL_REQUESTED.value,
        "billStatus": BillStatus.PENDING.value,
        "billRequestedAt": now.isoformat(),
        "updatedAt": now.isoformat(),
    }


def bill_accept_fields(now: datetime) -> dict[str, Any]:
    return {
        "billStatus": BillStatus.ACCEPTED.value,
        "updatedAt": now.isoformat(),
    }


def downloaded_fields(now: datetime) -> dict[str, Any]:
    return {
        "billStatus": BillStatus.DOWNLOADED.value,
        "sessionStatus": SessionStatus.CLOSED.value,
        "billGeneratedAt": now.isoformat(),
        "updatedAt": now.isoformat(),
    }


def close_fields(now: datetime) -> dict[str, Any]:
    return {
        "sessionStatus": SessionStatus.CLOSED.value,
        "updatedAt": now.isoformat(),
    }


def kitchen_status_fields(status: KitchenStatus, now: datetime) -> dict[str, Any]:
    return {
        "status": KitchenStatus(status).value,
        "updatedAt": now.isoformat(),
    }


def acknowledge_fields(now: datetime) -> dict[str, Any]:
    return {
        "hasNewExtras": False,
        "updatedAt": now.isoformat(),
    }
