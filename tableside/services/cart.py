"""
Cart Accumulator

Client-local staging area for items that are not yet part of a session.
Nothing in the cart is persisted until the diner places the order; the
cart is then cleared.
"""

import logging
import uuid
from decimal import Decimal
from typing import Callable, Iterator, Optional

from tableside.core.exceptions import SessionClosedError, ValidationError
from tableside.schemas import LineItem, MenuItem, Portion, SpiceLevel

logger = logging.getLogger(__name__)


class Cart:
    """
    Staged line items for one diner device.

    Lines with the same name and portion merge (quantities add); anything
    else becomes a new line with a fresh id. While ``locked`` (the
    diner's session is closed) adding is refused and removing does
    nothing.
    """

    def __init__(self, id_factory: Callable[[], str] = lambda: str(uuid.uuid4())):
        self._id_factory = id_factory
        self._lines: list[LineItem] = []
        self.locked = False

    def add_item(
        self,
        menu_item: MenuItem,
        portion: Portion,
        price: Optional[float] = None,
        quantity: int = 1,
        spice_level: Optional[SpiceLevel] = None,
    ) -> LineItem:
        """
        Stage a menu item.

        Args:
            menu_item: Item as currently shown on the menu
            portion: Requested portion; items without portions become N/A
            price: Unit price to freeze on the line, defaults to the
                menu's price for the portion
            quantity: Units to add
            spice_level: Diner's spice choice, defaults to the menu's

        Returns:
            The new or merged line

        Raises:
            SessionClosedError: The diner's session is closed
            ValidationError: Quantity is not a positive whole number
        """
        if self.locked:
            raise SessionClosedError("Session closed. Please start a new order.")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Quantity must be at least 1, got {quantity!r}")

        if menu_item.no_portion:
            portion = Portion.NOT_APPLICABLE
        if price is None:
            price = menu_item.price_for(portion)

        for index, line in enumerate(self._lines):
            if line.name == menu_item.name and line.portion == portion:
                merged = line.model_copy(update={"quantity": line.quantity + quantity})
                self._lines[index] = merged
                return merged

        line = LineItem(
            id=self._id_factory(),
            name=menu_item.name,
            portion=portion,
            price=price,
            quantity=quantity,
            spice_level=spice_level or menu_item.spice_level,
        )
        self._lines.append(line)
        logger.debug(f"Cart: added {line.name} ({portion.value}) x{quantity}")
        return line

    def remove_item(self, line_id: str) -> None:
        if self.locked:
            return
        self._lines = [line for line in self._lines if line.id != line_id]

    def total(self) -> Decimal:
        """Sum of price x quantity over the staged lines."""
        return sum(
            (Decimal(str(line.price)) * line.quantity for line in self._lines),
            Decimal("0"),
        )

    def clear(self) -> None:
        self._lines = []

    def snapshot(self) -> list[LineItem]:
        return list(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[LineItem]:
        return iter(list(self._lines))
