from decimal import Decimal

import pytest

from tableside.core.exceptions import SessionClosedError, ValidationError
from tableside.schemas import Portion, SpiceLevel
from tableside.services.cart import Cart


class TestCart:
    """Test staging items before an order is placed"""

    def test_same_name_and_portion_merge(self, paneer):
        cart = Cart()
        cart.add_item(paneer, Portion.FULL)
        line = cart.add_item(paneer, Portion.FULL, quantity=2)

        assert len(cart) == 1
        assert line.quantity == 3

    def test_different_portions_are_separate_lines(self, paneer):
        cart = Cart()
        full = cart.add_item(paneer, Portion.FULL)
        half = cart.add_item(paneer, Portion.HALF)

        assert len(cart) == 2
        assert full.id != half.id
        assert (full.price, half.price) == (270, 150)

    def test_no_portion_items_become_not_applicable(self, papad):
        cart = Cart()
        cart.add_item(papad, Portion.FULL)
        line = cart.add_item(papad, Portion.HALF)

        assert len(cart) == 1
        assert line.portion == Portion.NOT_APPLICABLE
        assert line.quantity == 2

    def test_explicit_price_and_spice_are_frozen(self, paneer):
        line = Cart().add_item(paneer, Portion.FULL, price=250, spice_level=SpiceLevel.SWEET)

        assert line.price == 250
        assert line.spice_level == SpiceLevel.SWEET

    def test_spice_defaults_to_menu(self, paneer):
        assert Cart().add_item(paneer, Portion.FULL).spice_level == SpiceLevel.SPICY

    def test_total_is_recomputed(self, paneer, papad):
        cart = Cart()
        line = cart.add_item(paneer, Portion.HALF, quantity=2)
        cart.add_item(papad, Portion.FULL)
        assert cart.total() == Decimal("345")

        cart.remove_item(line.id)
        assert cart.total() == Decimal("45")

    def test_ids_come_from_factory(self, paneer, papad):
        ids = iter(["line-1", "line-2"])
        cart = Cart(id_factory=lambda: next(ids))
        cart.add_item(paneer, Portion.FULL)
        cart.add_item(papad, Portion.FULL)

        assert [line.id for line in cart] == ["line-1", "line-2"]

    def test_locked_cart(self, paneer):
        cart = Cart()
        line = cart.add_item(paneer, Portion.FULL)
        cart.locked = True

        with pytest.raises(SessionClosedError):
            cart.add_item(paneer, Portion.FULL)
        cart.remove_item(line.id)
        assert len(cart) == 1

    def test_snapshot_is_a_copy(self, paneer):
        cart = Cart()
        cart.add_item(paneer, Portion.FULL)
        snapshot = cart.snapshot()
        cart.clear()

        assert len(snapshot) == 1
        assert cart.is_empty


class TestCartQuantities:
    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_on_new_line(self, paneer, quantity):
        cart = Cart()
        with pytest.raises(ValidationError):
            cart.add_item(paneer, Portion.FULL, quantity=quantity)
        assert cart.is_empty

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_cannot_shrink_a_line(self, paneer, quantity):
        cart = Cart()
        cart.add_item(paneer, Portion.FULL)

        with pytest.raises(ValidationError):
            cart.add_item(paneer, Portion.FULL, quantity=quantity)

        assert [line.quantity for line in cart] == [1]
        assert cart.total() == Decimal("270")
