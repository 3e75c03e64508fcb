"""Tests for draft-only item changes, the totals invariant and return bookkeeping."""

from decimal import Decimal

import pytest
from protean.exceptions import ValidationError

from sakura.order.events import OrderItemsReturned
from sakura.order.order import Order, OrderPricing, OrderStatus
from sakura.pricing.calculator import PricedLine, TaxRule, calculate_totals
from sakura.shared.errors import OrderLocked, ReturnQuantityExceeded

ADDRESS = {
    "recipient_name": "Tran Thi Binh",
    "phone": "0912345678",
    "street": "8 Bach Dang",
    "province": "Da Nang",
}

UNIT = Decimal("1")


def _make_order():
    lines = [PricedLine(Decimal("250000"), 2), PricedLine(Decimal("45000"), 3)]
    return Order.create(
        order_number="ORD261019000002",
        customer_id="cust-002",
        items=[
            {"product_id": "tea-set", "quantity": 2, "unit_price": 250000},
            {"product_id": "bowl", "variant_id": "blue", "quantity": 3, "unit_price": 45000},
        ],
        shipping_address=ADDRESS,
        billing_address=ADDRESS,
        totals=calculate_totals(lines, 30000, 0, TaxRule()),
        tax_rate=Decimal("0"),
        currency="VND",
        payment_method="SePay",
        delivery_method="Standard",
    )


def _item(order, product_id):
    return next(i for i in order.items if i.product_id == product_id)


def _delivered():
    order = _make_order()
    order.place()
    order.advance_to(OrderStatus.DELIVERED)
    return order


class TestDraftItems:
    def test_add_item_reprices(self):
        order = _make_order()
        order.add_item(UNIT, product_id="vase", quantity=1, unit_price=180000)
        assert order.pricing.subtotal == 815000.0
        assert order.pricing.grand_total == 845000.0

    def test_remove_item_reprices(self):
        order = _make_order()
        order.remove_item(_item(order, "bowl").id, UNIT)
        assert len(order.items) == 1
        assert order.pricing.grand_total == 530000.0

    def test_remove_unknown_item(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.remove_item("missing", UNIT)

    def test_items_locked_once_placed(self):
        order = _make_order()
        order.place()
        with pytest.raises(OrderLocked):
            order.add_item(UNIT, product_id="vase", quantity=1, unit_price=180000)
        with pytest.raises(OrderLocked):
            order.remove_item(_item(order, "bowl").id, UNIT)


class TestTotalsInvariant:
    def test_mismatched_grand_total_rejected(self):
        order = _make_order()
        with pytest.raises(ValidationError) as exc:
            order.pricing = OrderPricing(
                subtotal=635000.0,
                shipping_cost=30000.0,
                grand_total=1.0,
            )
        assert "pricing" in exc.value.messages

    def test_subtotal_must_match_items(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.pricing = OrderPricing(subtotal=100.0, grand_total=100.0)


class TestReturns:
    def test_unknown_item_is_malformed(self):
        order = _delivered()
        with pytest.raises(ValidationError):
            order.check_returnable({"missing": 1})

    def test_zero_quantity_is_malformed(self):
        order = _delivered()
        with pytest.raises(ValidationError):
            order.check_returnable({str(_item(order, "bowl").id): 0})

    def test_over_claim_is_a_conflict(self):
        order = _delivered()
        with pytest.raises(ReturnQuantityExceeded):
            order.check_returnable({str(_item(order, "bowl").id): 4})

    def test_partial_return(self):
        order = _delivered()
        bowl = _item(order, "bowl")
        assert order.record_returned_items("ret-1", {str(bowl.id): 2}) is False
        assert bowl.returned_quantity == 2
        assert bowl.returnable_quantity == 1
        event = next(e for e in order._events if isinstance(e, OrderItemsReturned))
        assert event.fully_returned is False

    def test_returned_quantities_accumulate_and_are_capped(self):
        order = _delivered()
        bowl = _item(order, "bowl")
        order.record_returned_items("ret-1", {str(bowl.id): 2})
        with pytest.raises(ReturnQuantityExceeded):
            order.record_returned_items("ret-2", {str(bowl.id): 2})
        assert bowl.returned_quantity == 2

    def test_full_return(self):
        order = _delivered()
        quantities = {str(item.id): item.quantity for item in order.items}
        assert order.record_returned_items("ret-1", quantities) is True
        assert order.fully_returned
