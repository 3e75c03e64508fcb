"""Shared BDD fixtures and step definitions for the fulfillment workflow."""

import pytest
from protean import current_domain
from pytest_bdd import given, parsers, then, when

from sakura.coupon.coupon import Coupon
from sakura.coupon.management import create_coupon
from sakura.order.creation import create_order
from sakura.order.order import Order
from sakura.payment.initiation import create_payment
from sakura.shared.errors import WorkflowError
from sakura.shared.lookup import load


@pytest.fixture
def checkout_state():
    """Mutable scratchpad shared between the steps of one scenario."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the catalog lists "{product_id}" at {price:d} with {stock:d} in stock'))
def _(catalog, product_id, price, stock):
    catalog.set_price(product_id, price)
    catalog.set_stock(product_id, stock)


@given(parsers.cfparse('customer "{customer_id}" has a cart holding {quantity:d} "{product_id}"'))
def _(cart_with, address_book, checkout_state, customer_id, quantity, product_id):
    checkout_state["cart_id"] = cart_with((product_id, quantity), customer_id=customer_id)


@given(parsers.cfparse('coupon "{code}" grants {percent:d} percent off'))
def _(code, percent):
    create_coupon(code=code, coupon_type="Percentage", value=percent)


@given(parsers.cfparse('the catalog price of "{product_id}" changes to {price:d}'))
def _(catalog, product_id, price):
    catalog.set_price(product_id, price)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the customer checks out to "{address_id}" paying by "{method}"'))
@when(parsers.cfparse('the customer checks out to "{address_id}" paying by "{method}"'))
def _(checkout_state, address_id, method):
    checkout_state["order_id"] = create_order(
        checkout_state["cart_id"], shipping_address_id=address_id, payment_method=method
    )


@when(parsers.cfparse('the customer checks out to "{address_id}" paying by "{method}" with coupon "{code}"'))
def _(checkout_state, address_id, method, code):
    checkout_state["order_id"] = create_order(
        checkout_state["cart_id"], shipping_address_id=address_id, payment_method=method, coupon_code=code
    )


@when(parsers.cfparse('the customer tries to check out to "{address_id}" paying by "{method}"'))
def _(checkout_state, address_id, method):
    try:
        checkout_state["order_id"] = create_order(
            checkout_state["cart_id"], shipping_address_id=address_id, payment_method=method
        )
    except WorkflowError as exc:
        checkout_state["error"] = exc


@given(parsers.cfparse('the gateway reports the payment "{status}"'))
@when(parsers.cfparse('the gateway reports the payment "{status}"'))
def _(checkout_state, gateway_callback, status):
    order = load(Order, checkout_state["order_id"])
    intent = create_payment(checkout_state["order_id"], order.payment_method)
    checkout_state["transaction_id"] = intent.transaction_id
    gateway_callback(intent.transaction_id, status, method=order.payment_method)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('an order is created in status "{status}"'))
@then(parsers.cfparse('the order status is "{status}"'))
def _(checkout_state, status):
    assert load(Order, checkout_state["order_id"]).status == status


@then(parsers.cfparse("the order grand total is {total:d}"))
def _(checkout_state, total):
    assert load(Order, checkout_state["order_id"]).grand_total == total


@then(parsers.cfparse('the catalog holds {stock:d} "{product_id}"'))
def _(catalog, stock, product_id):
    assert catalog.stock_of(product_id) == stock


@then(parsers.cfparse('coupon "{code}" holds {count:d} reservation'))
def _(code, count):
    assert current_domain.repository_for(Coupon).get(code).outstanding_reservations == count


@then(parsers.cfparse('the checkout is refused with "{error}"'))
def _(checkout_state, error):
    assert type(checkout_state.get("error")).__name__ == error
    assert "order_id" not in checkout_state


@then(parsers.cfparse('the customer was notified of "{events}"'))
def _(checkout_state, notifier, events):
    assert notifier.sent_types(checkout_state["order_id"]) == [e.strip() for e in events.split(",")]
