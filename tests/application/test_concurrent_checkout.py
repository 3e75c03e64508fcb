"""Concurrency tests: racing checkouts, callbacks and cancellations serialize per entity."""

import threading

import pytest
from protean import current_domain

from sakura.coupon.coupon import Coupon
from sakura.coupon.management import create_coupon
from sakura.order.cancellation import cancel_order
from sakura.order.creation import create_order
from sakura.order.order import Order, OrderStatus
from sakura.payment.initiation import create_payment
from sakura.payment.transaction import PaymentTransaction, TransactionStatus
from sakura.shared.errors import WorkflowError

pytestmark = pytest.mark.slow


def _race(*calls):
    """Run ``calls`` on separate threads, each inside its own domain context. Returns results and errors."""
    from sakura.domain import sakura

    barrier = threading.Barrier(len(calls))
    results, errors = [], []

    def _run(call):
        with sakura.domain_context():
            barrier.wait()
            try:
                results.append(call())
            except WorkflowError as exc:
                errors.append(exc)

    threads = [threading.Thread(target=_run, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def _count(aggregate_cls, **filters):
    return len(current_domain.repository_for(aggregate_cls)._dao.query.filter(**filters).all().items)


class TestRacingCheckouts:
    def test_last_unit_sells_once(self, cart_with, address_book, catalog):
        catalog.set_stock("vase", 1)
        first = cart_with(("vase", 1))
        second = cart_with(("vase", 1), customer_id="cust-002")

        results, errors = _race(
            lambda: create_order(first, shipping_address_id="addr-hcm", payment_method="VNPay"),
            lambda: create_order(second, shipping_address_id="addr-dn", payment_method="VNPay"),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert catalog.stock_of("vase") == 0
        assert _count(Order) == 1

    def test_last_coupon_use_goes_once(self, cart_with, address_book):
        create_coupon(code="ONCE", coupon_type="FixedAmount", value=20000, usage_limit=1)
        first = cart_with(("tea-set", 1))
        second = cart_with(("tea-set", 1), customer_id="cust-002")

        results, errors = _race(
            lambda: create_order(first, shipping_address_id="addr-hcm", payment_method="VNPay", coupon_code="ONCE"),
            lambda: create_order(second, shipping_address_id="addr-dn", payment_method="VNPay", coupon_code="ONCE"),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert current_domain.repository_for(Coupon).get("ONCE").outstanding_reservations == 1


class TestRacingPayments:
    def test_one_open_attempt_survives(self, place_order):
        order_id = place_order()
        results, errors = _race(
            lambda: create_payment(order_id, "VNPay"),
            lambda: create_payment(order_id, "MoMo"),
        )
        assert len(results) == 1
        assert len(errors) == 1
        assert _count(PaymentTransaction, order_id=order_id) == 1

    def test_duplicate_callbacks_apply_once(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        results, errors = _race(
            lambda: gateway_callback(intent.transaction_id, "Completed"),
            lambda: gateway_callback(intent.transaction_id, "Completed"),
            lambda: gateway_callback(intent.transaction_id, "Completed"),
        )

        assert errors == []
        assert sorted(results) == ["applied", "duplicate", "duplicate"]
        order = current_domain.repository_for(Order).get(order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert len(order.status_history) == 3

    def test_capture_racing_cancellation(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        _race(
            lambda: gateway_callback(intent.transaction_id, "Completed"),
            lambda: cancel_order(order_id),
        )

        order = current_domain.repository_for(Order).get(order_id)
        txn = current_domain.repository_for(PaymentTransaction).get(intent.transaction_id)
        if order.status == OrderStatus.CANCELLED.value:
            # whichever came second, the customer never ends up charged for a cancelled order
            assert txn.status in {TransactionStatus.CANCELLED.value, TransactionStatus.REFUNDED.value}
        else:
            assert order.status == OrderStatus.CONFIRMED.value
            assert txn.status == TransactionStatus.COMPLETED.value
