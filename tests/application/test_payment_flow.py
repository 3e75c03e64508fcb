"""Application tests for payment initiation, gateway callbacks, refunds and expiry."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from sakura.coupon.coupon import Coupon
from sakura.coupon.management import create_coupon
from sakura.order.cancellation import cancel_order
from sakura.order.order import Order, OrderStatus
from sakura.payment.callback import handle_callback
from sakura.payment.expiry import cancel_payment, expire_stale_transactions
from sakura.payment.initiation import create_payment
from sakura.payment.refund import refund
from sakura.payment.transaction import PaymentTransaction, TransactionStatus
from sakura.shared.errors import (
    ExternalError,
    InvalidSignature,
    InvalidTransition,
    NotFoundError,
    PaymentInProgress,
)


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _txn(transaction_id):
    return current_domain.repository_for(PaymentTransaction).get(transaction_id)


class TestCreatePayment:
    def test_opens_pending_attempt(self, place_order):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        assert intent.transaction_id.startswith("PAY")
        assert intent.amount == 530000.0
        assert intent.instruction["kind"] == "redirect"
        assert intent.instruction["redirect_url"].endswith(intent.transaction_id)

        txn = _txn(intent.transaction_id)
        assert txn.status == TransactionStatus.PENDING.value
        assert txn.order_number == _order(order_id).order_number

    def test_one_open_attempt_per_order(self, place_order):
        order_id = place_order()
        create_payment(order_id, "VNPay")
        with pytest.raises(PaymentInProgress):
            create_payment(order_id, "MoMo")

    def test_expired_attempt_is_replaced(self, place_order):
        order_id = place_order()
        first = create_payment(order_id, "VNPay")

        repo = current_domain.repository_for(PaymentTransaction)
        stale = repo.get(first.transaction_id)
        stale.expires_at = datetime.now(UTC) - timedelta(minutes=1)
        repo.add(stale)

        second = create_payment(order_id, "MoMo")
        assert second.transaction_id != first.transaction_id
        assert _txn(first.transaction_id).status == TransactionStatus.FAILED.value

    def test_gateway_failure(self, place_order, gateway):
        order_id = place_order()
        gateway.configure(should_succeed=False)
        with pytest.raises(ExternalError):
            create_payment(order_id, "VNPay")
        assert current_domain.repository_for(PaymentTransaction)._dao.query.all().total == 0

    def test_paid_order_cannot_be_paid_again(self, place_order, pay):
        order_id = place_order()
        pay(order_id)
        with pytest.raises(InvalidTransition):
            create_payment(order_id, "VNPay")

    def test_unknown_order(self):
        with pytest.raises(NotFoundError):
            create_payment("missing-order", "VNPay")


class TestCallbacks:
    def test_capture_confirms_order(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        assert gateway_callback(intent.transaction_id, "Completed", external_id="VNP-42") == "applied"

        order = _order(order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.paid_transaction_id == intent.transaction_id
        assert order.paid_at is not None
        assert _txn(intent.transaction_id).external_transaction_id == "VNP-42"

    def test_replayed_capture_is_a_no_op(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        gateway_callback(intent.transaction_id, "Completed")

        assert gateway_callback(intent.transaction_id, "Completed") == "duplicate"
        assert len(_order(order_id).status_history) == 3

    def test_stale_failure_after_capture(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        gateway_callback(intent.transaction_id, "Completed")

        assert gateway_callback(intent.transaction_id, "Failed") == "stale"
        assert _txn(intent.transaction_id).status == TransactionStatus.COMPLETED.value

    def test_invalid_signature(self, place_order):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        payload = f'{{"transaction_id": "{intent.transaction_id}", "status": "Completed"}}'

        with pytest.raises(InvalidSignature):
            handle_callback("VNPay", payload, "forged")
        assert _order(order_id).status == OrderStatus.PENDING.value

    def test_callback_through_the_wrong_gateway(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        with pytest.raises(InvalidSignature):
            gateway_callback(intent.transaction_id, "Completed", method="MoMo")

    def test_unknown_transaction(self, gateway_callback):
        with pytest.raises(NotFoundError):
            gateway_callback("PAY000", "Completed")

    def test_amount_mismatch_is_not_applied(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        assert gateway_callback(intent.transaction_id, "Completed", amount=1000) == "amount_mismatch"
        assert _order(order_id).status == OrderStatus.PENDING.value
        assert _txn(intent.transaction_id).status == TransactionStatus.PENDING.value

    def test_failure_leaves_order_pending(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        assert gateway_callback(intent.transaction_id, "Failed") == "applied"
        assert _txn(intent.transaction_id).status == TransactionStatus.FAILED.value
        assert _order(order_id).status == OrderStatus.PENDING.value

        retry = create_payment(order_id, "VNPay")
        assert retry.transaction_id != intent.transaction_id

    def test_late_capture_still_pays_a_pending_order(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        gateway_callback(intent.transaction_id, "Failed")

        assert gateway_callback(intent.transaction_id, "Completed") == "applied"
        assert _txn(intent.transaction_id).late_capture is True
        assert _order(order_id).status == OrderStatus.CONFIRMED.value

    def test_second_capture_is_refunded(self, place_order, gateway_callback, gateway):
        order_id = place_order()
        first = create_payment(order_id, "VNPay")
        gateway_callback(first.transaction_id, "Failed")
        second = create_payment(order_id, "VNPay")
        gateway_callback(second.transaction_id, "Completed")

        assert gateway_callback(first.transaction_id, "Completed") == "refunded"

        late = _txn(first.transaction_id)
        assert late.status == TransactionStatus.REFUNDED.value
        assert late.refunded_amount == 530000.0
        assert _order(order_id).paid_transaction_id == second.transaction_id
        assert gateway.calls_for("create_refund")[0]["transaction_id"] == first.transaction_id

    def test_capture_after_cancellation_is_refunded(self, place_order, gateway_callback):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        cancel_order(order_id)
        assert _txn(intent.transaction_id).status == TransactionStatus.CANCELLED.value

        assert gateway_callback(intent.transaction_id, "Completed") == "refunded"
        assert _order(order_id).status == OrderStatus.CANCELLED.value
        assert _txn(intent.transaction_id).status == TransactionStatus.REFUNDED.value

    def test_capture_commits_coupon_use(self, place_order, pay):
        create_coupon(code="SAKURA10", coupon_type="Percentage", value=10)
        order_id = place_order(coupon_code="SAKURA10")
        pay(order_id)

        coupon = current_domain.repository_for(Coupon).get("SAKURA10")
        assert coupon.used_count == 1
        assert coupon.outstanding_reservations == 0

    def test_capture_sends_receipt(self, place_order, pay, notifier):
        order_id = place_order()
        pay(order_id)
        assert notifier.sent_types(order_id) == ["OrderCreated", "PaymentCompleted"]


class TestRefunds:
    def test_partial_then_full(self, place_order, pay):
        txn_id = pay(place_order())

        refund(txn_id, "Goodwill", amount=100000)
        assert _txn(txn_id).status == TransactionStatus.PARTIALLY_REFUNDED.value

        refund(txn_id, "Rest")
        txn = _txn(txn_id)
        assert txn.status == TransactionStatus.REFUNDED.value
        assert txn.refunded_amount == 530000.0

    def test_gateway_refusal_keeps_transaction_completed(self, place_order, pay, gateway):
        txn_id = pay(place_order())
        gateway.configure(should_succeed=True, refunds_succeed=False)

        with pytest.raises(ExternalError):
            refund(txn_id, "Goodwill", amount=100000)
        txn = _txn(txn_id)
        assert txn.status == TransactionStatus.COMPLETED.value
        assert txn.refunded_amount == 0.0


class TestExpiry:
    def test_sweep_fails_stale_attempts(self, place_order):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")

        assert expire_stale_transactions() == []
        expired = expire_stale_transactions(now=datetime.now(UTC) + timedelta(minutes=20))

        assert expired == [intent.transaction_id]
        assert _txn(intent.transaction_id).status == TransactionStatus.FAILED.value
        assert _order(order_id).status == OrderStatus.PENDING.value

    def test_bank_transfer_window_is_longer(self, place_order):
        intent = create_payment(place_order(), "SePay")
        assert expire_stale_transactions(now=datetime.now(UTC) + timedelta(hours=2)) == []
        assert _txn(intent.transaction_id).is_active

    def test_customer_cancels_open_attempt(self, place_order):
        order_id = place_order()
        intent = create_payment(order_id, "VNPay")
        cancel_payment(intent.transaction_id)
        assert _txn(intent.transaction_id).status == TransactionStatus.CANCELLED.value
        create_payment(order_id, "VNPay")
