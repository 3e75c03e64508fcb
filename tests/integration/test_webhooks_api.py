"""Integration tests for payment initiation, gateway callbacks and the carrier tracking webhook."""

import inspect
import json

from protean import current_domain

from sakura.order.order import Order, OrderStatus
from sakura.payment.transaction import PaymentTransaction, TransactionStatus
from sakura.shipping.shipment import ShipmentStatus, ShippingOrder
from sakura.shared.lookup import find_all


def _start_payment(client, order_id, method="VNPay"):
    response = client.post("/payments", json={"order_id": order_id, "method": method})
    assert response.status_code == 201, response.text
    return response.json()


def _callback(client, transaction_id, status="Completed", method="VNPay", signature="test-signature"):
    return client.post(
        f"/payments/callbacks/{method}",
        content=json.dumps({"transaction_id": transaction_id, "status": status}),
        headers={"X-Signature": signature},
    )


def _paid_order(client, checkout):
    order_id = checkout()
    intent = _start_payment(client, order_id)
    assert _callback(client, intent["transaction_id"]).status_code == 200
    return order_id


class TestPaymentInitiation:
    def test_intent_for_redirect_gateway(self, client, checkout):
        order_id = checkout()
        intent = _start_payment(client, order_id)

        assert intent["transaction_id"].startswith("PAY")
        assert intent["amount"] == 530000.0
        assert intent["instruction"]["kind"] == "redirect"
        assert intent["instruction"]["redirect_url"].endswith(intent["transaction_id"])

    def test_second_attempt_is_conflict(self, client, checkout):
        order_id = checkout()
        _start_payment(client, order_id)

        response = client.post("/payments", json={"order_id": order_id, "method": "MoMo"})
        assert response.status_code == 409
        assert response.json()["error"] == "PaymentInProgress"

    def test_gateway_outage_asks_for_retry(self, client, checkout, gateway):
        order_id = checkout()
        gateway.configure(should_succeed=False)

        response = client.post("/payments", json={"order_id": order_id, "method": "VNPay"})
        assert response.status_code == 503


class TestGatewayCallbacks:
    def test_completed_callback_confirms_order(self, client, checkout):
        order_id = checkout()
        intent = _start_payment(client, order_id)

        response = _callback(client, intent["transaction_id"])
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "applied"}
        assert client.get(f"/orders/{order_id}").json()["status"] == OrderStatus.CONFIRMED.value

    def test_replayed_callback_is_acknowledged(self, client, checkout):
        order_id = checkout()
        intent = _start_payment(client, order_id)
        _callback(client, intent["transaction_id"])

        response = _callback(client, intent["transaction_id"])
        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"

    def test_bad_signature_is_unauthorized(self, client, checkout):
        order_id = checkout()
        intent = _start_payment(client, order_id)

        response = _callback(client, intent["transaction_id"], signature="forged")
        assert response.status_code == 401
        txn = current_domain.repository_for(PaymentTransaction).get(intent["transaction_id"])
        assert txn.status == TransactionStatus.PENDING.value

    def test_unknown_transaction_is_not_found(self, client):
        response = _callback(client, "PAY20260101000000000")
        assert response.status_code == 404

    def test_failed_refund_of_late_capture_asks_for_retry(self, client, checkout, gateway):
        order_id = checkout()
        intent = _start_payment(client, order_id)
        client.put(f"/orders/{order_id}/cancel", json={})
        gateway.configure(should_succeed=True, refunds_succeed=False)

        response = _callback(client, intent["transaction_id"])
        assert response.status_code == 503
        assert response.json() == {"status": "retry"}

    def test_refund_endpoint(self, client, checkout):
        order_id = _paid_order(client, checkout)
        txn_id = client.get(f"/orders/{order_id}").json()["paid_transaction_id"]

        response = client.post(f"/payments/{txn_id}/refunds", json={"reason": "Chipped lid", "amount": 100000})
        assert response.status_code == 201
        txn = current_domain.repository_for(PaymentTransaction).get(txn_id)
        assert txn.status == TransactionStatus.PARTIALLY_REFUNDED.value


class TestTrackingWebhook:
    def _book(self, client, checkout):
        order_id = _paid_order(client, checkout)
        response = client.post("/shipments", json={"order_id": order_id})
        assert response.status_code == 201, response.text
        return order_id, response.json()["tracking_number"]

    def _post(self, client, carrier, payload, signature=None):
        body = json.dumps(payload)
        return client.post(
            "/shipments/tracking/webhook",
            content=body,
            headers={"X-Carrier-Signature": signature if signature is not None else carrier.sign(body)},
        )

    def test_booking_returns_tracking_number(self, client, checkout):
        order_id, tracking_number = self._book(client, checkout)
        assert tracking_number.startswith("SKH")
        assert client.get(f"/orders/{order_id}").json()["tracking_number"] == tracking_number

    def test_second_booking_is_conflict(self, client, checkout):
        order_id, _ = self._book(client, checkout)
        response = client.post("/shipments", json={"order_id": order_id})
        assert response.status_code == 409

    def test_signed_event_advances_shipment_and_order(self, client, checkout, carrier):
        order_id, tracking_number = self._book(client, checkout)

        response = self._post(
            client, carrier, {"tracking_number": tracking_number, "status": "PickedUp", "event_id": "evt-1"}
        )
        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"

        shipment = find_all(ShippingOrder, order_id=order_id)[0]
        assert shipment.status == ShipmentStatus.PICKED_UP.value
        assert client.get(f"/orders/{order_id}").json()["status"] == OrderStatus.SHIPPED.value

    def test_redelivered_event_is_acknowledged(self, client, checkout, carrier):
        _, tracking_number = self._book(client, checkout)
        payload = {"tracking_number": tracking_number, "status": "PickedUp", "event_id": "evt-1"}
        self._post(client, carrier, payload)

        response = self._post(client, carrier, payload)
        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"

    def test_unsigned_event_is_unauthorized(self, client, checkout, carrier):
        _, tracking_number = self._book(client, checkout)
        response = self._post(client, carrier, {"tracking_number": tracking_number, "status": "Delivered"}, "nope")
        assert response.status_code == 401

    def test_unknown_tracking_number_is_not_found(self, client, carrier):
        response = self._post(client, carrier, {"tracking_number": "SKH202601010000", "status": "PickedUp"})
        assert response.status_code == 404

    def test_replay_without_event_id_is_acknowledged(self, client, checkout, carrier):
        _, tracking_number = self._book(client, checkout)
        payload = {"tracking_number": tracking_number, "status": "PickedUp", "location": "HCM hub"}
        assert self._post(client, carrier, payload).json()["outcome"] == "applied"

        response = self._post(client, carrier, payload)
        assert response.json()["outcome"] == "duplicate"
        shipment = find_all(ShippingOrder, tracking_number=tracking_number)[0]
        assert [entry.status for entry in shipment.tracking] == ["Pending", "PickedUp"]


class TestBlockingRoutes:
    """Routes that call out to the gateway or carrier run in the threadpool, off the event loop."""

    def test_outbound_routes_are_plain_functions(self):
        from sakura.api.routes import (
            book_shipment,
            cancel,
            cancel_attempt,
            change_order_status,
            checkout_cart,
            decide_return,
            initiate_payment,
            refund_payment,
            sweep_stale_payments,
        )

        for endpoint in (
            book_shipment,
            cancel,
            cancel_attempt,
            change_order_status,
            checkout_cart,
            decide_return,
            initiate_payment,
            refund_payment,
            sweep_stale_payments,
        ):
            assert not inspect.iscoroutinefunction(endpoint), endpoint.__name__

    def test_webhooks_hand_work_to_the_threadpool(self, client, checkout, monkeypatch):
        import sakura.api.routes as routes

        offloaded = []
        real = routes.run_in_threadpool

        async def _recording(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await real(func, *args, **kwargs)

        monkeypatch.setattr(routes, "run_in_threadpool", _recording)
        _paid_order(client, checkout)
        assert offloaded == ["handle_callback"]
