"""Integration tests for the cart, checkout and order endpoints via TestClient."""

from protean import current_domain

from sakura.cart.cart import Cart
from sakura.order.order import Order, OrderStatus


def _create_cart(client, customer_id="cust-001"):
    response = client.post("/carts", json={"customer_id": customer_id})
    assert response.status_code == 201
    return response.json()["cart_id"]


class TestCartEndpoints:
    def test_add_and_view(self, client):
        cart_id = _create_cart(client)
        client.post(f"/carts/{cart_id}/items", json={"product_id": "tea-set", "quantity": 2})

        response = client.get(f"/carts/{cart_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["checkout_ready"] is True
        assert body["lines"][0]["quantity"] == 2
        assert body["totals"]["total"] == 530000.0

    def test_express_preview(self, client):
        cart_id = _create_cart(client)
        client.post(f"/carts/{cart_id}/items", json={"product_id": "tea-set", "quantity": 2})

        body = client.get(f"/carts/{cart_id}", params={"delivery_method": "Express"}).json()
        assert body["totals"]["shipping_cost"] == 50000.0

    def test_update_quantity(self, client):
        cart_id = _create_cart(client)
        item_id = client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 1}).json()["item_id"]

        response = client.put(f"/carts/{cart_id}/items/{item_id}", json={"quantity": 3})
        assert response.status_code == 200
        assert client.get(f"/carts/{cart_id}").json()["lines"][0]["quantity"] == 3

    def test_remove_item(self, client):
        cart_id = _create_cart(client)
        item_id = client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 1}).json()["item_id"]

        assert client.delete(f"/carts/{cart_id}/items/{item_id}").status_code == 200
        assert client.get(f"/carts/{cart_id}").json()["lines"] == []

    def test_more_than_stock_is_conflict(self, client):
        cart_id = _create_cart(client)
        response = client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 6})
        assert response.status_code == 409
        assert response.json()["error"] == "OutOfStock"

    def test_unknown_product_is_not_found(self, client):
        cart_id = _create_cart(client)
        response = client.post(f"/carts/{cart_id}/items", json={"product_id": "kimono", "quantity": 1})
        assert response.status_code == 404

    def test_unknown_cart_is_not_found(self, client):
        assert client.get("/carts/no-such-cart").status_code == 404

    def test_zero_quantity_rejected_by_schema(self, client):
        cart_id = _create_cart(client)
        response = client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 0})
        assert response.status_code == 422


class TestCheckoutEndpoint:
    def test_checkout_creates_pending_order(self, client, checkout):
        order_id = checkout()

        body = client.get(f"/orders/{order_id}").json()
        assert body["status"] == OrderStatus.PENDING.value
        assert body["order_number"].startswith("ORD")
        assert body["totals"] == {
            "subtotal": 500000.0,
            "shipping_cost": 30000.0,
            "tax_amount": 0.0,
            "discount_amount": 0.0,
            "total": 530000.0,
        }

    def test_checkout_empties_cart(self, client):
        cart_id = _create_cart(client)
        client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 1})
        client.post(f"/carts/{cart_id}/checkout", json={"shipping_address_id": "addr-hcm", "payment_method": "SePay"})

        cart = current_domain.repository_for(Cart).get(cart_id)
        assert len(cart.items) == 0

    def test_checkout_with_coupon(self, client, checkout):
        client.post("/coupons", json={"code": "SAVE50K", "coupon_type": "FixedAmount", "value": 50000})
        order_id = checkout(coupon_code="SAVE50K")

        body = client.get(f"/orders/{order_id}").json()
        assert body["coupon_code"] == "SAVE50K"
        assert body["totals"]["total"] == 480000.0

    def test_price_drift_is_conflict(self, client, catalog):
        cart_id = _create_cart(client)
        client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 1})
        catalog.set_price("vase", 200000)

        response = client.post(
            f"/carts/{cart_id}/checkout", json={"shipping_address_id": "addr-hcm", "payment_method": "VNPay"}
        )
        assert response.status_code == 409
        assert response.json()["error"] == "PriceChanged"

    def test_unknown_address_is_not_found(self, client):
        cart_id = _create_cart(client)
        client.post(f"/carts/{cart_id}/items", json={"product_id": "vase", "quantity": 1})

        response = client.post(
            f"/carts/{cart_id}/checkout", json={"shipping_address_id": "addr-dn", "payment_method": "VNPay"}
        )
        assert response.status_code == 404


class TestOrderEndpoints:
    def test_customer_cancels_pending_order(self, client, checkout, catalog):
        order_id = checkout()

        response = client.put(f"/orders/{order_id}/cancel", json={})
        assert response.status_code == 200
        assert current_domain.repository_for(Order).get(order_id).status == OrderStatus.CANCELLED.value
        assert catalog.stock_of("tea-set") == 10

    def test_staff_cannot_skip_payment(self, client, checkout):
        order_id = checkout()
        response = client.put(f"/orders/{order_id}/status", json={"status": "Shipped"})
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransition"

    def test_add_note(self, client, checkout):
        order_id = checkout()
        response = client.post(f"/orders/{order_id}/notes", json={"body": "Gift wrap please", "author": "cust-001"})
        assert response.status_code == 201
        assert response.json()["note_id"]

    def test_unknown_order_is_not_found(self, client):
        response = client.get("/orders/no-such-order")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"


class TestCouponEndpoints:
    def test_validate_coupon(self, client):
        client.post("/coupons", json={"code": "SAKURA10", "coupon_type": "Percentage", "value": 10})
        body = client.post("/coupons/validate", json={"code": "sakura10", "order_amount": 500000}).json()
        assert body == {"is_valid": True, "discount_amount": 50000.0, "reason": None}

    def test_deactivated_coupon_no_longer_validates(self, client):
        client.post("/coupons", json={"code": "SAKURA10", "coupon_type": "Percentage", "value": 10})
        assert client.put("/coupons/SAKURA10/deactivate").status_code == 200

        body = client.post("/coupons/validate", json={"code": "SAKURA10", "order_amount": 500000}).json()
        assert body["is_valid"] is False

    def test_duplicate_code_rejected(self, client):
        client.post("/coupons", json={"code": "SAKURA10", "coupon_type": "Percentage", "value": 10})
        response = client.post("/coupons", json={"code": "SAKURA10", "coupon_type": "Percentage", "value": 5})
        assert response.status_code == 400
