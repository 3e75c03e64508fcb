import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sakura.api.errors import register_error_handlers
from sakura.api.routes import routers


@pytest.fixture()
def client(catalog, address_book):
    app = FastAPI()
    for router in routers:
        app.include_router(router)
    register_error_handlers(app)
    return TestClient(app)


@pytest.fixture()
def checkout(client):
    """Create a cart over HTTP, fill it and check it out. Returns the order id."""

    def _checkout(*lines, customer_id="cust-001", address_id="addr-hcm", payment_method="VNPay", coupon_code=None):
        cart_id = client.post("/carts", json={"customer_id": customer_id}).json()["cart_id"]
        for product_id, quantity in lines or (("tea-set", 2),):
            response = client.post(f"/carts/{cart_id}/items", json={"product_id": product_id, "quantity": quantity})
            assert response.status_code == 201
        response = client.post(
            f"/carts/{cart_id}/checkout",
            json={
                "shipping_address_id": address_id,
                "payment_method": payment_method,
                "coupon_code": coupon_code,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()["order_id"]

    return _checkout
