import json
import os
from pathlib import Path

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("PAYMENT_GATEWAY_ADAPTER", "fake")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path or "/bdd/" in test_path:
            item.add_marker(pytest.mark.integration)


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session")
def sakura_bed():
    from sakura.domain import sakura

    bed = DomainFixture(sakura)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(sakura_bed):
    with sakura_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()


@pytest.fixture(autouse=True)
def _fresh_adapters():
    """Every test starts with fresh fakes, default settings and no held locks."""
    from sakura.addresses import reset_address_book
    from sakura.carrier import reset_carrier
    from sakura.catalog import reset_catalog
    from sakura.config import reset_settings
    from sakura.gateway import reset_gateways
    from sakura.notifications import reset_notifier
    from sakura.shared.locking import reset_locks

    for reset in (
        reset_settings,
        reset_catalog,
        reset_address_book,
        reset_gateways,
        reset_carrier,
        reset_notifier,
        reset_locks,
    ):
        reset()
    yield


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture
def catalog():
    from sakura.catalog import set_catalog
    from sakura.catalog.fake_adapter import FakeCatalog

    fake = FakeCatalog()
    fake.add_product("tea-set", price=250000, stock=10, name="Kutani Tea Set", weight_kg="1.2")
    fake.add_product("vase", price=180000, stock=5, name="Ikebana Vase", weight_kg="0.8")
    fake.add_product("bowl", price=45000, stock=50, variant_id="blue", name="Rice Bowl", weight_kg="0.3")
    set_catalog(fake)
    return fake


@pytest.fixture
def address_book():
    from sakura.addresses import set_address_book
    from sakura.addresses.fake_adapter import FakeAddressBook
    from sakura.addresses.port import ResolvedAddress

    book = FakeAddressBook()
    book.add(
        "cust-001",
        "addr-hcm",
        ResolvedAddress(
            recipient_name="Nguyen Van An",
            phone="0901234567",
            street="12 Le Loi",
            ward="Ben Nghe",
            district="District 1",
            province="Ho Chi Minh City",
        ),
    )
    book.add(
        "cust-001",
        "addr-hn",
        ResolvedAddress(
            recipient_name="Nguyen Van An",
            phone="0901234567",
            street="5 Hang Bai",
            ward="Hang Bai",
            district="Hoan Kiem",
            province="Ha Noi",
        ),
    )
    book.add(
        "cust-002",
        "addr-dn",
        ResolvedAddress(
            recipient_name="Tran Thi Binh",
            phone="0912345678",
            street="8 Bach Dang",
            ward="Hai Chau 1",
            district="Hai Chau",
            province="Da Nang",
        ),
    )
    set_address_book(book)
    return book


@pytest.fixture
def gateway():
    from sakura.gateway import get_gateway

    return get_gateway("VNPay")


@pytest.fixture
def carrier():
    from sakura.carrier import get_carrier

    return get_carrier()


@pytest.fixture
def notifier():
    from sakura.notifications import get_notifier

    return get_notifier()


# ---------------------------------------------------------------------------
# Workflow builders
# ---------------------------------------------------------------------------
@pytest.fixture
def cart_with(catalog):
    """Build a customer cart holding ``(product_id, quantity[, variant_id])`` lines."""
    from sakura.cart.items import add_item, create_cart

    def _cart_with(*lines, customer_id="cust-001"):
        cart_id = create_cart(customer_id=customer_id)
        for product_id, quantity, *variant in lines:
            add_item(cart_id, product_id, quantity, variant_id=variant[0] if variant else None)
        return cart_id

    return _cart_with


@pytest.fixture
def place_order(cart_with, address_book):
    """Place an order (two tea sets by default) and return its id."""
    from sakura.order.creation import create_order

    def _place_order(
        *lines,
        coupon_code=None,
        payment_method="VNPay",
        delivery_method="Standard",
        customer_id="cust-001",
        address_id="addr-hcm",
    ):
        cart_id = cart_with(*(lines or (("tea-set", 2),)), customer_id=customer_id)
        return create_order(
            cart_id,
            shipping_address_id=address_id,
            payment_method=payment_method,
            delivery_method=delivery_method,
            coupon_code=coupon_code,
        )

    return _place_order


@pytest.fixture
def gateway_callback():
    """Deliver a signed FakeGateway callback."""
    from sakura.payment.callback import handle_callback

    def _callback(transaction_id, status="Completed", method="VNPay", amount=None, external_id=None):
        payload = {"transaction_id": transaction_id, "status": status}
        if amount is not None:
            payload["amount"] = amount
        if external_id is not None:
            payload["external_transaction_id"] = external_id
        return handle_callback(method, json.dumps(payload), "test-signature")

    return _callback


@pytest.fixture
def pay(gateway_callback):
    """Open a payment attempt for an order and capture it. Returns the transaction id."""
    from sakura.payment.initiation import create_payment

    def _pay(order_id, method="VNPay"):
        intent = create_payment(order_id, method)
        gateway_callback(intent.transaction_id, "Completed", method=method)
        return intent.transaction_id

    return _pay


@pytest.fixture
def shipped_order(place_order, pay, carrier):
    """A paid order whose parcel the carrier has picked up."""
    from sakura.order.order import Order
    from sakura.shared.lookup import load
    from sakura.shipping.creation import create_shipment
    from sakura.shipping.tracking import ingest_tracking_event

    def _shipped_order(*lines, **kwargs):
        order_id = place_order(*lines, **kwargs)
        pay(order_id)
        create_shipment(order_id)
        ingest_tracking_event(load(Order, order_id).tracking_number, "PickedUp", location="Ho Chi Minh City hub")
        return order_id

    return _shipped_order


@pytest.fixture
def delivered_order(shipped_order):
    from sakura.order.order import Order
    from sakura.shared.lookup import load
    from sakura.shipping.tracking import ingest_tracking_event

    def _delivered_order(*lines, **kwargs):
        order_id = shipped_order(*lines, **kwargs)
        ingest_tracking_event(load(Order, order_id).tracking_number, "Delivered", location="District 1")
        return order_id

    return _delivered_order
