"""Payment gateway registry, one adapter per payment method.

``PAYMENT_GATEWAY_ADAPTER=live`` wires the VNPay, MoMo and SePay adapters
from settings. Anything else (the default) uses FakeGateway for every
method, which is what development and the test suite run against.
"""

import os

from sakura.config import get_settings
from sakura.gateway.fake_adapter import FakeGateway
from sakura.gateway.port import PaymentGateway, PaymentMethod

_gateways: dict[PaymentMethod, PaymentGateway] = {}


def _build(method: PaymentMethod) -> PaymentGateway:
    adapter = os.environ.get("PAYMENT_GATEWAY_ADAPTER", "fake")
    if adapter == "fake":
        return FakeGateway(method)
    if adapter != "live":
        raise ValueError(f"Unknown payment gateway adapter: {adapter}")

    rules = get_settings().payments
    if method == PaymentMethod.VNPAY:
        from sakura.gateway.vnpay_adapter import VNPayGateway

        return VNPayGateway(rules)
    if method == PaymentMethod.MOMO:
        from sakura.gateway.momo_adapter import MoMoGateway

        return MoMoGateway(rules)
    from sakura.gateway.sepay_adapter import SePayGateway

    return SePayGateway(rules)


def get_gateway(method: str | PaymentMethod) -> PaymentGateway:
    """Return the adapter for a payment method (``ValueError`` for unknown methods)."""
    method = PaymentMethod(method)
    if method not in _gateways:
        _gateways[method] = _build(method)
    return _gateways[method]


def set_gateway(method: str | PaymentMethod, gateway: PaymentGateway) -> None:
    _gateways[PaymentMethod(method)] = gateway


def reset_gateways() -> None:
    _gateways.clear()
