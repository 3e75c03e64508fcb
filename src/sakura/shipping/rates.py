"""Shipping rate table.

Two quotes come out of here. ``quote_order_shipping`` is what the customer
pays, decided at checkout from the delivery method and the merchandise
value. ``quote_shipment_fee`` is what the carrier charges the store for a
parcel: a base fee, a surcharge per kilogram above the
included weight, a surcharge for deliveries outside the store's province
and a collect-on-delivery fee. Express parcels cost one and a half times
the standard carriage.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sakura.config import ShippingRules
from sakura.shared.money import ZERO, to_decimal


class DeliveryMethod(Enum):
    STANDARD = "Standard"
    EXPRESS = "Express"


@dataclass(frozen=True)
class FeeQuote:
    base_fee: Decimal
    weight_fee: Decimal
    distance_fee: Decimal
    cod_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.base_fee + self.weight_fee + self.distance_fee + self.cod_fee


def quote_order_shipping(subtotal, delivery_method: str, rules: ShippingRules) -> Decimal:
    """Shipping charged on an order. Free above the threshold, whatever the method."""
    if to_decimal(subtotal) > rules.free_shipping_threshold:
        return ZERO
    if DeliveryMethod(delivery_method) == DeliveryMethod.EXPRESS:
        return rules.express_fee
    return rules.standard_fee


def cod_fee(cod_amount, rules: ShippingRules) -> Decimal:
    fee = to_decimal(cod_amount) * rules.cod_rate
    return min(max(fee, rules.cod_min_fee), rules.cod_max_fee)


def quote_shipment_fee(
    service_type: str,
    weight_kg,
    receiver_province: str,
    rules: ShippingRules,
    cod_amount=None,
) -> FeeQuote:
    base = rules.standard_fee

    extra_weight = to_decimal(weight_kg) - rules.base_weight_kg
    weight_fee = rules.per_kg_surcharge * extra_weight if extra_weight > 0 else ZERO

    distance_fee = ZERO
    if _normalise(receiver_province) != _normalise(rules.sender.province):
        distance_fee = rules.inter_province_surcharge

    if DeliveryMethod(service_type) == DeliveryMethod.EXPRESS:
        base, weight_fee, distance_fee = (fee * rules.express_multiplier for fee in (base, weight_fee, distance_fee))

    cod = cod_fee(cod_amount, rules) if cod_amount else ZERO

    return FeeQuote(base_fee=base, weight_fee=weight_fee, distance_fee=distance_fee, cod_fee=cod)


def _normalise(province: str | None) -> str:
    return " ".join((province or "").lower().split())
