"""Totals calculator shared by cart previews and order placement.

The same function prices a cart against live catalog prices and an order
against its locked prices. Only the price source differs, so a preview
and the order placed from it agree whenever prices have not drifted.

Rounding happens once, on the grand total. Line amounts are never
rounded. The tax amount is whatever remains after rounding, which keeps

    subtotal - discount + shipping + tax == total

exact for every input.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from protean.exceptions import ValidationError

from sakura.config import PricingRules
from sakura.shared.money import ZERO, round_half_up, to_decimal


@dataclass(frozen=True)
class PricedLine:
    unit_price: Decimal
    quantity: int

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class TaxRule:
    """Flat tax applied to the discounted merchandise value. Shipping is not taxed."""

    rate: Decimal = ZERO

    @classmethod
    def from_rules(cls, rules: PricingRules) -> "TaxRule":
        return cls(rate=rules.tax_rate)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.subtotal - self.discount_amount + self.shipping_cost + self.tax_amount == self.total

    def as_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "shipping_cost": float(self.shipping_cost),
            "tax_amount": float(self.tax_amount),
            "discount_amount": float(self.discount_amount),
            "total": float(self.total),
        }


def calculate_totals(
    lines: Iterable[PricedLine],
    shipping_fee,
    discount_amount,
    tax_rule: TaxRule,
    unit: Decimal = Decimal("1"),
) -> Totals:
    """Compose subtotal, shipping, discount and tax into a final total.

    ``discount_amount`` is clamped to the subtotal so a total never goes
    below the shipping fee. Pure and deterministic: identical inputs always
    produce identical totals.
    """
    lines = list(lines)
    shipping = to_decimal(shipping_fee)
    discount = to_decimal(discount_amount)

    errors = {}
    if any(line.quantity < 0 or line.unit_price < 0 for line in lines):
        errors["lines"] = ["Quantities and unit prices must not be negative"]
    if shipping < 0:
        errors["shipping_fee"] = ["Shipping fee must not be negative"]
    if discount < 0:
        errors["discount_amount"] = ["Discount must not be negative"]
    if tax_rule.rate < 0:
        errors["tax_rate"] = ["Tax rate must not be negative"]
    if errors:
        raise ValidationError(errors)

    subtotal = sum((line.amount for line in lines), ZERO)
    discount = min(discount, subtotal)
    taxable = subtotal - discount

    total = round_half_up(taxable + shipping + taxable * tax_rule.rate, unit)
    tax = total - taxable - shipping

    return Totals(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax_amount=tax,
        discount_amount=discount,
        total=total,
    )
