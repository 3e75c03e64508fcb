"""Read-time view of a cart against the live catalog.

Nothing here writes. Every call re-reads price and stock, reports drift
per line and prices the valid lines with the same calculator order
placement uses. Invalid lines stay in the cart; they are simply left out
of the totals until the customer fixes them.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from sakura.cart.cart import Cart, CartItem
from sakura.catalog import get_catalog
from sakura.config import get_settings
from sakura.coupon import engine as coupon_engine
from sakura.pricing.calculator import PricedLine, TaxRule, Totals, calculate_totals
from sakura.shared.lookup import load
from sakura.shared.money import ZERO, to_decimal
from sakura.shipping.rates import DeliveryMethod, quote_order_shipping


@dataclass(frozen=True)
class SnapshotLine:
    item_id: str
    product_id: str
    variant_id: str | None
    product_name: str | None
    quantity: int
    captured_price: Decimal
    live_price: Decimal | None
    available_stock: int
    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def price_changed(self) -> bool:
        return self.live_price is not None and self.live_price != self.captured_price


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: str
    customer_id: str | None
    lines: list[SnapshotLine]
    totals: Totals
    delivery_method: str
    coupon_code: str | None = None
    coupon_valid: bool = False
    coupon_reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def is_checkout_ready(self) -> bool:
        priced = [line for line in self.lines if line.quantity > 0]
        return bool(priced) and all(line.is_valid for line in priced)

    def line(self, item_id) -> SnapshotLine:
        return next(line for line in self.lines if line.item_id == str(item_id))


def _check_line(item: CartItem) -> SnapshotLine:
    product = get_catalog().get_live_stock_and_price(item.product_id, item.variant_id)
    captured = to_decimal(item.unit_price)

    if product is None:
        errors, live_price, stock = ("Product no longer exists",), None, 0
    else:
        live_price, stock = product.price, product.stock
        errors = []
        if not product.is_active:
            errors.append("Product is no longer available")
        elif item.quantity > stock:
            errors.append(f"Only {stock} left in stock")
        if live_price != captured:
            errors.append(f"Price changed from {captured:,.0f} to {live_price:,.0f}")
        errors = tuple(errors)

    return SnapshotLine(
        item_id=str(item.id),
        product_id=str(item.product_id),
        variant_id=str(item.variant_id) if item.variant_id else None,
        product_name=item.product_name,
        quantity=item.quantity,
        captured_price=captured,
        live_price=live_price,
        available_stock=stock,
        errors=errors,
    )


def get_snapshot(cart_id: str, delivery_method: str = DeliveryMethod.STANDARD.value) -> CartSnapshot:
    """Revalidate every line and preview totals at live prices."""
    settings = get_settings()
    cart = load(Cart, cart_id)
    lines = [_check_line(item) for item in cart.items or []]

    # Lines whose only problem is a new price are still priced, at the live price.
    priced = [
        PricedLine(unit_price=line.live_price, quantity=line.quantity)
        for line in lines
        if line.quantity > 0
        and line.live_price is not None
        and all(err.startswith("Price changed") for err in line.errors)
    ]
    subtotal = sum((p.amount for p in priced), ZERO)

    discount = ZERO
    coupon_valid = False
    coupon_reason = None
    if cart.coupon_code:
        check = coupon_engine.validate(cart.coupon_code, subtotal, customer_id=cart.customer_id)
        coupon_valid, coupon_reason = check.is_valid, check.reason
        if check.is_valid:
            discount = check.discount_amount

    shipping = quote_order_shipping(subtotal, delivery_method, settings.shipping) if priced else ZERO
    totals = calculate_totals(
        priced,
        shipping_fee=shipping,
        discount_amount=discount,
        tax_rule=TaxRule.from_rules(settings.pricing),
        unit=settings.pricing.unit,
    )

    warnings = [f"{line.product_name or line.product_id}: {err}" for line in lines for err in line.errors]
    if cart.coupon_code and not coupon_valid:
        warnings.append(f"Coupon {cart.coupon_code}: {coupon_reason}")

    return CartSnapshot(
        cart_id=str(cart.id),
        customer_id=str(cart.customer_id) if cart.customer_id else None,
        lines=lines,
        totals=totals,
        delivery_method=delivery_method,
        coupon_code=cart.coupon_code,
        coupon_valid=coupon_valid,
        coupon_reason=coupon_reason,
        warnings=warnings,
    )
