"""Order placement: the single step where a cart becomes a locked order.

Everything is checked before anything is written: addresses, live stock
and price for every line, the coupon, the totals. Stock is taken last,
and handed back if any line cannot be taken, so a failed placement leaves
the catalog, the coupon and the cart exactly as they were.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from sakura.addresses import get_address_book
from sakura.cart.cart import Cart
from sakura.catalog import get_catalog
from sakura.config import get_settings
from sakura.coupon.coupon import Coupon, normalise_code
from sakura.coupon.engine import find_coupon
from sakura.domain import sakura
from sakura.gateway.port import PaymentMethod
from sakura.order.numbering import next_order_number
from sakura.order.order import Order
from sakura.pricing.calculator import PricedLine, TaxRule, calculate_totals
from sakura.shared.errors import CouponRejected, NotFoundError, PriceChanged, StockConflict
from sakura.shared.locking import cart_key, coupon_key, hold, product_key
from sakura.shared.lookup import load
from sakura.shared.money import ZERO, to_decimal
from sakura.shipping.rates import DeliveryMethod, quote_order_shipping

logger = structlog.get_logger(__name__)


@sakura.command(part_of="Order")
class PlaceOrder:
    cart_id = Identifier(required=True)
    shipping_address_id = Identifier(required=True)
    billing_address_id = Identifier()
    payment_method = String(required=True, choices=PaymentMethod)
    delivery_method = String(choices=DeliveryMethod, default=DeliveryMethod.STANDARD.value)
    coupon_code = String(max_length=50)
    notes = Text()


def _resolve_address(address_id, customer_id) -> dict:
    address = get_address_book().resolve_address(str(address_id), str(customer_id))
    if address is None:
        raise NotFoundError({"address_id": [f"Address {address_id} not found"]})
    return address.to_dict()


def _check_lines(lines) -> list[dict]:
    """Re-read every line from the catalog. Stock problems win over price changes."""
    catalog = get_catalog()
    stock_errors, price_errors, items = {}, {}, []

    for line in lines:
        product = catalog.get_live_stock_and_price(line.product_id, line.variant_id)
        label = str(line.product_id)
        if product is None or not product.is_active:
            stock_errors[label] = ["Product is no longer available"]
            continue
        if product.stock < line.quantity:
            stock_errors[label] = [f"Only {product.stock} left in stock, {line.quantity} requested"]
            continue
        if product.price != to_decimal(line.unit_price):
            price_errors[label] = [f"Price changed from {to_decimal(line.unit_price):,.0f} to {product.price:,.0f}"]
            continue

        items.append(
            {
                "product_id": str(line.product_id),
                "variant_id": str(line.variant_id) if line.variant_id else None,
                "product_name": product.name,
                "quantity": line.quantity,
                "unit_price": float(product.price),
                "weight_kg": float(product.weight_kg),
                "is_gift": line.is_gift,
                "gift_message": line.gift_message,
                "custom_options": line.custom_options,
            }
        )

    if stock_errors:
        raise StockConflict(stock_errors)
    if price_errors:
        raise PriceChanged(price_errors)
    return items


def _take_stock(items: list[dict]) -> None:
    """Decrement stock for every item, or for none of them."""
    catalog = get_catalog()
    taken = []
    for item in items:
        if not catalog.decrement_stock(item["product_id"], item["variant_id"], item["quantity"]):
            for done in taken:
                catalog.restore_stock(done["product_id"], done["variant_id"], done["quantity"])
            raise StockConflict({item["product_id"]: ["Sold out while placing the order"]})
        taken.append(item)


@sakura.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        settings = get_settings()
        cart = load(Cart, command.cart_id)
        if not cart.customer_id:
            raise ValidationError({"cart_id": ["Sign in to check out"]})

        lines = cart.active_items
        if not lines:
            raise ValidationError({"cart_id": ["Cart is empty"]})

        shipping_address = _resolve_address(command.shipping_address_id, cart.customer_id)
        billing_address = (
            _resolve_address(command.billing_address_id, cart.customer_id)
            if command.billing_address_id
            else shipping_address
        )

        items = _check_lines(lines)
        subtotal = sum((to_decimal(i["unit_price"]) * i["quantity"] for i in items), ZERO)

        coupon: Coupon | None = None
        discount = ZERO
        code = normalise_code(command.coupon_code or cart.coupon_code or "")
        if code:
            coupon = find_coupon(code)
            if coupon is None:
                raise CouponRejected({"coupon_code": ["Coupon code does not exist"]})
            check = coupon.check(subtotal, customer_id=cart.customer_id, unit=settings.pricing.unit)
            if not check.is_valid:
                raise CouponRejected({"coupon_code": [check.reason]})
            discount = check.discount_amount

        delivery_method = command.delivery_method or DeliveryMethod.STANDARD.value
        totals = calculate_totals(
            [PricedLine(unit_price=to_decimal(i["unit_price"]), quantity=i["quantity"]) for i in items],
            shipping_fee=quote_order_shipping(subtotal, delivery_method, settings.shipping),
            discount_amount=discount,
            tax_rule=TaxRule.from_rules(settings.pricing),
            unit=settings.pricing.unit,
        )

        order = Order.create(
            order_number=next_order_number(settings.order_number_attempts),
            customer_id=cart.customer_id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address,
            totals=totals,
            tax_rate=settings.pricing.tax_rate,
            currency=settings.pricing.currency,
            payment_method=command.payment_method,
            delivery_method=delivery_method,
            coupon_code=coupon.code if coupon else None,
            shipping_address_id=command.shipping_address_id,
            billing_address_id=command.billing_address_id or command.shipping_address_id,
            customer_notes=command.notes,
            cart_id=cart.id,
        )
        order.place()

        if coupon is not None:
            coupon.reserve(order.id, cart.customer_id, totals.discount_amount)
            current_domain.repository_for(Coupon).add(coupon)

        cart.mark_checked_out(order.id, [str(line.id) for line in lines])
        current_domain.repository_for(Cart).add(cart)
        current_domain.repository_for(Order).add(order)

        _take_stock(items)

        logger.info(
            "order_placed",
            order_id=str(order.id),
            order_number=order.order_number,
            grand_total=order.pricing.grand_total,
            coupon_code=order.coupon_code,
        )
        return str(order.id)


def create_order(
    cart_id: str,
    shipping_address_id: str,
    payment_method: str,
    billing_address_id: str | None = None,
    delivery_method: str = DeliveryMethod.STANDARD.value,
    coupon_code: str | None = None,
    notes: str | None = None,
) -> str:
    """Turn a cart into a PENDING order and return the order id.

    Holds the cart's lock, then the locks of every product in the cart and
    of the coupon, so concurrent checkouts for the last unit or the last
    coupon use serialize and exactly one of them wins.
    """
    with hold(cart_key(cart_id)):
        cart = load(Cart, cart_id)
        code = normalise_code(coupon_code or cart.coupon_code or "")
        keys = [product_key(line.product_id, line.variant_id) for line in cart.active_items]
        with hold(*keys, coupon_key(code) if code else None):
            return current_domain.process(
                PlaceOrder(
                    cart_id=cart_id,
                    shipping_address_id=shipping_address_id,
                    billing_address_id=billing_address_id,
                    payment_method=payment_method,
                    delivery_method=delivery_method,
                    coupon_code=code or None,
                    notes=notes,
                ),
                asynchronous=False,
            )
