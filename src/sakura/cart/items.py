"""Cart commands and handler.

Each entrypoint holds the cart's lock while its command runs, so two tabs
adding the same product cannot both read the old line and write over each
other. Stock is read from the live catalog but never reserved here.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from sakura.cart.cart import Cart
from sakura.catalog import get_catalog
from sakura.domain import sakura
from sakura.shared.errors import NotFoundError, OutOfStock
from sakura.shared.locking import cart_key, hold
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)


def _live_product(product_id, variant_id):
    product = get_catalog().get_live_stock_and_price(product_id, variant_id)
    if product is None:
        raise NotFoundError({"product_id": [f"Product {product_id} does not exist"]})
    if not product.is_active:
        raise OutOfStock({str(product_id): ["Product is no longer available"]})
    return product


@sakura.command(part_of="Cart")
class CreateCart:
    customer_id = Identifier()
    session_token = String(max_length=255)


@sakura.command(part_of="Cart")
class AddToCart:
    cart_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    is_gift = Boolean(default=False)
    gift_message = String(max_length=500)
    custom_options = Text()  # JSON object


@sakura.command(part_of="Cart")
class UpdateCartItem:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(min_value=0)
    is_gift = Boolean()
    gift_message = String(max_length=500)
    custom_options = Text()


@sakura.command(part_of="Cart")
class RemoveFromCart:
    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


@sakura.command(part_of="Cart")
class ApplyCartCoupon:
    cart_id = Identifier(required=True)
    code = String(required=True, max_length=50)


@sakura.command(part_of="Cart")
class RemoveCartCoupon:
    cart_id = Identifier(required=True)


@sakura.command(part_of="Cart")
class ClearCart:
    cart_id = Identifier(required=True)


@sakura.command(part_of="Cart")
class RefreshCartPrices:
    """Accept the live catalog price on every line, e.g. after checkout reported a price change."""

    cart_id = Identifier(required=True)


@sakura.command(part_of="Cart")
class MergeCarts:
    """Fold a guest cart into the customer's cart after sign-in."""

    cart_id = Identifier(required=True)
    guest_cart_id = Identifier(required=True)


@sakura.command_handler(part_of=Cart)
class ManageCartHandler:
    @handle(CreateCart)
    def create_cart(self, command):
        cart = Cart.create(customer_id=command.customer_id, session_token=command.session_token)
        current_domain.repository_for(Cart).add(cart)
        return str(cart.id)

    @handle(AddToCart)
    def add_to_cart(self, command):
        cart = load(Cart, command.cart_id)
        product = _live_product(command.product_id, command.variant_id)
        item_id = cart.add_item(
            product_id=command.product_id,
            variant_id=command.variant_id,
            quantity=command.quantity,
            unit_price=float(product.price),
            available_stock=product.stock,
            product_name=product.name,
            is_gift=command.is_gift,
            gift_message=command.gift_message,
            custom_options=json.loads(command.custom_options) if command.custom_options else None,
        )
        current_domain.repository_for(Cart).add(cart)
        return item_id

    @handle(UpdateCartItem)
    def update_cart_item(self, command):
        cart = load(Cart, command.cart_id)
        item = cart._get_item(command.item_id)

        available_stock = None
        unit_price = None
        if command.quantity is not None and command.quantity > item.quantity:
            product = _live_product(item.product_id, item.variant_id)
            available_stock = product.stock
            unit_price = float(product.price)

        cart.update_item(
            item_id=command.item_id,
            quantity=command.quantity,
            available_stock=available_stock,
            unit_price=unit_price,
            is_gift=command.is_gift,
            gift_message=command.gift_message,
            custom_options=json.loads(command.custom_options) if command.custom_options else None,
        )
        current_domain.repository_for(Cart).add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        cart = load(Cart, command.cart_id)
        cart.remove_item(command.item_id)
        current_domain.repository_for(Cart).add(cart)

    @handle(ApplyCartCoupon)
    def apply_coupon(self, command):
        cart = load(Cart, command.cart_id)
        cart.apply_coupon(command.code)
        current_domain.repository_for(Cart).add(cart)

    @handle(RemoveCartCoupon)
    def remove_coupon(self, command):
        cart = load(Cart, command.cart_id)
        cart.remove_coupon()
        current_domain.repository_for(Cart).add(cart)

    @handle(ClearCart)
    def clear_cart(self, command):
        cart = load(Cart, command.cart_id)
        cart.clear()
        current_domain.repository_for(Cart).add(cart)

    @handle(RefreshCartPrices)
    def refresh_prices(self, command):
        cart = load(Cart, command.cart_id)
        changed = 0
        for item in list(cart.items or []):
            product = get_catalog().get_live_stock_and_price(item.product_id, item.variant_id)
            if product is None or float(product.price) == item.unit_price:
                continue
            cart.refresh_price(item.id, float(product.price))
            changed += 1
        if changed:
            current_domain.repository_for(Cart).add(cart)
        return changed

    @handle(MergeCarts)
    def merge_carts(self, command):
        if str(command.cart_id) == str(command.guest_cart_id):
            raise ValidationError({"guest_cart_id": ["A cart cannot be merged into itself"]})

        repo = current_domain.repository_for(Cart)
        cart = load(Cart, command.cart_id)
        guest_cart = load(Cart, command.guest_cart_id)
        if not cart.customer_id or not guest_cart.session_token:
            raise ValidationError({"guest_cart_id": ["Only a guest cart can be merged into a customer cart"]})

        merged = cart.merge_from(guest_cart)
        guest_cart.clear()
        repo.add(cart)
        repo.add(guest_cart)
        logger.info("carts_merged", cart_id=str(cart.id), guest_cart_id=str(guest_cart.id), lines=merged)
        return merged


def _run(command, *cart_ids):
    with hold(*(cart_key(cid) for cid in cart_ids)):
        return current_domain.process(command, asynchronous=False)


def create_cart(customer_id: str | None = None, session_token: str | None = None) -> str:
    return current_domain.process(
        CreateCart(customer_id=customer_id, session_token=session_token),
        asynchronous=False,
    )


def add_item(
    cart_id: str,
    product_id: str,
    quantity: int,
    variant_id: str | None = None,
    is_gift: bool = False,
    gift_message: str | None = None,
    options: dict | None = None,
) -> str:
    """Add a product to the cart, returning the id of the line it landed on."""
    command = AddToCart(
        cart_id=cart_id,
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        is_gift=is_gift,
        gift_message=gift_message,
        custom_options=json.dumps(options) if options else None,
    )
    return _run(command, cart_id)


def update_item(
    cart_id: str,
    item_id: str,
    quantity: int | None = None,
    is_gift: bool | None = None,
    gift_message: str | None = None,
    options: dict | None = None,
) -> None:
    command = UpdateCartItem(
        cart_id=cart_id,
        item_id=item_id,
        quantity=quantity,
        is_gift=is_gift,
        gift_message=gift_message,
        custom_options=json.dumps(options) if options else None,
    )
    _run(command, cart_id)


def remove_item(cart_id: str, item_id: str) -> None:
    _run(RemoveFromCart(cart_id=cart_id, item_id=item_id), cart_id)


def apply_coupon(cart_id: str, code: str) -> None:
    _run(ApplyCartCoupon(cart_id=cart_id, code=code), cart_id)


def remove_coupon(cart_id: str) -> None:
    _run(RemoveCartCoupon(cart_id=cart_id), cart_id)


def clear_cart(cart_id: str) -> None:
    _run(ClearCart(cart_id=cart_id), cart_id)


def refresh_prices(cart_id: str) -> int:
    """Re-capture live prices on the cart. Returns the number of lines whose price moved."""
    return _run(RefreshCartPrices(cart_id=cart_id), cart_id)


def merge_carts(cart_id: str, guest_cart_id: str) -> int:
    return _run(MergeCarts(cart_id=cart_id, guest_cart_id=guest_cart_id), cart_id, guest_cart_id)
