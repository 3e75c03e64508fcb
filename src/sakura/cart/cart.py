"""Cart aggregate (CQRS): what a customer intends to buy.

A cart belongs either to a registered customer or to an anonymous session,
never both. Lines are keyed by (product, variant): adding the same pair
again grows the existing line. A quantity of zero keeps the line visible
but excludes it from pricing and checkout until it is removed or raised.

Prices captured on a line are for display only. Checkout re-reads the live
catalog and refuses to proceed if the price or stock has drifted.
"""

import json
from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from sakura.cart.events import (
    CartCheckedOut,
    CartCouponChanged,
    CartItemAdded,
    CartItemRemoved,
    CartItemUpdated,
    CartsMerged,
)
from sakura.coupon.coupon import normalise_code
from sakura.domain import sakura
from sakura.shared.errors import OutOfStock


def line_key(product_id, variant_id) -> tuple[str, str | None]:
    return str(product_id), str(variant_id) if variant_id else None


@sakura.entity(part_of="Cart")
class CartItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    product_name = String(max_length=255)
    quantity = Integer(required=True, min_value=0)
    unit_price = Float(default=0.0, min_value=0.0)
    is_gift = Boolean(default=False)
    gift_message = String(max_length=500)
    custom_options = Text()  # JSON object
    added_at = DateTime()
    updated_at = DateTime()

    @property
    def key(self) -> tuple[str, str | None]:
        return line_key(self.product_id, self.variant_id)

    @property
    def options(self) -> dict:
        return json.loads(self.custom_options) if self.custom_options else {}


@sakura.aggregate
class Cart:
    customer_id = Identifier()
    session_token = String(max_length=255)
    items = HasMany(CartItem)
    coupon_code = String(max_length=50)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def cart_must_have_exactly_one_owner(self):
        if bool(self.customer_id) == bool(self.session_token):
            raise ValidationError({"owner": ["A cart belongs to either a customer or a guest session"]})

    @invariant.post
    def lines_must_be_unique_per_product_variant(self):
        keys = [item.key for item in self.items or []]
        if len(keys) != len(set(keys)):
            raise ValidationError({"items": ["Only one line per product and variant is allowed"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, customer_id=None, session_token=None):
        now = datetime.now(UTC)
        return cls(
            customer_id=customer_id,
            session_token=session_token,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def find_line(self, product_id, variant_id=None) -> CartItem | None:
        key = line_key(product_id, variant_id)
        return next((i for i in self.items or [] if i.key == key), None)

    def _get_item(self, item_id) -> CartItem:
        item = next((i for i in self.items or [] if str(i.id) == str(item_id)), None)
        if item is None:
            raise ValidationError({"item_id": ["Item not found in cart"]})
        return item

    @property
    def active_items(self) -> list[CartItem]:
        return [i for i in self.items or [] if i.quantity > 0]

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(
        self,
        product_id,
        quantity: int,
        unit_price: float,
        available_stock: int,
        variant_id=None,
        product_name: str | None = None,
        is_gift: bool = False,
        gift_message: str | None = None,
        custom_options: dict | None = None,
    ) -> str:
        """Add a product, merging into the existing line for the same product and variant.

        ``available_stock`` is the live stock; the merged quantity may not exceed it.
        """
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        existing = self.find_line(product_id, variant_id)
        requested = quantity + (existing.quantity if existing else 0)
        if requested > available_stock:
            raise OutOfStock(
                {str(product_id): [f"Only {available_stock} left in stock, {requested} requested"]}
            )

        now = datetime.now(UTC)
        if existing:
            existing.quantity = requested
            existing.unit_price = unit_price
            existing.updated_at = now
            if custom_options is not None:
                existing.custom_options = json.dumps(custom_options)
            item = existing
        else:
            item = CartItem(
                product_id=product_id,
                variant_id=variant_id,
                product_name=product_name,
                quantity=quantity,
                unit_price=unit_price,
                is_gift=is_gift,
                gift_message=gift_message,
                custom_options=json.dumps(custom_options) if custom_options else None,
                added_at=now,
                updated_at=now,
            )
            self.add_items(item)

        self.updated_at = now
        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                quantity=quantity,
            )
        )
        return str(item.id)

    def update_item(
        self,
        item_id,
        quantity: int | None = None,
        available_stock: int | None = None,
        unit_price: float | None = None,
        is_gift: bool | None = None,
        gift_message: str | None = None,
        custom_options: dict | None = None,
    ) -> None:
        """Change a line. A quantity of zero marks it for removal without dropping it."""
        item = self._get_item(item_id)
        previous_quantity = item.quantity

        if quantity is not None:
            if quantity < 0:
                raise ValidationError({"quantity": ["Quantity must not be negative"]})
            if quantity > previous_quantity and available_stock is not None and quantity > available_stock:
                raise OutOfStock({str(item.product_id): [f"Only {available_stock} left in stock, {quantity} requested"]})
            item.quantity = quantity
        if unit_price is not None:
            item.unit_price = unit_price
        if is_gift is not None:
            item.is_gift = is_gift
        if gift_message is not None:
            item.gift_message = gift_message
        if custom_options is not None:
            item.custom_options = json.dumps(custom_options)

        now = datetime.now(UTC)
        item.updated_at = now
        self.updated_at = now
        self.raise_(
            CartItemUpdated(
                cart_id=str(self.id),
                item_id=str(item.id),
                previous_quantity=previous_quantity,
                new_quantity=item.quantity,
            )
        )

    def remove_item(self, item_id) -> None:
        item = self._get_item(item_id)
        self.remove_items(item)
        self.updated_at = datetime.now(UTC)
        self.raise_(CartItemRemoved(cart_id=str(self.id), item_id=str(item_id)))

    def refresh_price(self, item_id, unit_price: float) -> None:
        """Accept the live price for a line after the customer has seen it change."""
        item = self._get_item(item_id)
        item.unit_price = unit_price
        self.updated_at = datetime.now(UTC)

    def clear(self) -> None:
        for item in list(self.items or []):
            self.remove_items(item)
        self.coupon_code = None
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Coupons
    # -------------------------------------------------------------------
    def apply_coupon(self, code: str) -> None:
        self.coupon_code = normalise_code(code)
        self.updated_at = datetime.now(UTC)
        self.raise_(CartCouponChanged(cart_id=str(self.id), coupon_code=self.coupon_code))

    def remove_coupon(self) -> None:
        if not self.coupon_code:
            return
        self.coupon_code = None
        self.updated_at = datetime.now(UTC)
        self.raise_(CartCouponChanged(cart_id=str(self.id), coupon_code=""))

    # -------------------------------------------------------------------
    # Guest cart merge and checkout
    # -------------------------------------------------------------------
    def merge_from(self, other: "Cart") -> int:
        """Fold a guest cart's lines into this cart. Quantities are summed per product and variant."""
        now = datetime.now(UTC)
        merged = 0
        for line in other.items or []:
            existing = self.find_line(line.product_id, line.variant_id)
            if existing:
                existing.quantity += line.quantity
                existing.updated_at = now
            else:
                self.add_items(
                    CartItem(
                        product_id=line.product_id,
                        variant_id=line.variant_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        is_gift=line.is_gift,
                        gift_message=line.gift_message,
                        custom_options=line.custom_options,
                        added_at=now,
                        updated_at=now,
                    )
                )
            merged += 1

        if other.coupon_code and not self.coupon_code:
            self.coupon_code = other.coupon_code
        self.updated_at = now
        self.raise_(CartsMerged(cart_id=str(self.id), source_cart_id=str(other.id), items_merged_count=merged))
        return merged

    def mark_checked_out(self, order_id, ordered_item_ids: list[str]) -> None:
        """Drop the lines that became an order. Lines left out of the order stay in the cart."""
        ordered = set(ordered_item_ids)
        for item in [i for i in self.items or [] if str(i.id) in ordered]:
            self.remove_items(item)
        self.coupon_code = None
        self.updated_at = datetime.now(UTC)
        self.raise_(CartCheckedOut(cart_id=str(self.id), order_id=str(order_id), lines_ordered=len(ordered)))
