"""Domain events for the Cart aggregate."""

from protean.fields import Identifier, Integer, String

from sakura.domain import sakura


@sakura.event(part_of="Cart")
class CartItemAdded:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)


@sakura.event(part_of="Cart")
class CartItemUpdated:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@sakura.event(part_of="Cart")
class CartItemRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)


@sakura.event(part_of="Cart")
class CartCouponChanged:
    __version__ = 1

    cart_id = Identifier(required=True)
    coupon_code = String()  # empty when the coupon was removed


@sakura.event(part_of="Cart")
class CartsMerged:
    __version__ = 1

    cart_id = Identifier(required=True)
    source_cart_id = Identifier(required=True)
    items_merged_count = Integer(required=True)


@sakura.event(part_of="Cart")
class CartCheckedOut:
    __version__ = 1

    cart_id = Identifier(required=True)
    order_id = Identifier(required=True)
    lines_ordered = Integer(required=True)
