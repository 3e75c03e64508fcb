"""Domain events for the Order aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text

from sakura.domain import sakura


@sakura.event(part_of="Order")
class OrderCreated:
    """A cart became an order awaiting payment. Prices and totals are locked from here on."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    item_count = Integer(required=True)
    grand_total = Float(required=True)
    currency = String(required=True)
    payment_method = String(required=True)
    coupon_code = String()
    created_at = DateTime(required=True)


@sakura.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    notes = String()
    actor = String()
    changed_at = DateTime(required=True)


@sakura.event(part_of="Order")
class OrderShipped:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    tracking_number = String()
    shipped_at = DateTime(required=True)


@sakura.event(part_of="Order")
class OrderDelivered:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    delivered_at = DateTime(required=True)


@sakura.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_by = String(required=True)
    cancelled_at = DateTime(required=True)


@sakura.event(part_of="Order")
class DeliveryIssueFlagged:
    """Delivery failed or the customer reported non-receipt. Staff follow up by hand."""

    __version__ = 1

    order_id = Identifier(required=True)
    status = String(required=True)
    notes = String()
    flagged_at = DateTime(required=True)


@sakura.event(part_of="Order")
class OrderNoteAdded:
    __version__ = 1

    order_id = Identifier(required=True)
    note_id = Identifier(required=True)
    author = String(required=True)
    is_customer_visible = Boolean(default=False)


@sakura.event(part_of="Order")
class OrderItemsReturned:
    __version__ = 1

    order_id = Identifier(required=True)
    return_id = Identifier(required=True)
    quantities = Text(required=True)  # JSON: {order_item_id: quantity}
    fully_returned = Boolean(required=True)
