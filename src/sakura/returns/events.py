"""Domain events for the ReturnRequest aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from sakura.domain import sakura


@sakura.event(part_of="ReturnRequest")
class ReturnRequested:
    __version__ = 1

    return_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)
    item_count = Integer(required=True)
    requested_at = DateTime(required=True)


@sakura.event(part_of="ReturnRequest")
class ReturnProcessed:
    """A return was decided. Approved returns carry the refund that was issued or recorded."""

    __version__ = 1

    return_id = Identifier(required=True)
    order_id = Identifier(required=True)
    decision = String(required=True)
    refund_amount = Float()
    refund_method = String()
    processed_at = DateTime(required=True)
