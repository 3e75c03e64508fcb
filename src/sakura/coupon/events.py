"""Domain events for the Coupon aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String

from sakura.domain import sakura


@sakura.event(part_of="Coupon")
class CouponCreated:
    __version__ = 1

    code = String(required=True)
    coupon_type = String(required=True)
    value = Float(required=True)
    usage_limit = Integer()
    created_at = DateTime(required=True)


@sakura.event(part_of="Coupon")
class CouponUsageReserved:
    """A placed order holds one use of the coupon until it is paid or cancelled."""

    __version__ = 1

    code = String(required=True)
    order_id = Identifier(required=True)
    discount_amount = Float(required=True)
    reserved_at = DateTime(required=True)


@sakura.event(part_of="Coupon")
class CouponUsageCommitted:
    __version__ = 1

    code = String(required=True)
    order_id = Identifier(required=True)
    used_count = Integer(required=True)
    committed_at = DateTime(required=True)


@sakura.event(part_of="Coupon")
class CouponUsageReleased:
    __version__ = 1

    code = String(required=True)
    order_id = Identifier(required=True)
    was_committed = Boolean(default=False)
    released_at = DateTime(required=True)


@sakura.event(part_of="Coupon")
class CouponDeactivated:
    __version__ = 1

    code = String(required=True)
    deactivated_at = DateTime(required=True)
