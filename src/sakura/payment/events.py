"""Domain events for the PaymentTransaction aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from sakura.domain import sakura


@sakura.event(part_of="PaymentTransaction")
class PaymentInitiated:
    __version__ = 1

    transaction_id = String(required=True)
    order_id = Identifier(required=True)
    method = String(required=True)
    amount = Float(required=True)
    expires_at = DateTime(required=True)


@sakura.event(part_of="PaymentTransaction")
class PaymentCompleted:
    """Money was captured. ``late`` is set when the attempt had already failed or been cancelled."""

    __version__ = 1

    transaction_id = String(required=True)
    order_id = Identifier(required=True)
    external_transaction_id = String()
    method = String(required=True)
    amount = Float(required=True)
    late = Boolean(default=False)
    completed_at = DateTime(required=True)


@sakura.event(part_of="PaymentTransaction")
class PaymentFailed:
    __version__ = 1

    transaction_id = String(required=True)
    order_id = Identifier(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@sakura.event(part_of="PaymentTransaction")
class PaymentCancelled:
    __version__ = 1

    transaction_id = String(required=True)
    order_id = Identifier(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@sakura.event(part_of="PaymentTransaction")
class PaymentRefunded:
    __version__ = 1

    transaction_id = String(required=True)
    order_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    amount = Float(required=True)
    refunded_amount = Float(required=True)
    fully_refunded = Boolean(required=True)
    gateway_refund_id = String()
    reason = String()
    refunded_at = DateTime(required=True)
