"""Coupon engine: validation and usage commits used by checkout and payments.

``validate`` is read-only and safe to call from cart previews. The usage
operations run as commands under the coupon's lock.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from sakura.config import get_settings
from sakura.coupon.coupon import Coupon, CouponCheck, normalise_code
from sakura.domain import sakura
from sakura.shared.locking import coupon_key, hold
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)


def find_coupon(code: str) -> Coupon | None:
    code = normalise_code(code)
    if not code:
        return None
    try:
        return current_domain.repository_for(Coupon).get(code)
    except ObjectNotFoundError:
        return None


def validate(code: str, order_amount, customer_id=None, now: datetime | None = None) -> CouponCheck:
    """Check ``code`` against an order amount and return the discount it would grant."""
    coupon = find_coupon(code)
    if coupon is None:
        return CouponCheck(False, reason="Coupon code does not exist")
    return coupon.check(order_amount, customer_id=customer_id, now=now, unit=get_settings().pricing.unit)


@sakura.command(part_of="Coupon")
class CommitCouponUsage:
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)
    customer_id = Identifier()


@sakura.command(part_of="Coupon")
class RevertCouponUsage:
    code = String(required=True, max_length=50)
    order_id = Identifier(required=True)


@sakura.command_handler(part_of=Coupon)
class CouponUsageHandler:
    @handle(CommitCouponUsage)
    def commit_usage(self, command):
        coupon = load(Coupon, normalise_code(command.code))
        applied = coupon.commit_usage(command.order_id, customer_id=command.customer_id)
        if applied:
            current_domain.repository_for(Coupon).add(coupon)
        else:
            logger.info("coupon_usage_already_recorded", code=coupon.code, order_id=str(command.order_id))
        return applied

    @handle(RevertCouponUsage)
    def revert_usage(self, command):
        coupon = load(Coupon, normalise_code(command.code))
        reverted = coupon.revert_usage(command.order_id) or coupon.release_usage(command.order_id)
        if reverted:
            current_domain.repository_for(Coupon).add(coupon)
        return reverted


def commit_usage(code: str, order_id: str, customer_id: str | None = None) -> bool:
    """Count one use of ``code`` for ``order_id``. Idempotent per order."""
    with hold(coupon_key(code)):
        return current_domain.process(
            CommitCouponUsage(code=normalise_code(code), order_id=order_id, customer_id=customer_id),
            asynchronous=False,
        )


def revert_usage(code: str, order_id: str) -> bool:
    """Hand back the use ``order_id`` holds on ``code``, committed or not."""
    with hold(coupon_key(code)):
        return current_domain.process(
            RevertCouponUsage(code=normalise_code(code), order_id=order_id),
            asynchronous=False,
        )
