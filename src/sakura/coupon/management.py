"""Coupon administration: create and deactivate coupons."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String, Text
from protean.utils.globals import current_domain

from sakura.coupon.coupon import Coupon, normalise_code
from sakura.coupon.engine import find_coupon
from sakura.domain import sakura
from sakura.shared.locking import coupon_key, hold
from sakura.shared.lookup import load


@sakura.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=50)
    coupon_type = String(required=True, max_length=20)
    value = Float(required=True, min_value=0.0)
    name = String(max_length=200)
    description = Text()
    min_order_amount = Float(default=0.0)
    max_discount_amount = Float()
    usage_limit = Integer(min_value=1)
    per_user_limit = Integer(min_value=1)
    start_date = DateTime()
    end_date = DateTime()
    is_public = Boolean(default=True)


@sakura.command(part_of="Coupon")
class DeactivateCoupon:
    code = String(required=True, max_length=50)


@sakura.command_handler(part_of=Coupon)
class CouponAdministrationHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        if find_coupon(command.code) is not None:
            raise ValidationError({"code": [f"Coupon {normalise_code(command.code)} already exists"]})

        coupon = Coupon.create(
            code=command.code,
            coupon_type=command.coupon_type,
            value=command.value,
            min_order_amount=command.min_order_amount,
            max_discount_amount=command.max_discount_amount,
            usage_limit=command.usage_limit,
            per_user_limit=command.per_user_limit,
            start_date=command.start_date,
            end_date=command.end_date,
            name=command.name,
            description=command.description,
            is_public=command.is_public,
        )
        current_domain.repository_for(Coupon).add(coupon)
        return coupon.code

    @handle(DeactivateCoupon)
    def deactivate_coupon(self, command):
        coupon = load(Coupon, normalise_code(command.code))
        coupon.deactivate()
        current_domain.repository_for(Coupon).add(coupon)


def create_coupon(**fields) -> str:
    with hold(coupon_key(fields["code"])):
        return current_domain.process(CreateCoupon(**fields), asynchronous=False)


def deactivate_coupon(code: str) -> None:
    with hold(coupon_key(code)):
        current_domain.process(DeactivateCoupon(code=code), asynchronous=False)
