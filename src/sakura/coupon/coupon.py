"""Coupon aggregate (CQRS).

A coupon is looked up by its code, which is stored upper-case so that
customers can type it in any case. Usage is tracked per order:

    Reserved   the order was placed with the coupon's discount
    Committed  the order's payment was confirmed; ``used_count`` moved by one
    Released   the order was cancelled; a committed use is handed back

Reservations count against ``usage_limit`` so that concurrent checkouts
racing for the last use cannot both win. ``used_count`` only ever moves
through ``commit_usage``/``revert_usage`` and both are keyed by order id,
so replays never count twice.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from sakura.coupon.events import (
    CouponCreated,
    CouponDeactivated,
    CouponUsageCommitted,
    CouponUsageReleased,
    CouponUsageReserved,
)
from sakura.domain import sakura
from sakura.shared.money import ZERO, round_half_up, to_decimal


class CouponType(Enum):
    PERCENTAGE = "Percentage"
    FIXED_AMOUNT = "FixedAmount"


class UsageStatus(Enum):
    RESERVED = "Reserved"
    COMMITTED = "Committed"
    RELEASED = "Released"


@dataclass(frozen=True)
class CouponCheck:
    """Outcome of validating a code against an order amount."""

    is_valid: bool
    discount_amount: Decimal = ZERO
    reason: str | None = None


def normalise_code(code: str) -> str:
    return (code or "").strip().upper()


@sakura.entity(part_of="Coupon")
class CouponUsage:
    order_id = Identifier(required=True)
    customer_id = Identifier()
    discount_amount = Float(default=0.0)
    status = String(max_length=20, choices=UsageStatus, default=UsageStatus.RESERVED.value)
    reserved_at = DateTime()
    committed_at = DateTime()
    released_at = DateTime()


@sakura.aggregate
class Coupon:
    code = String(identifier=True, max_length=50)
    name = String(max_length=200)
    description = Text()
    coupon_type = String(choices=CouponType, required=True)
    value = Float(required=True, min_value=0.0)
    min_order_amount = Float(default=0.0, min_value=0.0)
    max_discount_amount = Float(min_value=0.0)
    usage_limit = Integer(min_value=1)
    used_count = Integer(default=0, min_value=0)
    per_user_limit = Integer(min_value=1)
    start_date = DateTime()
    end_date = DateTime()
    is_active = Boolean(default=True)
    is_public = Boolean(default=True)
    usages = HasMany(CouponUsage)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def used_count_must_not_exceed_limit(self):
        if self.usage_limit is not None and (self.used_count or 0) > self.usage_limit:
            raise ValidationError({"used_count": ["Coupon used more often than its usage limit allows"]})

    @invariant.post
    def percentage_must_be_at_most_100(self):
        if self.coupon_type == CouponType.PERCENTAGE.value and (self.value or 0) > 100:
            raise ValidationError({"value": ["Percentage discount cannot exceed 100"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code: str,
        coupon_type: str,
        value: float,
        min_order_amount: float = 0.0,
        max_discount_amount: float | None = None,
        usage_limit: int | None = None,
        per_user_limit: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        name: str | None = None,
        description: str | None = None,
        is_public: bool = True,
    ):
        if start_date and end_date and end_date < start_date:
            raise ValidationError({"end_date": ["End date must be after start date"]})

        now = datetime.now(UTC)
        coupon = cls(
            code=normalise_code(code),
            name=name or normalise_code(code),
            description=description,
            coupon_type=coupon_type,
            value=value,
            min_order_amount=min_order_amount or 0.0,
            max_discount_amount=max_discount_amount,
            usage_limit=usage_limit,
            per_user_limit=per_user_limit,
            start_date=start_date,
            end_date=end_date,
            is_public=is_public,
            created_at=now,
            updated_at=now,
        )
        coupon.raise_(
            CouponCreated(
                code=coupon.code,
                coupon_type=coupon_type,
                value=value,
                usage_limit=usage_limit,
                created_at=now,
            )
        )
        return coupon

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def _usage_for(self, order_id) -> CouponUsage | None:
        return next((u for u in (self.usages or []) if str(u.order_id) == str(order_id)), None)

    @property
    def outstanding_reservations(self) -> int:
        return sum(1 for u in (self.usages or []) if u.status == UsageStatus.RESERVED.value)

    def uses_by(self, customer_id) -> int:
        return sum(
            1
            for u in (self.usages or [])
            if str(u.customer_id) == str(customer_id) and u.status != UsageStatus.RELEASED.value
        )

    def compute_discount(self, order_amount, unit: Decimal = Decimal("1")) -> Decimal:
        """Discount for ``order_amount``, rounded half-up to the currency unit and never above the amount."""
        amount = to_decimal(order_amount)
        if self.coupon_type == CouponType.FIXED_AMOUNT.value:
            discount = to_decimal(self.value)
        else:
            discount = amount * to_decimal(self.value) / 100
            if self.max_discount_amount is not None:
                discount = min(discount, to_decimal(self.max_discount_amount))
        return min(round_half_up(discount, unit), amount)

    def check(self, order_amount, customer_id=None, now: datetime | None = None, unit: Decimal = Decimal("1")) -> CouponCheck:
        """Validate this coupon for an order, stopping at the first failed rule."""
        now = now or datetime.now(UTC)
        amount = to_decimal(order_amount)

        if not self.is_active:
            return CouponCheck(False, reason="Coupon is not active")
        if self.start_date and now < self.start_date:
            return CouponCheck(False, reason="Coupon is not yet valid")
        if self.end_date and now > self.end_date:
            return CouponCheck(False, reason="Coupon has expired")
        if amount < to_decimal(self.min_order_amount):
            return CouponCheck(False, reason=f"Order amount must be at least {self.min_order_amount:,.0f}")
        if self.usage_limit is not None and (self.used_count or 0) + self.outstanding_reservations >= self.usage_limit:
            return CouponCheck(False, reason="Coupon usage limit reached")
        if self.per_user_limit is not None and customer_id and self.uses_by(customer_id) >= self.per_user_limit:
            return CouponCheck(False, reason="You have already used this coupon")

        return CouponCheck(True, discount_amount=self.compute_discount(amount, unit))

    # -------------------------------------------------------------------
    # Usage tracking
    # -------------------------------------------------------------------
    def reserve(self, order_id, customer_id, discount_amount) -> None:
        if self._usage_for(order_id) is not None:
            return

        now = datetime.now(UTC)
        self.add_usages(
            CouponUsage(
                order_id=order_id,
                customer_id=customer_id,
                discount_amount=float(discount_amount),
                status=UsageStatus.RESERVED.value,
                reserved_at=now,
            )
        )
        self.updated_at = now
        self.raise_(
            CouponUsageReserved(
                code=self.code,
                order_id=str(order_id),
                discount_amount=float(discount_amount),
                reserved_at=now,
            )
        )

    def commit_usage(self, order_id, customer_id=None) -> bool:
        """Count one use for ``order_id``. Returns False if that order's use was already counted."""
        usage = self._usage_for(order_id)
        if usage is not None and usage.status == UsageStatus.COMMITTED.value:
            return False
        if usage is not None and usage.status == UsageStatus.RELEASED.value:
            return False

        now = datetime.now(UTC)
        if usage is None:
            if self.usage_limit is not None and (self.used_count or 0) + self.outstanding_reservations >= self.usage_limit:
                return False
            usage = CouponUsage(order_id=order_id, customer_id=customer_id, reserved_at=now)
            self.add_usages(usage)

        usage.status = UsageStatus.COMMITTED.value
        usage.committed_at = now
        self.used_count = (self.used_count or 0) + 1
        self.updated_at = now
        self.raise_(
            CouponUsageCommitted(
                code=self.code,
                order_id=str(order_id),
                used_count=self.used_count,
                committed_at=now,
            )
        )
        return True

    def release_usage(self, order_id) -> bool:
        """Hand back an uncommitted reservation."""
        usage = self._usage_for(order_id)
        if usage is None or usage.status != UsageStatus.RESERVED.value:
            return False
        self._release(usage, was_committed=False)
        return True

    def revert_usage(self, order_id) -> bool:
        """Undo a committed use, e.g. when a paid order is cancelled."""
        usage = self._usage_for(order_id)
        if usage is None or usage.status != UsageStatus.COMMITTED.value:
            return False
        self.used_count = max((self.used_count or 0) - 1, 0)
        self._release(usage, was_committed=True)
        return True

    def _release(self, usage: CouponUsage, was_committed: bool) -> None:
        now = datetime.now(UTC)
        usage.status = UsageStatus.RELEASED.value
        usage.released_at = now
        self.updated_at = now
        self.raise_(
            CouponUsageReleased(
                code=self.code,
                order_id=str(usage.order_id),
                was_committed=was_committed,
                released_at=now,
            )
        )

    def deactivate(self) -> None:
        if not self.is_active:
            return
        now = datetime.now(UTC)
        self.is_active = False
        self.updated_at = now
        self.raise_(CouponDeactivated(code=self.code, deactivated_at=now))
