"""Human-readable order numbers: ``ORD`` + order date + four random digits."""

import random
from datetime import UTC, datetime

from sakura.order.order import Order
from sakura.shared.errors import ConflictError
from sakura.shared.lookup import find_all


def candidate_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"ORD{now:%Y%m%d}{random.randint(1000, 9999)}"


def next_order_number(attempts: int = 10, now: datetime | None = None) -> str:
    """Return an order number no existing order uses, trying at most ``attempts`` candidates."""
    for _ in range(attempts):
        number = candidate_number(now)
        if not find_all(Order, order_number=number):
            return number
    raise ConflictError({"order_number": ["Could not allocate a unique order number, please retry"]})
