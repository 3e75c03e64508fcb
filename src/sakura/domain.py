"""Sakura Home order fulfillment context.

Cart, coupons, orders, payments, shipments and returns live in a single
bounded context so that a payment confirmation, the order it confirms and
the coupon usage it commits land in one unit of work.
"""

import structlog
from protean.domain import Domain

sakura = Domain(name="sakura")

logger = structlog.get_logger(__name__)
