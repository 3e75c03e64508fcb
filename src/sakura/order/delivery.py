"""Customer confirmation of receipt.

A confirmed receipt moves a parcel still with the carrier to Delivered,
and a Delivered order to Completed. A reported non-receipt never moves
the order: it flags it for staff, who decide whether to chase the
carrier or re-ship.
"""

import structlog
from protean import handle
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.order.order import IN_DELIVERY_STATES, Actor, Order, OrderStatus
from sakura.shared.errors import InvalidTransition
from sakura.shared.locking import hold, order_key
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)


@sakura.command(part_of="Order")
class ConfirmDelivery:
    order_id = Identifier(required=True)
    is_received = Boolean(required=True)
    notes = String(max_length=1000)


@sakura.command_handler(part_of=Order)
class ConfirmDeliveryHandler:
    @handle(ConfirmDelivery)
    def confirm_delivery(self, command):
        order = load(Order, command.order_id)
        status = order.current_status

        if not command.is_received:
            if status not in IN_DELIVERY_STATES | {OrderStatus.DELIVERED}:
                raise InvalidTransition({"status": [f"Order {order.order_number} is {order.status}, not out for delivery"]})
            order.flag_delivery_issue(command.notes or "Customer reports the parcel has not arrived")
            logger.warning("delivery_not_received", order_id=str(order.id), status=order.status)
        elif status in IN_DELIVERY_STATES:
            order.advance_to(OrderStatus.DELIVERED, notes=command.notes, actor=Actor.CUSTOMER.value)
        elif status == OrderStatus.DELIVERED:
            order.transition_to(OrderStatus.COMPLETED, notes=command.notes, actor=Actor.CUSTOMER.value)
        else:
            raise InvalidTransition({"status": [f"Order {order.order_number} is {order.status}, not awaiting delivery"]})

        current_domain.repository_for(Order).add(order)
        return order.status


def confirm_delivery(order_id: str, is_received: bool, notes: str | None = None) -> str:
    """Record the customer's answer to "did your parcel arrive?". Returns the order status afterwards."""
    with hold(order_key(order_id)):
        return current_domain.process(
            ConfirmDelivery(order_id=order_id, is_received=is_received, notes=notes),
            asynchronous=False,
        )
