"""Staff status updates: one step along the order's adjacency list at a time."""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.order.cancellation import settle_cancellation, settlement_keys
from sakura.order.order import Actor, CancellationReason, Order, OrderStatus
from sakura.shared.locking import hold
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)


@sakura.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, choices=OrderStatus)
    notes = String(max_length=1000)
    actor = String(choices=Actor, default=Actor.STAFF.value)


@sakura.command_handler(part_of=Order)
class UpdateOrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_status(self, command):
        order = load(Order, command.order_id)
        previous = order.status
        target = OrderStatus(command.status)

        if target == OrderStatus.CANCELLED:
            order._assert_can_transition(target)
            settle_cancellation(
                order,
                reason=command.notes or CancellationReason.OTHER.value,
                cancelled_by=command.actor,
                notes=command.notes,
            )
        else:
            order.transition_to(target, notes=command.notes, actor=command.actor)

        current_domain.repository_for(Order).add(order)
        logger.info("order_status_updated", order_id=str(order.id), from_status=previous, to_status=order.status)
        return order.status


def update_status(order_id: str, status: str, notes: str | None = None, actor: str = Actor.STAFF.value) -> str:
    """Move an order to ``status``. Anything off the adjacency list raises ``InvalidTransition``."""
    order = load(Order, order_id)
    with hold(*settlement_keys(order)):
        return current_domain.process(
            UpdateOrderStatus(order_id=order_id, status=status, notes=notes, actor=actor),
            asynchronous=False,
        )
