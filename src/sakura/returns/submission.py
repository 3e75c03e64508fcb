"""Return submission: a customer claims items back from a delivered order.

Only Delivered and Completed orders accept a return. Submitting moves the
order to ReturnRequested, so a second claim cannot be filed while one is
under review.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.order.order import Actor, Order, OrderStatus
from sakura.returns.return_request import ItemCondition, ReturnReason, ReturnRequest
from sakura.shared.errors import InvalidTransition
from sakura.shared.locking import hold, order_key
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)

_RETURNABLE_ORDER_STATES = {OrderStatus.DELIVERED, OrderStatus.COMPLETED}


@sakura.command(part_of="ReturnRequest")
class SubmitReturn:
    order_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of {order_item_id, quantity, condition}
    reason = String(required=True, choices=ReturnReason)
    description = Text()


def _claimed_lines(order: Order, items: list[dict]) -> list[dict]:
    """Normalise the claim into one line per order item, summing repeated entries."""
    errors, lines = {}, {}
    for entry in items:
        item_id = str(entry.get("order_item_id") or "")
        item = order.get_item(item_id)
        if item is None:
            errors[item_id or "order_item_id"] = ["Item does not belong to this order"]
            continue
        try:
            quantity = int(entry.get("quantity", 0))
        except (TypeError, ValueError):
            errors[item_id] = ["Return quantity must be a whole number"]
            continue
        condition = entry.get("condition") or ItemCondition.UNOPENED.value
        if condition not in {c.value for c in ItemCondition}:
            errors[item_id] = [f"Unknown item condition {condition}"]
            continue

        line = lines.setdefault(
            item_id,
            {
                "order_item_id": item_id,
                "product_id": item.product_id,
                "quantity": 0,
                "unit_price": item.unit_price,
                "condition": condition,
            },
        )
        line["quantity"] += quantity

    if errors:
        raise ValidationError(errors)
    return list(lines.values())


@sakura.command_handler(part_of=ReturnRequest)
class SubmitReturnHandler:
    @handle(SubmitReturn)
    def submit_return(self, command):
        order = load(Order, command.order_id)
        if order.current_status not in _RETURNABLE_ORDER_STATES:
            raise InvalidTransition(
                {"status": [f"Order {order.order_number} is {order.status}; returns open once it is delivered"]}
            )

        lines = _claimed_lines(order, json.loads(command.items))
        if not lines:
            raise ValidationError({"items": ["Select at least one item to return"]})
        order.check_returnable({line["order_item_id"]: line["quantity"] for line in lines})

        request = ReturnRequest.submit(
            order_id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            lines=lines,
            reason=command.reason,
            description=command.description,
        )
        order.transition_to(OrderStatus.RETURN_REQUESTED, notes=f"Return {request.id} submitted", actor=Actor.CUSTOMER.value)

        current_domain.repository_for(ReturnRequest).add(request)
        current_domain.repository_for(Order).add(order)
        logger.info("return_submitted", return_id=str(request.id), order_id=str(order.id), reason=command.reason)
        return str(request.id)


def submit_return(order_id: str, items: list[dict], reason: str, description: str | None = None) -> str:
    """File a return against a delivered order. Returns the return request id."""
    with hold(order_key(order_id)):
        return current_domain.process(
            SubmitReturn(order_id=order_id, items=json.dumps(list(items)), reason=reason, description=description),
            asynchronous=False,
        )
