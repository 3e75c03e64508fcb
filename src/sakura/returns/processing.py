"""Return processing: staff approve or reject a return under review.

Approval settles the refund first, then books the returned quantities on
the order. A refund through the original payment goes back via the
gateway inside the same unit of work, so a refused refund leaves the
return, the order and the transaction exactly as they were. Store credit
and bank transfers are recorded here and paid out by finance.

The order ends up Returned once every unit has come back, and Completed
otherwise. A rejected return also sends the order back to Completed.
"""

from decimal import Decimal

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from sakura.config import get_settings
from sakura.domain import sakura
from sakura.order.order import Actor, Order, OrderStatus
from sakura.payment.refund import issue_refund
from sakura.payment.transaction import PaymentTransaction
from sakura.returns.return_request import Decision, RefundMethod, ReturnRequest, ReturnStatus
from sakura.shared.errors import InvalidTransition
from sakura.shared.locking import hold, order_key, return_key, transaction_key
from sakura.shared.lookup import load
from sakura.shared.money import ZERO, round_half_up, to_decimal

logger = structlog.get_logger(__name__)


@sakura.command(part_of="ReturnRequest")
class ProcessReturn:
    return_id = Identifier(required=True)
    decision = String(required=True, choices=Decision)
    refund_amount = Float(min_value=0.0)  # Defaults to what was paid for the returned lines
    refund_method = String(choices=RefundMethod, default=RefundMethod.ORIGINAL.value)
    notes = String(max_length=1000)


def claimed_value(request: ReturnRequest, order: Order) -> Decimal:
    """What the customer actually paid for the returned lines.

    The order discount is spread over the lines pro rata and the matching
    tax share is added back. Shipping is not refunded. Rounded once to the
    currency unit.
    """
    value = sum((to_decimal(line.unit_price) * line.quantity for line in request.lines), ZERO)
    pricing = order.pricing
    subtotal = to_decimal(pricing.subtotal) if pricing else ZERO
    if subtotal > 0:
        discount = to_decimal(pricing.discount_amount)
        tax = to_decimal(pricing.tax_amount)
        value = value * (subtotal - discount + tax) / subtotal
    return round_half_up(value, get_settings().pricing.unit)


def _default_refund(request: ReturnRequest, order: Order, refund_method: str) -> Decimal:
    amount = claimed_value(request, order)
    if RefundMethod(refund_method) == RefundMethod.ORIGINAL and order.paid_transaction_id:
        amount = min(amount, load(PaymentTransaction, order.paid_transaction_id).refundable_amount)
    return amount


def _refund_original_payment(request: ReturnRequest, order: Order, amount: Decimal) -> None:
    if not order.paid_transaction_id:
        raise ValidationError(
            {"refund_method": [f"Order {order.order_number} has no captured payment to refund; use store_credit or bank_transfer"]}
        )
    txn = load(PaymentTransaction, order.paid_transaction_id)
    if amount > txn.refundable_amount:
        raise ValidationError(
            {"refund_amount": [f"Only {txn.refundable_amount} of transaction {txn.transaction_id} is still refundable"]}
        )

    refund_id = issue_refund(txn, amount, reason=f"Return {request.id} on order {order.order_number}")
    request.record_refund(txn.transaction_id, refund_id)
    current_domain.repository_for(PaymentTransaction).add(txn)


@sakura.command_handler(part_of=ReturnRequest)
class ProcessReturnHandler:
    @handle(ProcessReturn)
    def process_return(self, command):
        request = load(ReturnRequest, command.return_id)
        if request.current_status != ReturnStatus.REQUESTED:
            raise InvalidTransition({"status": [f"Return {request.id} was already {request.status}"]})

        order = load(Order, request.order_id)
        log = logger.bind(return_id=str(request.id), order_id=str(order.id))

        if Decision(command.decision) == Decision.REJECT:
            request.reject(command.notes)
            order.transition_to(
                OrderStatus.COMPLETED, notes=command.notes or f"Return {request.id} rejected", actor=Actor.STAFF.value
            )
            log.info("return_rejected")
        else:
            # Quantities are re-checked before any money moves
            order.check_returnable(request.quantities)

            amount = (
                round_half_up(to_decimal(command.refund_amount), get_settings().pricing.unit)
                if command.refund_amount is not None
                else _default_refund(request, order, command.refund_method)
            )
            request.approve(amount, command.refund_method, command.notes)
            if RefundMethod(command.refund_method) == RefundMethod.ORIGINAL and amount > 0:
                _refund_original_payment(request, order, amount)
            request.complete()

            fully_returned = order.record_returned_items(request.id, request.quantities)
            order.transition_to(
                OrderStatus.RETURNED if fully_returned else OrderStatus.COMPLETED,
                notes=f"Return {request.id} approved",
                actor=Actor.STAFF.value,
            )
            log.info(
                "return_approved",
                refund_amount=float(amount),
                refund_method=command.refund_method,
                fully_returned=fully_returned,
            )

        current_domain.repository_for(ReturnRequest).add(request)
        current_domain.repository_for(Order).add(order)
        return request.status


def process_return(
    return_id: str,
    decision: str,
    refund_amount=None,
    refund_method: str = RefundMethod.ORIGINAL.value,
    notes: str | None = None,
) -> str:
    """Approve or reject a return. Returns the return's status afterwards."""
    request = load(ReturnRequest, return_id)
    order = load(Order, request.order_id)
    with hold(return_key(return_id), order_key(order.id), order.paid_transaction_id and transaction_key(order.paid_transaction_id)):
        return current_domain.process(
            ProcessReturn(
                return_id=return_id,
                decision=decision,
                refund_amount=float(refund_amount) if refund_amount is not None else None,
                refund_method=refund_method,
                notes=notes,
            ),
            asynchronous=False,
        )
