"""Event handlers that forward order milestones to the notifier.

Listens for OrderCreated, OrderShipped, OrderDelivered (order stream),
PaymentCompleted (payment stream) and ReturnProcessed (returns stream).
A notifier failure is logged and dropped; the transition that raised the
event has already been committed.
"""

import structlog
from protean.utils.mixins import handle

from sakura.domain import sakura
from sakura.notifications import get_notifier
from sakura.order.events import OrderCreated, OrderDelivered, OrderShipped
from sakura.order.order import Order
from sakura.payment.events import PaymentCompleted
from sakura.payment.transaction import PaymentTransaction
from sakura.returns.events import ReturnProcessed
from sakura.returns.return_request import ReturnRequest
from sakura.shared.lookup import load

logger = structlog.get_logger(__name__)


def forward(event_type: str, order_id: str, payload: dict) -> None:
    """Hand a milestone to the notifier without letting its failure escape."""
    try:
        get_notifier().notify(event_type, order_id, payload)
    except Exception:
        logger.exception("notification_failed", event_type=event_type, order_id=order_id)
    else:
        logger.info("notification_sent", event_type=event_type, order_id=order_id)


@sakura.event_handler(part_of=Order)
class OrderMilestonesHandler:
    @handle(OrderCreated)
    def on_order_created(self, event: OrderCreated) -> None:
        forward(
            "OrderCreated",
            str(event.order_id),
            {
                "order_number": event.order_number,
                "customer_id": str(event.customer_id),
                "grand_total": event.grand_total,
                "currency": event.currency,
            },
        )

    @handle(OrderShipped)
    def on_order_shipped(self, event: OrderShipped) -> None:
        forward(
            "OrderShipped",
            str(event.order_id),
            {"order_number": event.order_number, "tracking_number": event.tracking_number},
        )

    @handle(OrderDelivered)
    def on_order_delivered(self, event: OrderDelivered) -> None:
        forward("OrderDelivered", str(event.order_id), {"order_number": event.order_number})


@sakura.event_handler(part_of=PaymentTransaction)
class PaymentMilestonesHandler:
    @handle(PaymentCompleted)
    def on_payment_completed(self, event: PaymentCompleted) -> None:
        """Receipts go out only for the capture that paid the order; refunded captures get none."""
        order = load(Order, event.order_id)
        if order.paid_transaction_id != event.transaction_id:
            logger.info("capture_not_notified", transaction_id=event.transaction_id, late=event.late)
            return
        forward(
            "PaymentCompleted",
            str(event.order_id),
            {"transaction_id": event.transaction_id, "method": event.method, "amount": event.amount},
        )


@sakura.event_handler(part_of=ReturnRequest)
class ReturnMilestonesHandler:
    @handle(ReturnProcessed)
    def on_return_processed(self, event: ReturnProcessed) -> None:
        forward(
            "ReturnProcessed",
            str(event.order_id),
            {
                "return_id": str(event.return_id),
                "decision": event.decision,
                "refund_amount": event.refund_amount,
                "refund_method": event.refund_method,
            },
        )
