"""Order cancellation: command, handler and the settlement it triggers.

Cancelling an order unwinds what placing and paying it did: captured
money goes back to the customer, open payment attempts are closed, a
parcel the carrier has not collected is called off, the coupon use is
handed back and stock returns to the shelf. Stock moves last because it
lives outside the unit of work; a refund the gateway refuses aborts the
whole cancellation before any of it is written.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from sakura.carrier import get_carrier
from sakura.catalog import get_catalog
from sakura.coupon.coupon import Coupon
from sakura.domain import sakura
from sakura.order.order import CANCELLABLE_STATES, Actor, CancellationReason, Order
from sakura.payment.refund import issue_refund
from sakura.payment.transaction import REFUNDABLE_STATES, PaymentTransaction
from sakura.shared.errors import ExternalError, InvalidTransition
from sakura.shared.locking import coupon_key, hold, order_key, product_key, shipment_key, transaction_key
from sakura.shared.lookup import find_all, load
from sakura.shipping.creation import active_shipment_for
from sakura.shipping.shipment import ShipmentStatus, ShippingOrder

logger = structlog.get_logger(__name__)


def settle_cancellation(order: Order, reason: str, cancelled_by: str, notes: str | None = None) -> None:
    """Cancel ``order`` and unwind its payment, shipment, coupon and stock. The caller persists ``order``."""
    order.cancel(reason=reason, cancelled_by=cancelled_by, notes=notes)
    log = logger.bind(order_id=str(order.id), order_number=order.order_number)

    txn_repo = current_domain.repository_for(PaymentTransaction)
    for txn in find_all(PaymentTransaction, order_id=str(order.id)):
        if txn.is_active:
            txn.cancel(reason="Order cancelled")
            txn_repo.add(txn)
        elif txn.current_status in REFUNDABLE_STATES and txn.refundable_amount > 0:
            issue_refund(txn, txn.refundable_amount, reason=f"Order {order.order_number} cancelled: {reason}")
            txn_repo.add(txn)
            log.info("cancellation_refund_issued", transaction_id=txn.transaction_id)

    shipment = active_shipment_for(order.id)
    if shipment is not None and shipment.current_status == ShipmentStatus.PENDING:
        if not get_carrier().cancel_shipment(shipment.tracking_number, shipment.carrier_shipment_id):
            raise ExternalError({"carrier": [f"Carrier refused to cancel {shipment.tracking_number}"]})
        shipment.cancel(reason=f"Order cancelled: {reason}")
        current_domain.repository_for(ShippingOrder).add(shipment)

    if order.coupon_code:
        coupon = load(Coupon, order.coupon_code)
        if coupon.revert_usage(order.id) or coupon.release_usage(order.id):
            current_domain.repository_for(Coupon).add(coupon)

    catalog = get_catalog()
    for item in order.items:
        catalog.restore_stock(item.product_id, item.variant_id, item.quantity)

    log.info("order_cancelled", reason=reason, cancelled_by=cancelled_by)


def settlement_keys(order: Order) -> list[str]:
    """Every lock a cancellation of ``order`` needs."""
    keys = [order_key(order.id)]
    if order.coupon_code:
        keys.append(coupon_key(order.coupon_code))
    keys.extend(transaction_key(t.transaction_id) for t in find_all(PaymentTransaction, order_id=str(order.id)))
    keys.extend(product_key(item.product_id, item.variant_id) for item in order.items)
    if order.tracking_number:
        keys.append(shipment_key(order.tracking_number))
    return keys


@sakura.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    cancelled_by = String(choices=Actor, default=Actor.CUSTOMER.value)
    notes = String(max_length=1000)


@sakura.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load(Order, command.order_id)
        if order.current_status not in CANCELLABLE_STATES:
            raise InvalidTransition(
                {"status": [f"Order {order.order_number} is {order.status} and can no longer be cancelled"]}
            )
        settle_cancellation(order, command.reason, command.cancelled_by, command.notes)
        current_domain.repository_for(Order).add(order)


def cancel_order(
    order_id: str,
    reason: str = CancellationReason.CUSTOMER_REQUEST.value,
    cancelled_by: str = Actor.CUSTOMER.value,
    notes: str | None = None,
) -> None:
    """Cancel a Pending, Confirmed or Processing order, refunding any captured payment."""
    order = load(Order, order_id)
    with hold(*settlement_keys(order)):
        current_domain.process(
            CancelOrder(order_id=order_id, reason=reason, cancelled_by=cancelled_by, notes=notes),
            asynchronous=False,
        )
