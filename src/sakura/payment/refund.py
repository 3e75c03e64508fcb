"""Refunds: command, handler and the refund step shared by cancellation and returns.

``issue_refund`` moves the transaction through REFUNDING and asks the
gateway to return the money. If the gateway declines, ``ExternalError``
aborts the surrounding unit of work and the transaction keeps its
previous status.
"""

import structlog
from protean import handle
from protean.fields import Float, String
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.gateway import get_gateway
from sakura.payment.transaction import PaymentTransaction
from sakura.shared.errors import ExternalError
from sakura.shared.locking import hold, transaction_key
from sakura.shared.lookup import load
from sakura.shared.money import to_decimal

logger = structlog.get_logger(__name__)


def issue_refund(txn: PaymentTransaction, amount, reason: str) -> str:
    """Refund ``amount`` of a captured transaction. The caller persists ``txn``."""
    amount = to_decimal(amount)
    refund_id = txn.request_refund(amount, reason)

    result = get_gateway(txn.method).create_refund(
        transaction_id=txn.transaction_id,
        external_transaction_id=txn.external_transaction_id,
        amount=amount,
        reason=reason,
    )
    if not result.success:
        logger.warning(
            "refund_rejected_by_gateway",
            transaction_id=txn.transaction_id,
            amount=float(amount),
            reason=result.failure_reason,
        )
        raise ExternalError({"refund": [result.failure_reason or "Gateway refused the refund"]})

    txn.complete_refund(refund_id, result.gateway_refund_id)
    logger.info(
        "payment_refunded",
        transaction_id=txn.transaction_id,
        order_id=str(txn.order_id),
        amount=float(amount),
        refunded_amount=txn.refunded_amount,
    )
    return refund_id


@sakura.command(part_of="PaymentTransaction")
class RefundPayment:
    transaction_id = String(required=True, max_length=50)
    amount = Float(min_value=0.0)  # defaults to everything still refundable
    reason = String(required=True, max_length=500)


@sakura.command_handler(part_of=PaymentTransaction)
class RefundPaymentHandler:
    @handle(RefundPayment)
    def refund_payment(self, command):
        txn = load(PaymentTransaction, command.transaction_id)
        amount = command.amount if command.amount is not None else txn.refundable_amount
        refund_id = issue_refund(txn, amount, command.reason)
        current_domain.repository_for(PaymentTransaction).add(txn)
        return refund_id


def refund(transaction_id: str, reason: str, amount=None) -> str:
    """Refund part or all of a completed payment. Returns the refund id."""
    with hold(transaction_key(transaction_id)):
        return current_domain.process(
            RefundPayment(
                transaction_id=transaction_id,
                amount=float(amount) if amount is not None else None,
                reason=reason,
            ),
            asynchronous=False,
        )
