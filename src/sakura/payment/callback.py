"""Gateway callbacks: verify, then reconcile against the pending transaction.

Callbacks arrive at least once, in any order, and possibly long after the
order moved on. The signature is checked before anything is looked up,
so a forged callback learns nothing about which transactions exist.
Reconciliation runs under the locks of the transaction, its order and the
order's coupon, and changes all three in one unit of work.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, String, Text
from protean.utils.globals import current_domain

from sakura.coupon.coupon import Coupon
from sakura.domain import sakura
from sakura.gateway import get_gateway
from sakura.order.order import Order, OrderStatus
from sakura.payment.refund import issue_refund
from sakura.payment.transaction import CallbackOutcome, PaymentTransaction, TransactionStatus
from sakura.shared.errors import InvalidSignature, NotFoundError
from sakura.shared.locking import coupon_key, hold, order_key, transaction_key
from sakura.shared.lookup import find_all, load
from sakura.shared.money import to_decimal

logger = structlog.get_logger(__name__)


@sakura.command(part_of="PaymentTransaction")
class ApplyGatewayCallback:
    transaction_id = String(required=True, max_length=50)
    reported_status = String(required=True, choices=TransactionStatus)
    external_transaction_id = String(max_length=255)
    amount = Float()
    raw_payload = Text()


def _confirm_order(order: Order, txn: PaymentTransaction) -> None:
    order.confirm_payment(txn.transaction_id)
    if order.coupon_code:
        coupon = load(Coupon, order.coupon_code)
        if coupon.commit_usage(order.id, customer_id=order.customer_id):
            current_domain.repository_for(Coupon).add(coupon)


@sakura.command_handler(part_of=PaymentTransaction)
class GatewayCallbackHandler:
    @handle(ApplyGatewayCallback)
    def apply_callback(self, command):
        txn = load(PaymentTransaction, command.transaction_id)
        reported = TransactionStatus(command.reported_status)
        log = logger.bind(transaction_id=txn.transaction_id, order_id=str(txn.order_id), reported=reported.value)

        if (
            reported == TransactionStatus.COMPLETED
            and command.amount is not None
            and to_decimal(command.amount) != to_decimal(txn.amount)
        ):
            log.warning("callback_amount_mismatch", expected=txn.amount, received=command.amount)
            return CallbackOutcome.AMOUNT_MISMATCH.value

        outcome = txn.apply_reported_status(
            reported.value,
            external_transaction_id=command.external_transaction_id,
            raw_payload=command.raw_payload,
        )
        if outcome in (CallbackOutcome.DUPLICATE, CallbackOutcome.STALE):
            log.info("callback_ignored", outcome=outcome.value, status=txn.status)
            return outcome.value

        if txn.current_status == TransactionStatus.COMPLETED:
            order = load(Order, txn.order_id)
            if order.current_status == OrderStatus.PENDING and not order.is_paid:
                _confirm_order(order, txn)
                current_domain.repository_for(Order).add(order)
                log.info("payment_confirmed_order", order_number=order.order_number, late=txn.late_capture)
                outcome = CallbackOutcome.APPLIED
            else:
                reason = (
                    f"Order {order.order_number} is already paid"
                    if order.is_paid
                    else f"Order {order.order_number} is {order.status}"
                )
                issue_refund(txn, txn.refundable_amount, reason=f"Automatic refund: {reason}")
                log.warning("captured_payment_refunded", order_status=order.status, reason=reason)
                outcome = CallbackOutcome.REFUNDED

        current_domain.repository_for(PaymentTransaction).add(txn)
        return outcome.value


def _find_transaction(reference: str) -> PaymentTransaction | None:
    matches = find_all(PaymentTransaction, transaction_id=reference) or find_all(
        PaymentTransaction, external_transaction_id=reference
    )
    return matches[0] if matches else None


def handle_callback(method: str, payload: str, signature: str | None) -> str:
    """Verify and apply one gateway callback. Returns the outcome (``applied``, ``duplicate``, ...).

    Raises ``InvalidSignature`` for anything that cannot be verified,
    including a valid callback aimed at another gateway's transaction.
    """
    try:
        gateway = get_gateway(method)
    except ValueError as exc:
        raise ValidationError({"method": [f"Unknown payment method {method}"]}) from exc

    if not gateway.verify_callback(payload, signature or ""):
        logger.warning("callback_signature_rejected", method=method)
        raise InvalidSignature()

    try:
        data = gateway.parse_callback(payload)
    except (KeyError, ValueError, TypeError) as exc:
        raise ValidationError({"payload": ["Callback payload could not be read"]}) from exc

    txn = _find_transaction(data.reference)
    if txn is None:
        logger.warning("callback_for_unknown_transaction", method=method, reference=data.reference)
        raise NotFoundError({"transaction_id": [f"Transaction {data.reference} does not exist"]})
    if txn.method != gateway.method.value:
        logger.warning("callback_method_mismatch", method=method, reference=data.reference)
        raise InvalidSignature()

    order = load(Order, txn.order_id)
    with hold(
        transaction_key(txn.transaction_id),
        order_key(txn.order_id),
        coupon_key(order.coupon_code) if order.coupon_code else None,
    ):
        return current_domain.process(
            ApplyGatewayCallback(
                transaction_id=txn.transaction_id,
                reported_status=data.reported_status,
                external_transaction_id=data.external_transaction_id,
                amount=float(data.amount) if data.amount is not None else None,
                raw_payload=payload if isinstance(payload, str) else json.dumps(payload),
            ),
            asynchronous=False,
        )
