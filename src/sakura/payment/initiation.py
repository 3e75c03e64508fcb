"""Payment initiation: opens a payment attempt with the chosen gateway.

Only one attempt per order may be open. An open attempt whose window has
already passed is closed on the spot so the customer can try again
without waiting for the sweeper.
"""

import random
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from sakura.config import get_settings
from sakura.domain import sakura
from sakura.gateway import get_gateway
from sakura.gateway.port import IntentRequest, PaymentMethod
from sakura.order.order import Order, OrderStatus
from sakura.payment.transaction import PaymentTransaction
from sakura.shared.errors import ExternalError, InvalidTransition, PaymentInProgress
from sakura.shared.locking import hold, order_key
from sakura.shared.lookup import find_all, load
from sakura.shared.money import round_half_up, to_decimal

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntent:
    """What the caller hands back to the customer."""

    transaction_id: str
    method: str
    amount: float
    instruction: dict
    expires_at: datetime


def new_transaction_id(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"PAY{int(now.timestamp())}{random.randint(1000, 9999)}"


def payment_fee(amount, method: str):
    settings = get_settings()
    rules = settings.payments.for_method(method)
    fee = rules.fixed_fee + to_decimal(amount) * rules.fee_rate
    return round_half_up(fee, settings.pricing.unit)


@sakura.command(part_of="PaymentTransaction")
class InitiatePayment:
    order_id = Identifier(required=True)
    method = String(required=True, choices=PaymentMethod)
    return_url = String(max_length=1000)


@sakura.command_handler(part_of=PaymentTransaction)
class InitiatePaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        settings = get_settings()
        rules = settings.payments.for_method(command.method)
        if not rules.enabled:
            raise ValidationError({"method": [f"{command.method} is currently unavailable"]})

        order = load(Order, command.order_id)
        if order.current_status != OrderStatus.PENDING or order.is_paid:
            raise InvalidTransition({"order_id": [f"Order {order.order_number} is {order.status}, not awaiting payment"]})

        repo = current_domain.repository_for(PaymentTransaction)
        now = datetime.now(UTC)
        for open_txn in (t for t in find_all(PaymentTransaction, order_id=str(order.id)) if t.is_active):
            if not open_txn.is_expired(now):
                raise PaymentInProgress(
                    {"order_id": [f"Payment {open_txn.transaction_id} is still {open_txn.status}"]}
                )
            open_txn.expire()
            repo.add(open_txn)
            logger.info("stale_payment_closed", transaction_id=open_txn.transaction_id, order_id=str(order.id))

        amount = to_decimal(order.pricing.grand_total)
        txn = PaymentTransaction.create(
            transaction_id=self._unique_transaction_id(),
            order_id=order.id,
            order_number=order.order_number,
            method=command.method,
            amount=amount,
            fee=payment_fee(amount, command.method),
            currency=order.pricing.currency,
            expiry_minutes=rules.expiry_minutes,
            return_url=command.return_url,
        )

        result = get_gateway(command.method).create_intent(
            IntentRequest(
                transaction_id=txn.transaction_id,
                order_id=str(order.id),
                order_number=order.order_number,
                amount=amount,
                currency=txn.currency,
                expires_at=txn.expires_at,
                return_url=command.return_url,
                description=f"Thanh toan don hang {order.order_number}",
            )
        )
        if not result.success:
            logger.warning(
                "payment_intent_failed",
                order_id=str(order.id),
                method=command.method,
                reason=result.failure_reason,
            )
            raise ExternalError({"gateway": [result.failure_reason or "Payment gateway unavailable"]})

        txn.attach_instruction(result.instruction)
        repo.add(txn)

        logger.info(
            "payment_initiated",
            transaction_id=txn.transaction_id,
            order_id=str(order.id),
            method=command.method,
            amount=txn.amount,
        )
        return PaymentIntent(
            transaction_id=txn.transaction_id,
            method=txn.method,
            amount=txn.amount,
            instruction=result.instruction.to_dict(),
            expires_at=txn.expires_at,
        )

    @staticmethod
    def _unique_transaction_id() -> str:
        for _ in range(get_settings().order_number_attempts):
            candidate = new_transaction_id()
            if not find_all(PaymentTransaction, transaction_id=candidate):
                return candidate
        raise ExternalError({"transaction_id": ["Could not allocate a transaction id, please retry"]})


def create_payment(order_id: str, method: str, return_url: str | None = None) -> PaymentIntent:
    """Open a payment attempt for a PENDING order and return the customer's instruction."""
    with hold(order_key(order_id)):
        return current_domain.process(
            InitiatePayment(order_id=order_id, method=method, return_url=return_url),
            asynchronous=False,
        )
