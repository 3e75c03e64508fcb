"""Stale payment sweep and customer-side cancellation of an open attempt.

``expire_stale_transactions`` is the entry point for the recurring job
that closes attempts left open past their window. Each transaction is
expired in its own unit of work under its own lock, so a callback that
lands mid-sweep either wins cleanly or finds the attempt already failed.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import DateTime, String
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.payment.transaction import ACTIVE_STATES, PaymentTransaction
from sakura.shared.locking import hold, transaction_key
from sakura.shared.lookup import find_all, load

logger = structlog.get_logger(__name__)


@sakura.command(part_of="PaymentTransaction")
class ExpireTransaction:
    transaction_id = String(required=True, max_length=50)
    now = DateTime(required=True)


@sakura.command(part_of="PaymentTransaction")
class CancelPayment:
    transaction_id = String(required=True, max_length=50)
    reason = String(max_length=500)


@sakura.command_handler(part_of=PaymentTransaction)
class PaymentHousekeepingHandler:
    @handle(ExpireTransaction)
    def expire_transaction(self, command):
        txn = load(PaymentTransaction, command.transaction_id)
        if not txn.is_expired(command.now):
            return False
        txn.expire()
        current_domain.repository_for(PaymentTransaction).add(txn)
        return True

    @handle(CancelPayment)
    def cancel_payment(self, command):
        txn = load(PaymentTransaction, command.transaction_id)
        txn.cancel(reason=command.reason or "Cancelled by customer")
        current_domain.repository_for(PaymentTransaction).add(txn)


def expire_stale_transactions(now: datetime | None = None) -> list[str]:
    """Fail every open transaction whose payment window ended before ``now``."""
    now = now or datetime.now(UTC)
    candidates = [
        txn.transaction_id
        for status in ACTIVE_STATES
        for txn in find_all(PaymentTransaction, status=status.value)
        if txn.is_expired(now)
    ]

    expired = []
    for transaction_id in candidates:
        with hold(transaction_key(transaction_id)):
            if current_domain.process(ExpireTransaction(transaction_id=transaction_id, now=now), asynchronous=False):
                expired.append(transaction_id)

    if expired:
        logger.info("stale_payments_expired", count=len(expired), transaction_ids=expired)
    return expired


def cancel_payment(transaction_id: str, reason: str | None = None) -> None:
    """Abandon an open attempt. A gateway request already in flight is not recalled."""
    with hold(transaction_key(transaction_id)):
        current_domain.process(CancelPayment(transaction_id=transaction_id, reason=reason), asynchronous=False)
