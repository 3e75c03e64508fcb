"""PaymentTransaction aggregate (CQRS): one attempt to pay for an order.

An order may collect several attempts (retries, method switches) but at
most one is open at a time. Every status change appends a log entry with
the notes and the raw gateway payload that caused it; the log is never
edited.

State Machine:
    CREATED → PENDING → PROCESSING → COMPLETED/FAILED
    CREATED/PENDING → CANCELLED
    COMPLETED → REFUNDING → REFUNDED/PARTIALLY_REFUNDED
    PARTIALLY_REFUNDED → REFUNDING (further partial refunds)
    FAILED/CANCELLED → COMPLETED only as a late capture, which is then refunded
"""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, String, Text

from sakura.domain import sakura
from sakura.gateway.port import PaymentInstruction, PaymentMethod
from sakura.payment.events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
)
from sakura.shared.errors import InvalidTransition
from sakura.shared.money import to_decimal


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TransactionStatus(Enum):
    CREATED = "Created"
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    REFUNDING = "Refunding"
    REFUNDED = "Refunded"
    PARTIALLY_REFUNDED = "PartiallyRefunded"


class RefundStatus(Enum):
    REQUESTED = "Requested"
    COMPLETED = "Completed"


_VALID_TRANSITIONS = {
    TransactionStatus.CREATED: {TransactionStatus.PENDING, TransactionStatus.CANCELLED, TransactionStatus.FAILED},
    TransactionStatus.PENDING: {
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.PROCESSING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: {TransactionStatus.REFUNDING},
    TransactionStatus.REFUNDING: {TransactionStatus.REFUNDED, TransactionStatus.PARTIALLY_REFUNDED},
    TransactionStatus.PARTIALLY_REFUNDED: {TransactionStatus.REFUNDING},
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
    TransactionStatus.REFUNDED: set(),  # Terminal
}

ACTIVE_STATES = {TransactionStatus.CREATED, TransactionStatus.PENDING, TransactionStatus.PROCESSING}

# Money has been captured at some point
CAPTURED_STATES = {
    TransactionStatus.COMPLETED,
    TransactionStatus.REFUNDING,
    TransactionStatus.REFUNDED,
    TransactionStatus.PARTIALLY_REFUNDED,
}

REFUNDABLE_STATES = {TransactionStatus.COMPLETED, TransactionStatus.PARTIALLY_REFUNDED}


class CallbackOutcome(Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    LATE_CAPTURE = "late_capture"
    REFUNDED = "refunded"
    AMOUNT_MISMATCH = "amount_mismatch"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@sakura.entity(part_of="PaymentTransaction")
class TransactionLog:
    from_status = String(max_length=20)
    to_status = String(required=True, max_length=20)
    notes = String(max_length=1000)
    raw_payload = Text()
    created_at = DateTime(required=True)


@sakura.entity(part_of="PaymentTransaction")
class Refund:
    amount = Float(required=True, min_value=0.0)
    reason = String(max_length=500)
    status = String(choices=RefundStatus, default=RefundStatus.REQUESTED.value)
    gateway_refund_id = String(max_length=255)
    requested_at = DateTime(required=True)
    completed_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@sakura.aggregate
class PaymentTransaction:
    transaction_id = String(identifier=True, max_length=50)
    external_transaction_id = String(max_length=255)
    order_id = Identifier(required=True)
    order_number = String(max_length=20)
    method = String(choices=PaymentMethod, required=True)
    status = String(choices=TransactionStatus, default=TransactionStatus.CREATED.value)
    amount = Float(required=True, min_value=0.0)
    fee = Float(default=0.0, min_value=0.0)
    refunded_amount = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="VND")
    instruction = Text()  # JSON: PaymentInstruction
    return_url = String(max_length=1000)
    failure_reason = String(max_length=500)
    late_capture = Boolean(default=False)
    expires_at = DateTime(required=True)
    logs = HasMany(TransactionLog)
    refunds = HasMany(Refund)
    created_at = DateTime()
    updated_at = DateTime()
    processed_at = DateTime()
    completed_at = DateTime()
    failed_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def refunded_amount_must_not_exceed_amount(self):
        if to_decimal(self.refunded_amount) > to_decimal(self.amount):
            raise ValidationError({"refunded_amount": ["Cannot refund more than was captured"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        transaction_id: str,
        order_id,
        order_number: str,
        method: str,
        amount,
        fee,
        currency: str,
        expiry_minutes: int,
        return_url: str | None = None,
    ):
        now = datetime.now(UTC)
        txn = cls(
            transaction_id=transaction_id,
            order_id=order_id,
            order_number=order_number,
            method=method,
            amount=float(amount),
            fee=float(fee),
            currency=currency,
            return_url=return_url,
            expires_at=now + timedelta(minutes=expiry_minutes),
            logs=[TransactionLog(to_status=TransactionStatus.CREATED.value, notes="Payment created", created_at=now)],
            created_at=now,
            updated_at=now,
        )
        txn.raise_(
            PaymentInitiated(
                transaction_id=transaction_id,
                order_id=str(order_id),
                method=method,
                amount=float(amount),
                expires_at=txn.expires_at,
            )
        )
        return txn

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.current_status in ACTIVE_STATES

    @property
    def is_captured(self) -> bool:
        return self.current_status in CAPTURED_STATES

    @property
    def refundable_amount(self) -> Decimal:
        return to_decimal(self.amount) - to_decimal(self.refunded_amount)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.is_active and (now or datetime.now(UTC)) > self.expires_at

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: TransactionStatus) -> None:
        current = self.current_status
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(
                {"status": [f"Cannot transition payment from {current.value} to {target.value}"]}
            )

    def _move(self, target: TransactionStatus, notes: str | None = None, raw_payload: str | None = None) -> datetime:
        now = datetime.now(UTC)
        self.add_logs(
            TransactionLog(
                from_status=self.status,
                to_status=target.value,
                notes=notes,
                raw_payload=raw_payload,
                created_at=now,
            )
        )
        self.status = target.value
        self.updated_at = now
        return now

    def attach_instruction(self, instruction: PaymentInstruction) -> None:
        """CREATED → PENDING once the gateway has accepted the attempt."""
        self._assert_can_transition(TransactionStatus.PENDING)
        self.instruction = json.dumps(instruction.to_dict())
        if instruction.external_transaction_id:
            self.external_transaction_id = instruction.external_transaction_id
        self._move(TransactionStatus.PENDING, notes="Payment instruction issued")

    def mark_processing(self, notes: str | None = None, raw_payload: str | None = None) -> None:
        self._assert_can_transition(TransactionStatus.PROCESSING)
        self.processed_at = self._move(TransactionStatus.PROCESSING, notes, raw_payload)

    def complete(
        self,
        external_transaction_id: str | None = None,
        notes: str | None = None,
        raw_payload: str | None = None,
    ) -> None:
        late = self.current_status in {TransactionStatus.FAILED, TransactionStatus.CANCELLED}
        if not late:
            self._assert_can_transition(TransactionStatus.COMPLETED)
        if external_transaction_id:
            self.external_transaction_id = external_transaction_id

        self.completed_at = self._move(
            TransactionStatus.COMPLETED,
            notes or ("Late capture after the attempt was closed" if late else "Payment captured"),
            raw_payload,
        )
        self.late_capture = late
        self.raise_(
            PaymentCompleted(
                transaction_id=self.transaction_id,
                order_id=str(self.order_id),
                external_transaction_id=self.external_transaction_id,
                method=self.method,
                amount=self.amount,
                late=late,
                completed_at=self.completed_at,
            )
        )

    def fail(self, reason: str, raw_payload: str | None = None) -> None:
        self._assert_can_transition(TransactionStatus.FAILED)
        self.failure_reason = reason
        self.failed_at = self._move(TransactionStatus.FAILED, reason, raw_payload)
        self.raise_(
            PaymentFailed(
                transaction_id=self.transaction_id,
                order_id=str(self.order_id),
                reason=reason,
                failed_at=self.failed_at,
            )
        )

    def expire(self) -> None:
        self.fail(reason="Payment window expired")

    def cancel(self, reason: str | None = None, raw_payload: str | None = None) -> None:
        self._assert_can_transition(TransactionStatus.CANCELLED)
        self.cancelled_at = self._move(TransactionStatus.CANCELLED, reason, raw_payload)
        self.raise_(
            PaymentCancelled(
                transaction_id=self.transaction_id,
                order_id=str(self.order_id),
                reason=reason,
                cancelled_at=self.cancelled_at,
            )
        )

    def apply_reported_status(
        self,
        reported: str,
        external_transaction_id: str | None = None,
        raw_payload: str | None = None,
    ) -> CallbackOutcome:
        """Apply a status reported by the gateway.

        Replays of a status already reached are duplicates. Reports that would
        move the attempt backwards are stale and ignored. A capture reported
        after the attempt was failed or cancelled is recorded as a late
        capture so the caller can return the money.
        """
        reported = TransactionStatus(reported)
        current = self.current_status

        if reported == current or (reported == TransactionStatus.COMPLETED and current in CAPTURED_STATES):
            return CallbackOutcome.DUPLICATE

        if reported == TransactionStatus.COMPLETED:
            late = current in {TransactionStatus.FAILED, TransactionStatus.CANCELLED}
            self.complete(external_transaction_id, raw_payload=raw_payload)
            return CallbackOutcome.LATE_CAPTURE if late else CallbackOutcome.APPLIED

        if reported not in _VALID_TRANSITIONS.get(current, set()):
            return CallbackOutcome.STALE

        if reported == TransactionStatus.PROCESSING:
            self.mark_processing("Gateway is processing the payment", raw_payload)
        elif reported == TransactionStatus.FAILED:
            self.fail("Gateway reported failure", raw_payload)
        elif reported == TransactionStatus.CANCELLED:
            self.cancel("Customer cancelled at the gateway", raw_payload)
        else:
            return CallbackOutcome.STALE
        return CallbackOutcome.APPLIED

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def request_refund(self, amount, reason: str) -> str:
        """COMPLETED/PARTIALLY_REFUNDED → REFUNDING for ``amount``. Returns the refund id."""
        amount = to_decimal(amount)
        if self.current_status not in REFUNDABLE_STATES:
            raise InvalidTransition({"status": [f"Cannot refund a payment that is {self.status}"]})
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount > self.refundable_amount:
            raise ValidationError(
                {"amount": [f"Refund of {amount:,.0f} exceeds the refundable {self.refundable_amount:,.0f}"]}
            )

        now = self._move(TransactionStatus.REFUNDING, f"Refund of {amount:,.0f} requested: {reason}")
        refund = Refund(amount=float(amount), reason=reason, requested_at=now)
        self.add_refunds(refund)
        return str(refund.id)

    def complete_refund(self, refund_id, gateway_refund_id: str | None = None) -> None:
        refund = next((r for r in self.refunds if str(r.id) == str(refund_id)), None)
        if refund is None:
            raise ValidationError({"refund_id": ["Refund not found"]})

        refunded = to_decimal(self.refunded_amount) + to_decimal(refund.amount)
        fully = refunded >= to_decimal(self.amount)
        target = TransactionStatus.REFUNDED if fully else TransactionStatus.PARTIALLY_REFUNDED
        self._assert_can_transition(target)

        self.refunded_amount = float(refunded)
        refund.status = RefundStatus.COMPLETED.value
        refund.gateway_refund_id = gateway_refund_id
        now = self._move(target, f"Refund {gateway_refund_id or refund_id} settled")
        refund.completed_at = now
        self.refunded_at = now
        self.raise_(
            PaymentRefunded(
                transaction_id=self.transaction_id,
                order_id=str(self.order_id),
                refund_id=str(refund.id),
                amount=refund.amount,
                refunded_amount=self.refunded_amount,
                fully_refunded=fully,
                gateway_refund_id=gateway_refund_id,
                reason=refund.reason,
                refunded_at=now,
            )
        )
