"""ReturnRequest aggregate (CQRS): a customer's claim to send items back.

State Machine:
    REQUESTED → APPROVED → COMPLETED
    REQUESTED → REJECTED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, Text

from sakura.domain import sakura
from sakura.returns.events import ReturnProcessed, ReturnRequested
from sakura.shared.errors import InvalidTransition


class ReturnStatus(Enum):
    REQUESTED = "Requested"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    COMPLETED = "Completed"


class ReturnReason(Enum):
    DEFECTIVE_PRODUCT = "DefectiveProduct"
    WRONG_ITEM = "WrongItem"
    NOT_AS_DESCRIBED = "NotAsDescribed"
    DAMAGED_SHIPPING = "DamagedShipping"
    CHANGED_MIND = "ChangedMind"
    SIZE_ISSUE = "SizeIssue"
    QUALITY_ISSUE = "QualityIssue"
    OTHER = "Other"


class ItemCondition(Enum):
    UNOPENED = "Unopened"
    OPENED = "Opened"
    USED = "Used"
    DAMAGED = "Damaged"


class RefundMethod(Enum):
    ORIGINAL = "original"  # back through the payment gateway
    STORE_CREDIT = "store_credit"
    BANK_TRANSFER = "bank_transfer"


class Decision(Enum):
    APPROVE = "approve"
    REJECT = "reject"


_VALID_TRANSITIONS = {
    ReturnStatus.REQUESTED: {ReturnStatus.APPROVED, ReturnStatus.REJECTED},
    ReturnStatus.APPROVED: {ReturnStatus.COMPLETED},
    ReturnStatus.REJECTED: set(),
    ReturnStatus.COMPLETED: set(),
}

OPEN_STATES = {ReturnStatus.REQUESTED, ReturnStatus.APPROVED}


@sakura.entity(part_of="ReturnRequest")
class ReturnLine:
    order_item_id = Identifier(required=True)
    product_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(default=0.0)
    condition = String(choices=ItemCondition, default=ItemCondition.UNOPENED.value)


@sakura.aggregate
class ReturnRequest:
    order_id = Identifier(required=True)
    order_number = String(max_length=20)
    customer_id = Identifier()
    lines = HasMany(ReturnLine)
    reason = String(choices=ReturnReason, required=True)
    description = Text()
    status = String(choices=ReturnStatus, default=ReturnStatus.REQUESTED.value)
    refund_amount = Float(min_value=0.0)
    refund_method = String(choices=RefundMethod)
    refund_transaction_id = String(max_length=50)
    refund_id = Identifier()
    decision_notes = String(max_length=1000)
    requested_at = DateTime()
    processed_at = DateTime()
    completed_at = DateTime()

    @classmethod
    def submit(cls, order_id, order_number, customer_id, lines: list[dict], reason: str, description: str | None = None):
        if not lines:
            raise ValidationError({"items": ["Select at least one item to return"]})

        now = datetime.now(UTC)
        request = cls(
            order_id=order_id,
            order_number=order_number,
            customer_id=customer_id,
            lines=[ReturnLine(**line) for line in lines],
            reason=reason,
            description=description,
            requested_at=now,
        )
        request.raise_(
            ReturnRequested(
                return_id=str(request.id),
                order_id=str(order_id),
                reason=reason,
                item_count=sum(line["quantity"] for line in lines),
                requested_at=now,
            )
        )
        return request

    @property
    def current_status(self) -> ReturnStatus:
        return ReturnStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.current_status in OPEN_STATES

    @property
    def quantities(self) -> dict[str, int]:
        """Claimed quantity per order item."""
        claimed: dict[str, int] = {}
        for line in self.lines:
            key = str(line.order_item_id)
            claimed[key] = claimed.get(key, 0) + line.quantity
        return claimed

    def _assert_can_transition(self, target: ReturnStatus) -> None:
        if target not in _VALID_TRANSITIONS.get(self.current_status, set()):
            raise InvalidTransition({"status": [f"Return is {self.status} and cannot become {target.value}"]})

    def approve(self, refund_amount, refund_method: str, notes: str | None = None) -> None:
        self._assert_can_transition(ReturnStatus.APPROVED)
        self.status = ReturnStatus.APPROVED.value
        self.refund_amount = float(refund_amount)
        self.refund_method = refund_method
        self.decision_notes = notes
        self.processed_at = datetime.now(UTC)

    def record_refund(self, transaction_id: str, refund_id) -> None:
        self.refund_transaction_id = transaction_id
        self.refund_id = refund_id

    def complete(self) -> None:
        self._assert_can_transition(ReturnStatus.COMPLETED)
        self.status = ReturnStatus.COMPLETED.value
        self.completed_at = datetime.now(UTC)
        self.raise_(
            ReturnProcessed(
                return_id=str(self.id),
                order_id=str(self.order_id),
                decision=Decision.APPROVE.value,
                refund_amount=self.refund_amount,
                refund_method=self.refund_method,
                processed_at=self.completed_at,
            )
        )

    def reject(self, notes: str | None = None) -> None:
        self._assert_can_transition(ReturnStatus.REJECTED)
        now = datetime.now(UTC)
        self.status = ReturnStatus.REJECTED.value
        self.decision_notes = notes
        self.processed_at = now
        self.raise_(
            ReturnProcessed(
                return_id=str(self.id),
                order_id=str(self.order_id),
                decision=Decision.REJECT.value,
                processed_at=now,
            )
        )
