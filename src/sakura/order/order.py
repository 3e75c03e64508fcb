"""Order aggregate (CQRS): the locked record of a purchase and its lifecycle.

State Machine:
    DRAFT → PENDING → CONFIRMED → PROCESSING → PACKED → SHIPPED →
    OUT_FOR_DELIVERY → DELIVERED → COMPLETED
    CANCELLED from any state before SHIPPED
    DELIVERED/COMPLETED → RETURN_REQUESTED → RETURNED (or back to COMPLETED)

Items, prices and totals are fixed when the order leaves DRAFT. The
totals identity

    subtotal - discount_amount + shipping_cost + tax_amount == grand_total

is checked after every change for the life of the order.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text, ValueObject

from sakura.domain import sakura
from sakura.order.events import (
    DeliveryIssueFlagged,
    OrderCancelled,
    OrderCreated,
    OrderDelivered,
    OrderItemsReturned,
    OrderNoteAdded,
    OrderShipped,
    OrderStatusChanged,
)
from sakura.pricing.calculator import PricedLine, TaxRule, Totals, calculate_totals
from sakura.shared.errors import InvalidTransition, OrderLocked, ReturnQuantityExceeded
from sakura.shared.money import ZERO, to_decimal


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PROCESSING = "Processing"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "OutForDelivery"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RETURN_REQUESTED = "ReturnRequested"
    RETURNED = "Returned"


class CancellationReason(Enum):
    CUSTOMER_REQUEST = "CustomerRequest"
    OUT_OF_STOCK = "OutOfStock"
    PAYMENT_FAILED = "PaymentFailed"
    SYSTEM_ERROR = "SystemError"
    FRAUD_SUSPICION = "FraudSuspicion"
    ADDRESS_ISSUE = "AddressIssue"
    OTHER = "Other"


class Actor(Enum):
    CUSTOMER = "Customer"
    STAFF = "Staff"
    SYSTEM = "System"
    PAYMENT = "Payment"
    CARRIER = "Carrier"


_VALID_TRANSITIONS = {
    OrderStatus.DRAFT: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.PACKED, OrderStatus.CANCELLED},
    OrderStatus.PACKED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.RETURN_REQUESTED},
    OrderStatus.COMPLETED: {OrderStatus.RETURN_REQUESTED},
    OrderStatus.RETURN_REQUESTED: {OrderStatus.RETURNED, OrderStatus.COMPLETED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.RETURNED: set(),  # Terminal
}

_FORWARD_PATH = [
    OrderStatus.DRAFT,
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
]

TERMINAL_STATES = {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.RETURNED}

# States from which a customer or staff member may cancel with settlement
CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}

# States in which the parcel is with the carrier
IN_DELIVERY_STATES = {OrderStatus.SHIPPED, OrderStatus.OUT_FOR_DELIVERY}

_TIMESTAMPS = {
    OrderStatus.PENDING: "placed_at",
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@sakura.value_object(part_of="Order")
class OrderAddress:
    """Address captured at checkout. Later edits in the address book do not reach the order."""

    recipient_name = String(required=True, max_length=200)
    phone = String(required=True, max_length=20)
    street = String(required=True, max_length=255)
    ward = String(max_length=100)
    district = String(max_length=100)
    province = String(required=True, max_length=100)
    country = String(max_length=2, default="VN")
    postal_code = String(max_length=20)


@sakura.value_object(part_of="Order")
class OrderPricing:
    subtotal = Float(default=0.0)
    shipping_cost = Float(default=0.0)
    tax_amount = Float(default=0.0)
    discount_amount = Float(default=0.0)
    grand_total = Float(default=0.0)
    tax_rate = Float(default=0.0)
    currency = String(max_length=3, default="VND")

    @classmethod
    def from_totals(cls, totals: Totals, tax_rate, currency: str) -> "OrderPricing":
        return cls(
            subtotal=float(totals.subtotal),
            shipping_cost=float(totals.shipping_cost),
            tax_amount=float(totals.tax_amount),
            discount_amount=float(totals.discount_amount),
            grand_total=float(totals.total),
            tax_rate=float(tax_rate),
            currency=currency,
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@sakura.entity(part_of="Order")
class OrderItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    product_name = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    weight_kg = Float(default=0.5)
    is_gift = Boolean(default=False)
    gift_message = String(max_length=500)
    custom_options = Text()
    notes = String(max_length=500)
    returned_quantity = Integer(default=0, min_value=0)

    @property
    def line_total(self):
        return to_decimal(self.unit_price) * self.quantity

    @property
    def returnable_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)


@sakura.entity(part_of="Order")
class StatusChange:
    from_status = String(max_length=20)
    to_status = String(required=True, max_length=20)
    notes = String(max_length=1000)
    actor = String(choices=Actor, default=Actor.SYSTEM.value)
    changed_at = DateTime(required=True)


@sakura.entity(part_of="Order")
class OrderNote:
    body = Text(required=True)
    author = String(required=True, max_length=100)
    is_customer_visible = Boolean(default=False)
    created_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@sakura.aggregate
class Order:
    order_number = String(required=True, max_length=20, unique=True)
    customer_id = Identifier(required=True)
    cart_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.DRAFT.value)
    items = HasMany(OrderItem)
    shipping_address_id = Identifier()
    billing_address_id = Identifier()
    shipping_address = ValueObject(OrderAddress)
    billing_address = ValueObject(OrderAddress)
    pricing = ValueObject(OrderPricing)
    coupon_code = String(max_length=50)
    payment_method = String(max_length=20)
    delivery_method = String(max_length=20)
    paid_transaction_id = String(max_length=50)
    tracking_number = String(max_length=50)
    customer_notes = Text()
    notes = HasMany(OrderNote)
    status_history = HasMany(StatusChange)
    delivery_issue = Boolean(default=False)
    delivery_issue_notes = String(max_length=1000)
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=20)
    created_at = DateTime()
    updated_at = DateTime()
    placed_at = DateTime()
    confirmed_at = DateTime()
    paid_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()

    @invariant.post
    def totals_must_add_up(self):
        if self.pricing is None:
            return
        p = self.pricing
        subtotal = sum((item.line_total for item in self.items or []), ZERO)
        if to_decimal(p.subtotal) != subtotal:
            raise ValidationError({"pricing": ["Subtotal does not match the order items"]})
        computed = (
            to_decimal(p.subtotal)
            - to_decimal(p.discount_amount)
            + to_decimal(p.shipping_cost)
            + to_decimal(p.tax_amount)
        )
        if computed != to_decimal(p.grand_total):
            raise ValidationError({"pricing": ["Grand total does not match subtotal, discount, shipping and tax"]})

    @invariant.post
    def returned_quantity_must_not_exceed_ordered(self):
        for item in self.items or []:
            if (item.returned_quantity or 0) > item.quantity:
                raise ValidationError({"items": [f"Item {item.id} returned more than was ordered"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number: str,
        customer_id,
        items: list[dict],
        shipping_address: dict,
        billing_address: dict,
        totals: Totals,
        tax_rate,
        currency: str,
        payment_method: str,
        delivery_method: str,
        coupon_code: str | None = None,
        shipping_address_id=None,
        billing_address_id=None,
        customer_notes: str | None = None,
        cart_id=None,
    ):
        """Build a DRAFT order with locked prices. ``place()`` makes it visible to the customer."""
        now = datetime.now(UTC)
        return cls(
            order_number=order_number,
            customer_id=customer_id,
            cart_id=cart_id,
            status=OrderStatus.DRAFT.value,
            items=[OrderItem(**item) for item in items],
            shipping_address_id=shipping_address_id,
            billing_address_id=billing_address_id,
            shipping_address=OrderAddress(**shipping_address),
            billing_address=OrderAddress(**billing_address),
            pricing=OrderPricing.from_totals(totals, tax_rate, currency),
            coupon_code=coupon_code,
            payment_method=payment_method,
            delivery_method=delivery_method,
            customer_notes=customer_notes,
            status_history=[
                StatusChange(
                    to_status=OrderStatus.DRAFT.value,
                    actor=Actor.CUSTOMER.value,
                    changed_at=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )

    def place(self) -> None:
        """DRAFT → PENDING. The order now waits for payment."""
        self.transition_to(OrderStatus.PENDING, actor=Actor.CUSTOMER.value)
        self.raise_(
            OrderCreated(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=str(self.customer_id),
                item_count=len(self.items),
                grand_total=self.pricing.grand_total,
                currency=self.pricing.currency,
                payment_method=self.payment_method,
                coupon_code=self.coupon_code,
                created_at=self.created_at,
            )
        )

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATES

    @property
    def is_paid(self) -> bool:
        return bool(self.paid_transaction_id)

    @property
    def fully_returned(self) -> bool:
        return all(item.returnable_quantity == 0 for item in self.items)

    def get_item(self, item_id) -> OrderItem | None:
        return next((i for i in self.items or [] if str(i.id) == str(item_id)), None)

    def totals(self) -> Totals:
        p = self.pricing
        return Totals(
            subtotal=to_decimal(p.subtotal),
            shipping_cost=to_decimal(p.shipping_cost),
            tax_amount=to_decimal(p.tax_amount),
            discount_amount=to_decimal(p.discount_amount),
            total=to_decimal(p.grand_total),
        )

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: OrderStatus) -> None:
        current = self.current_status
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition({"status": [f"Cannot transition from {current.value} to {target.value}"]})

    def transition_to(self, target, notes: str | None = None, actor: str = Actor.SYSTEM.value) -> None:
        """Move one step along the adjacency list, recording the change in the status history."""
        target = OrderStatus(target)
        self._assert_can_transition(target)

        previous = self.status
        now = datetime.now(UTC)
        self.status = target.value
        if target in _TIMESTAMPS:
            setattr(self, _TIMESTAMPS[target], now)
        self.updated_at = now
        self.add_status_history(
            StatusChange(from_status=previous, to_status=target.value, notes=notes, actor=actor, changed_at=now)
        )

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=previous,
                to_status=target.value,
                notes=notes,
                actor=actor,
                changed_at=now,
            )
        )
        if target == OrderStatus.SHIPPED:
            self.raise_(
                OrderShipped(
                    order_id=str(self.id),
                    order_number=self.order_number,
                    tracking_number=self.tracking_number,
                    shipped_at=now,
                )
            )
        elif target == OrderStatus.DELIVERED:
            self.raise_(OrderDelivered(order_id=str(self.id), order_number=self.order_number, delivered_at=now))

    def advance_to(self, target, notes: str | None = None, actor: str = Actor.SYSTEM.value) -> bool:
        """Walk the forward path up to ``target``, one recorded step at a time.

        Returns False when the order is already at or beyond ``target``.
        """
        target = OrderStatus(target)
        current = self.current_status
        if current not in _FORWARD_PATH or target not in _FORWARD_PATH:
            raise InvalidTransition({"status": [f"Cannot advance from {current.value} to {target.value}"]})

        start, end = _FORWARD_PATH.index(current), _FORWARD_PATH.index(target)
        if end <= start:
            return False
        for step in _FORWARD_PATH[start + 1 : end + 1]:
            self.transition_to(step, notes=notes, actor=actor)
        return True

    def confirm_payment(self, transaction_id: str) -> None:
        """PENDING → CONFIRMED once a payment attempt has been captured."""
        if self.is_paid:
            raise InvalidTransition({"status": [f"Order already paid by {self.paid_transaction_id}"]})
        self.transition_to(OrderStatus.CONFIRMED, notes=f"Payment {transaction_id} captured", actor=Actor.PAYMENT.value)
        self.paid_transaction_id = transaction_id
        self.paid_at = self.confirmed_at

    def cancel(self, reason: str, cancelled_by: str = Actor.CUSTOMER.value, notes: str | None = None) -> None:
        previous = self.status
        self.transition_to(OrderStatus.CANCELLED, notes=notes or reason, actor=cancelled_by)
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=previous,
                reason=reason,
                cancelled_by=cancelled_by,
                cancelled_at=self.cancelled_at,
            )
        )

    def attach_tracking(self, tracking_number: str) -> None:
        self.tracking_number = tracking_number
        self.updated_at = datetime.now(UTC)

    def flag_delivery_issue(self, notes: str | None = None) -> None:
        """Mark the order for manual follow-up. The status is left as it is."""
        now = datetime.now(UTC)
        self.delivery_issue = True
        self.delivery_issue_notes = notes
        self.updated_at = now
        self.raise_(DeliveryIssueFlagged(order_id=str(self.id), status=self.status, notes=notes, flagged_at=now))

    def resolve_delivery_issue(self) -> None:
        self.delivery_issue = False
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Draft-only item changes
    # -------------------------------------------------------------------
    def _assert_items_mutable(self) -> None:
        if self.current_status != OrderStatus.DRAFT:
            raise OrderLocked({"items": [f"Items cannot change once the order is {self.status}"]})

    def _reprice(self, unit) -> None:
        p = self.pricing
        totals = calculate_totals(
            [PricedLine(unit_price=to_decimal(i.unit_price), quantity=i.quantity) for i in self.items],
            shipping_fee=p.shipping_cost,
            discount_amount=p.discount_amount,
            tax_rule=TaxRule(rate=to_decimal(p.tax_rate)),
            unit=unit,
        )
        self.pricing = OrderPricing.from_totals(totals, p.tax_rate, p.currency)

    def add_item(self, unit, **item_data) -> str:
        self._assert_items_mutable()
        item = OrderItem(**item_data)
        with atomic_change(self):
            self.add_items(item)
            self._reprice(unit)
        self.updated_at = datetime.now(UTC)
        return str(item.id)

    def remove_item(self, item_id, unit) -> None:
        self._assert_items_mutable()
        item = self.get_item(item_id)
        if item is None:
            raise ValidationError({"item_id": ["Item not found"]})
        with atomic_change(self):
            self.remove_items(item)
            self._reprice(unit)
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Notes and returns
    # -------------------------------------------------------------------
    def add_note(self, body: str, author: str, is_customer_visible: bool = False) -> str:
        note = OrderNote(
            body=body,
            author=author,
            is_customer_visible=is_customer_visible,
            created_at=datetime.now(UTC),
        )
        self.add_notes(note)
        self.raise_(
            OrderNoteAdded(
                order_id=str(self.id),
                note_id=str(note.id),
                author=author,
                is_customer_visible=is_customer_visible,
            )
        )
        return str(note.id)

    def check_returnable(self, quantities: dict[str, int]) -> None:
        """Reject claims on unknown items and claims above what is still returnable."""
        malformed, exceeded = {}, {}
        for item_id, quantity in quantities.items():
            item = self.get_item(item_id)
            if item is None:
                malformed[str(item_id)] = ["Item does not belong to this order"]
            elif quantity < 1:
                malformed[str(item_id)] = ["Return quantity must be at least 1"]
            elif quantity > item.returnable_quantity:
                exceeded[str(item_id)] = [
                    f"Only {item.returnable_quantity} of {item.quantity} can still be returned, {quantity} claimed"
                ]
        if malformed:
            raise ValidationError(malformed)
        if exceeded:
            raise ReturnQuantityExceeded(exceeded)

    def record_returned_items(self, return_id, quantities: dict[str, int]) -> bool:
        """Add approved return quantities to the items. Returns True when nothing is left to return."""
        self.check_returnable(quantities)
        for item_id, quantity in quantities.items():
            item = self.get_item(item_id)
            item.returned_quantity = (item.returned_quantity or 0) + quantity
        self.updated_at = datetime.now(UTC)

        fully_returned = self.fully_returned
        self.raise_(
            OrderItemsReturned(
                order_id=str(self.id),
                return_id=str(return_id),
                quantities=json.dumps({str(k): v for k, v in quantities.items()}),
                fully_returned=fully_returned,
            )
        )
        return fully_returned
