"""ShippingOrder aggregate (CQRS): a parcel booked with the carrier for one order.

State Machine:
    PENDING → PICKED_UP → IN_TRANSIT → OUT_FOR_DELIVERY → DELIVERED
    any non-final state → FAILED → RETURNED
    PENDING → CANCELLED (before the carrier collects the parcel)

Carrier events arrive out of order and more than once. Every event is
appended to the tracking log exactly once (deduplicated by event id);
the status only moves forward, so a late "InTransit" after "Delivered"
is logged but changes nothing.
"""

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, ValueObject

from sakura.domain import sakura
from sakura.shared.errors import InvalidTransition
from sakura.shipping.events import ShipmentCancelled, ShipmentCreated, ShipmentStatusChanged
from sakura.shipping.rates import DeliveryMethod, FeeQuote


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ShipmentStatus(Enum):
    PENDING = "Pending"
    PICKED_UP = "PickedUp"
    IN_TRANSIT = "InTransit"
    OUT_FOR_DELIVERY = "OutForDelivery"
    DELIVERED = "Delivered"
    FAILED = "Failed"
    RETURNED = "Returned"
    CANCELLED = "Cancelled"


_RANK = {
    ShipmentStatus.PENDING: 0,
    ShipmentStatus.PICKED_UP: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
    ShipmentStatus.FAILED: 4,
    ShipmentStatus.RETURNED: 5,
}

FINAL_STATES = {ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED, ShipmentStatus.CANCELLED}


@dataclass(frozen=True)
class TrackingOutcome:
    duplicate: bool = False
    status_changed: bool = False
    previous_status: str | None = None


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@sakura.value_object(part_of="ShippingOrder")
class ShipmentParty:
    name = String(required=True, max_length=200)
    phone = String(required=True, max_length=20)
    street = String(required=True, max_length=255)
    ward = String(max_length=100)
    district = String(max_length=100)
    province = String(required=True, max_length=100)
    country = String(max_length=2, default="VN")


@sakura.value_object(part_of="ShippingOrder")
class ShippingFees:
    base_fee = Float(default=0.0)
    weight_fee = Float(default=0.0)
    distance_fee = Float(default=0.0)
    cod_fee = Float(default=0.0)
    total_fee = Float(default=0.0)

    @classmethod
    def from_quote(cls, quote: FeeQuote) -> "ShippingFees":
        return cls(
            base_fee=float(quote.base_fee),
            weight_fee=float(quote.weight_fee),
            distance_fee=float(quote.distance_fee),
            cod_fee=float(quote.cod_fee),
            total_fee=float(quote.total),
        )


@sakura.value_object(part_of="ShippingOrder")
class Package:
    weight_kg = Float(required=True, min_value=0.0)
    length_cm = Float()
    width_cm = Float()
    height_cm = Float()
    item_count = Integer(default=1)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@sakura.entity(part_of="ShippingOrder")
class TrackingEntry:
    event_id = String(required=True, max_length=255)
    status = String(choices=ShipmentStatus, required=True)
    description = String(max_length=1000)
    location = String(max_length=255)
    event_time = DateTime(required=True)
    recorded_at = DateTime(required=True)
    applied = Boolean(default=False)  # whether this event moved the shipment status


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@sakura.aggregate
class ShippingOrder:
    order_id = Identifier(required=True)
    order_number = String(max_length=20)
    tracking_number = String(required=True, max_length=50, unique=True)
    carrier_name = String(max_length=100)
    carrier_shipment_id = String(max_length=255)
    service_type = String(choices=DeliveryMethod, default=DeliveryMethod.STANDARD.value)
    status = String(choices=ShipmentStatus, default=ShipmentStatus.PENDING.value)
    fees = ValueObject(ShippingFees)
    sender = ValueObject(ShipmentParty)
    receiver = ValueObject(ShipmentParty)
    package = ValueObject(Package)
    is_cod = Boolean(default=False)
    cod_amount = Float(default=0.0)
    label_url = String(max_length=500)
    estimated_delivery = DateTime()
    tracking = HasMany(TrackingEntry)
    status_changed_at = DateTime()
    last_event_at = DateTime()  # carrier time of the last event that moved the status
    picked_up_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(
        cls,
        order_id,
        order_number: str,
        tracking_number: str,
        carrier_name: str,
        service_type: str,
        fees: FeeQuote,
        sender: dict,
        receiver: dict,
        package: dict,
        is_cod: bool = False,
        cod_amount: float = 0.0,
    ):
        now = datetime.now(UTC)
        shipment = cls(
            order_id=order_id,
            order_number=order_number,
            tracking_number=tracking_number,
            carrier_name=carrier_name,
            service_type=service_type,
            fees=ShippingFees.from_quote(fees),
            sender=ShipmentParty(**sender),
            receiver=ShipmentParty(**receiver),
            package=Package(**package),
            is_cod=is_cod,
            cod_amount=cod_amount,
            tracking=[
                TrackingEntry(
                    event_id=f"created-{tracking_number}",
                    status=ShipmentStatus.PENDING.value,
                    description="Shipment created, waiting for carrier pickup",
                    event_time=now,
                    recorded_at=now,
                    applied=True,
                )
            ],
            status_changed_at=now,
            created_at=now,
            updated_at=now,
        )
        shipment.raise_(
            ShipmentCreated(
                shipment_id=str(shipment.id),
                order_id=str(order_id),
                tracking_number=tracking_number,
                service_type=service_type,
                total_fee=shipment.fees.total_fee,
                created_at=now,
            )
        )
        return shipment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> ShipmentStatus:
        return ShipmentStatus(self.status)

    @property
    def is_cancelled(self) -> bool:
        return self.current_status == ShipmentStatus.CANCELLED

    def has_event(self, event_id: str) -> bool:
        return any(entry.event_id == event_id for entry in self.tracking or [])

    @staticmethod
    def dedupe_key(status: str, event_time: datetime | None, location: str | None, description: str | None) -> str:
        """Stable id for carrier events that arrive without one.

        Only what the carrier sent goes into the key, so a replayed event
        without a timestamp hashes the same way every time.
        """
        stamp = event_time.isoformat() if event_time else ""
        raw = f"{status}|{stamp}|{location or ''}|{description or ''}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]

    # -------------------------------------------------------------------
    # Carrier booking
    # -------------------------------------------------------------------
    def record_booking(self, carrier_shipment_id: str | None, label_url: str | None, estimated_delivery) -> None:
        self.carrier_shipment_id = carrier_shipment_id
        self.label_url = label_url
        self.estimated_delivery = estimated_delivery
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------
    def _moves_forward(self, target: ShipmentStatus, event_time: datetime) -> bool:
        current = self.current_status
        if current in FINAL_STATES or target == ShipmentStatus.CANCELLED:
            return False
        if self.last_event_at and event_time < self.last_event_at:
            return False
        if target == ShipmentStatus.RETURNED:
            return True
        return _RANK[target] > _RANK[current]

    def record_tracking(
        self,
        status: str,
        location: str | None = None,
        description: str | None = None,
        event_time: datetime | None = None,
        event_id: str | None = None,
    ) -> TrackingOutcome:
        """Append a carrier event and move the status forward if the event is newer and further along."""
        target = ShipmentStatus(status)
        now = datetime.now(UTC)
        event_id = event_id or self.dedupe_key(target.value, event_time, location, description)
        event_time = event_time or now

        if self.has_event(event_id):
            return TrackingOutcome(duplicate=True)

        applies = self._moves_forward(target, event_time)
        self.add_tracking(
            TrackingEntry(
                event_id=event_id,
                status=target.value,
                description=description,
                location=location,
                event_time=event_time,
                recorded_at=now,
                applied=applies,
            )
        )
        self.updated_at = now
        if not applies:
            return TrackingOutcome()

        previous = self.status
        self.status = target.value
        self.status_changed_at = event_time
        self.last_event_at = event_time
        if target == ShipmentStatus.PICKED_UP:
            self.picked_up_at = event_time
        elif target == ShipmentStatus.DELIVERED:
            self.delivered_at = event_time

        self.raise_(
            ShipmentStatusChanged(
                shipment_id=str(self.id),
                order_id=str(self.order_id),
                tracking_number=self.tracking_number,
                from_status=previous,
                to_status=target.value,
                location=location,
                event_time=event_time,
            )
        )
        return TrackingOutcome(status_changed=True, previous_status=previous)

    def cancel(self, reason: str | None = None) -> None:
        if self.current_status != ShipmentStatus.PENDING:
            raise InvalidTransition({"status": [f"Cannot cancel a shipment that is {self.status}"]})

        now = datetime.now(UTC)
        self.status = ShipmentStatus.CANCELLED.value
        self.status_changed_at = now
        self.cancelled_at = now
        self.updated_at = now
        self.add_tracking(
            TrackingEntry(
                event_id=f"cancelled-{self.tracking_number}",
                status=ShipmentStatus.CANCELLED.value,
                description=reason or "Shipment cancelled",
                event_time=now,
                recorded_at=now,
                applied=True,
            )
        )
        self.raise_(
            ShipmentCancelled(
                shipment_id=str(self.id),
                order_id=str(self.order_id),
                tracking_number=self.tracking_number,
                reason=reason,
                cancelled_at=now,
            )
        )
