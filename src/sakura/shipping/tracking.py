"""Carrier tracking events: appended to the shipment log and mirrored onto the order.

PickedUp and InTransit put the order in Shipped, OutForDelivery and
Delivered follow the order along. Failed and Returned never move the
order; they flag it for staff follow-up.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import DateTime, String
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.order.order import Actor, Order, OrderStatus
from sakura.shared.errors import NotFoundError
from sakura.shared.locking import hold, order_key, shipment_key
from sakura.shared.lookup import find_all, load
from sakura.shipping.shipment import ShipmentStatus, ShippingOrder

logger = structlog.get_logger(__name__)

_ORDER_STATUS_FOR = {
    ShipmentStatus.PICKED_UP: OrderStatus.SHIPPED,
    ShipmentStatus.IN_TRANSIT: OrderStatus.SHIPPED,
    ShipmentStatus.OUT_FOR_DELIVERY: OrderStatus.OUT_FOR_DELIVERY,
    ShipmentStatus.DELIVERED: OrderStatus.DELIVERED,
}

_FLAGGED = {
    ShipmentStatus.FAILED: "Carrier could not deliver the parcel",
    ShipmentStatus.RETURNED: "Parcel is being returned to the store",
}

# Order states a carrier event may advance from
_MIRRORABLE = {
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
}


def find_shipment(tracking_number: str) -> ShippingOrder:
    matches = find_all(ShippingOrder, tracking_number=tracking_number)
    if not matches:
        raise NotFoundError({"tracking_number": [f"No shipment with tracking number {tracking_number}"]})
    return matches[0]


@sakura.command(part_of="ShippingOrder")
class RecordTrackingEvent:
    tracking_number = String(required=True, max_length=50)
    status = String(required=True, choices=ShipmentStatus)
    location = String(max_length=255)
    notes = String(max_length=1000)
    event_time = DateTime()
    event_id = String(max_length=255)


def _mirror_onto_order(order: Order, status: ShipmentStatus, notes: str | None) -> None:
    if status in _FLAGGED:
        order.flag_delivery_issue(notes or _FLAGGED[status])
        return

    target = _ORDER_STATUS_FOR.get(status)
    if target is None:
        return
    if order.current_status not in _MIRRORABLE:
        logger.warning(
            "tracking_not_mirrored",
            order_id=str(order.id),
            order_status=order.status,
            shipment_status=status.value,
        )
        return
    order.advance_to(target, notes=notes, actor=Actor.CARRIER.value)


@sakura.command_handler(part_of=ShippingOrder)
class TrackingHandler:
    @handle(RecordTrackingEvent)
    def record_tracking_event(self, command):
        shipment = find_shipment(command.tracking_number)
        outcome = shipment.record_tracking(
            status=command.status,
            location=command.location,
            description=command.notes,
            event_time=command.event_time,
            event_id=command.event_id,
        )
        if outcome.duplicate:
            logger.info("tracking_event_duplicate", tracking_number=shipment.tracking_number, event_id=command.event_id)
            return "duplicate"

        current_domain.repository_for(ShippingOrder).add(shipment)
        if not outcome.status_changed:
            logger.info(
                "tracking_event_logged_only",
                tracking_number=shipment.tracking_number,
                status=command.status,
                current=shipment.status,
            )
            return "logged"

        order = load(Order, shipment.order_id)
        _mirror_onto_order(order, ShipmentStatus(command.status), command.notes)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "shipment_status_changed",
            tracking_number=shipment.tracking_number,
            from_status=outcome.previous_status,
            to_status=shipment.status,
            order_status=order.status,
        )
        return "applied"


def ingest_tracking_event(
    tracking_number: str,
    status: str,
    location: str | None = None,
    notes: str | None = None,
    event_time: datetime | None = None,
    event_id: str | None = None,
) -> str:
    """Record one carrier event. Returns ``applied``, ``logged`` (appended only) or ``duplicate``."""
    if event_time is not None and event_time.tzinfo is None:
        event_time = event_time.replace(tzinfo=UTC)

    shipment = find_shipment(tracking_number)
    with hold(shipment_key(tracking_number), order_key(shipment.order_id)):
        return current_domain.process(
            RecordTrackingEvent(
                tracking_number=tracking_number,
                status=status,
                location=location,
                notes=notes,
                event_time=event_time,
                event_id=event_id,
            ),
            asynchronous=False,
        )
