"""Shipment creation: books a parcel for a confirmed order.

The carrier booking is the only network call. If the carrier refuses,
nothing is written and the order stays where it was.
"""

import random
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Boolean, Float, Identifier, String
from protean.utils.globals import current_domain

from sakura.carrier import get_carrier
from sakura.carrier.port import ShipmentBooking
from sakura.config import get_settings
from sakura.domain import sakura
from sakura.order.order import Actor, Order, OrderStatus
from sakura.shared.errors import ConflictError, ExternalError, InvalidTransition, ShipmentExists
from sakura.shared.locking import hold, order_key
from sakura.shared.lookup import find_all, load
from sakura.shared.money import ZERO, to_decimal
from sakura.shipping.rates import DeliveryMethod, quote_shipment_fee
from sakura.shipping.shipment import ShippingOrder

logger = structlog.get_logger(__name__)

SHIPPABLE_STATES = {OrderStatus.CONFIRMED, OrderStatus.PROCESSING}


def new_tracking_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"SKH{now:%Y%m%d}{random.randint(1000, 9999)}"


def _unique_tracking_number(attempts: int) -> str:
    for _ in range(attempts):
        candidate = new_tracking_number()
        if not find_all(ShippingOrder, tracking_number=candidate):
            return candidate
    raise ConflictError({"tracking_number": ["Could not allocate a tracking number, please retry"]})


def active_shipment_for(order_id) -> ShippingOrder | None:
    return next((s for s in find_all(ShippingOrder, order_id=str(order_id)) if not s.is_cancelled), None)


@sakura.command(part_of="ShippingOrder")
class CreateShipment:
    order_id = Identifier(required=True)
    service_type = String(choices=DeliveryMethod)  # defaults to the order's delivery method
    length_cm = Float()
    width_cm = Float()
    height_cm = Float()
    collect_on_delivery = Boolean()  # defaults to True for unpaid orders


@sakura.command_handler(part_of=ShippingOrder)
class CreateShipmentHandler:
    @handle(CreateShipment)
    def create_shipment(self, command):
        settings = get_settings()
        order = load(Order, command.order_id)
        if order.current_status not in SHIPPABLE_STATES:
            raise InvalidTransition(
                {"order_id": [f"Order {order.order_number} is {order.status}; only Confirmed or Processing orders ship"]}
            )

        existing = active_shipment_for(order.id)
        if existing is not None:
            raise ShipmentExists({"order_id": [f"Shipment {existing.tracking_number} already exists"]})

        service_type = command.service_type or order.delivery_method or DeliveryMethod.STANDARD.value
        weight = sum((to_decimal(item.weight_kg) * item.quantity for item in order.items), ZERO)
        is_cod = command.collect_on_delivery if command.collect_on_delivery is not None else not order.is_paid
        cod_amount = to_decimal(order.pricing.grand_total) if is_cod else ZERO

        address = order.shipping_address
        receiver = {
            "name": address.recipient_name,
            "phone": address.phone,
            "street": address.street,
            "ward": address.ward,
            "district": address.district,
            "province": address.province,
            "country": address.country,
        }
        store = settings.shipping.sender
        sender = {
            "name": store.name,
            "phone": store.phone,
            "street": store.street,
            "ward": store.ward,
            "district": store.district,
            "province": store.province,
            "country": store.country,
        }

        quote = quote_shipment_fee(
            service_type,
            weight,
            address.province,
            settings.shipping,
            cod_amount=cod_amount if is_cod else None,
        )
        shipment = ShippingOrder.create(
            order_id=order.id,
            order_number=order.order_number,
            tracking_number=_unique_tracking_number(settings.order_number_attempts),
            carrier_name=settings.shipping.carrier_name,
            service_type=service_type,
            fees=quote,
            sender=sender,
            receiver=receiver,
            package={
                "weight_kg": float(weight),
                "length_cm": command.length_cm,
                "width_cm": command.width_cm,
                "height_cm": command.height_cm,
                "item_count": sum(item.quantity for item in order.items),
            },
            is_cod=is_cod,
            cod_amount=float(cod_amount),
        )

        result = get_carrier().create_shipment(
            ShipmentBooking(
                tracking_number=shipment.tracking_number,
                service_type=service_type,
                weight_kg=weight,
                receiver=receiver,
                sender=sender,
                is_cod=is_cod,
                cod_amount=cod_amount,
            )
        )
        if not result.success:
            logger.warning("carrier_booking_failed", order_id=str(order.id), reason=result.failure_reason)
            raise ExternalError({"carrier": [result.failure_reason or "Carrier unavailable"]})

        shipment.record_booking(result.carrier_shipment_id, result.label_url, result.estimated_delivery)
        order.attach_tracking(shipment.tracking_number)
        order.advance_to(OrderStatus.PACKED, notes=f"Shipment {shipment.tracking_number} booked", actor=Actor.STAFF.value)

        current_domain.repository_for(ShippingOrder).add(shipment)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "shipment_created",
            order_id=str(order.id),
            tracking_number=shipment.tracking_number,
            total_fee=shipment.fees.total_fee,
        )
        return str(shipment.id)


def create_shipment(
    order_id: str,
    service_type: str | None = None,
    dimensions: dict | None = None,
    collect_on_delivery: bool | None = None,
) -> str:
    """Book a parcel for a Confirmed or Processing order and move the order to Packed."""
    dimensions = dimensions or {}
    with hold(order_key(order_id)):
        return current_domain.process(
            CreateShipment(
                order_id=order_id,
                service_type=service_type,
                length_cm=dimensions.get("length_cm"),
                width_cm=dimensions.get("width_cm"),
                height_cm=dimensions.get("height_cm"),
                collect_on_delivery=collect_on_delivery,
            ),
            asynchronous=False,
        )
