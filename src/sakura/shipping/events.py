"""Domain events for the ShippingOrder aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from sakura.domain import sakura


@sakura.event(part_of="ShippingOrder")
class ShipmentCreated:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    service_type = String(required=True)
    total_fee = Float(required=True)
    created_at = DateTime(required=True)


@sakura.event(part_of="ShippingOrder")
class ShipmentStatusChanged:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    location = String()
    event_time = DateTime(required=True)


@sakura.event(part_of="ShippingOrder")
class ShipmentCancelled:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)
