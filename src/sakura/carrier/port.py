"""Carrier port: books parcels with the shipping carrier.

The domain code programs against the port; adapters are swapped via
configuration. Tracking updates flow the other way, through the carrier
webhook, so the port also verifies their signatures.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class ShipmentBooking:
    tracking_number: str
    service_type: str
    weight_kg: Decimal
    receiver: dict
    sender: dict
    is_cod: bool = False
    cod_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class BookingResult:
    success: bool
    carrier_shipment_id: str | None = None
    estimated_delivery: datetime | None = None
    label_url: str | None = None
    failure_reason: str | None = None


class CarrierPort(ABC):
    @abstractmethod
    def create_shipment(self, booking: ShipmentBooking) -> BookingResult:
        """Hand a parcel over to the carrier."""
        ...

    @abstractmethod
    def cancel_shipment(self, tracking_number: str, carrier_shipment_id: str | None) -> bool:
        """Cancel a parcel the carrier has not picked up yet."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a tracking webhook is authentic."""
        ...
