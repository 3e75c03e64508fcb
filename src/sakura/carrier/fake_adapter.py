"""Fake carrier adapter for testing and development.

Books every parcel instantly unless configured to fail, and accepts
webhooks signed with HMAC-SHA256 under ``webhook_secret``.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sakura.carrier.port import BookingResult, CarrierPort, ShipmentBooking
from sakura.gateway.signing import hmac_sha256, signatures_match


class FakeCarrier(CarrierPort):
    def __init__(self, webhook_secret: str = "carrier-secret"):
        self.webhook_secret = webhook_secret
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.bookings: list[ShipmentBooking] = []
        self.cancelled: list[str] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def sign(self, payload: str) -> str:
        return hmac_sha256(self.webhook_secret, payload)

    def create_shipment(self, booking: ShipmentBooking) -> BookingResult:
        if not self.should_succeed:
            return BookingResult(success=False, failure_reason=self.failure_reason)

        self.bookings.append(booking)
        days = {"Standard": 4, "Express": 2}.get(booking.service_type, 4)
        shipment_id = f"ship-{uuid4().hex[:8]}"
        return BookingResult(
            success=True,
            carrier_shipment_id=shipment_id,
            estimated_delivery=datetime.now(UTC) + timedelta(days=days),
            label_url=f"https://fake-carrier.example.com/labels/{shipment_id}.pdf",
        )

    def cancel_shipment(self, tracking_number: str, carrier_shipment_id: str | None) -> bool:  # noqa: ARG002
        if not self.should_succeed:
            return False
        self.cancelled.append(tracking_number)
        return True

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        return signatures_match(self.sign(payload), signature)
