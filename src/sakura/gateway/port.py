"""Payment gateway port (abstract interface).

Every gateway adapter turns a payment attempt into an instruction the
customer can act on, verifies the integrity of the callbacks it sends
back and refunds captured money. The orchestrator never looks past this
contract at gateway-specific protocol details.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum


class PaymentMethod(Enum):
    VNPAY = "VNPay"  # redirect to a hosted payment page
    MOMO = "MoMo"  # wallet payment confirmed by webhook
    SEPAY = "SePay"  # QR code / bank transfer matched by webhook


class InstructionKind(Enum):
    REDIRECT = "redirect"
    WALLET = "wallet"
    BANK_TRANSFER = "bank_transfer"


@dataclass(frozen=True)
class IntentRequest:
    transaction_id: str
    order_id: str
    order_number: str
    amount: Decimal
    currency: str
    expires_at: datetime
    return_url: str | None = None
    description: str = ""


@dataclass(frozen=True)
class PaymentInstruction:
    """What the customer must do to pay: follow a URL, scan a QR code or make a bank transfer."""

    kind: str
    redirect_url: str | None = None
    qr_payload: str | None = None
    bank_transfer: dict = field(default_factory=dict)
    external_transaction_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class IntentResult:
    success: bool
    instruction: PaymentInstruction | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class CallbackData:
    """Fields every gateway callback carries, in gateway-neutral form."""

    reference: str
    reported_status: str  # a TransactionStatus value
    external_transaction_id: str | None = None
    amount: Decimal | None = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    gateway_refund_id: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    method: PaymentMethod

    @abstractmethod
    def create_intent(self, request: IntentRequest) -> IntentResult:
        """Open a payment attempt with the gateway."""
        ...

    @abstractmethod
    def verify_callback(self, payload: str, signature: str) -> bool:
        """Check that a callback payload really comes from the gateway."""
        ...

    @abstractmethod
    def parse_callback(self, payload: str) -> CallbackData:
        """Extract the transaction reference and reported status from a verified payload."""
        ...

    @abstractmethod
    def create_refund(
        self,
        transaction_id: str,
        external_transaction_id: str | None,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        """Return captured money to the customer."""
        ...
