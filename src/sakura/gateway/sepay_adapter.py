"""SePay adapter: VietQR bank transfers.

The customer scans a QR code (or types the details by hand) and transfers
money with a content string that names the transaction. SePay watches the
store's bank account and posts every incoming transfer to our webhook with
an ``Apikey`` authorization header.

Bank transfers cannot be reversed through an API. Refunds are recorded
here and paid out by staff from the bank portal.
"""

import json
import re
from decimal import Decimal
from urllib.parse import urlencode

from sakura.config import PaymentRules
from sakura.gateway.port import (
    CallbackData,
    InstructionKind,
    IntentRequest,
    IntentResult,
    PaymentGateway,
    PaymentInstruction,
    PaymentMethod,
    RefundResult,
)
from sakura.gateway.signing import signatures_match

_REFERENCE = re.compile(r"PAY\d+")


def transfer_content(order_number: str, transaction_id: str) -> str:
    return f"SAKURA {order_number} {transaction_id}"


class SePayGateway(PaymentGateway):
    method = PaymentMethod.SEPAY

    def __init__(self, rules: PaymentRules) -> None:
        self.rules = rules
        self.api_key = rules.sepay.secret

    def create_intent(self, request: IntentRequest) -> IntentResult:
        content = transfer_content(request.order_number, request.transaction_id)
        amount = str(int(request.amount))
        qr = "{}?{}".format(
            self.rules.sepay_qr_url,
            urlencode(
                {
                    "acc": self.rules.bank_account_number,
                    "bank": self.rules.bank_code,
                    "amount": amount,
                    "des": content,
                }
            ),
        )
        return IntentResult(
            success=True,
            instruction=PaymentInstruction(
                kind=InstructionKind.BANK_TRANSFER.value,
                qr_payload=qr,
                bank_transfer={
                    "bank_name": self.rules.bank_name,
                    "bank_code": self.rules.bank_code,
                    "account_number": self.rules.bank_account_number,
                    "account_name": self.rules.bank_account_name,
                    "amount": amount,
                    "content": content,
                    "expires_at": request.expires_at.isoformat(),
                },
            ),
        )

    def verify_callback(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        provided = (signature or "").removeprefix("Apikey").strip()
        return signatures_match(self.api_key, provided)

    def parse_callback(self, payload: str) -> CallbackData:
        data = json.loads(payload)
        match = _REFERENCE.search(str(data.get("content", "")).upper())
        incoming = data.get("transferType", "in") == "in"
        amount = data.get("transferAmount")
        return CallbackData(
            reference=match.group(0) if match else "",
            reported_status="Completed" if incoming else "Failed",
            external_transaction_id=str(data["id"]) if data.get("id") is not None else None,
            amount=Decimal(str(amount)) if amount is not None else None,
        )

    def create_refund(
        self,
        transaction_id: str,
        external_transaction_id: str | None,  # noqa: ARG002
        amount: Decimal,
        reason: str,  # noqa: ARG002
    ) -> RefundResult:
        return RefundResult(success=True, gateway_refund_id=f"MANUAL-{transaction_id}-{int(amount)}")
