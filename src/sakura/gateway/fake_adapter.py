"""Configurable fake payment gateway for development and testing.

Simulates any of the real gateways without external calls. Callbacks are
JSON documents of the form::

    {"transaction_id": "PAY...", "status": "Completed", "external_transaction_id": "..."}

and are accepted when signed with ``valid_signature``.
"""

import json
from decimal import Decimal
from uuid import uuid4

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


class FakeGateway(PaymentGateway):
    def __init__(self, method: PaymentMethod = PaymentMethod.VNPAY, valid_signature: str = "test-signature") -> None:
        self.method = method
        self.valid_signature = valid_signature
        self.should_succeed: bool = True
        self.refunds_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Gateway unavailable",
        refunds_succeed: bool | None = None,
    ) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.refunds_succeed = should_succeed if refunds_succeed is None else refunds_succeed

    def calls_for(self, name: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == name]

    def create_intent(self, request: IntentRequest) -> IntentResult:
        self.calls.append({"method": "create_intent", "transaction_id": request.transaction_id, "amount": request.amount})
        if not self.should_succeed:
            return IntentResult(success=False, failure_reason=self.failure_reason)

        return IntentResult(
            success=True,
            instruction=PaymentInstruction(
                kind=InstructionKind.REDIRECT.value,
                redirect_url=f"https://fake-gateway.example.com/pay/{request.transaction_id}",
                external_transaction_id=f"fake_{uuid4().hex[:12]}",
            ),
        )

    def verify_callback(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == self.valid_signature

    def parse_callback(self, payload: str) -> CallbackData:
        data = json.loads(payload)
        amount = data.get("amount")
        return CallbackData(
            reference=str(data["transaction_id"]),
            reported_status=data["status"],
            external_transaction_id=data.get("external_transaction_id"),
            amount=Decimal(str(amount)) if amount is not None else None,
        )

    def create_refund(
        self,
        transaction_id: str,
        external_transaction_id: str | None,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "transaction_id": transaction_id,
                "external_transaction_id": external_transaction_id,
                "amount": amount,
                "reason": reason,
            }
        )
        if not self.refunds_succeed:
            return RefundResult(success=False, failure_reason=self.failure_reason)
        return RefundResult(success=True, gateway_refund_id=f"fake_ref_{uuid4().hex[:12]}")
