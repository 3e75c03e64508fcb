"""MoMo adapter: e-wallet payments confirmed by webhook.

Opening a payment is a signed API call that returns a pay URL, a deeplink
and a QR code. The outcome arrives later as an IPN webhook whose body is
signed with HMAC-SHA256 under the partner secret.
"""

import json
from decimal import Decimal

import httpx
import structlog

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
from sakura.gateway.signing import hmac_sha256, signatures_match

logger = structlog.get_logger(__name__)

_RESULT_SUCCESS = 0
_RESULT_AUTHORIZED = 9000


def _raw_signature(fields: dict) -> str:
    return "&".join(f"{key}={fields[key]}" for key in sorted(fields))


class MoMoGateway(PaymentGateway):
    method = PaymentMethod.MOMO

    def __init__(self, rules: PaymentRules, client: httpx.Client | None = None) -> None:
        self.rules = rules
        self.secret = rules.momo.secret
        self._client = client or httpx.Client(timeout=10.0)

    def _post(self, path: str, body: dict) -> dict:
        response = self._client.post(f"{self.rules.momo_endpoint}/{path}", json=body)
        response.raise_for_status()
        return response.json()

    def create_intent(self, request: IntentRequest) -> IntentResult:
        signed = {
            "accessKey": self.rules.momo_access_key,
            "amount": str(int(request.amount)),
            "extraData": "",
            "ipnUrl": request.return_url or "",
            "orderId": request.transaction_id,
            "orderInfo": request.description or f"Sakura Home {request.order_number}",
            "partnerCode": self.rules.momo_partner_code,
            "redirectUrl": request.return_url or "",
            "requestId": request.transaction_id,
            "requestType": "captureWallet",
        }
        body = {k: v for k, v in signed.items() if k != "accessKey"}
        body.update(lang="vi", signature=hmac_sha256(self.secret, _raw_signature(signed)))

        try:
            data = self._post("create", body)
        except httpx.HTTPError as exc:
            logger.warning("momo_create_failed", transaction_id=request.transaction_id, error=str(exc))
            return IntentResult(success=False, failure_reason=f"MoMo unreachable: {exc}")

        if data.get("resultCode") != _RESULT_SUCCESS:
            return IntentResult(success=False, failure_reason=data.get("message") or "MoMo rejected the payment")

        return IntentResult(
            success=True,
            instruction=PaymentInstruction(
                kind=InstructionKind.WALLET.value,
                redirect_url=data.get("payUrl"),
                qr_payload=data.get("qrCodeUrl"),
            ),
        )

    def verify_callback(self, payload: str, signature: str) -> bool:
        return signatures_match(hmac_sha256(self.secret, payload), signature)

    def parse_callback(self, payload: str) -> CallbackData:
        data = json.loads(payload)
        result_code = int(data.get("resultCode", -1))
        if result_code == _RESULT_SUCCESS:
            status = "Completed"
        elif result_code == _RESULT_AUTHORIZED:
            status = "Processing"
        else:
            status = "Failed"
        trans_id = data.get("transId")
        amount = data.get("amount")
        return CallbackData(
            reference=str(data.get("orderId", "")),
            reported_status=status,
            external_transaction_id=str(trans_id) if trans_id else None,
            amount=Decimal(str(amount)) if amount is not None else None,
        )

    def create_refund(
        self,
        transaction_id: str,
        external_transaction_id: str | None,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        refund_order_id = f"{transaction_id}-R{int(amount)}"
        signed = {
            "accessKey": self.rules.momo_access_key,
            "amount": str(int(amount)),
            "description": reason,
            "orderId": refund_order_id,
            "partnerCode": self.rules.momo_partner_code,
            "requestId": refund_order_id,
            "transId": external_transaction_id or "",
        }
        body = {k: v for k, v in signed.items() if k != "accessKey"}
        body.update(lang="vi", signature=hmac_sha256(self.secret, _raw_signature(signed)))

        try:
            data = self._post("refund", body)
        except httpx.HTTPError as exc:
            logger.warning("momo_refund_failed", transaction_id=transaction_id, error=str(exc))
            return RefundResult(success=False, failure_reason=f"MoMo unreachable: {exc}")

        if data.get("resultCode") != _RESULT_SUCCESS:
            return RefundResult(success=False, failure_reason=data.get("message") or "Refund rejected")
        return RefundResult(success=True, gateway_refund_id=str(data.get("transId") or refund_order_id))
