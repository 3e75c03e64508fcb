"""VNPay adapter: redirect-based card and ATM payments.

The customer is sent to a hosted payment page whose URL carries the order
parameters and an HMAC-SHA512 ``vnp_SecureHash`` over the sorted,
url-encoded parameter string. VNPay calls back (IPN) with a query string
signed the same way.
"""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlencode
from uuid import uuid4

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
from sakura.gateway.signing import hmac_sha512, signatures_match

logger = structlog.get_logger(__name__)

VN_TZ = timezone(timedelta(hours=7))
_HASH_FIELDS = {"vnp_SecureHash", "vnp_SecureHashType"}
_SUCCESS = "00"


def _vnp_time(moment: datetime) -> str:
    return moment.astimezone(VN_TZ).strftime("%Y%m%d%H%M%S")


def _vnp_amount(amount: Decimal) -> str:
    # VNPay amounts are expressed in hundredths of a dong
    return str(int(amount * 100))


class VNPayGateway(PaymentGateway):
    method = PaymentMethod.VNPAY

    def __init__(self, rules: PaymentRules, client: httpx.Client | None = None) -> None:
        self.rules = rules
        self.secret = rules.vnpay.secret
        self._client = client or httpx.Client(timeout=10.0)

    def _canonical(self, params: dict[str, str]) -> str:
        return urlencode(sorted((k, v) for k, v in params.items() if k not in _HASH_FIELDS and v != ""))

    def create_intent(self, request: IntentRequest) -> IntentResult:
        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": self.rules.vnpay_terminal_code,
            "vnp_Amount": _vnp_amount(request.amount),
            "vnp_CurrCode": request.currency,
            "vnp_TxnRef": request.transaction_id,
            "vnp_OrderInfo": request.description or f"Thanh toan don hang {request.order_number}",
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": request.return_url or "",
            "vnp_CreateDate": _vnp_time(datetime.now(UTC)),
            "vnp_ExpireDate": _vnp_time(request.expires_at),
        }
        query = self._canonical(params)
        secure_hash = hmac_sha512(self.secret, query)
        return IntentResult(
            success=True,
            instruction=PaymentInstruction(
                kind=InstructionKind.REDIRECT.value,
                redirect_url=f"{self.rules.vnpay_base_url}?{query}&vnp_SecureHash={secure_hash}",
            ),
        )

    def verify_callback(self, payload: str, signature: str) -> bool:
        params = dict(parse_qsl(payload, keep_blank_values=True))
        provided = signature or params.get("vnp_SecureHash")
        return signatures_match(hmac_sha512(self.secret, self._canonical(params)), provided)

    def parse_callback(self, payload: str) -> CallbackData:
        params = dict(parse_qsl(payload, keep_blank_values=True))
        succeeded = params.get("vnp_ResponseCode") == _SUCCESS and params.get("vnp_TransactionStatus", _SUCCESS) == _SUCCESS
        amount = params.get("vnp_Amount")
        return CallbackData(
            reference=params.get("vnp_TxnRef", ""),
            reported_status="Completed" if succeeded else "Failed",
            external_transaction_id=params.get("vnp_TransactionNo") or None,
            amount=Decimal(amount) / 100 if amount else None,
        )

    def create_refund(
        self,
        transaction_id: str,
        external_transaction_id: str | None,
        amount: Decimal,
        reason: str,
    ) -> RefundResult:
        request_id = uuid4().hex[:16]
        created = _vnp_time(datetime.now(UTC))
        body = {
            "vnp_RequestId": request_id,
            "vnp_Version": "2.1.0",
            "vnp_Command": "refund",
            "vnp_TmnCode": self.rules.vnpay_terminal_code,
            "vnp_TransactionType": "03",
            "vnp_TxnRef": transaction_id,
            "vnp_Amount": _vnp_amount(amount),
            "vnp_TransactionNo": external_transaction_id or "",
            "vnp_CreateBy": "sakura-fulfillment",
            "vnp_CreateDate": created,
            "vnp_IpAddr": "127.0.0.1",
            "vnp_OrderInfo": reason,
        }
        checksum_fields = [
            "vnp_RequestId",
            "vnp_Version",
            "vnp_Command",
            "vnp_TmnCode",
            "vnp_TransactionType",
            "vnp_TxnRef",
            "vnp_Amount",
            "vnp_TransactionNo",
            "vnp_CreateBy",
            "vnp_CreateDate",
            "vnp_IpAddr",
            "vnp_OrderInfo",
        ]
        body["vnp_SecureHash"] = hmac_sha512(self.secret, "|".join(body[f] for f in checksum_fields))

        try:
            response = self._client.post(self.rules.vnpay_api_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("vnpay_refund_failed", transaction_id=transaction_id, error=str(exc))
            return RefundResult(success=False, failure_reason=f"VNPay unreachable: {exc}")

        if data.get("vnp_ResponseCode") != _SUCCESS:
            return RefundResult(success=False, failure_reason=data.get("vnp_Message") or "Refund rejected")
        return RefundResult(success=True, gateway_refund_id=data.get("vnp_TransactionNo") or request_id)
