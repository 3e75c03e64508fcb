"""Integration tests for the VNPay, MoMo and SePay adapters against mocked gateway servers."""

import json
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx
import pytest

from sakura.config import PaymentRules
from sakura.gateway.momo_adapter import MoMoGateway
from sakura.gateway.port import InstructionKind, IntentRequest
from sakura.gateway.sepay_adapter import SePayGateway
from sakura.gateway.signing import hmac_sha256, hmac_sha512
from sakura.gateway.vnpay_adapter import VNPayGateway

RULES = PaymentRules()


def _intent_request(transaction_id="PAY20260101120000123", amount="530000"):
    return IntentRequest(
        transaction_id=transaction_id,
        order_id="order-001",
        order_number="ORD202601010001",
        amount=Decimal(amount),
        currency="VND",
        expires_at=datetime.now(UTC) + timedelta(minutes=15),
    )


def _client(handler, seen=None):
    def _record(request):
        if seen is not None:
            seen.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(_record))


# ---------------------------------------------------------------------------
# VNPay
# ---------------------------------------------------------------------------
class TestVNPayGateway:
    def _signed_query(self, **params):
        canonical = urlencode(sorted(params.items()))
        return f"{canonical}&vnp_SecureHash={hmac_sha512(RULES.vnpay.secret, canonical)}"

    def test_redirect_url_is_signed(self):
        gateway = VNPayGateway(RULES)
        result = gateway.create_intent(_intent_request())

        assert result.success
        assert result.instruction.kind == InstructionKind.REDIRECT.value
        url = urlsplit(result.instruction.redirect_url)
        params = dict(parse_qsl(url.query))
        assert params["vnp_TxnRef"] == "PAY20260101120000123"
        assert params["vnp_Amount"] == "53000000"
        assert gateway.verify_callback(url.query, "")

    def test_successful_ipn(self):
        gateway = VNPayGateway(RULES)
        query = self._signed_query(
            vnp_TxnRef="PAY20260101120000123",
            vnp_Amount="53000000",
            vnp_ResponseCode="00",
            vnp_TransactionStatus="00",
            vnp_TransactionNo="14012345",
        )

        assert gateway.verify_callback(query, "")
        data = gateway.parse_callback(query)
        assert data.reference == "PAY20260101120000123"
        assert data.reported_status == "Completed"
        assert data.external_transaction_id == "14012345"
        assert data.amount == Decimal("530000")

    def test_declined_ipn(self):
        gateway = VNPayGateway(RULES)
        query = self._signed_query(vnp_TxnRef="PAY1", vnp_ResponseCode="24", vnp_TransactionStatus="02")
        assert gateway.parse_callback(query).reported_status == "Failed"

    def test_tampered_ipn_fails_verification(self):
        gateway = VNPayGateway(RULES)
        query = self._signed_query(vnp_TxnRef="PAY1", vnp_Amount="100", vnp_ResponseCode="00")
        assert not gateway.verify_callback(query.replace("vnp_Amount=100", "vnp_Amount=1"), "")

    def test_refund_posts_signed_request(self):
        seen = []
        gateway = VNPayGateway(
            RULES,
            client=_client(lambda r: httpx.Response(200, json={"vnp_ResponseCode": "00", "vnp_TransactionNo": "R1"}), seen),
        )

        result = gateway.create_refund("PAY1", "14012345", Decimal("100000"), "Chipped lid")

        assert result.success
        assert result.gateway_refund_id == "R1"
        body = json.loads(seen[0].content)
        assert body["vnp_Amount"] == "10000000"
        assert body["vnp_TransactionNo"] == "14012345"
        assert body["vnp_SecureHash"]

    def test_rejected_refund(self):
        gateway = VNPayGateway(
            RULES,
            client=_client(lambda r: httpx.Response(200, json={"vnp_ResponseCode": "94", "vnp_Message": "Duplicate"})),
        )
        result = gateway.create_refund("PAY1", "14012345", Decimal("100000"), "Chipped lid")
        assert not result.success
        assert result.failure_reason == "Duplicate"

    def test_unreachable_refund(self):
        def _boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = VNPayGateway(RULES, client=_client(_boom))
        result = gateway.create_refund("PAY1", None, Decimal("100000"), "Chipped lid")
        assert not result.success
        assert "VNPay unreachable" in result.failure_reason


# ---------------------------------------------------------------------------
# MoMo
# ---------------------------------------------------------------------------
class TestMoMoGateway:
    def test_create_intent_returns_wallet_instruction(self):
        seen = []
        gateway = MoMoGateway(
            RULES,
            client=_client(
                lambda r: httpx.Response(
                    200,
                    json={"resultCode": 0, "payUrl": "https://momo.test/pay", "qrCodeUrl": "momo://qr"},
                ),
                seen,
            ),
        )

        result = gateway.create_intent(_intent_request())

        assert result.success
        assert result.instruction.kind == InstructionKind.WALLET.value
        assert result.instruction.redirect_url == "https://momo.test/pay"
        assert result.instruction.qr_payload == "momo://qr"
        body = json.loads(seen[0].content)
        assert seen[0].url.path.endswith("/create")
        assert body["orderId"] == "PAY20260101120000123"
        assert body["amount"] == "530000"
        assert "accessKey" not in body

    def test_rejected_intent(self):
        gateway = MoMoGateway(RULES, client=_client(lambda r: httpx.Response(200, json={"resultCode": 1005})))
        result = gateway.create_intent(_intent_request())
        assert not result.success

    def test_server_error_is_failure(self):
        gateway = MoMoGateway(RULES, client=_client(lambda r: httpx.Response(502)))
        result = gateway.create_intent(_intent_request())
        assert not result.success
        assert "MoMo unreachable" in result.failure_reason

    @pytest.mark.parametrize(("result_code", "status"), [(0, "Completed"), (9000, "Processing"), (1006, "Failed")])
    def test_ipn_result_codes(self, result_code, status):
        gateway = MoMoGateway(RULES)
        payload = json.dumps({"orderId": "PAY1", "resultCode": result_code, "transId": 2811, "amount": 530000})

        assert gateway.verify_callback(payload, hmac_sha256(RULES.momo.secret, payload))
        data = gateway.parse_callback(payload)
        assert data.reported_status == status
        assert data.external_transaction_id == "2811"

    def test_ipn_with_wrong_signature(self):
        gateway = MoMoGateway(RULES)
        payload = json.dumps({"orderId": "PAY1", "resultCode": 0})
        assert not gateway.verify_callback(payload, hmac_sha256("other-secret", payload))

    def test_refund(self):
        gateway = MoMoGateway(
            RULES, client=_client(lambda r: httpx.Response(200, json={"resultCode": 0, "transId": 99}))
        )
        result = gateway.create_refund("PAY1", "2811", Decimal("530000"), "Order cancelled")
        assert result.success
        assert result.gateway_refund_id == "99"


# ---------------------------------------------------------------------------
# SePay
# ---------------------------------------------------------------------------
class TestSePayGateway:
    def test_bank_transfer_instruction(self):
        result = SePayGateway(RULES).create_intent(_intent_request())

        assert result.instruction.kind == InstructionKind.BANK_TRANSFER.value
        transfer = result.instruction.bank_transfer
        assert transfer["account_number"] == RULES.bank_account_number
        assert transfer["amount"] == "530000"
        assert transfer["content"] == "SAKURA ORD202601010001 PAY20260101120000123"
        assert result.instruction.qr_payload.startswith(RULES.sepay_qr_url)

    def test_api_key_authorization(self):
        gateway = SePayGateway(RULES)
        assert gateway.verify_callback("{}", f"Apikey {RULES.sepay.secret}")
        assert not gateway.verify_callback("{}", "Apikey wrong")
        assert not gateway.verify_callback("{}", "")

    def test_incoming_transfer_matches_reference_in_content(self):
        payload = json.dumps(
            {"id": 92704, "content": "sakura ord202601010001 pay20260101120000123 ck", "transferType": "in", "transferAmount": 530000}
        )
        data = SePayGateway(RULES).parse_callback(payload)
        assert data.reference == "PAY20260101120000123"
        assert data.reported_status == "Completed"
        assert data.amount == Decimal("530000")

    def test_refund_is_recorded_for_manual_payout(self):
        result = SePayGateway(RULES).create_refund("PAY1", None, Decimal("250000"), "Return approved")
        assert result.success
        assert result.gateway_refund_id == "MANUAL-PAY1-250000"
