"""Pydantic request/response schemas for the fulfillment API.

These are external contracts, kept apart from the Protean commands they
are translated into.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared responses
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str = "ok"


class TotalsSchema(BaseModel):
    subtotal: float
    shipping_cost: float
    tax_amount: float
    discount_amount: float
    total: float


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class CreateCartRequest(BaseModel):
    customer_id: str | None = None
    session_token: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "session_token": None,
                }
            ]
        }
    }


class CartIdResponse(BaseModel):
    cart_id: str


class AddToCartRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=1, default=1)
    is_gift: bool = False
    gift_message: str | None = None
    options: dict | None = None


class UpdateCartItemRequest(BaseModel):
    quantity: int | None = Field(ge=0, default=None)
    is_gift: bool | None = None
    gift_message: str | None = None
    options: dict | None = None


class ItemIdResponse(BaseModel):
    item_id: str


class ApplyCouponRequest(BaseModel):
    coupon_code: str


class MergeCartsRequest(BaseModel):
    guest_cart_id: str


class CountResponse(BaseModel):
    count: int


class SnapshotLineSchema(BaseModel):
    item_id: str
    product_id: str
    variant_id: str | None = None
    product_name: str | None = None
    quantity: int
    captured_price: float
    live_price: float | None = None
    available_stock: int
    errors: list[str] = []


class CartSnapshotResponse(BaseModel):
    cart_id: str
    customer_id: str | None = None
    delivery_method: str
    lines: list[SnapshotLineSchema]
    totals: TotalsSchema
    coupon_code: str | None = None
    coupon_valid: bool = False
    coupon_reason: str | None = None
    warnings: list[str] = []
    checkout_ready: bool


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    shipping_address_id: str
    billing_address_id: str | None = None
    payment_method: str
    delivery_method: str = "Standard"
    coupon_code: str | None = None
    notes: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "shipping_address_id": "addr-001",
                    "payment_method": "VNPay",
                    "delivery_method": "Standard",
                    "coupon_code": "WELCOME10",
                }
            ]
        }
    }


class OrderIdResponse(BaseModel):
    order_id: str


class OrderItemSchema(BaseModel):
    item_id: str
    product_id: str
    variant_id: str | None = None
    product_name: str | None = None
    quantity: int
    unit_price: float
    returned_quantity: int = 0


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    customer_id: str | None = None
    status: str
    payment_method: str | None = None
    delivery_method: str | None = None
    coupon_code: str | None = None
    tracking_number: str | None = None
    paid_transaction_id: str | None = None
    delivery_issue: bool = False
    items: list[OrderItemSchema]
    totals: TotalsSchema


class CancelOrderRequest(BaseModel):
    reason: str = "CustomerRequest"
    cancelled_by: str = "Customer"
    notes: str | None = None


class UpdateStatusRequest(BaseModel):
    status: str
    notes: str | None = None
    actor: str = "Staff"


class ConfirmDeliveryRequest(BaseModel):
    is_received: bool
    notes: str | None = None


class AddNoteRequest(BaseModel):
    body: str = Field(min_length=1)
    author: str
    is_customer_visible: bool = False


class NoteIdResponse(BaseModel):
    note_id: str


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class CreatePaymentRequest(BaseModel):
    order_id: str
    method: str
    return_url: str | None = None


class PaymentIntentResponse(BaseModel):
    transaction_id: str
    method: str
    amount: float
    instruction: dict
    expires_at: datetime


class RefundRequest(BaseModel):
    reason: str
    amount: float | None = Field(gt=0, default=None)


class RefundIdResponse(BaseModel):
    refund_id: str


class CallbackResponse(BaseModel):
    status: str = "ok"
    outcome: str | None = None


class ExpiredTransactionsResponse(BaseModel):
    expired: list[str]


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------
class CreateShipmentRequest(BaseModel):
    order_id: str
    service_type: str | None = None
    length_cm: float | None = Field(gt=0, default=None)
    width_cm: float | None = Field(gt=0, default=None)
    height_cm: float | None = Field(gt=0, default=None)
    collect_on_delivery: bool | None = None


class ShipmentResponse(BaseModel):
    shipment_id: str
    tracking_number: str


class TrackingWebhookRequest(BaseModel):
    tracking_number: str
    status: str
    location: str | None = None
    notes: str | None = None
    event_time: datetime | None = None
    event_id: str | None = None


# ---------------------------------------------------------------------------
# Returns
# ---------------------------------------------------------------------------
class ReturnItemSchema(BaseModel):
    order_item_id: str
    quantity: int = Field(ge=1)
    condition: str = "Unopened"


class SubmitReturnRequest(BaseModel):
    order_id: str
    items: list[ReturnItemSchema] = Field(min_length=1)
    reason: str
    description: str | None = None


class ReturnIdResponse(BaseModel):
    return_id: str


class ProcessReturnRequest(BaseModel):
    decision: str
    refund_amount: float | None = Field(ge=0, default=None)
    refund_method: str = "original"
    notes: str | None = None


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CreateCouponRequest(BaseModel):
    code: str
    coupon_type: str
    value: float = Field(ge=0)
    name: str | None = None
    description: str | None = None
    min_order_amount: float = Field(ge=0, default=0.0)
    max_discount_amount: float | None = Field(ge=0, default=None)
    usage_limit: int | None = Field(ge=1, default=None)
    per_user_limit: int | None = Field(ge=1, default=None)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_public: bool = True


class CouponCodeResponse(BaseModel):
    code: str


class ValidateCouponRequest(BaseModel):
    code: str
    order_amount: float = Field(ge=0)
    customer_id: str | None = None


class CouponCheckResponse(BaseModel):
    is_valid: bool
    discount_amount: float
    reason: str | None = None
