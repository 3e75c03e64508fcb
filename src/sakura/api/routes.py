"""FastAPI routes for the fulfillment workflow.

Routes translate requests into calls on the workflow entrypoints. The
two webhooks (gateway callbacks and carrier tracking) answer in the
shape their senders expect: ``200 ok`` for anything already handled,
``401`` for an unverifiable message and ``503 retry`` when a downstream
call failed and the sender should try again.
"""

import json

import structlog
from fastapi import APIRouter, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from sakura.api.schemas import (
    AddNoteRequest,
    AddToCartRequest,
    ApplyCouponRequest,
    CallbackResponse,
    CancelOrderRequest,
    CartIdResponse,
    CartSnapshotResponse,
    CheckoutRequest,
    ConfirmDeliveryRequest,
    CountResponse,
    CouponCheckResponse,
    CouponCodeResponse,
    CreateCartRequest,
    CreateCouponRequest,
    CreatePaymentRequest,
    CreateShipmentRequest,
    ExpiredTransactionsResponse,
    ItemIdResponse,
    MergeCartsRequest,
    NoteIdResponse,
    OrderIdResponse,
    OrderItemSchema,
    OrderResponse,
    PaymentIntentResponse,
    ProcessReturnRequest,
    RefundIdResponse,
    RefundRequest,
    ReturnIdResponse,
    ShipmentResponse,
    SnapshotLineSchema,
    StatusResponse,
    SubmitReturnRequest,
    TotalsSchema,
    TrackingWebhookRequest,
    UpdateCartItemRequest,
    UpdateStatusRequest,
    ValidateCouponRequest,
)
from sakura.carrier import get_carrier
from sakura.cart import items as cart_items
from sakura.cart.snapshot import get_snapshot
from sakura.coupon import engine as coupon_engine
from sakura.coupon.management import create_coupon, deactivate_coupon
from sakura.order.cancellation import cancel_order
from sakura.order.creation import create_order
from sakura.order.delivery import confirm_delivery
from sakura.order.notes import add_order_note
from sakura.order.order import Order
from sakura.order.status import update_status
from sakura.payment.callback import handle_callback
from sakura.payment.expiry import cancel_payment, expire_stale_transactions
from sakura.payment.initiation import create_payment
from sakura.payment.refund import refund
from sakura.returns.processing import process_return
from sakura.returns.submission import submit_return
from sakura.shared.errors import ExternalError, SecurityError
from sakura.shared.lookup import load
from sakura.shipping.creation import create_shipment
from sakura.shipping.shipment import ShippingOrder
from sakura.shipping.tracking import ingest_tracking_event

logger = structlog.get_logger(__name__)


def _retry() -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "retry"})


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/carts", tags=["carts"])


@cart_router.post("", status_code=201, response_model=CartIdResponse)
def create_cart(body: CreateCartRequest) -> CartIdResponse:
    cart_id = cart_items.create_cart(customer_id=body.customer_id, session_token=body.session_token)
    return CartIdResponse(cart_id=cart_id)


@cart_router.get("/{cart_id}", response_model=CartSnapshotResponse)
async def view_cart(cart_id: str, delivery_method: str = "Standard") -> CartSnapshotResponse:
    """Cart with live prices, stock warnings and a totals preview."""
    snapshot = get_snapshot(cart_id, delivery_method=delivery_method)
    return CartSnapshotResponse(
        cart_id=snapshot.cart_id,
        customer_id=snapshot.customer_id,
        delivery_method=snapshot.delivery_method,
        lines=[
            SnapshotLineSchema(
                item_id=line.item_id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.product_name,
                quantity=line.quantity,
                captured_price=float(line.captured_price),
                live_price=float(line.live_price) if line.live_price is not None else None,
                available_stock=line.available_stock,
                errors=list(line.errors),
            )
            for line in snapshot.lines
        ],
        totals=TotalsSchema(**snapshot.totals.as_dict()),
        coupon_code=snapshot.coupon_code,
        coupon_valid=snapshot.coupon_valid,
        coupon_reason=snapshot.coupon_reason,
        warnings=snapshot.warnings,
        checkout_ready=snapshot.is_checkout_ready,
    )


@cart_router.post("/{cart_id}/items", status_code=201, response_model=ItemIdResponse)
def add_cart_item(cart_id: str, body: AddToCartRequest) -> ItemIdResponse:
    item_id = cart_items.add_item(
        cart_id,
        product_id=body.product_id,
        quantity=body.quantity,
        variant_id=body.variant_id,
        is_gift=body.is_gift,
        gift_message=body.gift_message,
        options=body.options,
    )
    return ItemIdResponse(item_id=item_id)


@cart_router.put("/{cart_id}/items/{item_id}", response_model=StatusResponse)
def update_cart_item(cart_id: str, item_id: str, body: UpdateCartItemRequest) -> StatusResponse:
    cart_items.update_item(
        cart_id,
        item_id,
        quantity=body.quantity,
        is_gift=body.is_gift,
        gift_message=body.gift_message,
        options=body.options,
    )
    return StatusResponse()


@cart_router.delete("/{cart_id}/items/{item_id}", response_model=StatusResponse)
def remove_cart_item(cart_id: str, item_id: str) -> StatusResponse:
    cart_items.remove_item(cart_id, item_id)
    return StatusResponse()


@cart_router.delete("/{cart_id}/items", response_model=StatusResponse)
def clear_cart(cart_id: str) -> StatusResponse:
    cart_items.clear_cart(cart_id)
    return StatusResponse()


@cart_router.put("/{cart_id}/coupon", response_model=StatusResponse)
def apply_cart_coupon(cart_id: str, body: ApplyCouponRequest) -> StatusResponse:
    cart_items.apply_coupon(cart_id, body.coupon_code)
    return StatusResponse()


@cart_router.delete("/{cart_id}/coupon", response_model=StatusResponse)
def remove_cart_coupon(cart_id: str) -> StatusResponse:
    cart_items.remove_coupon(cart_id)
    return StatusResponse()


@cart_router.post("/{cart_id}/refresh", response_model=CountResponse)
def refresh_cart_prices(cart_id: str) -> CountResponse:
    return CountResponse(count=cart_items.refresh_prices(cart_id))


@cart_router.post("/{cart_id}/merge", response_model=CountResponse)
def merge_guest_cart(cart_id: str, body: MergeCartsRequest) -> CountResponse:
    return CountResponse(count=cart_items.merge_carts(cart_id, body.guest_cart_id))


@cart_router.post("/{cart_id}/checkout", status_code=201, response_model=OrderIdResponse)
def checkout_cart(cart_id: str, body: CheckoutRequest) -> OrderIdResponse:
    order_id = create_order(
        cart_id,
        shipping_address_id=body.shipping_address_id,
        payment_method=body.payment_method,
        billing_address_id=body.billing_address_id,
        delivery_method=body.delivery_method,
        coupon_code=body.coupon_code,
        notes=body.notes,
    )
    return OrderIdResponse(order_id=order_id)


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    order = load(Order, order_id)
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=str(order.customer_id) if order.customer_id else None,
        status=order.status,
        payment_method=order.payment_method,
        delivery_method=order.delivery_method,
        coupon_code=order.coupon_code,
        tracking_number=order.tracking_number,
        paid_transaction_id=order.paid_transaction_id,
        delivery_issue=bool(order.delivery_issue),
        items=[
            OrderItemSchema(
                item_id=str(item.id),
                product_id=str(item.product_id),
                variant_id=str(item.variant_id) if item.variant_id else None,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                returned_quantity=item.returned_quantity or 0,
            )
            for item in order.items
        ],
        totals=TotalsSchema(**order.totals().as_dict()),
    )


@order_router.put("/{order_id}/status", response_model=StatusResponse)
def change_order_status(order_id: str, body: UpdateStatusRequest) -> StatusResponse:
    status = update_status(order_id, body.status, notes=body.notes, actor=body.actor)
    return StatusResponse(status=status)


@order_router.put("/{order_id}/cancel", response_model=StatusResponse)
def cancel(order_id: str, body: CancelOrderRequest) -> StatusResponse:
    cancel_order(order_id, reason=body.reason, cancelled_by=body.cancelled_by, notes=body.notes)
    return StatusResponse(status="cancelled")


@order_router.put("/{order_id}/delivery", response_model=StatusResponse)
def confirm_receipt(order_id: str, body: ConfirmDeliveryRequest) -> StatusResponse:
    status = confirm_delivery(order_id, body.is_received, notes=body.notes)
    return StatusResponse(status=status)


@order_router.post("/{order_id}/notes", status_code=201, response_model=NoteIdResponse)
def add_note(order_id: str, body: AddNoteRequest) -> NoteIdResponse:
    note_id = add_order_note(order_id, body.body, body.author, is_customer_visible=body.is_customer_visible)
    return NoteIdResponse(note_id=note_id)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("", status_code=201, response_model=PaymentIntentResponse)
def initiate_payment(body: CreatePaymentRequest) -> PaymentIntentResponse:
    intent = create_payment(body.order_id, body.method, return_url=body.return_url)
    return PaymentIntentResponse(
        transaction_id=intent.transaction_id,
        method=intent.method,
        amount=intent.amount,
        instruction=intent.instruction,
        expires_at=intent.expires_at,
    )


@payment_router.post("/{transaction_id}/refunds", status_code=201, response_model=RefundIdResponse)
def refund_payment(transaction_id: str, body: RefundRequest) -> RefundIdResponse:
    refund_id = refund(transaction_id, body.reason, amount=body.amount)
    return RefundIdResponse(refund_id=refund_id)


@payment_router.put("/{transaction_id}/cancel", response_model=StatusResponse)
def cancel_attempt(transaction_id: str) -> StatusResponse:
    cancel_payment(transaction_id, reason="Cancelled by customer")
    return StatusResponse(status="cancelled")


@payment_router.post("/expire", response_model=ExpiredTransactionsResponse)
def sweep_stale_payments() -> ExpiredTransactionsResponse:
    """Close every open attempt whose payment window has passed."""
    return ExpiredTransactionsResponse(expired=expire_stale_transactions())


@payment_router.api_route("/callbacks/{method}", methods=["GET", "POST"], response_model=CallbackResponse)
async def gateway_callback(
    method: str,
    request: Request,
    x_signature: str = Header(default=""),
    authorization: str = Header(default=""),
):
    """Gateway IPN/webhook. Redirect gateways call back with a query string, the others POST a body."""
    body = (await request.body()).decode()
    payload = body or request.url.query
    try:
        outcome = await run_in_threadpool(handle_callback, method, payload, x_signature or authorization or None)
    except SecurityError:
        return JSONResponse(status_code=401, content={"status": "invalid_signature"})
    except ExternalError:
        logger.warning("callback_deferred", method=method)
        return _retry()
    return CallbackResponse(outcome=outcome)


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.post("", status_code=201, response_model=ShipmentResponse)
def book_shipment(body: CreateShipmentRequest) -> ShipmentResponse:
    dimensions = {
        k: v
        for k, v in {"length_cm": body.length_cm, "width_cm": body.width_cm, "height_cm": body.height_cm}.items()
        if v is not None
    }
    shipment_id = create_shipment(
        body.order_id,
        service_type=body.service_type,
        dimensions=dimensions,
        collect_on_delivery=body.collect_on_delivery,
    )
    shipment = load(ShippingOrder, shipment_id)
    return ShipmentResponse(shipment_id=shipment_id, tracking_number=shipment.tracking_number)


@shipment_router.post("/tracking/webhook", response_model=CallbackResponse)
async def tracking_webhook(request: Request, x_carrier_signature: str = Header(default="")):
    """Carrier tracking webhook, signed over the raw body."""
    payload = (await request.body()).decode()
    if not get_carrier().verify_webhook_signature(payload, x_carrier_signature):
        logger.warning("tracking_signature_rejected")
        return JSONResponse(status_code=401, content={"status": "invalid_signature"})

    body = TrackingWebhookRequest(**json.loads(payload))
    try:
        outcome = await run_in_threadpool(
            ingest_tracking_event,
            body.tracking_number,
            body.status,
            location=body.location,
            notes=body.notes,
            event_time=body.event_time,
            event_id=body.event_id,
        )
    except ExternalError:
        return _retry()
    return CallbackResponse(outcome=outcome)


# ---------------------------------------------------------------------------
# Return Router
# ---------------------------------------------------------------------------
return_router = APIRouter(prefix="/returns", tags=["returns"])


@return_router.post("", status_code=201, response_model=ReturnIdResponse)
def request_return(body: SubmitReturnRequest) -> ReturnIdResponse:
    return_id = submit_return(
        body.order_id,
        [item.model_dump() for item in body.items],
        body.reason,
        description=body.description,
    )
    return ReturnIdResponse(return_id=return_id)


@return_router.put("/{return_id}/decision", response_model=StatusResponse)
def decide_return(return_id: str, body: ProcessReturnRequest) -> StatusResponse:
    status = process_return(
        return_id,
        body.decision,
        refund_amount=body.refund_amount,
        refund_method=body.refund_method,
        notes=body.notes,
    )
    return StatusResponse(status=status)


# ---------------------------------------------------------------------------
# Coupon Router
# ---------------------------------------------------------------------------
coupon_router = APIRouter(prefix="/coupons", tags=["coupons"])


@coupon_router.post("", status_code=201, response_model=CouponCodeResponse)
def add_coupon(body: CreateCouponRequest) -> CouponCodeResponse:
    return CouponCodeResponse(code=create_coupon(**body.model_dump()))


@coupon_router.put("/{code}/deactivate", response_model=StatusResponse)
def retire_coupon(code: str) -> StatusResponse:
    deactivate_coupon(code)
    return StatusResponse(status="deactivated")


@coupon_router.post("/validate", response_model=CouponCheckResponse)
async def check_coupon(body: ValidateCouponRequest) -> CouponCheckResponse:
    check = coupon_engine.validate(body.code, body.order_amount, customer_id=body.customer_id)
    return CouponCheckResponse(
        is_valid=check.is_valid,
        discount_amount=float(check.discount_amount),
        reason=check.reason,
    )


routers = [cart_router, order_router, payment_router, shipment_router, return_router, coupon_router]
