import json

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import MissingMetadata
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.checkout import CheckoutRequest, CheckoutSessionResponse, PurchaseResponse
from app.services import payment_gateway
from app.services.checkout_service import CheckoutService
from app.services.settlement_service import (
    PAYMENT_COMPLETED_EVENT,
    SettlementService,
    parse_payment_event,
)
from app.utils.response import success

router = APIRouter()

logger = structlog.get_logger()


@router.post(
    "/",
    response_model=dict,
    summary="Open a payment session for a digital product",
    description="""
Prices the product server-side (sale price when on sale), applies the coupon
through the same validator as `/coupons/validate`, and returns the payment
page URL.

Errors:
- 404 product not found
- 400 product unavailable, not digital, unpriced, or coupon rejected (`errors[0].code`)
- 502 payment provider unavailable
""",
)
@limiter.limit("20/minute")
def create_checkout(
    request: Request,
    payload: CheckoutRequest,
    db: Session = Depends(get_db),
):
    session = CheckoutService.create_session(
        db,
        product_id=payload.product_id,
        email=str(payload.email) if payload.email else None,
        coupon_code=payload.coupon_code,
    )
    data = CheckoutSessionResponse(session_id=session.session_id, url=session.url)
    return success(data=data.model_dump(), message="Checkout session created")


@router.post("/webhook")
@limiter.limit("120/minute")
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Razorpay payment link webhooks.

    The signature is checked against the raw body before anything in it is
    trusted. Once verified the event is always acknowledged, so a malformed
    or partially failed settlement is logged instead of being redelivered.
    """
    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature")

    if not payment_gateway.verify_webhook_signature(body, signature):
        logger.warning("webhook_signature_invalid", has_signature=bool(signature), size=len(body))
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        event = json.loads(body)
    except ValueError:
        logger.error("webhook_body_invalid")
        return success(data={"received": True}, message="Webhook ignored")

    event_type = event.get("event") if isinstance(event, dict) else None
    logger.info("webhook_received", webhook_event=event_type)

    if event_type != PAYMENT_COMPLETED_EVENT:
        return success(data={"received": True}, message="Event ignored")

    try:
        settlement = SettlementService.reconcile(db, parse_payment_event(event))
    except MissingMetadata as exc:
        logger.error("webhook_missing_metadata", missing=exc.missing)
        return success(data={"received": True}, message="Event acknowledged")
    except Exception:
        db.rollback()
        logger.exception("webhook_settlement_failed", webhook_event=event_type)
        return success(data={"received": True}, message="Event acknowledged")

    logger.info(
        "webhook_settled",
        purchase_id=settlement.purchase.id,
        created=settlement.created,
        usage_recorded=settlement.usage_recorded,
        usage_incremented=settlement.usage_incremented,
    )
    return success(data={"received": True}, message="Payment processed")


@router.get("/purchases/{session_id}", response_model=dict)
@limiter.limit("30/minute")
def get_purchase(request: Request, session_id: str, db: Session = Depends(get_db)):
    """Success-page lookup; 404 until the webhook has settled the session."""
    purchase = SettlementService.get_purchase_by_session(db, session_id)
    if not purchase:
        raise HTTPException(status_code=404, detail="Purchase not found")

    data = PurchaseResponse(
        download_token=purchase.download_token,
        product_id=purchase.product_id,
        product_name=purchase.product.name if purchase.product else None,
        email=purchase.email,
        download_count=purchase.download_count,
        max_downloads=purchase.max_downloads,
        expires_at=purchase.expires_at,
    )
    return success(data=data.model_dump(), message="Purchase found")
