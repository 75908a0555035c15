"""Thin wrapper around the Razorpay client.

Checkout sessions are Razorpay Payment Links: the link id is the session
id, ``short_url`` is where the buyer is redirected and ``notes`` carries
the metadata that comes back on the ``payment_link.paid`` webhook.
"""
from dataclasses import dataclass
from typing import Dict, Optional

import razorpay
from razorpay.errors import SignatureVerificationError
import structlog

from app.core.config import settings
from app.core.exceptions import PaymentProviderError

logger = structlog.get_logger()

# Initialize Razorpay client
razorpay_client = razorpay.Client(
    auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
)

# Razorpay rejects note values longer than this
MAX_NOTE_LENGTH = 256


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


def _stringify_notes(metadata: Dict[str, object]) -> Dict[str, str]:
    return {
        key: str(value)[:MAX_NOTE_LENGTH]
        for key, value in metadata.items()
        if value is not None
    }


def create_checkout_session(
    amount_minor: int,
    currency: str,
    description: str,
    metadata: Dict[str, object],
    customer_email: Optional[str] = None,
) -> CheckoutSession:
    """Create a payment link; any provider failure surfaces as ``PaymentProviderError``."""
    payload = {
        "amount": amount_minor,
        "currency": currency.upper(),
        "description": description[:2048],
        "notes": _stringify_notes(metadata),
        "callback_url": f"{settings.FRONTEND_URL.rstrip('/')}/checkout/success",
        "callback_method": "get",
    }
    if customer_email:
        payload["customer"] = {"email": customer_email}

    try:
        link = razorpay_client.payment_link.create(payload)
    except Exception as exc:
        logger.error(
            "payment_link_create_failed",
            error_type=type(exc).__name__,
            detail=str(exc),
            product_id=metadata.get("product_id"),
            amount=amount_minor,
            currency=currency,
        )
        raise PaymentProviderError("Could not create checkout session") from exc

    session_id = link.get("id")
    url = link.get("short_url")
    if not session_id or not url:
        logger.error("payment_link_response_invalid", response_keys=sorted(link.keys()))
        raise PaymentProviderError("Payment provider returned an incomplete session")

    logger.info("payment_link_created", session_id=session_id, amount=amount_minor, currency=currency)
    return CheckoutSession(session_id=session_id, url=url)


def verify_webhook_signature(body: bytes, signature: Optional[str]) -> bool:
    if not signature or not settings.RAZORPAY_WEBHOOK_SECRET:
        return False
    try:
        razorpay_client.utility.verify_webhook_signature(
            body.decode("utf-8"),
            signature,
            settings.RAZORPAY_WEBHOOK_SECRET,
        )
    except (SignatureVerificationError, UnicodeDecodeError):
        return False
    return True
