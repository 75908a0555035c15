"""Turns a verified "payment completed" event into a download entitlement.

The provider delivers events at least once, so every step checks whether
it already happened before acting. The payment session id is the
idempotency key and is backed by unique constraints on
``digital_purchases.payment_session_id`` and
``coupon_usages(coupon_id, payment_session_id)``.

Coupon bookkeeping (usage row, then counter) is committed step by step and
never rolls back the entitlement.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
import secrets

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from app.core.config import settings
from app.core.exceptions import MissingMetadata
from app.models.coupon import Coupon
from app.models.coupon_usage import CouponUsage
from app.models.digital_purchase import DigitalPurchase
from app.models.product import Product
from app.services.pricing import quantize

logger = structlog.get_logger()

PAYMENT_COMPLETED_EVENT = "payment_link.paid"


@dataclass(frozen=True)
class PaymentCompletedEvent:
    session_id: str
    product_id: int
    email: str
    coupon_id: Optional[int] = None
    original_price: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None


@dataclass
class SettlementResult:
    purchase: DigitalPurchase
    created: bool
    usage_recorded: bool = False
    usage_incremented: bool = False


def _entity(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    return ((payload.get(name) or {}).get("entity")) or {}


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def parse_payment_event(event: Dict[str, Any]) -> PaymentCompletedEvent:
    """Pull the settlement inputs out of a ``payment_link.paid`` webhook body.

    Buyer email comes from the checkout metadata first, then the payment
    link's customer, then the payment itself.
    """
    payload = event.get("payload") or {}
    link = _entity(payload, "payment_link")
    payment = _entity(payload, "payment")
    notes = link.get("notes") or payment.get("notes") or {}
    if not isinstance(notes, dict):
        # Razorpay sends an empty list when no notes were set
        notes = {}

    session_id = link.get("id")
    product_id = _parse_int(notes.get("product_id"))
    email = (
        notes.get("buyer_email")
        or (link.get("customer") or {}).get("email")
        or payment.get("email")
    )

    missing = [
        name
        for name, value in (("session_id", session_id), ("product_id", product_id), ("email", email))
        if not value
    ]
    if missing:
        raise MissingMetadata(missing)

    return PaymentCompletedEvent(
        session_id=session_id,
        product_id=product_id,
        email=email.strip().lower(),
        coupon_id=_parse_int(notes.get("coupon_id")),
        original_price=_parse_decimal(notes.get("original_price")),
        discount_amount=_parse_decimal(notes.get("discount_amount")),
    )


class SettlementService:

    @staticmethod
    def get_purchase_by_session(db: Session, session_id: str) -> Optional[DigitalPurchase]:
        return (
            db.query(DigitalPurchase)
            .filter(DigitalPurchase.payment_session_id == session_id)
            .first()
        )

    @staticmethod
    def reconcile(
        db: Session,
        event: PaymentCompletedEvent,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        now = now or datetime.utcnow()

        purchase, created = SettlementService._ensure_purchase(db, event, now)
        result = SettlementResult(purchase=purchase, created=created)

        if event.coupon_id is not None and purchase.coupon_id is None:
            logger.warning("settlement_coupon_missing", coupon_id=event.coupon_id, session_id=event.session_id)
        elif event.coupon_id is not None:
            result.usage_recorded = SettlementService._record_usage(db, event, now)
            if created:
                result.usage_incremented = SettlementService._increment_used_count(db, event)

        return result

    @staticmethod
    def _ensure_purchase(db: Session, event: PaymentCompletedEvent, now: datetime):
        existing = SettlementService.get_purchase_by_session(db, event.session_id)
        if existing:
            logger.info(
                "settlement_duplicate_delivery",
                session_id=event.session_id,
                purchase_id=existing.id,
            )
            return existing, False

        if not db.query(Product.id).filter(Product.id == event.product_id).first():
            raise MissingMetadata(["product_id"])

        coupon_id = event.coupon_id
        if coupon_id is not None and not db.query(Coupon.id).filter(Coupon.id == coupon_id).first():
            coupon_id = None

        purchase = DigitalPurchase(
            product_id=event.product_id,
            email=event.email,
            download_token=secrets.token_hex(32),
            download_count=0,
            max_downloads=settings.MAX_DOWNLOADS,
            expires_at=now + timedelta(days=settings.DOWNLOAD_LINK_TTL_DAYS),
            payment_session_id=event.session_id,
            coupon_id=coupon_id,
            created_at=now,
        )
        db.add(purchase)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event won the insert
            db.rollback()
            existing = SettlementService.get_purchase_by_session(db, event.session_id)
            if existing is None:
                raise
            logger.info(
                "settlement_concurrent_delivery",
                session_id=event.session_id,
                purchase_id=existing.id,
            )
            return existing, False

        db.refresh(purchase)
        logger.info(
            "digital_purchase_created",
            purchase_id=purchase.id,
            session_id=event.session_id,
            product_id=event.product_id,
            coupon_id=event.coupon_id,
        )
        return purchase, True

    @staticmethod
    def _record_usage(db: Session, event: PaymentCompletedEvent, now: datetime) -> bool:
        """Insert the usage row unless this session already has one. Failures are logged only."""
        try:
            already = (
                db.query(CouponUsage.id)
                .filter(
                    CouponUsage.coupon_id == event.coupon_id,
                    CouponUsage.payment_session_id == event.session_id,
                )
                .first()
            )
            if already:
                return True

            if event.original_price is None or event.discount_amount is None:
                logger.warning(
                    "settlement_coupon_terms_missing",
                    coupon_id=event.coupon_id,
                    session_id=event.session_id,
                    original_price=event.original_price,
                    discount_amount=event.discount_amount,
                )

            original = quantize(event.original_price or Decimal("0"))
            discount = quantize(event.discount_amount or Decimal("0"))
            final = quantize(max(original - discount, settings.MIN_CHARGE))

            db.add(
                CouponUsage(
                    coupon_id=event.coupon_id,
                    email=event.email,
                    original_price=original,
                    discount_amount=discount,
                    final_price=final,
                    payment_session_id=event.session_id,
                    used_at=now,
                )
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(
                "coupon_usage_already_recorded",
                coupon_id=event.coupon_id,
                session_id=event.session_id,
            )
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "coupon_usage_record_failed",
                coupon_id=event.coupon_id,
                session_id=event.session_id,
            )
            return False

        logger.info("coupon_usage_recorded", coupon_id=event.coupon_id, session_id=event.session_id)
        return True

    @staticmethod
    def _increment_used_count(db: Session, event: PaymentCompletedEvent) -> bool:
        """Single conditional UPDATE; never pushes used_count past max_uses."""
        try:
            rows = db.execute(
                update(Coupon)
                .where(
                    Coupon.id == event.coupon_id,
                    or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
                )
                .values(used_count=Coupon.used_count + 1)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "coupon_usage_increment_failed",
                coupon_id=event.coupon_id,
                session_id=event.session_id,
            )
            return False

        if not rows:
            logger.warning(
                "coupon_usage_increment_skipped",
                coupon_id=event.coupon_id,
                session_id=event.session_id,
            )
            return False
        return True
