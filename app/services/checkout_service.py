from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import CouponInvalid, ProductNotFound
from app.models.product import FileType, Product
from app.services import payment_gateway
from app.services.coupon_service import CouponService
from app.services.payment_gateway import CheckoutSession
from app.services.pricing import to_minor_units

logger = structlog.get_logger()


class CheckoutService:

    @staticmethod
    def create_session(
        db: Session,
        product_id: int,
        email: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> CheckoutSession:
        """Price a digital product server-side and open a payment session for it.

        Client supplied amounts are never trusted; the coupon (if any) goes
        through the same validator the preview endpoint uses.
        """
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFound()

        if not product.published:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product is not available")
        if product.file_type != FileType.DIGITAL:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product is not a digital product")

        amount = product.effective_price
        if amount is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product has no price")

        buyer_email = email.strip().lower() if email else None
        metadata = {
            "product_id": product.id,
            "product_slug": product.slug,
            "buyer_email": buyer_email,
        }

        if coupon_code and coupon_code.strip():
            try:
                valid = CouponService.validate_coupon(db, coupon_code, product.id, buyer_email)
            except CouponInvalid as exc:
                logger.info(
                    "checkout_coupon_rejected",
                    product_id=product.id,
                    coupon_code=coupon_code,
                    reason=exc.kind.value,
                )
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={"message": exc.message, "errors": [{"code": exc.kind.value}]},
                )

            amount = valid.breakdown.final
            metadata.update(
                {
                    "coupon_id": valid.coupon.id,
                    "coupon_code": valid.coupon.code,
                    "original_price": valid.breakdown.original,
                    "discount_amount": valid.breakdown.discount,
                }
            )

        session = payment_gateway.create_checkout_session(
            amount_minor=to_minor_units(amount, product.currency),
            currency=product.currency,
            description=product.name,
            metadata=metadata,
            customer_email=buyer_email,
        )

        logger.info(
            "checkout_session_created",
            session_id=session.session_id,
            product_id=product.id,
            amount=amount,
            currency=product.currency,
            coupon_id=metadata.get("coupon_id"),
        )
        return session
