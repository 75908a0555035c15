from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
import structlog

from app.core.exceptions import CouponErrorKind, CouponInvalid, CouponNotFound, PermissionDenied
from app.core.permissions import Action, Capability, Resource, has_capability
from app.models.coupon import Coupon, DiscountType
from app.models.coupon_usage import CouponUsage
from app.models.digital_purchase import DigitalPurchase
from app.models.product import Product
from app.schemas.coupon import CouponCreate, CouponUpdate
from app.services.pricing import DiscountBreakdown, compute_discount

logger = structlog.get_logger()


@dataclass(frozen=True)
class ValidCoupon:
    coupon: Coupon
    product: Product
    breakdown: DiscountBreakdown


def _require(capabilities: FrozenSet[Capability], action: Action) -> None:
    if not has_capability(capabilities, Resource.COUPONS, action):
        raise PermissionDenied(f"Missing permission coupons:{action.value}")


class CouponService:

    @staticmethod
    def find_by_code(db: Session, code: str) -> Optional[Coupon]:
        normalized = (code or "").strip().upper()
        if not normalized:
            return None
        return db.query(Coupon).filter(func.upper(Coupon.code) == normalized).first()

    @staticmethod
    def count_usages_by_email(db: Session, coupon_id: int, email: str) -> int:
        return (
            db.query(func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id == coupon_id, CouponUsage.email == email.strip().lower())
            .scalar()
            or 0
        )

    @staticmethod
    def validate_coupon(
        db: Session,
        code: str,
        product_id: int,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ValidCoupon:
        """Check a coupon against a product and (optionally) a buyer.

        Rules run in a fixed order and the first failure is raised as
        ``CouponInvalid``. Nothing is written; calling this twice with the
        same state gives the same answer.
        """
        now = now or datetime.utcnow()

        coupon = CouponService.find_by_code(db, code)
        if not coupon:
            raise CouponInvalid(CouponErrorKind.NOT_FOUND)

        if not coupon.active:
            raise CouponInvalid(CouponErrorKind.INACTIVE)

        if coupon.starts_at and now < coupon.starts_at:
            raise CouponInvalid(CouponErrorKind.NOT_STARTED)
        if coupon.expires_at and now > coupon.expires_at:
            raise CouponInvalid(CouponErrorKind.EXPIRED)

        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise CouponInvalid(CouponErrorKind.MAX_USES)

        if email and coupon.per_user_limit > 0:
            if CouponService.count_usages_by_email(db, coupon.id, email) >= coupon.per_user_limit:
                raise CouponInvalid(CouponErrorKind.USER_LIMIT)

        if coupon.product_ids and product_id not in coupon.product_ids:
            raise CouponInvalid(CouponErrorKind.WRONG_PRODUCT)

        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or not product.price:
            raise CouponInvalid(CouponErrorKind.PRODUCT_NOT_FOUND)

        if product.on_sale and product.sale_price and not coupon.allow_on_sale:
            raise CouponInvalid(CouponErrorKind.NOT_ON_SALE)

        base_price = product.effective_price
        if coupon.min_purchase and base_price < coupon.min_purchase:
            raise CouponInvalid(CouponErrorKind.MIN_PURCHASE)

        breakdown = compute_discount(
            base_price,
            coupon.discount_type,
            coupon.value,
            coupon.currency,
            product.currency,
        )
        return ValidCoupon(coupon=coupon, product=product, breakdown=breakdown)

    # ------------------------------------------------------------------
    # Operator administration
    # ------------------------------------------------------------------

    @staticmethod
    def list_coupons(
        db: Session,
        capabilities: FrozenSet[Capability],
        search: Optional[str] = None,
        status_filter: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Coupon], int]:
        _require(capabilities, Action.VIEW)

        query = db.query(Coupon)
        if search:
            query = query.filter(func.upper(Coupon.code).contains(search.strip().upper()))

        now = datetime.utcnow()
        if status_filter == "active":
            query = query.filter(
                Coupon.active == True,
                or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
            )
        elif status_filter == "expired":
            query = query.filter(Coupon.expires_at <= now)
        elif status_filter == "inactive":
            query = query.filter(Coupon.active == False)

        total = query.count()
        coupons = (
            query.order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return coupons, total

    @staticmethod
    def get_coupon(db: Session, capabilities: FrozenSet[Capability], coupon_id: int) -> Coupon:
        _require(capabilities, Action.VIEW)
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise CouponNotFound()
        return coupon

    @staticmethod
    def create_coupon(
        db: Session,
        capabilities: FrozenSet[Capability],
        coupon_data: CouponCreate,
        created_by_id: Optional[int] = None,
    ) -> Coupon:
        _require(capabilities, Action.CREATE)

        if CouponService.find_by_code(db, coupon_data.code):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A coupon with this code already exists",
            )

        coupon = Coupon(
            code=coupon_data.code,
            discount_type=coupon_data.discount_type,
            value=coupon_data.value,
            currency=coupon_data.currency if coupon_data.discount_type == DiscountType.FIXED else None,
            min_purchase=coupon_data.min_purchase,
            max_uses=coupon_data.max_uses,
            per_user_limit=coupon_data.per_user_limit,
            product_ids=list(coupon_data.product_ids),
            allow_on_sale=coupon_data.allow_on_sale,
            active=coupon_data.active,
            starts_at=coupon_data.starts_at,
            expires_at=coupon_data.expires_at,
            created_by_id=created_by_id,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info("coupon_created", coupon_id=coupon.id, code=coupon.code, created_by_id=created_by_id)
        return coupon

    @staticmethod
    def update_coupon(
        db: Session,
        capabilities: FrozenSet[Capability],
        coupon_id: int,
        coupon_data: CouponUpdate,
    ) -> Coupon:
        _require(capabilities, Action.EDIT)

        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise CouponNotFound()

        update_data = coupon_data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(coupon, key, value)

        if coupon.discount_type == DiscountType.FIXED:
            if not coupon.currency:
                db.rollback()
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Currency is required for fixed amount coupons",
                )
        else:
            coupon.currency = None
            if coupon.value > 100:
                db.rollback()
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Percentage must be between 0 and 100",
                )

        if coupon.max_uses is not None and coupon.max_uses < coupon.used_count:
            used_count = coupon.used_count
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": "Usage limit cannot be lower than the number of times the coupon was used",
                    "errors": [{"field": "max_uses", "used_count": used_count}],
                },
            )

        db.commit()
        db.refresh(coupon)

        logger.info("coupon_updated", coupon_id=coupon.id, fields=sorted(update_data.keys()))
        return coupon

    @staticmethod
    def delete_coupon(db: Session, capabilities: FrozenSet[Capability], coupon_id: int) -> None:
        _require(capabilities, Action.DELETE)

        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise CouponNotFound()

        usages = db.query(func.count(CouponUsage.id)).filter(CouponUsage.coupon_id == coupon.id).scalar()
        purchases = (
            db.query(func.count(DigitalPurchase.id)).filter(DigitalPurchase.coupon_id == coupon.id).scalar()
        )
        if coupon.used_count > 0 or usages or purchases:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={
                    "message": "Coupon has been used and cannot be deleted",
                    "errors": [{"used_count": coupon.used_count, "usages": usages, "purchases": purchases}],
                },
            )

        code = coupon.code
        db.delete(coupon)
        db.commit()
        logger.info("coupon_deleted", coupon_id=coupon_id, code=code)
