from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, ForeignKey, JSON, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_coupons_used_count_within_max"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True)  # Stored upper-cased

    discount_type = Column(Enum(DiscountType), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)  # Percentage (0-100] or fixed amount
    currency = Column(String(3), nullable=True)  # Required for fixed coupons

    min_purchase = Column(Numeric(10, 2), nullable=True)

    max_uses = Column(Integer, nullable=True)  # Global usage limit
    used_count = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer, default=1, nullable=False)  # 0 = unlimited

    product_ids = Column(JSON, default=list, nullable=False)  # Empty = every product
    allow_on_sale = Column(Boolean, default=False, nullable=False)

    active = Column(Boolean, default=True, nullable=False)
    starts_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships (usages are independent rows, never cascaded)
    created_by = relationship("User", back_populates="created_coupons")
    usages = relationship("CouponUsage", back_populates="coupon", passive_deletes="all")
