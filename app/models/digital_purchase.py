from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class DigitalPurchase(Base):
    """Download entitlement created once per settled payment session."""

    __tablename__ = "digital_purchases"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)

    download_token = Column(String(64), unique=True, nullable=False, index=True)
    download_count = Column(Integer, default=0, nullable=False)
    max_downloads = Column(Integer, default=3, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    # Idempotency key for webhook redelivery
    payment_session_id = Column(String(100), unique=True, nullable=False, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    product = relationship("Product")
    coupon = relationship("Coupon")

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @property
    def downloads_remaining(self) -> int:
        return max(self.max_downloads - self.download_count, 0)
