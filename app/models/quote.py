from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class QuoteStatus(str, enum.Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    ACCEPTED = "accepted"
    USER_DECLINED = "user_declined"


class SenderType(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class QuoteRequest(Base):
    __tablename__ = "quote_requests"

    id = Column(Integer, primary_key=True, index=True)
    quote_number = Column(String(20), unique=True, nullable=False, index=True)

    # Buyer contact
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(30), nullable=True)
    message = Column(Text, nullable=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)

    # Reference file
    file_name = Column(String(255), nullable=True)
    file_url = Column(String(500), nullable=True)
    file_size = Column(Integer, nullable=True)

    status = Column(Enum(QuoteStatus), default=QuoteStatus.PENDING, nullable=False, index=True)
    quoted_price = Column(Numeric(10, 2), nullable=True)
    admin_notes = Column(Text, nullable=True)
    user_response = Column(Text, nullable=True)

    viewed_at = Column(DateTime, nullable=True)  # Null while a fresh offer is unseen
    quoted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    product = relationship("Product")
    messages = relationship(
        "QuoteMessage",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by=lambda: (QuoteMessage.created_at, QuoteMessage.id),
    )

    @property
    def has_unseen_offer(self) -> bool:
        return self.status == QuoteStatus.QUOTED and self.viewed_at is None


class QuoteMessage(Base):
    __tablename__ = "quote_messages"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False, index=True)

    sender_type = Column(Enum(SenderType), nullable=False)
    message_key = Column(String(30), nullable=False)  # quoted, accepted, declined, counter_offer
    message = Column(Text, nullable=True)
    quoted_price = Column(Numeric(10, 2), nullable=True)  # Price snapshot at send time

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    quote = relationship("QuoteRequest", back_populates="messages")
