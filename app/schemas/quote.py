from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
import enum
import bleach

from app.models.quote import QuoteStatus, SenderType


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    cleaned = bleach.clean(value, tags=[], attributes={}, strip=True).strip()
    return cleaned or None


class QuoteAction(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    COUNTER_OFFER = "counter_offer"


class QuoteCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    message: Optional[str] = Field(None, max_length=5000)
    product_id: Optional[int] = Field(None, gt=0)

    @field_validator("name", "phone", "message")
    @classmethod
    def sanitize_text(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value)

    @field_validator("name")
    @classmethod
    def require_name(cls, value: Optional[str]) -> str:
        if not value:
            raise ValueError("Name is required")
        return value


class QuoteRespondRequest(BaseModel):
    quote_id: int
    action: QuoteAction
    message: Optional[str] = Field(None, max_length=5000)

    @field_validator("message")
    @classmethod
    def sanitize_message(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value)


class QuoteAdminUpdate(BaseModel):
    id: int
    status: Optional[QuoteStatus] = None
    quoted_price: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    admin_notes: Optional[str] = Field(None, max_length=5000)

    @field_validator("admin_notes")
    @classmethod
    def sanitize_notes(cls, value: Optional[str]) -> Optional[str]:
        return _clean(value)


class QuoteMessageResponse(BaseModel):
    id: int
    sender_type: SenderType
    message_key: str
    message: Optional[str]
    quoted_price: Optional[Decimal]
    created_at: datetime

    class Config:
        from_attributes = True


class QuoteResponse(BaseModel):
    id: int
    quote_number: str
    name: str
    email: str
    phone: Optional[str]
    message: Optional[str]
    product_id: Optional[int]
    file_name: Optional[str]
    file_size: Optional[int]
    status: QuoteStatus
    quoted_price: Optional[Decimal]
    admin_notes: Optional[str]
    user_response: Optional[str]
    viewed_at: Optional[datetime]
    quoted_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BuyerQuoteResponse(BaseModel):
    """Buyer's own view: no operator notes, plus the unseen-offer flag."""

    id: int
    quote_number: str
    product_id: Optional[int]
    file_name: Optional[str]
    status: QuoteStatus
    quoted_price: Optional[Decimal]
    user_response: Optional[str]
    has_unseen_offer: bool
    quoted_at: Optional[datetime]
    created_at: datetime
    messages: List[QuoteMessageResponse] = []

    class Config:
        from_attributes = True


class QuoteCreatedResponse(BaseModel):
    quote_id: int
    quote_number: str
