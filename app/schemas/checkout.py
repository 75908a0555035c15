from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime


class CheckoutRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    email: Optional[EmailStr] = None
    coupon_code: Optional[str] = Field(None, max_length=50)


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str


class PurchaseResponse(BaseModel):
    """What the checkout success page needs to offer the download."""

    download_token: str
    product_id: int
    product_name: Optional[str] = None
    email: str
    download_count: int
    max_downloads: int
    expires_at: datetime
