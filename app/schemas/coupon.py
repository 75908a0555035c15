from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from app.models.coupon import DiscountType


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    discount_type: DiscountType
    value: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, gt=0)
    per_user_limit: int = Field(default=1, ge=0)
    product_ids: List[int] = Field(default_factory=list)
    allow_on_sale: bool = False
    active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Code must not be blank")
        return value

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @model_validator(mode="after")
    def check_value_for_type(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage must be between 0 and 100")
        if self.discount_type == DiscountType.FIXED and not self.currency:
            raise ValueError("Currency is required for fixed amount coupons")
        return self


class CouponUpdate(BaseModel):
    discount_type: Optional[DiscountType] = None
    value: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, gt=0)
    per_user_limit: Optional[int] = Field(None, ge=0)
    product_ids: Optional[List[int]] = None
    allow_on_sale: Optional[bool] = None
    active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator("discount_type", "value", "per_user_limit", "product_ids", "allow_on_sale", "active")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value


class CouponResponse(BaseModel):
    id: int
    code: str
    discount_type: DiscountType
    value: Decimal
    currency: Optional[str]
    min_purchase: Optional[Decimal]
    max_uses: Optional[int]
    used_count: int
    per_user_limit: int
    product_ids: List[int]
    allow_on_sale: bool
    active: bool
    starts_at: Optional[datetime]
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CouponSummary(BaseModel):
    """Public view of an applied coupon."""

    code: str
    discount_type: DiscountType
    value: Decimal
    currency: Optional[str]

    class Config:
        from_attributes = True


class ValidateCouponRequest(BaseModel):
    code: Optional[str] = None
    product_id: Optional[int] = None
    email: Optional[EmailStr] = None


class DiscountPreview(BaseModel):
    original: Decimal
    discount_amount: Decimal
    final: Decimal
    product_currency: str


class ValidateCouponResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    coupon: Optional[CouponSummary] = None
    discount: Optional[DiscountPreview] = None
