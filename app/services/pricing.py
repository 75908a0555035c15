"""Discount arithmetic shared by coupon preview and checkout.

Everything here is pure: no database access, no clock. Amounts are
``Decimal`` in major units (e.g. euros) quantized to cents.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from app.core.config import settings
from app.core.exceptions import CouponErrorKind, CouponInvalid
from app.models.coupon import DiscountType

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# ISO 4217 minor unit exponents that differ from the default of 2
CURRENCY_EXPONENTS = {
    "EUR": 2,
    "USD": 2,
    "BGN": 2,
    "INR": 2,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "BHD": 3,
}
DEFAULT_EXPONENT = 2

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class DiscountBreakdown:
    original: Decimal
    discount: Decimal
    final: Decimal
    currency: str

    def as_dict(self) -> dict:
        return {
            "original": self.original,
            "discount_amount": self.discount,
            "final": self.final,
            "product_currency": self.currency,
        }


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 19.99 from dragging binary noise along
    return Decimal(str(value))


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_discount(
    base_price: Number,
    discount_type: DiscountType,
    value: Number,
    coupon_currency: Optional[str],
    product_currency: str,
    min_charge: Optional[Decimal] = None,
) -> DiscountBreakdown:
    """Apply a coupon to a base price.

    The discount never takes the final price below the minimum charge, and
    fixed coupons only apply to products priced in the coupon's currency.

    Raises:
        CouponInvalid: ``CURRENCY_MISMATCH`` for a fixed coupon in another currency.
    """
    base = quantize(to_decimal(base_price))
    amount = to_decimal(value)
    floor = settings.MIN_CHARGE if min_charge is None else min_charge

    if discount_type == DiscountType.PERCENTAGE:
        raw_discount = base * amount / HUNDRED
    else:
        if coupon_currency and coupon_currency.upper() != (product_currency or "").upper():
            raise CouponInvalid(CouponErrorKind.CURRENCY_MISMATCH)
        raw_discount = amount

    ceiling = max(base - floor, Decimal("0"))
    discount = min(max(quantize(raw_discount), Decimal("0")), ceiling)
    final = max(base - discount, floor)

    return DiscountBreakdown(
        original=base,
        discount=quantize(discount),
        final=quantize(final),
        currency=product_currency,
    )


def currency_exponent(currency: str) -> int:
    return CURRENCY_EXPONENTS.get((currency or "").upper(), DEFAULT_EXPONENT)


def to_minor_units(amount: Number, currency: str) -> int:
    """Convert a major-unit amount to the integer the payment gateway expects."""
    exponent = currency_exponent(currency)
    scaled = to_decimal(amount) * (Decimal(10) ** exponent)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
