from decimal import Decimal

import pytest

from app.core.exceptions import CouponErrorKind, CouponInvalid
from app.models.coupon import DiscountType
from app.services.pricing import compute_discount, to_minor_units


def test_percentage_discount_halves_the_price():
    breakdown = compute_discount(Decimal("20.00"), DiscountType.PERCENTAGE, Decimal("50"), None, "EUR")

    assert breakdown.original == Decimal("20.00")
    assert breakdown.discount == Decimal("10.00")
    assert breakdown.final == Decimal("10.00")
    assert breakdown.currency == "EUR"


def test_fixed_discount_larger_than_price_is_capped_at_min_charge():
    breakdown = compute_discount(Decimal("1.00"), DiscountType.FIXED, Decimal("5.00"), "EUR", "EUR")

    assert breakdown.discount == Decimal("0.50")
    assert breakdown.final == Decimal("0.50")


def test_full_percentage_discount_still_charges_minimum():
    breakdown = compute_discount("12.34", DiscountType.PERCENTAGE, 100, None, "EUR")

    assert breakdown.final == Decimal("0.50")
    assert breakdown.discount == Decimal("11.84")
    assert breakdown.discount + breakdown.final == breakdown.original


def test_price_below_min_charge_gets_no_discount():
    breakdown = compute_discount(Decimal("0.30"), DiscountType.PERCENTAGE, Decimal("50"), None, "EUR")

    assert breakdown.discount == Decimal("0.00")
    assert breakdown.final == Decimal("0.50")


def test_percentage_rounds_half_up_to_cents():
    # 9.99 * 15% = 1.4985 -> 1.50
    breakdown = compute_discount(Decimal("9.99"), DiscountType.PERCENTAGE, Decimal("15"), None, "EUR")

    assert breakdown.discount == Decimal("1.50")
    assert breakdown.final == Decimal("8.49")


def test_fixed_coupon_in_other_currency_is_rejected():
    with pytest.raises(CouponInvalid) as exc_info:
        compute_discount(Decimal("20.00"), DiscountType.FIXED, Decimal("5"), "USD", "EUR")

    assert exc_info.value.kind == CouponErrorKind.CURRENCY_MISMATCH


def test_percentage_coupon_ignores_currency():
    breakdown = compute_discount(Decimal("20.00"), DiscountType.PERCENTAGE, Decimal("10"), "USD", "EUR")

    assert breakdown.final == Decimal("18.00")


def test_custom_min_charge():
    breakdown = compute_discount(
        Decimal("3.00"), DiscountType.FIXED, Decimal("5"), "EUR", "EUR", min_charge=Decimal("1.00")
    )

    assert breakdown.final == Decimal("1.00")
    assert breakdown.discount == Decimal("2.00")


@pytest.mark.parametrize(
    "amount,currency,expected",
    [
        (Decimal("10.00"), "EUR", 1000),
        (Decimal("0.50"), "eur", 50),
        (Decimal("1500"), "JPY", 1500),
        (Decimal("1.234"), "KWD", 1234),
        ("19.99", "INR", 1999),
    ],
)
def test_minor_units(amount, currency, expected):
    assert to_minor_units(amount, currency) == expected
