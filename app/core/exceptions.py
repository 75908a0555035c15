import enum
from fastapi import HTTPException, status
from typing import Any, List, Optional


class EmailAlreadyExists(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )


class InvalidCredentials(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )


class ProductNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found"
        )


class CouponNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Coupon not found"
        )


class QuoteNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Quote not found"
        )


class PermissionDenied(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail
        )


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class CouponErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    NOT_STARTED = "NOT_STARTED"
    EXPIRED = "EXPIRED"
    MAX_USES = "MAX_USES"
    USER_LIMIT = "USER_LIMIT"
    WRONG_PRODUCT = "WRONG_PRODUCT"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    NOT_ON_SALE = "NOT_ON_SALE"
    MIN_PURCHASE = "MIN_PURCHASE"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"


COUPON_ERROR_MESSAGES = {
    CouponErrorKind.NOT_FOUND: "Coupon code not found",
    CouponErrorKind.INACTIVE: "This coupon is no longer active",
    CouponErrorKind.NOT_STARTED: "This coupon is not valid yet",
    CouponErrorKind.EXPIRED: "This coupon has expired",
    CouponErrorKind.MAX_USES: "This coupon has reached its usage limit",
    CouponErrorKind.USER_LIMIT: "You have already used this coupon",
    CouponErrorKind.WRONG_PRODUCT: "This coupon does not apply to this product",
    CouponErrorKind.PRODUCT_NOT_FOUND: "Product not found or has no price",
    CouponErrorKind.NOT_ON_SALE: "This coupon cannot be combined with a sale price",
    CouponErrorKind.MIN_PURCHASE: "Order does not meet the minimum purchase amount",
    CouponErrorKind.CURRENCY_MISMATCH: "Coupon currency does not match the product currency",
}


class CouponInvalid(Exception):
    """A coupon failed an eligibility rule; carries exactly one kind."""

    def __init__(self, kind: CouponErrorKind):
        self.kind = kind
        self.message = COUPON_ERROR_MESSAGES[kind]
        super().__init__(self.message)


class InvalidTransition(APIError):
    def __init__(self, current_status: str, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=message,
            errors=[{"field": "status", "current_status": current_status}],
        )
        self.current_status = current_status


class PaymentProviderError(APIError):
    def __init__(self, message: str = "Payment provider is unavailable"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, message=message)


class MissingMetadata(Exception):
    """A verified payment event lacks the identifiers needed to settle it."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Payment event missing metadata: {', '.join(missing)}")


class DownloadGone(APIError):
    def __init__(self, message: str):
        super().__init__(status_code=status.HTTP_410_GONE, message=message)


class FileHostError(APIError):
    def __init__(self, message: str = "Could not retrieve the product file"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, message=message)
