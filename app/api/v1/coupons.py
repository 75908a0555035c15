from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import FrozenSet, Optional

from app.api.deps import get_current_user, require_capability
from app.core.exceptions import CouponInvalid
from app.core.permissions import Action, Capability, Resource
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponSummary,
    CouponUpdate,
    DiscountPreview,
    ValidateCouponRequest,
    ValidateCouponResponse,
)
from app.services.coupon_service import CouponService
from app.utils.response import error, paginated_response, success

router = APIRouter()


@router.post(
    "/validate",
    response_model=dict,
    summary="Preview a coupon against a product",
    description="""
Runs the same eligibility rules and discount arithmetic used at checkout,
without changing anything. An invalid coupon is still a 200 response with
`valid: false` and one of the error codes:
NOT_FOUND, INACTIVE, NOT_STARTED, EXPIRED, MAX_USES, USER_LIMIT,
WRONG_PRODUCT, PRODUCT_NOT_FOUND, NOT_ON_SALE, MIN_PURCHASE, CURRENCY_MISMATCH.
""",
    responses={400: {"description": "MISSING_PARAMS"}},
)
@limiter.limit("30/minute")
def validate_coupon(
    request: Request,
    payload: ValidateCouponRequest,
    db: Session = Depends(get_db),
):
    if not (payload.code or "").strip() or not payload.product_id:
        return error(
            message="Code and product are required",
            errors={"code": "MISSING_PARAMS"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        result = CouponService.validate_coupon(db, payload.code, payload.product_id, payload.email)
    except CouponInvalid as exc:
        data = ValidateCouponResponse(valid=False, error=exc.kind.value)
        return success(data=data.model_dump(exclude_none=True), message=exc.message)

    data = ValidateCouponResponse(
        valid=True,
        coupon=CouponSummary.model_validate(result.coupon),
        discount=DiscountPreview(**result.breakdown.as_dict()),
    )
    return success(data=data.model_dump(exclude_none=True), message="Coupon is valid")


@router.get("/", response_model=dict)
def list_coupons(
    search: Optional[str] = Query(None, max_length=50),
    coupon_status: Optional[str] = Query(None, alias="status", pattern="^(active|expired|inactive)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.COUPONS, Action.VIEW)),
    db: Session = Depends(get_db),
):
    coupons, total = CouponService.list_coupons(db, capabilities, search, coupon_status, page, limit)
    items = [CouponResponse.model_validate(c).model_dump() for c in coupons]
    return paginated_response(items, total=total, page=page, limit=limit)


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_coupon(
    coupon_data: CouponCreate,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.COUPONS, Action.CREATE)),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    coupon = CouponService.create_coupon(db, capabilities, coupon_data, created_by_id=current_user.id)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success(data=CouponResponse.model_validate(coupon).model_dump(), message="Coupon created successfully"),
    )


@router.get("/{coupon_id}", response_model=dict)
def get_coupon(
    coupon_id: int,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.COUPONS, Action.VIEW)),
    db: Session = Depends(get_db),
):
    coupon = CouponService.get_coupon(db, capabilities, coupon_id)
    return success(data=CouponResponse.model_validate(coupon).model_dump(), message="Coupon retrieved successfully")


@router.put("/{coupon_id}", response_model=dict)
def update_coupon(
    coupon_id: int,
    coupon_data: CouponUpdate,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.COUPONS, Action.EDIT)),
    db: Session = Depends(get_db),
):
    coupon = CouponService.update_coupon(db, capabilities, coupon_id, coupon_data)
    return success(data=CouponResponse.model_validate(coupon).model_dump(), message="Coupon updated successfully")


@router.delete("/{coupon_id}", response_model=dict)
def delete_coupon(
    coupon_id: int,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.COUPONS, Action.DELETE)),
    db: Session = Depends(get_db),
):
    CouponService.delete_coupon(db, capabilities, coupon_id)
    return success(message="Coupon deleted successfully")
