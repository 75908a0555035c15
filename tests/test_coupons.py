from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import CouponErrorKind, CouponInvalid, PermissionDenied
from app.core.permissions import ALL_CAPABILITIES, Action, Capability, Resource, capabilities_for, has_capability
from app.models.coupon import Coupon, DiscountType
from app.models.coupon_usage import CouponUsage
from app.models.digital_purchase import DigitalPurchase
from app.models.permission import RolePermission
from app.models.user import UserRole
from app.schemas.coupon import CouponCreate
from app.services.coupon_service import CouponService
from tests.factories import create_coupon, create_product, create_user, login


def _kind(db, code, product_id, email=None, now=None):
    with pytest.raises(CouponInvalid) as exc_info:
        CouponService.validate_coupon(db, code, product_id, email, now=now)
    return exc_info.value.kind


def test_validate_coupon_applies_discount(db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="SAVE50")

    result = CouponService.validate_coupon(db_session, " save50 ", product.id, "buyer@example.com")

    assert result.coupon.code == "SAVE50"
    assert result.breakdown.discount == Decimal("10.00")
    assert result.breakdown.final == Decimal("10.00")


def test_validate_coupon_is_read_only(db_session):
    product = create_product(db_session)
    coupon = create_coupon(db_session, max_uses=5)

    first = CouponService.validate_coupon(db_session, "SAVE50", product.id, "buyer@example.com")
    second = CouponService.validate_coupon(db_session, "SAVE50", product.id, "buyer@example.com")

    db_session.refresh(coupon)
    assert first.breakdown == second.breakdown
    assert coupon.used_count == 0
    assert db_session.query(CouponUsage).count() == 0


def test_unknown_and_inactive_coupons(db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="OFF", active=False)

    assert _kind(db_session, "NOPE", product.id) == CouponErrorKind.NOT_FOUND
    assert _kind(db_session, "OFF", product.id) == CouponErrorKind.INACTIVE


def test_coupon_validity_window(db_session):
    product = create_product(db_session)
    now = datetime(2026, 6, 1, 12, 0, 0)
    create_coupon(db_session, code="LATER", starts_at=now + timedelta(days=1))
    create_coupon(db_session, code="GONE", expires_at=now - timedelta(seconds=1))

    assert _kind(db_session, "LATER", product.id, now=now) == CouponErrorKind.NOT_STARTED
    assert _kind(db_session, "GONE", product.id, now=now) == CouponErrorKind.EXPIRED


def test_inactive_wins_over_expired(db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="BOTH", active=False, expires_at=datetime(2000, 1, 1))

    assert _kind(db_session, "BOTH", product.id) == CouponErrorKind.INACTIVE


def test_exhausted_coupon(db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="GONE", max_uses=2, used_count=2)

    assert _kind(db_session, "GONE", product.id) == CouponErrorKind.MAX_USES


def test_per_user_limit_counts_recorded_usages(db_session):
    product = create_product(db_session)
    coupon = create_coupon(db_session, per_user_limit=1)
    db_session.add(
        CouponUsage(
            coupon_id=coupon.id,
            email="buyer@example.com",
            original_price=Decimal("20.00"),
            discount_amount=Decimal("10.00"),
            final_price=Decimal("10.00"),
            payment_session_id="plink_previous",
        )
    )
    db_session.commit()

    assert _kind(db_session, "SAVE50", product.id, "Buyer@Example.com") == CouponErrorKind.USER_LIMIT
    # Anonymous previews skip the per-buyer rule
    assert CouponService.validate_coupon(db_session, "SAVE50", product.id).breakdown.final == Decimal("10.00")
    assert CouponService.validate_coupon(db_session, "SAVE50", product.id, "other@example.com")


def test_zero_per_user_limit_is_unlimited(db_session):
    product = create_product(db_session)
    coupon = create_coupon(db_session, per_user_limit=0)
    for index in range(3):
        db_session.add(
            CouponUsage(
                coupon_id=coupon.id,
                email="buyer@example.com",
                original_price=Decimal("20.00"),
                discount_amount=Decimal("10.00"),
                final_price=Decimal("10.00"),
                payment_session_id=f"plink_{index}",
            )
        )
    db_session.commit()

    assert CouponService.validate_coupon(db_session, "SAVE50", product.id, "buyer@example.com")


def test_product_restrictions(db_session):
    product = create_product(db_session)
    other = create_product(db_session, slug="cable-clip")
    sale = create_product(db_session, slug="lamp", on_sale=True, sale_price=Decimal("15.00"))
    unpriced = create_product(db_session, slug="custom-print", price=None)
    create_coupon(db_session, code="ONLYONE", product_ids=[product.id])
    create_coupon(db_session, code="ANY")

    assert _kind(db_session, "ONLYONE", other.id) == CouponErrorKind.WRONG_PRODUCT
    assert _kind(db_session, "ANY", 999) == CouponErrorKind.PRODUCT_NOT_FOUND
    assert _kind(db_session, "ANY", unpriced.id) == CouponErrorKind.PRODUCT_NOT_FOUND
    assert _kind(db_session, "ANY", sale.id) == CouponErrorKind.NOT_ON_SALE


def test_sale_coupon_discounts_sale_price(db_session):
    sale = create_product(db_session, slug="lamp", on_sale=True, sale_price=Decimal("15.00"))
    create_coupon(db_session, code="SALEOK", allow_on_sale=True, value=Decimal("10"))

    result = CouponService.validate_coupon(db_session, "SALEOK", sale.id)

    assert result.breakdown.original == Decimal("15.00")
    assert result.breakdown.final == Decimal("13.50")


def test_min_purchase_and_currency(db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="BIG", min_purchase=Decimal("50.00"))
    create_coupon(db_session, code="DOLLARS", discount_type=DiscountType.FIXED, value=Decimal("5"), currency="USD")

    assert _kind(db_session, "BIG", product.id) == CouponErrorKind.MIN_PURCHASE
    assert _kind(db_session, "DOLLARS", product.id) == CouponErrorKind.CURRENCY_MISMATCH


def test_validate_endpoint_returns_preview(client: TestClient, db_session):
    product = create_product(db_session)
    create_coupon(db_session, code="SAVE50")

    response = client.post("/api/v1/coupons/validate", json={"code": "save50", "product_id": product.id})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["valid"] is True
    assert data["coupon"]["code"] == "SAVE50"
    assert Decimal(str(data["discount"]["final"])) == Decimal("10.00")
    assert Decimal(str(data["discount"]["discount_amount"])) == Decimal("10.00")
    assert data["discount"]["product_currency"] == "EUR"


def test_validate_endpoint_reports_invalid_coupon(client: TestClient, db_session):
    product = create_product(db_session)

    response = client.post("/api/v1/coupons/validate", json={"code": "NOPE", "product_id": product.id})

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"] == {"valid": False, "error": "NOT_FOUND"}
    assert payload["message"] == "Coupon code not found"


def test_validate_endpoint_missing_params(client: TestClient):
    response = client.post("/api/v1/coupons/validate", json={"code": "SAVE50"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["errors"] == {"code": "MISSING_PARAMS"}


def test_admin_coupon_crud(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    login(client, "admin@example.com")

    created = client.post(
        "/api/v1/coupons/",
        json={"code": "spring10", "discount_type": "percentage", "value": "10"},
    )
    assert created.status_code == 201
    coupon = created.json()["data"]
    assert coupon["code"] == "SPRING10"
    assert coupon["per_user_limit"] == 1

    duplicate = client.post(
        "/api/v1/coupons/",
        json={"code": "SPRING10", "discount_type": "percentage", "value": "20"},
    )
    assert duplicate.status_code == 409

    listed = client.get("/api/v1/coupons/", params={"search": "spring"})
    assert listed.status_code == 200
    assert listed.json()["meta"]["total"] == 1

    updated = client.put(f"/api/v1/coupons/{coupon['id']}", json={"active": False})
    assert updated.status_code == 200
    assert updated.json()["data"]["active"] is False

    deleted = client.delete(f"/api/v1/coupons/{coupon['id']}")
    assert deleted.status_code == 200
    assert client.get(f"/api/v1/coupons/{coupon['id']}").status_code == 404


def test_fixed_coupon_requires_currency(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    login(client, "admin@example.com")

    response = client.post(
        "/api/v1/coupons/",
        json={"code": "FIVE", "discount_type": "fixed", "value": "5"},
    )

    assert response.status_code == 422


def test_used_coupon_cannot_be_deleted(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    coupon = create_coupon(db_session, used_count=1)
    login(client, "admin@example.com")

    response = client.delete(f"/api/v1/coupons/{coupon.id}")

    assert response.status_code == 409
    assert response.json()["message"] == "Coupon has been used and cannot be deleted"


def test_coupon_with_recorded_usage_cannot_be_deleted(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    coupon = create_coupon(db_session)
    # Usage row written but the counter increment was lost
    db_session.add(
        CouponUsage(
            coupon_id=coupon.id,
            email="buyer@example.com",
            original_price=Decimal("20.00"),
            discount_amount=Decimal("10.00"),
            final_price=Decimal("10.00"),
            payment_session_id="plink_orphan",
        )
    )
    db_session.commit()
    login(client, "admin@example.com")

    response = client.delete(f"/api/v1/coupons/{coupon.id}")

    assert response.status_code == 409
    assert response.json()["errors"] == [{"used_count": 0, "usages": 1, "purchases": 0}]
    db_session.expire_all()
    assert db_session.query(Coupon).filter(Coupon.id == coupon.id).count() == 1
    assert db_session.query(CouponUsage).count() == 1


def test_coupon_referenced_by_purchase_cannot_be_deleted(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    product = create_product(db_session)
    coupon = create_coupon(db_session)
    db_session.add(
        DigitalPurchase(
            product_id=product.id,
            email="buyer@example.com",
            download_token="token-with-coupon",
            expires_at=datetime.utcnow() + timedelta(days=7),
            payment_session_id="plink_purchase",
            coupon_id=coupon.id,
        )
    )
    db_session.commit()
    login(client, "admin@example.com")

    response = client.delete(f"/api/v1/coupons/{coupon.id}")

    assert response.status_code == 409
    db_session.expire_all()
    assert db_session.query(Coupon).filter(Coupon.id == coupon.id).count() == 1


def test_usage_limit_cannot_drop_below_used_count(client: TestClient, db_session):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    coupon = create_coupon(db_session, max_uses=10, used_count=5)
    login(client, "admin@example.com")

    response = client.put(f"/api/v1/coupons/{coupon.id}", json={"max_uses": 3})

    assert response.status_code == 409
    assert response.json()["errors"] == [{"field": "max_uses", "used_count": 5}]
    db_session.expire_all()
    stored = db_session.query(Coupon).filter(Coupon.id == coupon.id).one()
    assert stored.max_uses == 10
    assert stored.used_count == 5

    assert client.put(f"/api/v1/coupons/{coupon.id}", json={"max_uses": 5}).status_code == 200
    assert client.put(f"/api/v1/coupons/{coupon.id}", json={"max_uses": None}).status_code == 200


@pytest.mark.parametrize(
    "payload",
    [
        {"per_user_limit": None},
        {"value": None},
        {"discount_type": None},
        {"product_ids": None},
        {"active": None},
        {"allow_on_sale": None},
    ],
)
def test_coupon_update_rejects_null_required_fields(client: TestClient, db_session, payload):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    coupon = create_coupon(db_session)
    login(client, "admin@example.com")

    response = client.put(f"/api/v1/coupons/{coupon.id}", json=payload)

    assert response.status_code == 422
    db_session.expire_all()
    stored = db_session.query(Coupon).filter(Coupon.id == coupon.id).one()
    assert stored.per_user_limit == 1
    assert stored.value == Decimal("50")


def test_editor_cannot_manage_coupons(client: TestClient, db_session):
    create_user(db_session, "editor@example.com", role=UserRole.EDITOR)
    login(client, "editor@example.com")

    response = client.get("/api/v1/coupons/")

    assert response.status_code == 403


def test_role_override_grants_coupon_view(client: TestClient, db_session):
    create_user(db_session, "editor@example.com", role=UserRole.EDITOR)
    db_session.add(RolePermission(role=UserRole.EDITOR, resource="coupons", action="view", allowed=True))
    db_session.commit()
    login(client, "editor@example.com")

    assert client.get("/api/v1/coupons/").status_code == 200
    assert client.post(
        "/api/v1/coupons/",
        json={"code": "NOPE", "discount_type": "percentage", "value": "5"},
    ).status_code == 403


def test_service_checks_capabilities(db_session):
    with pytest.raises(PermissionDenied):
        CouponService.create_coupon(
            db_session,
            frozenset(),
            CouponCreate(code="X", discount_type=DiscountType.PERCENTAGE, value=Decimal("5")),
        )

    assert capabilities_for(db_session, UserRole.ADMIN) == ALL_CAPABILITIES


def test_capability_lookup_matches_resource_and_action(db_session):
    editor = capabilities_for(db_session, UserRole.EDITOR)

    assert has_capability(ALL_CAPABILITIES, Resource.COUPONS, Action.DELETE)
    assert not has_capability(editor, Resource.COUPONS, Action.VIEW)
    quotes_only = frozenset({Capability(Resource.QUOTES, Action.DELETE)})
    assert not has_capability(quotes_only, Resource.COUPONS, Action.DELETE)
