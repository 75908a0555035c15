from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.models.product import FileType
from app.services import payment_gateway
from app.services.payment_gateway import CheckoutSession
from tests.factories import create_coupon, create_product


@pytest.fixture()
def captured_sessions(monkeypatch):
    calls = []

    def fake_create_checkout_session(**kwargs):
        calls.append(kwargs)
        return CheckoutSession(session_id=f"plink_test_{len(calls)}", url="https://rzp.io/i/test")

    monkeypatch.setattr(payment_gateway, "create_checkout_session", fake_create_checkout_session)
    return calls


def test_checkout_without_coupon(client: TestClient, db_session, captured_sessions):
    product = create_product(db_session)

    response = client.post("/api/v1/checkout/", json={"product_id": product.id, "email": "Buyer@Example.com"})

    assert response.status_code == 200
    assert response.json()["data"] == {"session_id": "plink_test_1", "url": "https://rzp.io/i/test"}

    call = captured_sessions[0]
    assert call["amount_minor"] == 2000
    assert call["currency"] == "EUR"
    assert call["customer_email"] == "buyer@example.com"
    assert call["metadata"]["product_id"] == product.id
    assert "coupon_id" not in call["metadata"]


def test_checkout_with_coupon_charges_discounted_price(client: TestClient, db_session, captured_sessions):
    product = create_product(db_session)
    coupon = create_coupon(db_session, code="SAVE50")

    response = client.post(
        "/api/v1/checkout/",
        json={"product_id": product.id, "email": "buyer@example.com", "coupon_code": "save50"},
    )

    assert response.status_code == 200
    call = captured_sessions[0]
    assert call["amount_minor"] == 1000
    assert call["metadata"]["coupon_id"] == coupon.id
    assert call["metadata"]["coupon_code"] == "SAVE50"
    assert call["metadata"]["original_price"] == Decimal("20.00")
    assert call["metadata"]["discount_amount"] == Decimal("10.00")


def test_checkout_uses_sale_price(client: TestClient, db_session, captured_sessions):
    product = create_product(db_session, on_sale=True, sale_price=Decimal("12.50"))

    response = client.post("/api/v1/checkout/", json={"product_id": product.id})

    assert response.status_code == 200
    assert captured_sessions[0]["amount_minor"] == 1250
    assert captured_sessions[0]["customer_email"] is None


def test_checkout_rejects_invalid_coupon(client: TestClient, db_session, captured_sessions):
    product = create_product(db_session)
    create_coupon(db_session, code="USED", max_uses=1, used_count=1)

    response = client.post("/api/v1/checkout/", json={"product_id": product.id, "coupon_code": "USED"})

    assert response.status_code == 400
    assert response.json()["errors"] == [{"code": "MAX_USES"}]
    assert captured_sessions == []


def test_checkout_unknown_product(client: TestClient, captured_sessions):
    response = client.post("/api/v1/checkout/", json={"product_id": 999})

    assert response.status_code == 404
    assert response.json()["message"] == "Product not found"


def test_checkout_rejects_unavailable_products(client: TestClient, db_session, captured_sessions):
    draft = create_product(db_session, slug="draft", published=False)
    physical = create_product(db_session, slug="printed", file_type=FileType.PHYSICAL)
    unpriced = create_product(db_session, slug="on-request", price=None)

    for product in (draft, physical, unpriced):
        response = client.post("/api/v1/checkout/", json={"product_id": product.id})
        assert response.status_code == 400

    assert captured_sessions == []


def test_checkout_provider_failure(client: TestClient, db_session, monkeypatch):
    product = create_product(db_session)

    def broken_create(payload):
        raise ConnectionError("gateway down")

    monkeypatch.setattr(payment_gateway.razorpay_client.payment_link, "create", broken_create)

    response = client.post("/api/v1/checkout/", json={"product_id": product.id})

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_payment_link_payload(monkeypatch):
    sent = {}

    def fake_create(payload):
        sent.update(payload)
        return {"id": "plink_abc", "short_url": "https://rzp.io/i/abc"}

    monkeypatch.setattr(payment_gateway.razorpay_client.payment_link, "create", fake_create)

    session = payment_gateway.create_checkout_session(
        amount_minor=1000,
        currency="eur",
        description="Desk Organizer STL",
        metadata={"product_id": 7, "coupon_id": None, "discount_amount": Decimal("10.00")},
        customer_email="buyer@example.com",
    )

    assert session == CheckoutSession(session_id="plink_abc", url="https://rzp.io/i/abc")
    assert sent["currency"] == "EUR"
    assert sent["notes"] == {"product_id": "7", "discount_amount": "10.00"}
    assert sent["customer"] == {"email": "buyer@example.com"}
    assert sent["callback_url"].endswith("/checkout/success")
