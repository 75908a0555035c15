from datetime import datetime, timedelta
from decimal import Decimal
import os

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import APIError, InvalidTransition, PermissionDenied
from app.core.permissions import DEFAULT_ROLE_CAPABILITIES
from app.models.quote import QuoteMessage, QuoteRequest, QuoteStatus
from app.models.user import UserRole
from app.schemas.quote import QuoteAction, QuoteCreate
from app.services.quote_service import QuoteService
from tests.factories import create_user, login

ADMIN_CAPS = DEFAULT_ROLE_CAPABILITIES[UserRole.ADMIN]
BUYER = "maker@example.com"
T0 = datetime(2024, 5, 1, 9, 0, 0)


def _quote(db, email: str = BUYER) -> QuoteRequest:
    return QuoteService.create_quote(db, QuoteCreate(name="Maker", email=email, message="Print my bracket"))


def _quoted(db, price: str = "10.00") -> QuoteRequest:
    quote = _quote(db)
    return QuoteService.submit_quote(db, ADMIN_CAPS, quote.id, Decimal(price), now=T0)


def test_create_quote_with_file(client: TestClient, db_session, storage_dirs):
    response = client.post(
        "/api/v1/quotes/",
        data={"name": "Maker <b>Jo</b>", "email": "Maker@Example.com", "message": "Two copies"},
        files={"file": ("My Bracket v2.STL", b"solid bracket\nendsolid", "model/stl")},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["quote_number"].startswith("QUO-")
    assert len(data["quote_number"]) == 8

    quote = db_session.get(QuoteRequest, data["quote_id"])
    assert quote.status == QuoteStatus.PENDING
    assert quote.email == "maker@example.com"
    assert quote.name == "Maker Jo"
    assert quote.file_name == "My Bracket v2.STL"
    assert quote.file_size == len(b"solid bracket\nendsolid")
    assert os.path.exists(quote.file_url)
    assert os.path.basename(quote.file_url).endswith("my-bracket-v2.stl")


def test_create_quote_rejects_unsupported_file(client: TestClient, db_session, storage_dirs):
    response = client.post(
        "/api/v1/quotes/",
        data={"name": "Maker", "email": BUYER},
        files={"file": ("notes.exe", b"MZ", "application/octet-stream")},
    )

    assert response.status_code == 400
    assert db_session.query(QuoteRequest).count() == 0


def test_create_quote_rejects_oversized_file(client: TestClient, db_session, storage_dirs, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "QUOTE_MAX_FILE_SIZE", 10)

    response = client.post(
        "/api/v1/quotes/",
        data={"name": "Maker", "email": BUYER},
        files={"file": ("part.obj", b"v 0 0 0\nv 1 1 1\n", "text/plain")},
    )

    assert response.status_code == 400
    assert not any(storage_dirs["quotes"].iterdir())


def test_create_quote_requires_valid_email(client: TestClient):
    response = client.post("/api/v1/quotes/", data={"name": "Maker", "email": "not-an-email"})

    assert response.status_code == 422


def test_counter_offer_then_accept(db_session):
    quote = _quote(db_session)

    QuoteService.submit_quote(db_session, ADMIN_CAPS, quote.id, Decimal("10.00"), now=T0)
    QuoteService.respond(
        db_session, quote.id, BUYER, QuoteAction.COUNTER_OFFER, "Could you do 7?", now=T0 + timedelta(hours=1)
    )
    assert db_session.get(QuoteRequest, quote.id).status == QuoteStatus.PENDING

    QuoteService.submit_quote(db_session, ADMIN_CAPS, quote.id, Decimal("7.50"), now=T0 + timedelta(hours=2))
    accepted = QuoteService.respond(db_session, quote.id, BUYER, QuoteAction.ACCEPT, now=T0 + timedelta(hours=3))

    assert accepted.status == QuoteStatus.ACCEPTED
    assert accepted.quoted_price == Decimal("7.50")
    assert accepted.user_response is None

    messages = QuoteService.list_messages(db_session, quote.id, BUYER, frozenset())
    assert [m.message_key for m in messages] == ["quoted", "counter_offer", "quoted", "accepted"]
    assert messages[1].message == "Could you do 7?"
    assert messages[2].quoted_price == Decimal("7.50")
    assert messages[3].quoted_price == Decimal("7.50")


def test_decline_allows_requote(db_session):
    quote = _quoted(db_session)

    declined = QuoteService.respond(db_session, quote.id, BUYER, QuoteAction.DECLINE, "Too expensive")
    assert declined.status == QuoteStatus.USER_DECLINED
    assert declined.user_response == "Too expensive"

    requoted = QuoteService.submit_quote(db_session, ADMIN_CAPS, quote.id, Decimal("8.00"))
    assert requoted.status == QuoteStatus.QUOTED
    assert requoted.viewed_at is None


@pytest.mark.parametrize("action", list(QuoteAction))
def test_buyer_cannot_respond_to_pending_quote(db_session, action):
    quote = _quote(db_session)

    with pytest.raises(InvalidTransition) as exc_info:
        QuoteService.respond(db_session, quote.id, BUYER, action, "msg")

    assert exc_info.value.status_code == 400
    assert exc_info.value.errors[0]["current_status"] == "pending"


def test_accepted_quote_is_final(db_session):
    quote = _quoted(db_session)
    QuoteService.respond(db_session, quote.id, BUYER, QuoteAction.ACCEPT)

    with pytest.raises(InvalidTransition):
        QuoteService.respond(db_session, quote.id, BUYER, QuoteAction.DECLINE)
    with pytest.raises(InvalidTransition):
        QuoteService.submit_quote(db_session, ADMIN_CAPS, quote.id, Decimal("5.00"))


def test_counter_offer_requires_message(db_session):
    quote = _quoted(db_session)

    with pytest.raises(APIError) as exc_info:
        QuoteService.respond(db_session, quote.id, BUYER, QuoteAction.COUNTER_OFFER, None)

    assert exc_info.value.status_code == 400
    assert db_session.get(QuoteRequest, quote.id).status == QuoteStatus.QUOTED


def test_only_owner_may_respond(db_session):
    quote = _quoted(db_session)

    with pytest.raises(PermissionDenied):
        QuoteService.respond(db_session, quote.id, "someone@example.com", QuoteAction.ACCEPT)


def test_quoted_price_must_be_positive(db_session):
    quote = _quote(db_session)

    with pytest.raises(APIError):
        QuoteService.submit_quote(db_session, ADMIN_CAPS, quote.id, Decimal("0"))


def test_author_cannot_edit_quotes(db_session):
    quote = _quote(db_session)

    with pytest.raises(PermissionDenied):
        QuoteService.submit_quote(
            db_session, DEFAULT_ROLE_CAPABILITIES[UserRole.AUTHOR], quote.id, Decimal("5.00")
        )


def test_update_quote_notes_only_keeps_status(db_session):
    quote = _quoted(db_session)

    updated = QuoteService.update_quote(db_session, ADMIN_CAPS, quote.id, admin_notes="Printer B")

    assert updated.status == QuoteStatus.QUOTED
    assert updated.admin_notes == "Printer B"
    assert db_session.query(QuoteMessage).filter_by(quote_id=quote.id).count() == 1


def test_update_quote_rejects_operator_driven_acceptance(db_session):
    quote = _quoted(db_session)

    with pytest.raises(InvalidTransition):
        QuoteService.update_quote(db_session, ADMIN_CAPS, quote.id, new_status=QuoteStatus.ACCEPTED)


def test_buyer_flow_over_http(client: TestClient, db_session):
    create_user(db_session, BUYER)
    quote = _quoted(db_session)
    login(client, BUYER)

    mine = client.get("/api/v1/quotes/mine")
    assert mine.status_code == 200
    assert mine.json()["meta"]["unseen_offers"] == 1
    item = mine.json()["data"][0]
    assert item["has_unseen_offer"] is True
    assert "admin_notes" not in item
    assert item["messages"][0]["message_key"] == "quoted"

    viewed = client.post(f"/api/v1/quotes/{quote.id}/view")
    assert viewed.json()["data"] == {"viewed": True}
    assert client.post(f"/api/v1/quotes/{quote.id}/view").json()["data"] == {"viewed": False}
    assert client.get("/api/v1/quotes/mine").json()["meta"]["unseen_offers"] == 0

    countered = client.post(
        "/api/v1/quotes/respond",
        json={"quote_id": quote.id, "action": "counter_offer", "message": "7.50?"},
    )
    assert countered.status_code == 200
    assert countered.json()["data"]["status"] == "pending"

    again = client.post("/api/v1/quotes/respond", json={"quote_id": quote.id, "action": "accept"})
    assert again.status_code == 400
    assert again.json()["errors"][0]["current_status"] == "pending"

    messages = client.get(f"/api/v1/quotes/{quote.id}/messages")
    assert [m["message_key"] for m in messages.json()["data"]] == ["quoted", "counter_offer"]


def test_counter_offer_without_message_over_http(client: TestClient, db_session):
    create_user(db_session, BUYER)
    quote = _quoted(db_session)
    login(client, BUYER)

    response = client.post("/api/v1/quotes/respond", json={"quote_id": quote.id, "action": "counter_offer"})

    assert response.status_code == 400
    assert response.json()["message"] == "Counter offer requires a message"


def test_other_buyer_cannot_read_messages(client: TestClient, db_session):
    create_user(db_session, "other@example.com")
    quote = _quoted(db_session)
    login(client, "other@example.com")

    assert client.get(f"/api/v1/quotes/{quote.id}/messages").status_code == 403
    assert client.post(
        "/api/v1/quotes/respond", json={"quote_id": quote.id, "action": "accept"}
    ).status_code == 403


def test_admin_quote_management(client: TestClient, db_session, storage_dirs):
    create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    created = client.post(
        "/api/v1/quotes/",
        data={"name": "Maker", "email": BUYER},
        files={"file": ("part.3mf", b"PK\x03\x04", "application/octet-stream")},
    )
    quote_id = created.json()["data"]["quote_id"]
    file_url = db_session.get(QuoteRequest, quote_id).file_url
    login(client, "admin@example.com")

    listed = client.get("/api/v1/admin/quotes", params={"status": "pending"})
    assert listed.status_code == 200
    assert [q["id"] for q in listed.json()["data"]] == [quote_id]

    offered = client.put(
        "/api/v1/admin/quotes",
        json={"id": quote_id, "status": "quoted", "quoted_price": "12.00", "admin_notes": "PLA"},
    )
    assert offered.status_code == 200
    assert offered.json()["data"]["status"] == "quoted"

    rejected = client.put("/api/v1/admin/quotes", json={"id": quote_id, "status": "accepted"})
    assert rejected.status_code == 400

    deleted = client.delete(f"/api/v1/admin/quotes/{quote_id}")
    assert deleted.status_code == 200
    db_session.expire_all()
    assert db_session.get(QuoteRequest, quote_id) is None
    assert db_session.query(QuoteMessage).count() == 0
    assert not os.path.exists(file_url)


def test_author_cannot_delete_quotes(client: TestClient, db_session):
    create_user(db_session, "author@example.com", role=UserRole.AUTHOR)
    quote = _quote(db_session)
    login(client, "author@example.com")

    assert client.get("/api/v1/admin/quotes").status_code == 200
    assert client.delete(f"/api/v1/admin/quotes/{quote.id}").status_code == 403
    assert client.put(
        "/api/v1/admin/quotes", json={"id": quote.id, "status": "quoted", "quoted_price": "3.00"}
    ).status_code == 403
