from datetime import datetime
from decimal import Decimal
from typing import FrozenSet, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
import structlog

from app.core.exceptions import (
    APIError,
    InvalidTransition,
    PermissionDenied,
    ProductNotFound,
    QuoteNotFound,
)
from app.core.permissions import Action, Capability, Resource, has_capability
from app.models.product import Product
from app.models.quote import QuoteMessage, QuoteRequest, QuoteStatus, SenderType
from app.schemas.quote import QuoteAction, QuoteCreate
from app.utils.codes import generate_quote_number
from app.utils.quote_files import StoredFile, delete_quote_file

logger = structlog.get_logger()

QUOTE_NUMBER_ATTEMPTS = 5

# Operator may (re)issue an offer from these states
QUOTABLE_STATUSES = {QuoteStatus.PENDING, QuoteStatus.USER_DECLINED}

BUYER_TRANSITIONS = {
    QuoteAction.ACCEPT: (QuoteStatus.ACCEPTED, "accepted"),
    QuoteAction.DECLINE: (QuoteStatus.USER_DECLINED, "declined"),
    QuoteAction.COUNTER_OFFER: (QuoteStatus.PENDING, "counter_offer"),
}


def _require(capabilities: FrozenSet[Capability], action: Action) -> None:
    if not has_capability(capabilities, Resource.QUOTES, action):
        raise PermissionDenied(f"Missing permission quotes:{action.value}")


def _same_email(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


class QuoteService:

    @staticmethod
    def _get(db: Session, quote_id: int) -> QuoteRequest:
        quote = db.query(QuoteRequest).filter(QuoteRequest.id == quote_id).first()
        if not quote:
            raise QuoteNotFound()
        return quote

    @staticmethod
    def _add_message(
        db: Session,
        quote: QuoteRequest,
        sender_type: SenderType,
        message_key: str,
        now: datetime,
        message: Optional[str] = None,
        quoted_price: Optional[Decimal] = None,
    ) -> QuoteMessage:
        entry = QuoteMessage(
            quote_id=quote.id,
            sender_type=sender_type,
            message_key=message_key,
            message=message,
            quoted_price=quoted_price,
            created_at=now,
        )
        db.add(entry)
        return entry

    # ------------------------------------------------------------------
    # Buyer side
    # ------------------------------------------------------------------

    @staticmethod
    def create_quote(
        db: Session,
        data: QuoteCreate,
        stored_file: Optional[StoredFile] = None,
    ) -> QuoteRequest:
        if data.product_id is not None:
            if not db.query(Product.id).filter(Product.id == data.product_id).first():
                raise ProductNotFound()

        for _ in range(QUOTE_NUMBER_ATTEMPTS):
            quote = QuoteRequest(
                quote_number=generate_quote_number(),
                name=data.name,
                email=str(data.email).lower(),
                phone=data.phone,
                message=data.message,
                product_id=data.product_id,
                file_name=stored_file.file_name if stored_file else None,
                file_url=stored_file.file_url if stored_file else None,
                file_size=stored_file.file_size if stored_file else None,
                status=QuoteStatus.PENDING,
            )
            db.add(quote)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("quote_number_collision", quote_number=quote.quote_number)
                continue
            db.refresh(quote)
            logger.info(
                "quote_created",
                quote_id=quote.id,
                quote_number=quote.quote_number,
                has_file=stored_file is not None,
            )
            return quote

        if stored_file:
            delete_quote_file(stored_file.file_url)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a quote number, please retry",
        )

    @staticmethod
    def respond(
        db: Session,
        quote_id: int,
        email: str,
        action: QuoteAction,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QuoteRequest:
        """Buyer answers an offer: accept, decline or counter.

        Only the owner may respond and only while the quote is ``quoted``.
        A counter-offer needs a message and sends the quote back to the
        operator's pending queue.
        """
        now = now or datetime.utcnow()
        quote = QuoteService._get(db, quote_id)

        if not _same_email(quote.email, email):
            raise PermissionDenied("You can only respond to your own quotes")

        if quote.status != QuoteStatus.QUOTED:
            raise InvalidTransition(
                quote.status.value,
                f"Cannot {action.value.replace('_', ' ')} a quote in status '{quote.status.value}'",
            )

        if action == QuoteAction.COUNTER_OFFER and not message:
            raise APIError(
                status_code=status.HTTP_400_BAD_REQUEST,
                message="Counter offer requires a message",
                errors=[{"field": "message"}],
            )

        new_status, message_key = BUYER_TRANSITIONS[action]
        quote.status = new_status
        snapshot = None

        if action == QuoteAction.ACCEPT:
            quote.user_response = None
            snapshot = quote.quoted_price
        else:
            quote.user_response = message

        QuoteService._add_message(
            db,
            quote,
            SenderType.USER,
            message_key,
            now,
            message=message,
            quoted_price=snapshot,
        )
        db.commit()
        db.refresh(quote)

        logger.info("quote_buyer_response", quote_id=quote.id, action=action.value, status=quote.status.value)
        return quote

    @staticmethod
    def mark_viewed(db: Session, quote_id: int, email: str, now: Optional[datetime] = None) -> bool:
        quote = QuoteService._get(db, quote_id)
        if not _same_email(quote.email, email):
            raise PermissionDenied("You can only view your own quotes")

        if not quote.has_unseen_offer:
            return False

        quote.viewed_at = now or datetime.utcnow()
        db.commit()
        return True

    @staticmethod
    def list_for_buyer(db: Session, email: str) -> List[QuoteRequest]:
        return (
            db.query(QuoteRequest)
            .options(selectinload(QuoteRequest.messages))
            .filter(QuoteRequest.email == email.strip().lower())
            .order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc())
            .all()
        )

    @staticmethod
    def list_messages(
        db: Session,
        quote_id: int,
        email: Optional[str],
        capabilities: FrozenSet[Capability],
    ) -> List[QuoteMessage]:
        quote = QuoteService._get(db, quote_id)
        is_staff = has_capability(capabilities, Resource.QUOTES, Action.VIEW)
        if not is_staff and not _same_email(quote.email, email):
            raise PermissionDenied("You can only read messages on your own quotes")

        return (
            db.query(QuoteMessage)
            .filter(QuoteMessage.quote_id == quote.id)
            .order_by(QuoteMessage.created_at.asc(), QuoteMessage.id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Operator side
    # ------------------------------------------------------------------

    @staticmethod
    def list_quotes(
        db: Session,
        capabilities: FrozenSet[Capability],
        status_filter: Optional[QuoteStatus] = None,
    ) -> List[QuoteRequest]:
        _require(capabilities, Action.VIEW)
        query = db.query(QuoteRequest)
        if status_filter:
            query = query.filter(QuoteRequest.status == status_filter)
        return query.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc()).all()

    @staticmethod
    def submit_quote(
        db: Session,
        capabilities: FrozenSet[Capability],
        quote_id: int,
        quoted_price: Decimal,
        admin_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QuoteRequest:
        """Operator issues (or re-issues after a counter/decline) a price."""
        _require(capabilities, Action.EDIT)
        now = now or datetime.utcnow()
        quote = QuoteService._get(db, quote_id)

        if quote.status not in QUOTABLE_STATUSES:
            raise InvalidTransition(
                quote.status.value,
                f"Cannot send an offer for a quote in status '{quote.status.value}'",
            )

        if quoted_price is None or Decimal(quoted_price) <= 0:
            raise APIError(
                status_code=status.HTTP_400_BAD_REQUEST,
                message="Quoted price must be greater than zero",
                errors=[{"field": "quoted_price"}],
            )

        quote.status = QuoteStatus.QUOTED
        quote.quoted_price = quoted_price
        quote.quoted_at = now
        quote.viewed_at = None
        if admin_notes is not None:
            quote.admin_notes = admin_notes

        QuoteService._add_message(
            db,
            quote,
            SenderType.ADMIN,
            "quoted",
            now,
            message=admin_notes,
            quoted_price=quoted_price,
        )
        db.commit()
        db.refresh(quote)

        logger.info("quote_offer_sent", quote_id=quote.id, quoted_price=quoted_price)
        return quote

    @staticmethod
    def update_quote(
        db: Session,
        capabilities: FrozenSet[Capability],
        quote_id: int,
        new_status: Optional[QuoteStatus] = None,
        quoted_price: Optional[Decimal] = None,
        admin_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QuoteRequest:
        """Operator edit: either send an offer, or only change the notes."""
        _require(capabilities, Action.EDIT)
        quote = QuoteService._get(db, quote_id)

        notes_only = quoted_price is None and new_status in (None, quote.status)
        if notes_only:
            quote.admin_notes = admin_notes
            db.commit()
            db.refresh(quote)
            logger.info("quote_notes_updated", quote_id=quote.id)
            return quote

        if new_status in (None, QuoteStatus.QUOTED):
            return QuoteService.submit_quote(db, capabilities, quote_id, quoted_price, admin_notes, now)

        raise InvalidTransition(
            quote.status.value,
            f"Operators cannot move a quote to '{new_status.value}'",
        )

    @staticmethod
    def delete_quote(db: Session, capabilities: FrozenSet[Capability], quote_id: int) -> None:
        _require(capabilities, Action.DELETE)
        quote = QuoteService._get(db, quote_id)
        file_url = quote.file_url

        db.delete(quote)
        db.commit()

        if file_url:
            delete_quote_file(file_url)
        logger.info("quote_deleted", quote_id=quote_id, had_file=bool(file_url))
