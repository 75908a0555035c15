from typing import FrozenSet, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_capabilities, get_current_user
from app.core.permissions import Capability
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.quote import (
    BuyerQuoteResponse,
    QuoteCreate,
    QuoteCreatedResponse,
    QuoteMessageResponse,
    QuoteResponse,
    QuoteRespondRequest,
)
from app.services.quote_service import QuoteService
from app.utils.quote_files import delete_quote_file, save_quote_file
from app.utils.response import success

router = APIRouter()


@router.post(
    "/",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Request a custom quote",
    description="Multipart form. Optional reference model file (STL, OBJ or 3MF, up to 50MB).",
)
@limiter.limit("10/minute")
def create_quote(
    request: Request,
    name: str = Form(...),
    email: str = Form(...),
    phone: Optional[str] = Form(None),
    message: Optional[str] = Form(None),
    product_id: Optional[int] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
):
    try:
        data = QuoteCreate(name=name, email=email, phone=phone, message=message, product_id=product_id)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

    stored = save_quote_file(file) if file is not None else None
    try:
        quote = QuoteService.create_quote(db, data, stored)
    except Exception:
        if stored:
            delete_quote_file(stored.file_url)
        raise

    payload = QuoteCreatedResponse(quote_id=quote.id, quote_number=quote.quote_number)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success(data=payload.model_dump(), message="Quote request received"),
    )


@router.get("/mine", response_model=dict)
def my_quotes(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    quotes = QuoteService.list_for_buyer(db, current_user.email)
    items = [BuyerQuoteResponse.model_validate(q).model_dump() for q in quotes]
    return success(
        data=items,
        message="Quotes retrieved successfully",
        meta={"unseen_offers": sum(1 for q in quotes if q.has_unseen_offer)},
    )


@router.post("/respond", response_model=dict)
@limiter.limit("20/minute")
def respond_to_quote(
    request: Request,
    payload: QuoteRespondRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    quote = QuoteService.respond(db, payload.quote_id, current_user.email, payload.action, payload.message)
    return success(data=QuoteResponse.model_validate(quote).model_dump(), message="Response recorded")


@router.post("/{quote_id}/view", response_model=dict)
def mark_quote_viewed(
    quote_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = QuoteService.mark_viewed(db, quote_id, current_user.email)
    return success(data={"viewed": updated}, message="Quote marked as viewed")


@router.get("/{quote_id}/messages", response_model=dict)
def quote_messages(
    quote_id: int,
    current_user: User = Depends(get_current_user),
    capabilities: FrozenSet[Capability] = Depends(get_capabilities),
    db: Session = Depends(get_db),
):
    messages = QuoteService.list_messages(db, quote_id, current_user.email, capabilities)
    return success(
        data=[QuoteMessageResponse.model_validate(m).model_dump() for m in messages],
        message="Messages retrieved successfully",
    )
