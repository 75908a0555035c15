from typing import FrozenSet, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import require_capability
from app.core.permissions import Action, Capability, Resource
from app.db.session import get_db
from app.models.quote import QuoteStatus
from app.schemas.quote import QuoteAdminUpdate, QuoteResponse
from app.services.quote_service import QuoteService
from app.utils.response import success

router = APIRouter()


@router.get("/quotes", response_model=dict)
def list_quotes(
    quote_status: Optional[QuoteStatus] = Query(None, alias="status"),
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.QUOTES, Action.VIEW)),
    db: Session = Depends(get_db),
):
    quotes = QuoteService.list_quotes(db, capabilities, quote_status)
    return success(
        data=[QuoteResponse.model_validate(q).model_dump() for q in quotes],
        message="Quotes retrieved successfully",
    )


@router.put(
    "/quotes",
    response_model=dict,
    summary="Send an offer or update operator notes",
    description="""
- `status: quoted` with `quoted_price` sends an offer (allowed from pending or user_declined).
- Same status and no price only updates `admin_notes`.
- Anything else is rejected with 400 and the current status.
""",
)
def update_quote(
    payload: QuoteAdminUpdate,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.QUOTES, Action.EDIT)),
    db: Session = Depends(get_db),
):
    quote = QuoteService.update_quote(
        db,
        capabilities,
        payload.id,
        new_status=payload.status,
        quoted_price=payload.quoted_price,
        admin_notes=payload.admin_notes,
    )
    return success(data=QuoteResponse.model_validate(quote).model_dump(), message="Quote updated successfully")


@router.delete("/quotes/{quote_id}", response_model=dict)
def delete_quote(
    quote_id: int,
    capabilities: FrozenSet[Capability] = Depends(require_capability(Resource.QUOTES, Action.DELETE)),
    db: Session = Depends(get_db),
):
    QuoteService.delete_quote(db, capabilities, quote_id)
    return success(message="Quote deleted successfully")
