from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.services.download_service import DownloadService
from app.utils.response import attachment

router = APIRouter()


@router.get(
    "/{token}",
    summary="Download a purchased file",
    description="Streams the file through the API (never redirects). 404 unknown token, 410 expired or used up, 502 file host failure.",
    response_class=Response,
)
@limiter.limit("30/minute")
def download(request: Request, token: str, db: Session = Depends(get_db)):
    file = DownloadService.download(db, token)
    return attachment(file.content, file.file_name, file.content_type)
