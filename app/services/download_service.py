from dataclasses import dataclass
from datetime import datetime
import mimetypes
import os
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import HTTPException, status
import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session
import structlog

from app.core.config import settings
from app.core.exceptions import DownloadGone, FileHostError
from app.models.digital_purchase import DigitalPurchase
from app.models.product import Product

logger = structlog.get_logger()

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class DownloadFile:
    content: bytes
    file_name: str
    content_type: str


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _file_name(product: Product) -> str:
    if product.file_name:
        return os.path.basename(product.file_name)
    path = urlparse(product.file_url).path
    return os.path.basename(path) or f"{product.slug}.bin"


def _read_local(file_url: str) -> bytes:
    root = os.path.realpath(settings.PRODUCT_FILES_DIR)
    path = os.path.realpath(os.path.join(root, file_url.lstrip("/")))
    if os.path.commonpath([root, path]) != root or not os.path.isfile(path):
        raise _not_found("Product file not found")
    with open(path, "rb") as handle:
        return handle.read()


def _fetch_remote(file_url: str) -> Tuple[bytes, Optional[str]]:
    try:
        with httpx.Client(timeout=settings.DOWNLOAD_FETCH_TIMEOUT, follow_redirects=True) as client:
            response = client.get(file_url)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("download_upstream_failed", file_url=file_url, error_type=type(exc).__name__, detail=str(exc))
        raise FileHostError() from exc
    return response.content, response.headers.get("content-type")


class DownloadService:

    @staticmethod
    def get_valid_purchase(db: Session, token: str, now: Optional[datetime] = None) -> Tuple[DigitalPurchase, Product]:
        """Look up a download token; 404 when unknown, 410 once expired or used up."""
        now = now or datetime.utcnow()

        purchase = db.query(DigitalPurchase).filter(DigitalPurchase.download_token == token).first()
        if not purchase:
            raise _not_found("Invalid download token")

        if purchase.is_expired(now):
            raise DownloadGone("Download link has expired")
        if purchase.download_count >= purchase.max_downloads:
            raise DownloadGone("Maximum downloads reached")

        product = db.query(Product).filter(Product.id == purchase.product_id).first()
        if not product or not product.file_url:
            raise _not_found("Product file not found")

        return purchase, product

    @staticmethod
    def fetch_file(product: Product) -> DownloadFile:
        scheme = urlparse(product.file_url).scheme.lower()
        if scheme in ("http", "https"):
            content, content_type = _fetch_remote(product.file_url)
        else:
            content, content_type = _read_local(product.file_url), None

        file_name = _file_name(product)
        if not content_type:
            content_type = mimetypes.guess_type(file_name)[0] or DEFAULT_CONTENT_TYPE
        return DownloadFile(content=content, file_name=file_name, content_type=content_type)

    @staticmethod
    def consume(db: Session, purchase: DigitalPurchase, now: Optional[datetime] = None) -> bool:
        """Spend one download; a single conditional UPDATE so parallel requests cannot overspend."""
        now = now or datetime.utcnow()
        rows = db.execute(
            update(DigitalPurchase)
            .where(
                DigitalPurchase.id == purchase.id,
                DigitalPurchase.download_count < DigitalPurchase.max_downloads,
                DigitalPurchase.expires_at >= now,
            )
            .values(download_count=DigitalPurchase.download_count + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
        return bool(rows)

    @staticmethod
    def download(db: Session, token: str, now: Optional[datetime] = None) -> DownloadFile:
        now = now or datetime.utcnow()
        purchase, product = DownloadService.get_valid_purchase(db, token, now)

        download_number = purchase.download_count + 1

        # Bytes are fetched before the download is counted
        file = DownloadService.fetch_file(product)

        if not DownloadService.consume(db, purchase, now):
            raise DownloadGone("Maximum downloads reached")

        logger.info(
            "digital_download_served",
            purchase_id=purchase.id,
            product_id=product.id,
            download_number=download_number,
            size=len(file.content),
        )
        return file
