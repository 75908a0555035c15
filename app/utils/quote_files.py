import os
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, UploadFile
from slugify import slugify
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StoredFile:
    file_name: str
    file_url: str
    file_size: int


def _extension(filename: str) -> str:
    _, ext = os.path.splitext(filename or "")
    return ext.lower().lstrip(".")


def safe_file_name(filename: str) -> str:
    """Slugified stem plus the original (validated) extension."""
    stem, _ = os.path.splitext(os.path.basename(filename or ""))
    ext = _extension(filename)
    return f"{slugify(stem) or 'model'}.{ext}"


def save_quote_file(file: UploadFile) -> Optional[StoredFile]:
    """Store a buyer's reference model; returns None when no file was sent.

    Validations:
    - Extension must be one of QUOTE_ALLOWED_EXTENSIONS
    - Size capped at QUOTE_MAX_FILE_SIZE (read in chunks, never trusted from headers)
    """
    filename = getattr(file, "filename", "") or ""
    if not filename:
        return None

    if _extension(filename) not in settings.QUOTE_ALLOWED_EXTENSIONS:
        allowed = ", ".join(ext.upper() for ext in settings.QUOTE_ALLOWED_EXTENSIONS)
        raise HTTPException(status_code=400, detail=f"Invalid file type. Allowed: {allowed}")

    os.makedirs(settings.QUOTE_UPLOAD_DIR, exist_ok=True)
    stored_name = f"{int(time.time() * 1000)}-{safe_file_name(filename)}"
    file_path = os.path.join(settings.QUOTE_UPLOAD_DIR, stored_name)

    size = 0
    file.file.seek(0)
    try:
        with open(file_path, "wb") as out:
            while True:
                chunk = file.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.QUOTE_MAX_FILE_SIZE:
                    raise HTTPException(status_code=400, detail="File too large. Maximum size is 50MB.")
                out.write(chunk)
    except HTTPException:
        os.remove(file_path)
        raise

    if size == 0:
        os.remove(file_path)
        return None

    return StoredFile(file_name=filename, file_url=file_path, file_size=size)


def delete_quote_file(file_url: Optional[str]) -> bool:
    """Remove a stored quote file; only paths inside QUOTE_UPLOAD_DIR are touched."""
    if not file_url:
        return False

    upload_root = os.path.realpath(settings.QUOTE_UPLOAD_DIR)
    path = os.path.realpath(file_url)
    if os.path.commonpath([upload_root, path]) != upload_root:
        logger.warning("Refusing to delete quote file outside upload dir: %s", file_url)
        return False

    try:
        if os.path.exists(path):
            os.remove(path)
            return True
    except OSError:
        logger.exception("Error deleting quote file: %s", file_url)
    return False
