from datetime import datetime, timedelta
import os

from celery import shared_task
import structlog

from app.core.config import settings
from app.db.session import SessionLocal
from app.models.quote import QuoteRequest
from app.models.token_blacklist import TokenBlacklist
from app.utils.quote_files import delete_quote_file

logger = structlog.get_logger()

# Uploads younger than this may belong to a request that has not committed yet
ORPHAN_GRACE_PERIOD = timedelta(hours=1)


@shared_task(bind=True, max_retries=3)
def cleanup_expired_blacklisted_tokens(self):
    """Delete expired token blacklist rows to keep the table bounded."""
    db = SessionLocal()
    try:
        deleted = (
            db.query(TokenBlacklist)
            .filter(TokenBlacklist.expires_at < datetime.utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info("blacklist_cleanup_completed", deleted=deleted)
        return {"deleted": deleted}
    except Exception as exc:
        db.rollback()
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()


def find_orphaned_quote_files(db, now=None):
    """Stored quote uploads that no quote request points at any more."""
    upload_dir = settings.QUOTE_UPLOAD_DIR
    if not os.path.isdir(upload_dir):
        return []

    now = now or datetime.utcnow()
    referenced = {
        os.path.realpath(url)
        for (url,) in db.query(QuoteRequest.file_url).filter(QuoteRequest.file_url.isnot(None)).all()
    }

    orphans = []
    for entry in os.scandir(upload_dir):
        if not entry.is_file():
            continue
        modified = datetime.utcfromtimestamp(entry.stat().st_mtime)
        if now - modified < ORPHAN_GRACE_PERIOD:
            continue
        if os.path.realpath(entry.path) not in referenced:
            orphans.append(entry.path)
    return sorted(orphans)


@shared_task(bind=True, max_retries=3)
def cleanup_orphaned_quote_files(self, dry_run: bool = False):
    """Remove quote uploads left behind by deleted or failed quote requests."""
    db = SessionLocal()
    try:
        orphans = find_orphaned_quote_files(db)
    except Exception as exc:
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()

    deleted = 0
    if not dry_run:
        deleted = sum(1 for path in orphans if delete_quote_file(path))

    logger.info("quote_file_cleanup_completed", orphaned=len(orphans), deleted=deleted, dry_run=dry_run)
    return {"orphaned": len(orphans), "deleted": deleted, "files": orphans if dry_run else []}
