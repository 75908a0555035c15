from datetime import datetime, timedelta
import os
import time

from app.models.token_blacklist import TokenBlacklist
from app.models.user import UserRole
from app.schemas.quote import QuoteCreate
from app.services.quote_service import QuoteService
from app.tasks import maintenance_tasks
from app.utils.quote_files import StoredFile
from tests.factories import create_user


def _age(path, hours: int) -> None:
    stamp = time.time() - hours * 3600
    os.utime(path, (stamp, stamp))


def test_orphaned_quote_files_are_found_and_removed(db_session, storage_dirs, monkeypatch):
    upload_dir = storage_dirs["quotes"]
    upload_dir.mkdir()
    kept = upload_dir / "1-kept.stl"
    orphan = upload_dir / "2-orphan.stl"
    fresh = upload_dir / "3-fresh.stl"
    for path in (kept, orphan, fresh):
        path.write_bytes(b"solid x")
    _age(kept, 5)
    _age(orphan, 5)

    QuoteService.create_quote(
        db_session,
        QuoteCreate(name="Maker", email="maker@example.com"),
        StoredFile(file_name="kept.stl", file_url=str(kept), file_size=7),
    )

    assert maintenance_tasks.find_orphaned_quote_files(db_session) == [str(orphan)]

    monkeypatch.setattr(maintenance_tasks, "SessionLocal", lambda: db_session)
    dry = maintenance_tasks.cleanup_orphaned_quote_files(dry_run=True)
    assert dry == {"orphaned": 1, "deleted": 0, "files": [str(orphan)]}
    assert orphan.exists()

    result = maintenance_tasks.cleanup_orphaned_quote_files()
    assert result["deleted"] == 1
    assert not orphan.exists()
    assert kept.exists()
    assert fresh.exists()


def test_missing_upload_dir_has_no_orphans(db_session, storage_dirs):
    assert maintenance_tasks.find_orphaned_quote_files(db_session) == []


def test_expired_blacklist_rows_are_purged(db_session, monkeypatch):
    user = create_user(db_session, "admin@example.com", role=UserRole.ADMIN)
    db_session.add_all(
        [
            TokenBlacklist(jti="old", user_id=user.id, expires_at=datetime.utcnow() - timedelta(days=1), reason="logout"),
            TokenBlacklist(jti="live", user_id=user.id, expires_at=datetime.utcnow() + timedelta(days=1), reason="logout"),
        ]
    )
    db_session.commit()
    monkeypatch.setattr(maintenance_tasks, "SessionLocal", lambda: db_session)

    result = maintenance_tasks.cleanup_expired_blacklisted_tokens()

    assert result == {"deleted": 1}
    assert [row.jti for row in db_session.query(TokenBlacklist).all()] == ["live"]


def test_maintenance_tasks_are_scheduled():
    from app.core.celery_app import celery_app

    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}

    assert scheduled == {
        maintenance_tasks.cleanup_expired_blacklisted_tokens.name,
        maintenance_tasks.cleanup_orphaned_quote_files.name,
    }
