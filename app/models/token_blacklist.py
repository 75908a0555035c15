from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import Session

from app.db.base_class import Base


class TokenBlacklist(Base):
    """Revoked JWTs, keyed by ``jti``. Rows past ``expires_at`` are purged nightly."""

    __tablename__ = "token_blacklist"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)  # Same as the token's exp
    reason = Column(String(50), nullable=True)  # logout, password_change
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def is_revoked(cls, db: Session, jti: Optional[str], now: Optional[datetime] = None) -> bool:
        # A token without a jti counts as revoked
        if not jti:
            return True
        now = now or datetime.utcnow()
        return (
            db.query(cls.id).filter(cls.jti == jti, cls.expires_at > now).first()
            is not None
        )

    @classmethod
    def revoke(cls, db: Session, claims: dict, reason: str) -> bool:
        """Stage a blacklist row for decoded token ``claims``; the caller commits."""
        jti = claims.get("jti")
        user_id = claims.get("sub")
        exp = claims.get("exp")
        if not jti or not user_id or not exp:
            return False

        if db.query(cls.id).filter(cls.jti == jti).first():
            return False

        db.add(
            cls(
                jti=jti,
                user_id=int(user_id),
                expires_at=datetime.utcfromtimestamp(exp),
                reason=reason,
            )
        )
        return True
