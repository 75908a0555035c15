import structlog
from typing import FrozenSet, Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.permissions import Action, Capability, Resource, capabilities_for, has_capability
from app.core.security import decode_token
from app.db.session import get_db
from app.models.token_blacklist import TokenBlacklist
from app.models.user import User

logger = structlog.get_logger()


def _extract_token(request: Request) -> Optional[str]:
    if request.cookies.get("access_token"):
        return request.cookies.get("access_token")

    auth_header = request.headers.get("Authorization") or ""
    if auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


def _user_from_token(db: Session, token: str) -> User:
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    if TokenBlacklist.is_revoked(db, payload.get("jti")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    try:
        token_session_version = int(payload.get("session_version", 0))
    except (TypeError, ValueError):
        token_session_version = -1
    if token_session_version != user.session_version:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has been invalidated. Please login again.",
        )

    return user


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    token = _extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return _user_from_token(db, token)


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but anonymous requests get None instead of a 401."""
    token = _extract_token(request)
    if not token:
        return None
    return _user_from_token(db, token)


def get_capabilities(
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> FrozenSet[Capability]:
    if current_user is None:
        return frozenset()
    return capabilities_for(db, current_user.role)


def require_capability(resource: Resource, action: Action):
    """Dependency factory: 403 unless the caller holds ``resource:action``.

    Resolves to the caller's full capability set so services can run their
    own membership checks.
    """

    def dependency(
        request: Request,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> FrozenSet[Capability]:
        capabilities = capabilities_for(db, current_user.role)
        action_name = f"{request.method} {request.url.path}"

        if not has_capability(capabilities, resource, action):
            logger.warning(
                "operator_access_denied",
                action=action_name,
                user_id=current_user.id,
                required=f"{resource.value}:{action.value}",
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )

        logger.info(
            "operator_action",
            action=action_name,
            user_id=current_user.id,
            role=current_user.role.value,
        )
        return capabilities

    return dependency
