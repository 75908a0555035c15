from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.config import settings
from app.core.exceptions import EmailAlreadyExists, InvalidCredentials
from app.core.permissions import capabilities_for
from app.core.rate_limiter import limiter
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from app.db.session import get_db
from app.middleware.csrf import CSRF_COOKIE_NAME, generate_csrf_token, set_csrf_cookie
from app.models.token_blacklist import TokenBlacklist
from app.models.user import User
from app.schemas.user import CurrentUserResponse, UserCreate, UserLogin, UserResponse
from app.utils.response import success

router = APIRouter()


def _cookie_kwargs(request: Request) -> dict:
    secure = settings.ENVIRONMENT == "production" and request.url.scheme == "https"
    return {"httponly": True, "secure": secure, "samesite": "lax", "path": "/"}


def _issue_tokens(user: User) -> tuple:
    claims = {"sub": str(user.id), "session_version": user.session_version}
    access_token = create_access_token(data={**claims, "role": user.role.value})
    refresh_token = create_refresh_token(data=claims)
    return access_token, refresh_token


@router.get("/csrf-token")
def get_csrf_token():
    token = generate_csrf_token()
    response = JSONResponse(content=success(message="CSRF token set"))
    set_csrf_cookie(response, token)
    return response


@router.post(
    "/register",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register buyer account",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email already registered"},
        422: {"description": "Validation error"},
    },
)
@limiter.limit("5/minute")
def register(request: Request, user_in: UserCreate, db: Session = Depends(get_db)):
    if db.query(User.id).filter(User.email == user_in.email).first():
        raise EmailAlreadyExists()

    user = User(
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        full_name=user_in.full_name,
        phone=user_in.phone,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyExists()
    db.refresh(user)

    return success(
        data=UserResponse.model_validate(user).model_dump(),
        message="Registration successful",
    )


@router.post(
    "/login",
    response_model=dict,
    summary="Login",
    description="Authenticates a user and sets `access_token` and `refresh_token` as httpOnly cookies.",
    responses={
        200: {"description": "Login successful"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Account inactive"},
    },
)
@limiter.limit("5/minute")
def login(request: Request, credentials: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == str(credentials.email).lower()).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        raise InvalidCredentials()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    # Rotate session version to invalidate all previously issued tokens.
    if settings.ENVIRONMENT == "production":
        user.session_version += 1
        db.commit()
        db.refresh(user)

    access_token, refresh_token = _issue_tokens(user)

    response = JSONResponse(
        content=success(
            data={
                "user": {"id": user.id, "email": user.email, "role": user.role.value},
                "access_token": access_token,
            },
            message="Login successful",
        )
    )
    cookie = _cookie_kwargs(request)
    response.set_cookie(key="access_token", value=access_token, max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60, **cookie)
    response.set_cookie(key="refresh_token", value=refresh_token, max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400, **cookie)
    return response


@router.post("/refresh")
@limiter.limit("20/minute")
def refresh_token(request: Request, db: Session = Depends(get_db)):
    token = request.cookies.get("refresh_token")
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token not found")

    payload = decode_token(token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    if TokenBlacklist.is_revoked(db, payload.get("jti")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has been revoked")

    user = db.query(User).filter(User.id == int(payload.get("sub", 0))).first()
    if not user or not user.is_active or payload.get("session_version") != user.session_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session has been invalidated. Please login again.")

    access_token, _ = _issue_tokens(user)
    response = JSONResponse(content=success(message="Token refreshed"))
    response.set_cookie(
        key="access_token",
        value=access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        **_cookie_kwargs(request),
    )
    return response


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    for token in (request.cookies.get("access_token"), request.cookies.get("refresh_token")):
        if not token:
            continue
        try:
            TokenBlacklist.revoke(db, decode_token(token), reason="logout")
        except HTTPException:
            continue

    try:
        db.commit()
    except IntegrityError:
        db.rollback()

    response = JSONResponse(content=success(message="Logout successful"))
    cookie = _cookie_kwargs(request)
    for name in ("access_token", "refresh_token", CSRF_COOKIE_NAME):
        response.delete_cookie(key=name, path="/", samesite="lax", secure=cookie["secure"])
    return response


@router.get("/me", response_model=dict)
def me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    capabilities = sorted(str(cap) for cap in capabilities_for(db, current_user.role))
    data = CurrentUserResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role.value,
        capabilities=capabilities,
    )
    return success(data=data.model_dump(), message="Current user")
