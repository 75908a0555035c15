"""Double-submit cookie CSRF protection for cookie-authenticated writes.

The frontend reads ``csrf_token`` (not httpOnly) and echoes it in the
``X-CSRF-Token`` header. Only enforced in production; the payment webhook
is authenticated by its signature instead.
"""
from secrets import token_urlsafe
import hmac

from fastapi import Request, Response
import structlog

from app.core.config import settings
from app.utils.response import error

logger = structlog.get_logger()

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24

CSRF_PROTECTED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CSRF_EXEMPT_PATHS = frozenset(
    f"{settings.API_V1_STR}{path}"
    for path in (
        "/auth/login",
        "/auth/register",
        "/auth/refresh",
        "/auth/logout",
        "/checkout/webhook",
    )
)


def generate_csrf_token() -> str:
    return token_urlsafe(32)


def set_csrf_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=False,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=CSRF_COOKIE_MAX_AGE,
        path="/",
    )


def verify_csrf_token(request: Request) -> bool:
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    header_token = request.headers.get(CSRF_HEADER_NAME)
    if not cookie_token or not header_token:
        return False
    return hmac.compare_digest(cookie_token, header_token)


def csrf_required(request: Request) -> bool:
    if settings.ENVIRONMENT != "production":
        return False
    if request.method not in CSRF_PROTECTED_METHODS:
        return False
    path = request.url.path.rstrip("/") or "/"
    return path not in CSRF_EXEMPT_PATHS


async def csrf_middleware(request: Request, call_next):
    if csrf_required(request) and not verify_csrf_token(request):
        logger.warning("csrf_rejected", method=request.method, path=request.url.path)
        return error(message="CSRF validation failed", status_code=403)
    return await call_next(request)
