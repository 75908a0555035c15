import logging
import os
import time
import uuid

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api.v1 import admin, auth, checkout, coupons, downloads, quotes
from app.core.config import settings
from app.core.exceptions import APIError
from app.core.logging import configure_logging
from app.core.rate_limiter import limiter
from app.db.session import SessionLocal, engine
from app.middleware.csrf import csrf_middleware
from app.models.user import User, UserRole
from app.utils.response import error

API_VERSION = "1.0.0"

logger = structlog.get_logger()

# --------------------------------------------------
# LOGGING & MONITORING
# --------------------------------------------------
configure_logging()

if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=os.getenv("GIT_COMMIT"),
        traces_sample_rate=0.1,
        send_default_pii=False,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
    )
    logging.info("Sentry initialized successfully")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=API_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
)


@app.on_event("startup")
def require_admin_in_production():
    """Refuse to serve in production until an active admin can run the store."""
    if settings.ENVIRONMENT != "production":
        return

    db = SessionLocal()
    try:
        has_admin = (
            db.query(User.id)
            .filter(User.role == UserRole.ADMIN, User.is_active == True)
            .first()
            is not None
        )
    finally:
        db.close()

    if not has_admin:
        raise RuntimeError(
            "No active admin user found in production. "
            "Run `python -m app.db.init_db` with DEFAULT_ADMIN_PASSWORD set."
        )

# --------------------------------------------------
# MIDDLEWARE (last added runs first)
# --------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.middleware("http")(csrf_middleware)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    if settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def request_context(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    started = time.perf_counter()
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )
    try:
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    response.headers["X-Correlation-ID"] = correlation_id
    return response


cors_origins = list(settings.BACKEND_CORS_ORIGINS)
if settings.FRONTEND_URL and settings.FRONTEND_URL not in cors_origins:
    cors_origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token", "X-Correlation-ID"],
    expose_headers=["X-Process-Time", "X-Correlation-ID", "Content-Disposition"],
    max_age=3600,
)

# --------------------------------------------------
# ROUTERS
# --------------------------------------------------
app.include_router(auth.router, prefix=f"{settings.API_V1_STR}/auth", tags=["Authentication"])
app.include_router(coupons.router, prefix=f"{settings.API_V1_STR}/coupons", tags=["Coupons"])
app.include_router(checkout.router, prefix=f"{settings.API_V1_STR}/checkout", tags=["Checkout"])
app.include_router(quotes.router, prefix=f"{settings.API_V1_STR}/quotes", tags=["Quotes"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])
app.include_router(downloads.router, prefix=f"{settings.API_V1_STR}/downloads", tags=["Downloads"])


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
    }


@app.get("/health/database")
def database_health_check():
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except Exception as exc:
        logger.warning("database_health_check_failed", detail=str(exc))
        return error(
            message="Database connectivity check failed",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    pool = engine.pool
    return {
        "status": "healthy",
        "pool": {
            "pool_class": pool.__class__.__name__,
            "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None,
        },
    }


@app.get("/")
def root():
    return {
        "message": settings.PROJECT_NAME,
        "docs": f"{settings.API_V1_STR}/docs",
        "version": API_VERSION,
    }


@app.get(f"{settings.API_V1_STR}/version")
def get_version():
    return {
        "version": API_VERSION,
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }

# --------------------------------------------------
# EXCEPTION HANDLERS
# --------------------------------------------------
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limited", path=request.url.path, limit=str(exc.detail))
    return error(
        message="Too many requests. Please try again later.",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    )


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return error(message=exc.message, errors=exc.errors, status_code=exc.status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    message, errors = "Request failed", []

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, list):
        errors = detail
    elif isinstance(detail, dict):
        message = detail.get("message", message)
        errors = detail.get("errors", [])

    return error(message=message, errors=errors, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error(
        message="Validation failed",
        errors=exc.errors(),
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", error_type=type(exc).__name__, detail=str(exc))

    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error(
            message=f"Internal server error: {exc}",
            errors=[{"type": type(exc).__name__}],
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return error(message="Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
