from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from typing import List, Optional
import json


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Digital Store Commerce API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Razorpay
    RAZORPAY_KEY_ID: str
    RAZORPAY_KEY_SECRET: str
    RAZORPAY_WEBHOOK_SECRET: str

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Pricing & fulfilment
    DEFAULT_CURRENCY: str = "EUR"
    MIN_CHARGE: Decimal = Decimal("0.50")  # Smallest amount the gateway will charge
    DOWNLOAD_LINK_TTL_DAYS: int = 7
    MAX_DOWNLOADS: int = 3
    PRODUCT_FILES_DIR: str = "storage/products"
    DOWNLOAD_FETCH_TIMEOUT: float = 30.0

    # Quote uploads
    QUOTE_UPLOAD_DIR: str = "storage/quotes"
    QUOTE_MAX_FILE_SIZE: int = 52428800  # 50MB
    QUOTE_ALLOWED_EXTENSIONS: List[str] = ["stl", "obj", "3mf"]

    # Environment
    ENVIRONMENT: str = "development"
    ENV: Optional[str] = Field(default=None)

    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Admin bootstrap
    DEFAULT_ADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_ADMIN_PASSWORD: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.upper().strip()

    @field_validator("QUOTE_ALLOWED_EXTENSIONS", mode="before")
    @classmethod
    def parse_extensions(cls, value):
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                try:
                    value = json.loads(raw)
                except json.JSONDecodeError as exc:
                    raise ValueError("QUOTE_ALLOWED_EXTENSIONS must be valid JSON or comma-separated") from exc
            else:
                value = raw.split(",")
        return [str(ext).strip().lower().lstrip(".") for ext in value if str(ext).strip()]

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if (self.RAZORPAY_KEY_ID or "").startswith("rzp_test_"):
                raise ValueError("RAZORPAY_KEY_ID must use live key in production")
            if not (self.RAZORPAY_WEBHOOK_SECRET or "").strip():
                raise ValueError("RAZORPAY_WEBHOOK_SECRET must be set in production")
        return self

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
