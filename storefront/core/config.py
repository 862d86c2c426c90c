from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "VisionCraft Storefront API"
    API_PREFIX: str = "/api"

    # Database
    DATABASE_URL: str

    # Identity (tokens are issued by the external identity provider)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Razorpay (empty keys put checkout in development-intent mode)
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    PAYMENT_PROVIDER_TIMEOUT_SECONDS: int = 15
    ALLOW_DEV_PAYMENTS: Optional[bool] = None

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Email (reconciliation alerts)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAILS_FROM_EMAIL: str = ""
    EMAILS_FROM_NAME: str = "VisionCraft"
    ALERTS_EMAIL_TO: str = ""

    # Environment
    ENVIRONMENT: str = "development"

    DEBUG: bool = False

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TASK_ALWAYS_EAGER: bool = False

    # Store settings cache
    SETTINGS_CACHE_TTL_SECONDS: int = 300

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @model_validator(mode="after")
    def resolve_dev_payments(self):
        if self.ALLOW_DEV_PAYMENTS is None:
            self.ALLOW_DEV_PAYMENTS = self.ENVIRONMENT != "production"
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
            if self.ALLOW_DEV_PAYMENTS:
                raise ValueError("ALLOW_DEV_PAYMENTS must be disabled in production")
            if not self.payment_provider_configured:
                raise ValueError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set in production")
            if self.RAZORPAY_KEY_ID.startswith("rzp_test_"):
                raise ValueError("RAZORPAY_KEY_ID must use live key in production")
        return self

    @property
    def payment_provider_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID.strip() and self.RAZORPAY_KEY_SECRET.strip())

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
