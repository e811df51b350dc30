"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Nursery Storefront API"
    APP_VERSION: str = "1.4.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'storefront.db'}"

    # --- Security ---
    JWT_SECRET: str = "dev-secret-not-for-production"
    JWT_ALGORITHM: str = "HS256"
    CORS_ORIGINS: list[str] = ["*"]

    # --- Payment Gateway (Razorpay) ---
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    CURRENCY: str = "INR"

    # --- Payment lifecycle ---
    PENDING_PAYMENT_TTL_MINUTES: int = 30
    RECONCILE_GRACE_MINUTES: int = 15
    PENDING_RETENTION_DAYS: int = 7
    FAILED_RETENTION_DAYS: int = 30
    PAYMENT_LOG_RETENTION_DAYS: int = 90
    AMOUNT_TOLERANCE_PAISE: int = 1
    ORDER_NUMBER_PREFIX: str = "VAN"

    # --- Rate limiting ---
    RATE_LIMIT_SWEEP_SECONDS: int = 300

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
