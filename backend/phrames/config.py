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
    APP_NAME: str = "Phrames Campaign API"
    APP_VERSION: str = "1.4.0"
    DEBUG: bool = False
    APP_URL: str = "https://phrames.cleffon.com"

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'phrames.db'}"

    # --- Payment Gateway (Cashfree PG) ---
    CASHFREE_ENV: str = "SANDBOX"              # SANDBOX | PRODUCTION
    CASHFREE_CLIENT_ID: str = ""
    CASHFREE_CLIENT_SECRET: str = ""
    CASHFREE_API_VERSION: str = "2023-08-01"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    CURRENCY: str = "INR"
    WEBHOOK_VERIFY_SIGNATURE: bool = False

    # --- Campaign Lifecycle ---
    FREE_CAMPAIGN_ENABLED: bool = True
    FREE_CAMPAIGN_DAYS: int = 30
    REACTIVATE_DEFAULT_DAYS: int = 30
    EXTEND_DEFAULT_DAYS: int = 30

    # --- Batch Jobs ---
    STORE_BATCH_LIMIT: int = 500    # hard cap of write operations per commit
    EXPIRY_CHUNK_SIZE: int = 250    # campaigns per sweep commit (2 writes each)
    EXPORT_PAGE_SIZE: int = 500

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]
    INITIATE_RATE_LIMIT: int = 5
    INITIATE_RATE_WINDOW: int = 60

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def gateway_base_url(self) -> str:
        if self.CASHFREE_ENV.upper() == "PRODUCTION":
            return "https://api.cashfree.com"
        return "https://sandbox.cashfree.com"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
