# ==================================================================================
# core/config.py — Ledgerly tenancy configuration (Pydantic v2 settings)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError
import sys


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./ledgerly.db"

    # ------------------------
    # IDENTITY TOKEN CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    IDENTITY_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # INVITATION LIFECYCLE
    # ------------------------
    INVITATION_VALID_DAYS: int = 7
    INVITATION_RECENT_DAYS: int = 7
    INVITATION_EXPIRING_SOON_DAYS: int = 3
    # Periodic sweep cadence; 0 disables the background loop
    INVITATION_SWEEP_INTERVAL_SECONDS: int = 3600
    SWEEP_ON_STATS_READ: bool = True

    # ------------------------
    # QUOTAS / STORE
    # ------------------------
    DEFAULT_PLAN_SLUG: str = "free"
    TRANSACTION_RETRY_ATTEMPTS: int = 3
    TRANSACTION_RETRY_BACKOFF_SECONDS: float = 0.1
    # Per-transaction deadline; 0 disables it
    TRANSACTION_TIMEOUT_SECONDS: float = 10.0
    # How long a SQLite connection waits for the write lock
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 5.0

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
except ValidationError as e:
    print("❌ Environment configuration error — missing or invalid settings!")
    print(e)
    sys.exit(1)
