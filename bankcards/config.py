"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This pattern keeps secrets out of source code — the .env file is
gitignored, and .env.example provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from bankcards.config import settings
    print(settings.DAILY_TRANSFER_LIMIT)
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the card ledger.

    Required fields (no defaults) MUST be set in .env or environment:
      - CARD_ENCRYPTION_SECRET: Secret the PAN/CVV encryption key is derived from
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Bank Cards API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for local use; swap to a PostgreSQL (asyncpg) URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/bankcards.db"

    # --- Card Encryption ---
    # REQUIRED: the AES key is SHA-256(secret), so any length works here
    CARD_ENCRYPTION_SECRET: str
    # "AES-GCM" (AES-256-GCM) or "FERNET" (AES-128-CBC + HMAC-SHA256)
    CARD_ENCRYPTION_ALGORITHM: str = "AES-GCM"

    # --- Card display ---
    CARD_MASK_PATTERN: str = "**** **** **** {last_four}"
    CARD_NUMBER_LENGTH: int = 16

    # --- Transfer limits ---
    DEFAULT_CURRENCY: str = "USD"
    # Absolute ceiling accepted as a transfer amount at all
    MAX_TRANSFER_AMOUNT: Decimal = Decimal("1000000")
    MAX_PER_TRANSACTION: Decimal = Decimal("10000")
    # Sum of completed outgoing transfers per card over the trailing 24 hours
    DAILY_TRANSFER_LIMIT: Decimal = Decimal("5000")
    # Ceiling on the opening balance of a new card
    MAX_CARD_BALANCE: Decimal = Decimal("100000000")

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
