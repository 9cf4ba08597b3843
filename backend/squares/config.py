"""Application configuration using Pydantic BaseSettings."""

import logging
import os

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("squares.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # MongoDB Configuration
    MONGO_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "squares"
    MONGO_TIMEOUT_MS: int = 5000

    # CORS Configuration
    # Comma-separated list of allowed origins, or "*" for all origins
    CORS_ORIGINS: str = ""

    # Application Metadata
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Number assignment
    ASSIGNMENT_WINDOW_MINUTES: int = 10
    ASSIGNMENT_CHECK_INTERVAL_SECONDS: int = 60
    DISABLE_SCHEDULER: bool = False

    # Grid rules
    FREE_GAME_BOX_LIMIT: int = 2
    HOUSE_FEE_PERCENT: int = 10

    # Wallet rules (HotCoins)
    PURCHASE_MINIMUM: int = 10
    AUTO_APPROVAL_LIMIT: int = 100
    WITHDRAWAL_MINIMUM: int = 25
    WITHDRAWAL_DAILY_LIMIT: int = 500

    @field_validator("FREE_GAME_BOX_LIMIT", "WITHDRAWAL_MINIMUM", "WITHDRAWAL_DAILY_LIMIT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("HOUSE_FEE_PERCENT")
    @classmethod
    def validate_house_fee(cls, v: int) -> int:
        if not 0 <= v < 100:
            raise ValueError("HOUSE_FEE_PERCENT must be between 0 and 99")
        return v

    @property
    def cors_origins(self) -> list[str]:
        """Return list of allowed CORS origins.

        If CORS_ORIGINS is empty, allows the local development origins
        but returns empty in production.
        """
        if self.CORS_ORIGINS:
            if self.CORS_ORIGINS == "*":
                return ["*"]
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

        is_production = os.getenv("ENVIRONMENT") == "production"
        if is_production:
            logger.warning(
                "CORS_ORIGINS not configured in production. "
                "Set CORS_ORIGINS environment variable."
            )
            return []

        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]


# Global settings instance
settings = Settings()
