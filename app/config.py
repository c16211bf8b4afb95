"""
Great Pearl Coffee Finance - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "Great Pearl Coffee Finance"
    app_env: str = "development"
    debug: bool = True
    secret_key: str  # Required - must be set in .env
    api_version: str = "v1"

    # ===========================================
    # COMPANY
    # ===========================================
    company_name: str = "Great Pearl Coffee"
    currency: str = "UGX"

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str  # Required - must be set in .env
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ===========================================
    # JWT AUTHENTICATION
    # Tokens are issued by the identity provider; we only verify them.
    # ===========================================
    jwt_secret_key: str  # Required - must be set in .env
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # ===========================================
    # REDIS CONFIGURATION
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    # API processes listen for worker-published realtime events
    realtime_relay_enabled: bool = True

    # ===========================================
    # CASH LEDGER
    # ===========================================
    cash_allow_overdraft: bool = False

    # ===========================================
    # WITHDRAWALS
    # Requests above the threshold need several distinct admin approvals.
    # ===========================================
    withdrawal_multi_approval_threshold: float = 100000
    withdrawal_multi_approval_count: int = 3
    withdrawal_code_ttl_minutes: int = 5
    withdrawal_code_max_attempts: int = 3

    # ===========================================
    # SMS GATEWAY
    # Leave sms_api_key empty to log codes instead of sending them.
    # ===========================================
    sms_api_url: str = "https://sms.sunshineuganda.com/api/v1/sms/send"
    sms_api_key: str = ""
    sms_sender_id: str = "GPCF"
    sms_country_code: str = "256"
    sms_timeout_seconds: float = 15.0

    @property
    def sms_enabled(self) -> bool:
        """Whether an SMS gateway key is configured."""
        return bool(self.sms_api_key)

    # ===========================================
    # NOTIFICATIONS
    # ===========================================
    notification_max_delivery_attempts: int = 5
    notification_list_limit: int = 100
    notification_delivery_batch_size: int = 200

    # ===========================================
    # CORS SETTINGS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        """SQLite is used for tests and local experiments."""
        return self.database_url_async.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
