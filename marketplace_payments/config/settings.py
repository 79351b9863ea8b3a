"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marketplace_payments.db",
        description="Async database URL (postgresql+asyncpg://... in deployment)",
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="marketplace-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )

    # Security
    api_key_header: str = Field(default="X-API-Key", description="Admin API key header name")
    admin_api_key: Optional[SecretStr] = Field(
        default=None, description="Admin API key (admin routes are open when unset)"
    )

    # Payment Processing
    default_currency: str = Field(default="XOF", description="Currency for new payments")
    max_payment_attempts: int = Field(
        default=3, description="Max payments (first attempt plus retries) per order"
    )
    gateway_timeout_seconds: float = Field(
        default=30.0, description="Upper bound on a single settlement gateway call"
    )
    orange_money_ttl_minutes: int = Field(
        default=30, description="Lifetime of a pending Orange Money payment"
    )
    bank_transfer_ttl_hours: int = Field(
        default=72, description="Lifetime of a pending bank transfer payment"
    )
    cash_on_delivery_ttl_hours: int = Field(
        default=168, description="Lifetime of a pending cash-on-delivery payment"
    )

    # Fraud Policy
    fraud_high_amount_threshold: Decimal = Field(
        default=Decimal("1000000"), description="Amounts above this are flagged high_amount"
    )
    fraud_high_amount_weight: int = Field(default=30, description="Score added for high_amount")
    fraud_invalid_phone_weight: int = Field(
        default=10, description="Score added for invalid_phone_format"
    )
    fraud_repeated_failure_weight: int = Field(
        default=20, description="Score added for repeated_failures"
    )
    fraud_repeated_failure_threshold: int = Field(
        default=3, description="Failed payments on an order before repeated_failures fires"
    )
    fraud_block_threshold: int = Field(default=70, description="Scores above this are blocked")
    fraud_review_threshold: int = Field(
        default=40, description="Scores above this are flagged for review"
    )

    # Orange Money (simulated provider)
    orange_money_valid_otp: str = Field(default="1234", description="OTP accepted by the simulator")
    orange_money_payment_url: str = Field(
        default="http://localhost:3000/mock-payment",
        description="Base URL of the hosted payment page",
    )

    # Bank Transfer
    bank_name: str = Field(default="Ecobank Burkina Faso", description="Receiving bank name")
    bank_account_name: str = Field(default="E-Commerce Platform", description="Account holder")
    bank_account_number: str = Field(default="0123456789", description="Receiving account")
    bank_swift_code: str = Field(default="ECOCBFBF", description="Receiving bank SWIFT code")

    # Webhooks
    payment_webhook_secret: SecretStr = Field(
        ..., description="Shared secret for webhook HMAC signatures"
    )
    webhook_signature_header: str = Field(
        default="X-Orange-Signature", description="Header carrying the webhook signature"
    )
    webhook_tolerance_seconds: int = Field(
        default=300, description="Max age of a timestamped webhook notification"
    )

    # Expiry sweep
    expiry_sweep_interval_seconds: int = Field(
        default=21600, description="Interval between expiry sweeps (seconds)"
    )
    reclaim_stale_processing: bool = Field(
        default=True, description="Fail processing payments left past their expiry"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    @field_validator("payment_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: SecretStr) -> SecretStr:
        """Reject an empty webhook secret."""
        if not v.get_secret_value().strip():
            raise ValueError("payment_webhook_secret must not be empty")
        return v

    @field_validator("fraud_review_threshold", "fraud_block_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Fraud thresholds live on the 0-100 score scale."""
        if not 0 <= v <= 100:
            raise ValueError("Fraud thresholds must be between 0 and 100")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def uses_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
