from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Reward ledger settings, read from the environment and `.env`."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]

    # SA economics
    SA_PER_INTERACTION: Decimal = Decimal("0.5")
    DAILY_SA_CAP: Decimal = Decimal("500")
    SA_TO_USD_RATE: Decimal = Decimal("0.01")

    # Withdrawals
    MIN_WITHDRAWAL: Decimal = Decimal("10")
    USD_TO_NGN_RATE: Decimal = Decimal("1000")

    # Creator verification
    MIN_FOLLOWERS_FOR_VERIFICATION: int = 3000
    VERIFICATION_FEE_USD: Decimal = Decimal("10")
    VERIFICATION_FEE_NGN: Decimal = Decimal("10000")

    # Store
    CONFLICT_RETRIES: int = 3

    # Payment gateway
    STRIPE_TRANSFER_URL: str = "http://localhost:8000/api/stripe-transfer"
    PAYSTACK_TRANSFER_URL: str = "http://localhost:8000/api/paystack-transfer"
    GATEWAY_TIMEOUT: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
