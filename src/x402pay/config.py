# x402pay/config.py
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from x402pay.constants import DEFAULT_FACILITATOR_URL, DEFAULT_NETWORK


class X402Settings(BaseSettings):
    """Service settings, read from ``X402_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="X402_",
        env_file=".env",
        extra="ignore",  # Ignore unrelated entries in .env
    )

    # Payer key; the service stays inactive without one
    private_key: Optional[SecretStr] = None
    network: str = DEFAULT_NETWORK
    # Recipient for paywalls created by the service
    pay_to: str = ""
    facilitator_url: str = DEFAULT_FACILITATOR_URL

    max_payment_usd: float = Field(default=1.0, ge=0)
    max_total_usd: float = Field(default=10.0, ge=0)
    enabled: bool = True

    # Ledger selection: database_url wins over db_path; neither means in-memory
    db_path: Optional[str] = None
    database_url: Optional[str] = None
    agent_id: str = "default"


@lru_cache()  # Cache the settings object for performance
def get_settings() -> X402Settings:
    return X402Settings()
