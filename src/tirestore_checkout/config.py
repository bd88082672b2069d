"""Checkout configuration."""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode


class CheckoutSettings(BaseSettings):
    """Configuration for the storefront checkout."""

    # Environment
    environment: Literal["dev", "staging", "prod"] = "dev"

    # Backend REST API
    api_base_url: str = "http://localhost:3001/api"
    request_timeout_seconds: float = 30.0

    # Payment gateway - empty key means payments are disabled
    stripe_publishable_key: str = ""
    stripe_api_base: str = "https://api.stripe.com/v1"
    return_url: str = "http://localhost:5173/order-success"
    order_success_route: str = "/order-success"

    # Storefront
    allowed_countries: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["NL", "BE", "DE", "FR"])
    currency: str = "EUR"
    vat_rate: Decimal = Decimal("0.21")

    # Cart persistence
    cart_storage_key: str = "cart"
    redis_url: str = ""

    # Payment authorization retries
    intent_max_retries: int = 2
    intent_retry_base_delay: float = 0.5

    class Config:
        env_prefix = "TIRESTORE_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("allowed_countries", mode="before")
    @classmethod
    def parse_countries(cls, v):
        """Parse comma-separated country codes from env var."""
        if isinstance(v, str):
            v = [c for c in v.split(",")]
        return [c.strip().upper() for c in v if c and c.strip()]

    @field_validator("api_base_url", "stripe_api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def payments_configured(self) -> bool:
        """True when a usable publishable key is present."""
        return self.stripe_publishable_key.startswith("pk_")


@lru_cache
def load_settings(env_file: str | None = None) -> CheckoutSettings:
    """Load CheckoutSettings once per process."""
    if env_file:
        return CheckoutSettings(_env_file=Path(env_file))
    return CheckoutSettings()
