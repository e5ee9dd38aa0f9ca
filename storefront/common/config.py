from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "storefront"


class StorefrontSettings(BaseSettings):
    """Settings shared by the cart engine, checkout flow and cart service."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    redis_url: str | None = Field(default=None)
    cart_service_url: str = Field(default="http://127.0.0.1:8000")
    catalog_service_url: str | None = Field(default=None)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)
    default_locale: str = Field(default="en-US")
    min_quantity: int = Field(default=1, ge=1)
    max_quantity: int = Field(default=99, ge=1)
    sync_debounce_seconds: float = Field(default=0.3, ge=0.0)
    sync_timeout_seconds: float = Field(default=5.0, gt=0.0)
    guest_cart_ttl_days: int = Field(default=30, ge=1)
    order_number_prefix: str = Field(default="AFM", min_length=1, max_length=8)
    max_line_price: Decimal = Field(default=Decimal("100000.00"), gt=Decimal("0"))

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="STOREFRONT_", extra="ignore"
    )

    @model_validator(mode="after")
    def _check_quantity_bounds(self) -> "StorefrontSettings":
        if self.min_quantity > self.max_quantity:
            msg = "min_quantity must not exceed max_quantity"
            raise ValueError(msg)
        return self

    @property
    def guest_cart_ttl(self) -> timedelta:
        return timedelta(days=self.guest_cart_ttl_days)

    @property
    def guest_cart_ttl_seconds(self) -> int:
        return int(self.guest_cart_ttl.total_seconds())


@lru_cache
def get_settings() -> StorefrontSettings:
    """Return cached storefront settings."""

    return StorefrontSettings()
