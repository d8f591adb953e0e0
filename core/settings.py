"""
Payment gateway settings using pydantic-settings v2 with nested env keys.

Environment variables use the ``IPG_`` prefix and ``__`` for nesting, e.g.
``IPG_MERCHANT__MERCHANT_KEY`` or ``IPG_TIMEOUTS__READ``.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class MerchantSettings(BaseModel):
    merchant_key: Optional[str] = None
    merchant_token: Optional[str] = Field(default=None, repr=False)
    merchant_id: Optional[str] = None
    business_key: Optional[str] = None
    business_token: Optional[str] = Field(default=None, repr=False)


class TokenSettings(BaseModel):
    # Used when the token endpoint omits expiresIn
    default_ttl_seconds: int = 3600
    # Refresh this many seconds before the gateway-declared expiry
    refresh_skew_seconds: int = 30


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class SessionSettings(BaseModel):
    archive_limit: int = 1024


GATEWAY_BASE_URLS = {
    "sandbox": "https://sandboxipgpayment.payable.lk",
    "live": "https://ipgpayment.payable.lk",
}


class PaymentSettings(BaseSettings):
    environment: Literal["sandbox", "live"] = "sandbox"
    base_url: Optional[str] = None
    checkout_url: Optional[str] = None

    merchant: MerchantSettings = Field(default_factory=MerchantSettings)
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    token: TokenSettings = Field(default_factory=TokenSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IPG_",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @property
    def resolved_base_url(self) -> str:
        return (self.base_url or GATEWAY_BASE_URLS[self.environment]).rstrip("/")

    @property
    def resolved_checkout_url(self) -> str:
        return self.checkout_url or f"{self.resolved_base_url}/ipg/v2/checkout"


payment_settings = PaymentSettings()
