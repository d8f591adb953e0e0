"""
Merchant credential and access-token DTOs.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MerchantCredentials(BaseModel):
    """Immutable merchant identity; secrets are hidden from ``repr``."""

    model_config = ConfigDict(frozen=True)

    merchant_key: str
    merchant_token: str = Field(repr=False)
    merchant_id: Optional[str] = None
    business_key: Optional[str] = None
    business_token: Optional[str] = Field(default=None, repr=False)

    @property
    def tokenize_merchant_id(self) -> str:
        return self.merchant_id or self.merchant_key


class AccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str = Field(repr=False)
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
