"""
Factory for the payment gateway client.
"""
from __future__ import annotations

from typing import Optional

import httpx

from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.ipg_client import IPGClient


def get_payment_gateway(
    settings: Optional[PaymentSettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> IPGClient:
    """The IPG client serves both the token endpoint and the tokenize endpoints."""
    return IPGClient(settings or payment_settings, transport=transport)
