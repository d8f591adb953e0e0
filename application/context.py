"""
Gateway context: the wired collaborators for one merchant.

Created once by the composition root (``api/dependencies.py`` or a test) and
passed explicitly; the core modules keep no module-level mutable state.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from application.dtos.credentials import MerchantCredentials
from application.ports.payment_gateway import PaymentGateway, TokenEndpoint
from application.ports.payment_listener import ListenerFactory
from application.services.credential_vault import Clock, CredentialVault, utc_now
from application.services.request_builder import PaymentRequestBuilder
from application.services.session_machine import PaymentSessionMachine
from core.settings import PaymentSettings
from domain.checksum.engine import ChecksumEngine
from domain.common.exceptions import CredentialException


@dataclass
class GatewayContext:
    credentials: MerchantCredentials
    engine: ChecksumEngine
    vault: CredentialVault
    builder: PaymentRequestBuilder
    machine: PaymentSessionMachine
    gateway: PaymentGateway
    checkout_url: str
    settings: PaymentSettings


def credentials_from_settings(settings: PaymentSettings) -> MerchantCredentials:
    merchant = settings.merchant
    if not merchant.merchant_key or not merchant.merchant_token:
        raise CredentialException("Merchant key and token must be configured (IPG_MERCHANT__*)")
    return MerchantCredentials(
        merchant_key=merchant.merchant_key,
        merchant_token=merchant.merchant_token,
        merchant_id=merchant.merchant_id,
        business_key=merchant.business_key,
        business_token=merchant.business_token,
    )


def build_gateway_context(
    settings: PaymentSettings,
    *,
    gateway: PaymentGateway,
    token_endpoint: Optional[TokenEndpoint] = None,
    listener_factory: Optional[ListenerFactory] = None,
    credentials: Optional[MerchantCredentials] = None,
    clock: Clock = utc_now,
) -> GatewayContext:
    """Wire engine, vault, builder and machine around one set of credentials.

    ``token_endpoint`` defaults to ``gateway`` since the IPG client serves both.
    """
    credentials = credentials or credentials_from_settings(settings)
    engine = ChecksumEngine()
    vault = CredentialVault(credentials, token_endpoint or gateway, clock=clock)  # type: ignore[arg-type]
    return GatewayContext(
        credentials=credentials,
        engine=engine,
        vault=vault,
        builder=PaymentRequestBuilder(engine, vault),
        machine=PaymentSessionMachine(
            credentials,
            engine,
            listener_factory=listener_factory,
            archive_limit=settings.session.archive_limit,
        ),
        gateway=gateway,
        checkout_url=settings.resolved_checkout_url,
        settings=settings,
    )
