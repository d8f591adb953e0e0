"""
IPG gateway client: OAuth2 token endpoint plus the bearer tokenize endpoints.

Wraps ``BaseAPIClient`` (timeouts, tenacity retries, typed errors) and maps
transport failures onto the payment BusinessException variants.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from application.dtos.credentials import AccessToken
from application.dtos.payments import TransportEnvelope
from application.services.credential_vault import Clock, utc_now
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import AccessTokenRejectedException, CredentialException
from infrastructure.external.api_clients.base import (
    APIError,
    APIResponse,
    AuthenticationError,
    BaseAPIClient,
    RateLimitError,
    ServerError,
)
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)


logger = get_logger(__name__)

TOKEN_PATH = "/ipg/v2/auth/tokenize"
LIST_CARD_PATH = "/ipg/v2/tokenize/listCard"
DELETE_CARD_PATH = "/ipg/v2/tokenize/deleteCard"
EDIT_CARD_PATH = "/ipg/v2/tokenize/editCard"
PAY_PATH = "/ipg/v2/tokenize/pay"


class IPGClient(BaseAPIClient):
    provider: str = "ipg"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or payment_settings
        t = self._settings.timeouts
        super().__init__(
            base_url=self._settings.resolved_base_url,
            timeout=httpx.Timeout(t.total, connect=t.connect, read=t.read, write=t.write),
            max_retries=self._settings.retry.max,
            retry_delay=self._settings.retry.base_backoff,
            transport=transport,
        )
        self._clock = clock

    # TokenEndpoint ------------------------------------------------------

    async def request_token(self, basic_credential: str) -> AccessToken:
        try:
            response = await self.post(
                TOKEN_PATH,
                json_data={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {basic_credential}"},
            )
        except AuthenticationError as exc:
            raise CredentialException(
                "Gateway rejected the business credentials",
                details={"status_code": exc.status_code},
            ) from exc
        except APIError as exc:
            raise CredentialException(
                "Access token request failed",
                details={"status_code": exc.status_code, "error": exc.message},
            ) from exc

        body = response.data if isinstance(response.data, dict) else {}
        value = body.get("accessToken") or body.get("access_token")
        if not value:
            raise CredentialException("Token response carried no accessToken")
        return AccessToken(value=str(value), expires_at=self._expires_at(body.get("expiresIn", body.get("expires_in"))))

    def _expires_at(self, expires_in: Any) -> datetime:
        token_cfg = self._settings.token
        try:
            ttl = int(expires_in) if expires_in is not None else token_cfg.default_ttl_seconds
        except (TypeError, ValueError):
            ttl = token_cfg.default_ttl_seconds
        ttl = max(ttl - token_cfg.refresh_skew_seconds, 0)
        return self._clock() + timedelta(seconds=ttl)

    # PaymentGateway -----------------------------------------------------

    async def list_cards(self, envelope: TransportEnvelope) -> dict[str, Any]:
        return await self._call("tokenize_list_cards", LIST_CARD_PATH, envelope)

    async def delete_card(self, envelope: TransportEnvelope) -> dict[str, Any]:
        return await self._call("tokenize_delete_card", DELETE_CARD_PATH, envelope)

    async def edit_card(self, envelope: TransportEnvelope) -> dict[str, Any]:
        return await self._call("tokenize_edit_card", EDIT_CARD_PATH, envelope)

    async def pay(self, envelope: TransportEnvelope) -> dict[str, Any]:
        # Charges the card; never resent
        return await self._call("tokenize_pay", PAY_PATH, envelope, retry=False)

    async def _call(
        self, operation: str, path: str, envelope: TransportEnvelope, *, retry: bool = True
    ) -> dict[str, Any]:
        self._log(f"{operation}_request", invoice_id=envelope.request.invoice_id)
        try:
            response = await self.post(path, json_data=envelope.to_payload(), headers=dict(envelope.headers), retry=retry)
        except AuthenticationError as exc:
            if exc.status_code == 401:
                raise AccessTokenRejectedException(details={"operation": operation}) from exc
            raise self._provider_error(operation, exc) from exc
        except (RateLimitError, ServerError) as exc:
            raise PaymentRecoverableError(
                f"{operation} failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc
        except APIError as exc:
            if exc.status_code is None:
                raise PaymentRecoverableError(f"{operation} failed: {exc.message}", provider=self.provider) from exc
            raise self._provider_error(operation, exc) from exc

        self._log(f"{operation}_response", status_code=response.status_code, elapsed_ms=round(response.elapsed_ms, 1))
        return self._body(response)

    def _provider_error(self, operation: str, exc: APIError) -> PaymentProviderError:
        provider_code = None
        if exc.response is not None and isinstance(exc.response.data, dict):
            code = exc.response.data.get("status") or exc.response.data.get("code")
            provider_code = None if code is None else str(code)
        return PaymentProviderError(
            f"{operation} failed: {exc.message}",
            provider=self.provider,
            status_code=exc.status_code,
            provider_code=provider_code,
        )

    @staticmethod
    def _body(response: APIResponse) -> dict[str, Any]:
        data = response.data
        if isinstance(data, dict):
            return data
        if data is None:
            return {}
        return {"data": data}

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
