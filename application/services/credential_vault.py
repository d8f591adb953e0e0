"""
Credential vault - merchant secrets and the OAuth2 access-token lifecycle.

Only the token refresh is serialised: concurrent callers that find the cache
expired share one in-flight acquisition and all receive its result (or its
exception).
"""
from __future__ import annotations

import asyncio
import base64
from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.credentials import AccessToken, MerchantCredentials
from application.ports.payment_gateway import TokenEndpoint
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, CredentialException


logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def basic_credential(business_key: str, business_token: str) -> str:
    raw = f"{business_key}:{business_token}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


class CredentialVault:
    def __init__(
        self,
        credentials: MerchantCredentials,
        token_endpoint: TokenEndpoint,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._credentials = credentials
        self._endpoint = token_endpoint
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def credentials(self) -> MerchantCredentials:
        return self._credentials

    @property
    def cached_token(self) -> Optional[AccessToken]:
        return self._token

    async def acquire_token(self, business_key: str, business_token: str) -> AccessToken:
        """Request a client-credentials grant and cache the result."""
        if not business_key or not business_token:
            raise CredentialException("Business key/token are required for tokenize operations")
        try:
            token = await self._endpoint.request_token(basic_credential(business_key, business_token))
        except CredentialException:
            raise
        except BusinessException as exc:
            raise CredentialException(
                "Access token acquisition failed",
                details={"error_type": exc.error_type, "error": exc.message},
            ) from exc
        self._token = token
        logger.info("access_token_acquired", expires_at=token.expires_at.isoformat())
        return token

    async def get_valid_token(self) -> AccessToken:
        token = self._token
        if token is not None and not token.is_expired(self._clock()):
            return token

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
        # shield: a cancelled caller must not abort the shared refresh
        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        self._token = None

    async def _refresh(self) -> AccessToken:
        try:
            logger.info("access_token_refresh_started")
            return await self.acquire_token(
                self._credentials.business_key or "",
                self._credentials.business_token or "",
            )
        finally:
            self._inflight = None
