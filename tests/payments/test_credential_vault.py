import asyncio
import base64
from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.credentials import AccessToken, MerchantCredentials
from application.services.credential_vault import CredentialVault, basic_credential
from domain.common.exceptions import BusinessException, CredentialException


T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class CountingEndpoint:
    def __init__(self, clock: FakeClock, ttl: int = 60, delay: float = 0.01):
        self.clock = clock
        self.ttl = ttl
        self.delay = delay
        self.calls: list[str] = []

    async def request_token(self, basic: str) -> AccessToken:
        self.calls.append(basic)
        await asyncio.sleep(self.delay)
        return AccessToken(value=f"tok-{len(self.calls)}", expires_at=self.clock() + timedelta(seconds=self.ttl))


class FailingEndpoint:
    def __init__(self):
        self.calls = 0

    async def request_token(self, basic: str) -> AccessToken:
        self.calls += 1
        await asyncio.sleep(0)
        raise BusinessException(code=1, message="boom", error_type="PaymentProviderError")


def test_basic_credential_encoding():
    assert basic_credential("BK1", "BT1") == base64.b64encode(b"BK1:BT1").decode()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(credentials):
    clock = FakeClock()
    endpoint = CountingEndpoint(clock)
    vault = CredentialVault(credentials, endpoint, clock=clock)

    tokens = await asyncio.gather(*(vault.get_valid_token() for _ in range(10)))

    assert len(endpoint.calls) == 1
    assert endpoint.calls[0] == basic_credential("BK1", "BT1")
    assert {t.value for t in tokens} == {"tok-1"}


@pytest.mark.asyncio
async def test_cached_token_reused_until_expiry(credentials):
    clock = FakeClock()
    endpoint = CountingEndpoint(clock, ttl=60)
    vault = CredentialVault(credentials, endpoint, clock=clock)

    first = await vault.get_valid_token()
    clock.now = T0 + timedelta(seconds=59)
    assert await vault.get_valid_token() is first
    assert len(endpoint.calls) == 1

    clock.now = T0 + timedelta(seconds=60)
    second = await vault.get_valid_token()
    assert second.value == "tok-2"
    assert len(endpoint.calls) == 2


@pytest.mark.asyncio
async def test_invalidate_forces_refresh(credentials):
    clock = FakeClock()
    endpoint = CountingEndpoint(clock)
    vault = CredentialVault(credentials, endpoint, clock=clock)

    await vault.get_valid_token()
    vault.invalidate()
    assert vault.cached_token is None
    token = await vault.get_valid_token()
    assert token.value == "tok-2"


@pytest.mark.asyncio
async def test_failed_refresh_reaches_every_waiter_and_is_not_cached(credentials):
    endpoint = FailingEndpoint()
    vault = CredentialVault(credentials, endpoint, clock=FakeClock())

    results = await asyncio.gather(*(vault.get_valid_token() for _ in range(3)), return_exceptions=True)

    assert endpoint.calls == 1
    assert all(isinstance(r, CredentialException) for r in results)
    assert vault.cached_token is None

    with pytest.raises(CredentialException):
        await vault.get_valid_token()
    assert endpoint.calls == 2


@pytest.mark.asyncio
async def test_missing_business_credentials():
    creds = MerchantCredentials(merchant_key="MK1", merchant_token="SECRET")
    endpoint = CountingEndpoint(FakeClock())
    vault = CredentialVault(creds, endpoint, clock=FakeClock())

    with pytest.raises(CredentialException):
        await vault.get_valid_token()
    assert endpoint.calls == []


@pytest.mark.asyncio
async def test_acquire_token_caches(credentials):
    clock = FakeClock()
    vault = CredentialVault(credentials, CountingEndpoint(clock), clock=clock)
    token = await vault.acquire_token("BK1", "BT1")
    assert vault.cached_token is token
    assert "tok-1" not in repr(token)
