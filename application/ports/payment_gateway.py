"""
Payment gateway ports (application/ports) exposing replaceable protocols.

Application depends on these Protocols; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.credentials import AccessToken
from application.dtos.payments import TransportEnvelope


@runtime_checkable
class TokenEndpoint(Protocol):
    """OAuth2 client-credentials endpoint of the gateway."""

    async def request_token(self, basic_credential: str) -> AccessToken: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Bearer-authenticated tokenize endpoints.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def list_cards(self, envelope: TransportEnvelope) -> dict[str, Any]: ...

    async def delete_card(self, envelope: TransportEnvelope) -> dict[str, Any]: ...

    async def edit_card(self, envelope: TransportEnvelope) -> dict[str, Any]: ...

    async def pay(self, envelope: TransportEnvelope) -> dict[str, Any]: ...
