"""
Application service orchestrating payment use-cases.

This class depends only on the application ports, DTOs and the wired
``GatewayContext``. Gateway implementations are provided by infrastructure
and injected from the composition root, keeping dependencies one-way.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import ValidationError

from application.context import GatewayContext
from application.dtos.payments import (
    CheckoutResponse,
    EditCardCommand,
    PaymentResult,
    SurfaceEvent,
    TransportEnvelope,
)
from application.services.session_machine import EventOutcome
from core.logging_config import get_logger
from domain.common.exceptions import (
    AccessTokenRejectedException,
    RequestValidationException,
    StaleEventException,
)
from domain.payment.entity import PaymentKind, PaymentSession


logger = get_logger(__name__)

GatewayCall = Callable[[TransportEnvelope], Awaitable[dict[str, Any]]]


def parse_result(payload: Mapping[str, Any] | PaymentResult) -> PaymentResult:
    if isinstance(payload, PaymentResult):
        return payload
    try:
        return PaymentResult.model_validate(dict(payload))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ()))
        raise RequestValidationException(
            f"Invalid payment result field '{field}': {first.get('msg')}",
            field=field or None,
        ) from exc


class PaymentService:
    def __init__(self, context: GatewayContext) -> None:
        self.context = context

    @property
    def provider(self) -> str:
        return getattr(self.context.gateway, "provider", "ipg")

    # Hosted checkout ----------------------------------------------------

    def start_checkout(self, fields: Mapping[str, Any], kind: PaymentKind = PaymentKind.ONE_TIME) -> CheckoutResponse:
        """Build the signed request and open its session in DISPATCHED."""
        if not kind.uses_hosted_checkout:
            raise RequestValidationException(
                f"Payment kind '{kind.value}' is not started through the checkout page",
                field="kind",
            )
        ctx = self.context
        request = ctx.builder.build(ctx.credentials, fields, kind)
        ctx.machine.dispatch(request)
        logger.info("payment_checkout_request", invoice_id=request.invoice_id, kind=kind.value)
        return CheckoutResponse(
            invoice_id=request.invoice_id,
            kind=kind,
            checkout_url=ctx.checkout_url,
            payload=request.to_payload(),
        )

    def handle_webhook(self, payload: Mapping[str, Any] | PaymentResult) -> EventOutcome:
        result = parse_result(payload)
        outcome = self.context.machine.webhook_confirmed(result)
        logger.info(
            "payment_webhook_handled",
            invoice_id=result.invoice_no,
            status_code=result.status_code,
            outcome=outcome.value,
        )
        return outcome

    def handle_surface_event(self, invoice_id: str, event: SurfaceEvent) -> EventOutcome:
        machine = self.context.machine
        if event.type == "acknowledged":
            return machine.surface_acknowledged(invoice_id)
        if event.type == "success":
            if event.result is None:
                raise RequestValidationException("A success event must carry the payment result", field="result")
            return machine.surface_success(invoice_id, event.result)
        if event.type == "error":
            return machine.surface_error(invoice_id, event.error or "Checkout surface error")
        return machine.surface_cancel(invoice_id)

    def get_session(self, invoice_id: str) -> PaymentSession:
        session = self.context.machine.get_session(invoice_id)
        if session is None:
            raise StaleEventException(invoice_id)
        return session

    # Tokenize (card vault) ----------------------------------------------

    async def list_cards(self, customer_id: str) -> dict[str, Any]:
        return await self._with_token(
            PaymentKind.TOKENIZE_LIST,
            {"customerId": customer_id},
            self.context.gateway.list_cards,
        )

    async def delete_card(self, customer_id: str, token_id: str) -> dict[str, Any]:
        return await self._with_token(
            PaymentKind.TOKENIZE_DELETE,
            {"customerId": customer_id, "tokenId": token_id},
            self.context.gateway.delete_card,
        )

    async def edit_card(self, customer_id: str, token_id: str, command: Optional[EditCardCommand] = None) -> dict[str, Any]:
        fields: dict[str, Any] = {"customerId": customer_id, "tokenId": token_id}
        if command is not None:
            fields.update(command.model_dump(by_alias=True, exclude_none=True))
        return await self._with_token(PaymentKind.TOKENIZE_EDIT, fields, self.context.gateway.edit_card)

    async def pay_with_token(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        return await self._with_token(PaymentKind.TOKENIZE_PAY, fields, self.context.gateway.pay)

    async def _with_token(self, kind: PaymentKind, fields: Mapping[str, Any], call: GatewayCall) -> dict[str, Any]:
        """Send a bearer call; on a rejected token refresh once and resend."""
        ctx = self.context
        envelope = await ctx.builder.build_envelope(ctx.credentials, fields, kind)
        logger.info("payment_tokenize_request", kind=kind.value, provider=self.provider)
        try:
            return await call(envelope)
        except AccessTokenRejectedException:
            logger.warning("access_token_rejected", kind=kind.value, provider=self.provider)
            ctx.vault.invalidate()
            envelope = await ctx.builder.build_envelope(ctx.credentials, fields, kind)
            return await call(envelope)

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        close = getattr(self.context.gateway, "aclose", None)
        if callable(close):
            await close()
