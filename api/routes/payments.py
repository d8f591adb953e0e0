"""
Payments API routes.

Hosted checkout start, webhook and checkout-surface events, session lookup
and the tokenize (card vault) endpoints. Keep this thin: the state machine
and checksum rules live in the application layer.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import get_payment_service
from application.dtos.payments import CheckoutCommand, EditCardCommand, SurfaceEvent
from application.services.payment_service import PaymentService
from application.services.session_machine import EventOutcome
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.common.exceptions import IntegrityMismatchException, RequestValidationException


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

# Body the gateway expects on acknowledgement
WEBHOOK_ACK = {"Status": 200}


def ip_allowed(remote_ip: str, allowlist: list[str]) -> bool:
    """Match an IP against plain addresses and CIDR ranges."""
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def json_body(request: Request) -> dict[str, Any]:
    """Decode a JSON object body, keeping decimal numbers as their literal text."""
    try:
        body = json.loads(await request.body() or b"null", parse_float=str)
    except ValueError as exc:
        raise RequestValidationException("Request body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise RequestValidationException("Request body must be a JSON object")
    return body


@router.get("/health", summary="Payment gateway configuration health")
async def payments_health(service: PaymentService = Depends(get_payment_service)):
    configured = service.context.settings
    return success_response(
        data={
            "status": "healthy",
            "environment": configured.environment,
            "base_url": configured.resolved_base_url,
        }
    )


@router.post("/checkout", summary="Start a hosted checkout")
async def start_checkout(command: CheckoutCommand, service: PaymentService = Depends(get_payment_service)):
    checkout = service.start_checkout(command.fields, command.kind)
    return success_response(data=checkout.model_dump(mode="json"), message="Checkout dispatched")


@router.post("/webhook", summary="Gateway server-to-server notification")
async def payments_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist:
        remote_ip = request.client.host if request.client else ""
        if not ip_allowed(remote_ip, allowlist):
            logger.warning("webhook_ip_not_allowed", remote_ip=remote_ip)
            raise ForbiddenException("Webhook source address is not allowed")

    # Signed values must reach the checksum exactly as the gateway sent them
    payload = await json_body(request)
    outcome = service.handle_webhook(payload)
    if outcome is EventOutcome.REJECTED:
        raise IntegrityMismatchException(str(payload.get("invoiceNo") or "") or None, source="webhook")
    return JSONResponse(content=WEBHOOK_ACK)


@router.post("/sessions/{invoice_id}/events", summary="Report a checkout surface event")
async def surface_event(
    invoice_id: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    try:
        event = SurfaceEvent.model_validate(await json_body(request))
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ()))
        raise RequestValidationException(
            f"Invalid surface event field '{field}': {first.get('msg')}",
            field=field or None,
        ) from exc
    outcome = service.handle_surface_event(invoice_id, event)
    if outcome is EventOutcome.REJECTED:
        raise IntegrityMismatchException(invoice_id, source="surface")
    session = service.context.machine.get_session(invoice_id)
    return success_response(
        data={
            "outcome": outcome.value,
            "session": session.snapshot() if session else None,
        }
    )


@router.get("/sessions/{invoice_id}", summary="Payment session snapshot")
async def get_session(invoice_id: str, service: PaymentService = Depends(get_payment_service)):
    return success_response(data=service.get_session(invoice_id).snapshot())


@router.get("/customers/{customer_id}/cards", summary="List saved cards")
async def list_cards(customer_id: str, service: PaymentService = Depends(get_payment_service)):
    return success_response(data=await service.list_cards(customer_id))


@router.delete("/customers/{customer_id}/cards/{token_id}", summary="Delete a saved card")
async def delete_card(customer_id: str, token_id: str, service: PaymentService = Depends(get_payment_service)):
    return success_response(data=await service.delete_card(customer_id, token_id))


@router.patch("/customers/{customer_id}/cards/{token_id}", summary="Edit a saved card")
async def edit_card(
    customer_id: str,
    token_id: str,
    command: EditCardCommand,
    service: PaymentService = Depends(get_payment_service),
):
    return success_response(data=await service.edit_card(customer_id, token_id, command))


@router.post("/tokenize/pay", summary="Pay with a saved card")
async def pay_with_token(
    fields: dict[str, Any] = Body(...),
    service: PaymentService = Depends(get_payment_service),
):
    return success_response(data=await service.pay_with_token(fields), message="Tokenized payment sent")
