"""
Default payment listener: records lifecycle events and writes them to structlog.

Bound to one invoice; ``logging_listener_factory`` is handed to the session
machine so every dispatched session gets its own instance.
"""
from __future__ import annotations

from application.dtos.payments import PaymentResult
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.payment.events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentErrored,
    PaymentSessionEvent,
    PaymentStarted,
)


logger = get_logger(__name__)

_EVENT_NAMES = {
    PaymentStarted: "payment_started",
    PaymentCompleted: "payment_completed",
    PaymentErrored: "payment_error",
    PaymentCancelled: "payment_cancelled",
}


class LoggingPaymentListener:
    def __init__(self, invoice_id: str) -> None:
        self.invoice_id = invoice_id
        self.events: list[PaymentSessionEvent] = []

    def on_payment_started(self) -> None:
        self._emit(PaymentStarted(invoice_id=self.invoice_id))

    def on_payment_completed(self, result: PaymentResult) -> None:
        self._emit(
            PaymentCompleted(
                invoice_id=self.invoice_id,
                status_code=result.status_code,
                payable_order_id=result.payable_order_id,
                payable_transaction_id=result.payable_transaction_id,
                result=result.model_dump(by_alias=True, exclude={"check_value"}),
            )
        )

    def on_payment_error(self, error: BusinessException) -> None:
        self._emit(
            PaymentErrored(
                invoice_id=self.invoice_id,
                error_type=getattr(error, "error_type", type(error).__name__),
                message=getattr(error, "message", str(error)),
            )
        )

    def on_payment_cancelled(self) -> None:
        self._emit(PaymentCancelled(invoice_id=self.invoice_id))

    def _emit(self, event: PaymentSessionEvent) -> None:
        self.events.append(event)
        fields = {"invoice_id": event.invoice_id, "event_id": event.event_id}
        if isinstance(event, PaymentCompleted):
            fields.update(
                status_code=event.status_code,
                payable_order_id=event.payable_order_id,
                payable_transaction_id=event.payable_transaction_id,
            )
        elif isinstance(event, PaymentErrored):
            fields.update(error_type=event.error_type, error=event.message)
        logger.info(_EVENT_NAMES[type(event)], **fields)


def logging_listener_factory(invoice_id: str) -> LoggingPaymentListener:
    return LoggingPaymentListener(invoice_id)
