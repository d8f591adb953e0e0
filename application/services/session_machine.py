"""
Payment session state machine.

One ``PaymentSession`` per invoice. Two independent producers report
outcomes: the checkout surface (foreground) and the webhook channel (server
side). Both converge on the session's outcome slot under its lock and the
first verified terminal event wins; later events are reconciled against the
recorded outcome instead of overwriting it.

    IDLE --dispatch--> DISPATCHED --acknowledged--> AWAITING_OUTCOME
    DISPATCHED | AWAITING_OUTCOME --success/webhook--> COMPLETED
    DISPATCHED | AWAITING_OUTCOME --error/integrity--> FAILED
    DISPATCHED | AWAITING_OUTCOME --cancel--> CANCELLED

Listener callbacks run after the lock is released.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from enum import Enum
from typing import Optional

from application.dtos.credentials import MerchantCredentials
from application.dtos.payments import PaymentRequest, PaymentResult
from application.ports.payment_listener import ListenerFactory, PaymentListener
from core.logging_config import get_logger
from domain.checksum.engine import ChecksumEngine, ChecksumKind
from domain.common.exceptions import (
    CheckoutSurfaceException,
    DuplicateConfirmationException,
    IntegrityMismatchException,
    MissingFieldException,
    SessionAlreadyExistsException,
)
from domain.payment.entity import EventSource, PaymentSession, SessionState


logger = get_logger(__name__)


class EventOutcome(str, Enum):
    APPLIED = "applied"        # caused a transition
    DUPLICATE = "duplicate"    # matched an already recorded terminal outcome
    STALE = "stale"            # no active session; ignored
    REJECTED = "rejected"      # checkValue verification failed


class _NullListener:
    def on_payment_started(self) -> None:
        pass

    def on_payment_completed(self, result: PaymentResult) -> None:
        pass

    def on_payment_error(self, error) -> None:
        pass

    def on_payment_cancelled(self) -> None:
        pass


class PaymentSessionMachine:
    def __init__(
        self,
        credentials: MerchantCredentials,
        engine: ChecksumEngine,
        *,
        listener_factory: Optional[ListenerFactory] = None,
        archive_limit: int = 1024,
    ) -> None:
        self._credentials = credentials
        self._engine = engine
        self._listener_factory = listener_factory
        self._archive_limit = archive_limit
        self._registry_lock = threading.Lock()
        self._active: dict[str, PaymentSession] = {}
        self._archive: OrderedDict[str, PaymentSession] = OrderedDict()
        self._listeners: dict[str, PaymentListener] = {}

    # Registry -----------------------------------------------------------

    def get_session(self, invoice_id: str) -> Optional[PaymentSession]:
        with self._registry_lock:
            return self._active.get(invoice_id) or self._archive.get(invoice_id)

    def active_sessions(self) -> list[PaymentSession]:
        with self._registry_lock:
            return list(self._active.values())

    def _archive_session(self, session: PaymentSession) -> Optional[PaymentListener]:
        with self._registry_lock:
            self._active.pop(session.invoice_id, None)
            self._archive[session.invoice_id] = session
            while len(self._archive) > self._archive_limit:
                self._archive.popitem(last=False)
            return self._listeners.pop(session.invoice_id, None)

    # Transitions --------------------------------------------------------

    def dispatch(self, request: PaymentRequest, listener: Optional[PaymentListener] = None) -> PaymentSession:
        """IDLE -> DISPATCHED; fires ``on_payment_started`` exactly once."""
        invoice_id = request.invoice_id
        if not invoice_id:
            raise MissingFieldException("invoiceId", kind=request.kind.value)
        if listener is None:
            listener = self._listener_factory(invoice_id) if self._listener_factory else _NullListener()

        with self._registry_lock:
            if invoice_id in self._active or invoice_id in self._archive:
                raise SessionAlreadyExistsException(invoice_id)
            session = PaymentSession(invoice_id=invoice_id)
            self._active[invoice_id] = session
            self._listeners[invoice_id] = listener

        logger.info("payment_session_dispatched", invoice_id=invoice_id, kind=request.kind.value)
        self._notify(listener, "on_payment_started", invoice_id)
        return session

    def surface_acknowledged(self, invoice_id: str) -> EventOutcome:
        session = self.get_session(invoice_id)
        if session is None:
            return self._stale(invoice_id, "acknowledged")
        with session.lock:
            if session.state is not SessionState.DISPATCHED:
                return self._stale(invoice_id, "acknowledged", state=session.state)
            session.mark_awaiting_outcome()
        logger.info("payment_session_awaiting_outcome", invoice_id=invoice_id)
        return EventOutcome.APPLIED

    def surface_success(self, invoice_id: str, result: PaymentResult) -> EventOutcome:
        return self._confirm(invoice_id, result, EventSource.SURFACE)

    def webhook_confirmed(self, payload: PaymentResult) -> EventOutcome:
        return self._confirm(payload.invoice_no, payload, EventSource.WEBHOOK)

    def surface_error(self, invoice_id: str, error: str | Exception) -> EventOutcome:
        exc = error if isinstance(error, CheckoutSurfaceException) else CheckoutSurfaceException(
            str(error) or "Checkout surface error", invoice_id=invoice_id
        )
        return self._fail(invoice_id, exc, EventSource.SURFACE)

    def surface_cancel(self, invoice_id: str) -> EventOutcome:
        session = self.get_session(invoice_id)
        if session is None:
            return self._stale(invoice_id, "cancel")
        with session.lock:
            if not session.is_active:
                return self._stale(invoice_id, "cancel", state=session.state)
            session.mark_cancelled()
        listener = self._archive_session(session)
        logger.info("payment_session_cancelled", invoice_id=invoice_id)
        self._notify(listener, "on_payment_cancelled", invoice_id)
        return EventOutcome.APPLIED

    # Internals ----------------------------------------------------------

    @staticmethod
    def _notify(listener: Optional[PaymentListener], callback: str, invoice_id: str, *args) -> None:
        # The transition is already recorded; a listener failure must not undo the reply
        if listener is None:
            return
        try:
            getattr(listener, callback)(*args)
        except Exception:
            logger.exception("payment_listener_failed", invoice_id=invoice_id, callback=callback)

    def _verified(self, result: PaymentResult) -> bool:
        try:
            return self._engine.verify(
                ChecksumKind.WEBHOOK,
                result.wire_fields(),
                self._credentials.merchant_token,
                result.check_value,
            )
        except MissingFieldException:
            return False

    def _confirm(self, invoice_id: str, result: PaymentResult, source: EventSource) -> EventOutcome:
        verified = self._verified(result) and result.invoice_no == invoice_id
        session = self.get_session(invoice_id)

        if not verified:
            if session is not None and session.is_active:
                return self._fail(invoice_id, IntegrityMismatchException(invoice_id, source=source.value), source)
            logger.warning(
                "webhook_integrity_anomaly",
                invoice_id=invoice_id,
                source=source.value,
                known_session=session is not None,
            )
            return EventOutcome.REJECTED

        if session is None:
            return self._stale(invoice_id, source.value)

        received = result.wire_fields()
        with session.lock:
            if session.is_active:
                session.mark_completed(source, received)
                applied = True
            else:
                applied = False
                duplicate = session.matches_outcome(received)
                if not duplicate:
                    session.record_anomaly(source, received)
                recorded = session.outcome.to_dict() if session.outcome else {}

        if applied:
            listener = self._archive_session(session)
            logger.info("payment_session_completed", invoice_id=invoice_id, source=source.value)
            self._notify(listener, "on_payment_completed", invoice_id, result)
            return EventOutcome.APPLIED

        if duplicate:
            logger.info("payment_confirmation_duplicate", invoice_id=invoice_id, source=source.value)
            return EventOutcome.DUPLICATE

        logger.warning(
            "payment_confirmation_conflict",
            invoice_id=invoice_id,
            source=source.value,
            recorded_state=recorded.get("state"),
            received_status_code=result.status_code,
        )
        raise DuplicateConfirmationException(
            invoice_id,
            recorded=recorded,
            received={"invoiceNo": result.invoice_no, "statusCode": result.status_code, "source": source.value},
        )

    def _fail(self, invoice_id: str, error: Exception, source: EventSource) -> EventOutcome:
        integrity = isinstance(error, IntegrityMismatchException)
        session = self.get_session(invoice_id)
        if session is None:
            self._stale(invoice_id, "error")
            return EventOutcome.REJECTED if integrity else EventOutcome.STALE
        with session.lock:
            if not session.is_active:
                self._stale(invoice_id, "error", state=session.state)
                return EventOutcome.REJECTED if integrity else EventOutcome.STALE
            session.mark_failed(source, reason=getattr(error, "error_type", type(error).__name__))
        listener = self._archive_session(session)
        logger.warning(
            "payment_session_failed",
            invoice_id=invoice_id,
            source=source.value,
            error_type=getattr(error, "error_type", type(error).__name__),
        )
        self._notify(listener, "on_payment_error", invoice_id, error)
        return EventOutcome.REJECTED if integrity else EventOutcome.APPLIED

    def _stale(self, invoice_id: str, event: str, state: Optional[SessionState] = None) -> EventOutcome:
        logger.debug(
            "payment_event_stale",
            invoice_id=invoice_id,
            event=event,
            state=state.value if state else None,
        )
        return EventOutcome.STALE

