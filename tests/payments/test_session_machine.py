import threading

import pytest

from application.services.request_builder import PaymentRequestBuilder
from application.services.session_machine import EventOutcome, PaymentSessionMachine
from domain.common.exceptions import (
    CheckoutSurfaceException,
    DuplicateConfirmationException,
    IntegrityMismatchException,
    SessionAlreadyExistsException,
)
from domain.payment.entity import EventSource, PaymentKind, SessionState


class RecordingListener:
    def __init__(self):
        self.calls: list[tuple] = []

    def on_payment_started(self):
        self.calls.append(("started",))

    def on_payment_completed(self, result):
        self.calls.append(("completed", result.invoice_no, result.status_code))

    def on_payment_error(self, error):
        self.calls.append(("error", type(error).__name__))

    def on_payment_cancelled(self):
        self.calls.append(("cancelled",))

    def names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def machine(credentials, engine):
    return PaymentSessionMachine(credentials, engine)


@pytest.fixture
def dispatched(machine, credentials, engine, checkout_fields):
    listener = RecordingListener()
    request = PaymentRequestBuilder(engine).build(credentials, checkout_fields, PaymentKind.ONE_TIME)
    machine.dispatch(request, listener)
    return listener


def test_dispatch_opens_session_and_notifies(machine, dispatched):
    session = machine.get_session("INV1")
    assert session.state is SessionState.DISPATCHED
    assert dispatched.names() == ["started"]
    assert [s.invoice_id for s in machine.active_sessions()] == ["INV1"]


def test_dispatch_twice_is_rejected(machine, dispatched, credentials, engine, checkout_fields):
    request = PaymentRequestBuilder(engine).build(credentials, checkout_fields, PaymentKind.ONE_TIME)
    with pytest.raises(SessionAlreadyExistsException):
        machine.dispatch(request)


def test_acknowledged_then_success(machine, dispatched, make_result):
    assert machine.surface_acknowledged("INV1") is EventOutcome.APPLIED
    assert machine.get_session("INV1").state is SessionState.AWAITING_OUTCOME

    assert machine.surface_success("INV1", make_result()) is EventOutcome.APPLIED
    session = machine.get_session("INV1")
    assert session.state is SessionState.COMPLETED
    assert session.outcome.source is EventSource.SURFACE
    assert dispatched.names() == ["started", "completed"]
    assert machine.active_sessions() == []


def test_webhook_may_overtake_acknowledgement(machine, dispatched, make_result):
    assert machine.webhook_confirmed(make_result()) is EventOutcome.APPLIED
    assert machine.get_session("INV1").state is SessionState.COMPLETED
    assert machine.surface_acknowledged("INV1") is EventOutcome.STALE


def test_success_and_webhook_fire_completion_once(machine, dispatched, make_result):
    machine.surface_acknowledged("INV1")
    assert machine.surface_success("INV1", make_result()) is EventOutcome.APPLIED
    assert machine.webhook_confirmed(make_result()) is EventOutcome.DUPLICATE
    assert dispatched.names() == ["started", "completed"]


def test_conflicting_status_raises_and_keeps_state(machine, dispatched, make_result):
    machine.webhook_confirmed(make_result(status_code="1"))
    with pytest.raises(DuplicateConfirmationException):
        machine.surface_success("INV1", make_result(status_code="2"))

    session = machine.get_session("INV1")
    assert session.state is SessionState.COMPLETED
    assert session.outcome.status_code == "1"
    assert len(session.anomalies) == 1
    assert dispatched.names() == ["started", "completed"]


def test_success_after_cancel_is_an_anomaly(machine, dispatched, make_result):
    assert machine.surface_cancel("INV1") is EventOutcome.APPLIED
    with pytest.raises(DuplicateConfirmationException):
        machine.webhook_confirmed(make_result())
    assert machine.get_session("INV1").state is SessionState.CANCELLED
    assert dispatched.names() == ["started", "cancelled"]


class FailingListener(RecordingListener):
    def on_payment_completed(self, result):
        super().on_payment_completed(result)
        raise RuntimeError("listener down")


def test_listener_failure_keeps_recorded_completion(machine, credentials, engine, checkout_fields, make_result):
    listener = FailingListener()
    request = PaymentRequestBuilder(engine).build(credentials, checkout_fields, PaymentKind.ONE_TIME)
    machine.dispatch(request, listener)

    assert machine.webhook_confirmed(make_result()) is EventOutcome.APPLIED
    assert machine.get_session("INV1").state is SessionState.COMPLETED
    assert listener.names() == ["started", "completed"]
    assert machine.webhook_confirmed(make_result()) is EventOutcome.DUPLICATE


def test_bad_checksum_on_active_session_fails_it(machine, dispatched, make_result):
    outcome = machine.webhook_confirmed(make_result(check_value="00" * 64))
    assert outcome is EventOutcome.REJECTED
    assert machine.get_session("INV1").state is SessionState.FAILED
    assert dispatched.calls == [("started",), ("error", IntegrityMismatchException.__name__)]


def test_surface_success_for_other_invoice_is_rejected(machine, dispatched, make_result):
    # result signed for INV2 but reported on INV1's surface
    assert machine.surface_success("INV1", make_result(invoice_no="INV2")) is EventOutcome.REJECTED
    assert machine.get_session("INV1").state is SessionState.FAILED


def test_bad_checksum_for_unknown_invoice_changes_nothing(machine, dispatched, make_result):
    outcome = machine.webhook_confirmed(make_result(invoice_no="NOPE", check_value="00" * 64))
    assert outcome is EventOutcome.REJECTED
    assert machine.get_session("NOPE") is None
    assert machine.get_session("INV1").state is SessionState.DISPATCHED


def test_verified_webhook_for_unknown_invoice_is_stale(machine, make_result):
    assert machine.webhook_confirmed(make_result(invoice_no="NOPE")) is EventOutcome.STALE


def test_events_for_unknown_invoice_are_stale(machine):
    assert machine.surface_acknowledged("X") is EventOutcome.STALE
    assert machine.surface_cancel("X") is EventOutcome.STALE
    assert machine.surface_error("X", "boom") is EventOutcome.STALE


def test_surface_error_fails_session(machine, dispatched):
    machine.surface_acknowledged("INV1")
    assert machine.surface_error("INV1", "network down") is EventOutcome.APPLIED
    session = machine.get_session("INV1")
    assert session.state is SessionState.FAILED
    assert session.outcome.reason == "CheckoutSurfaceError"
    assert dispatched.calls[-1] == ("error", CheckoutSurfaceException.__name__)
    # terminal: later events are ignored
    assert machine.surface_cancel("INV1") is EventOutcome.STALE
    assert machine.surface_error("INV1", "again") is EventOutcome.STALE


def test_cancel_twice(machine, dispatched):
    assert machine.surface_cancel("INV1") is EventOutcome.APPLIED
    assert machine.surface_cancel("INV1") is EventOutcome.STALE
    assert dispatched.names() == ["started", "cancelled"]


def test_archive_is_bounded(credentials, engine, checkout_fields):
    machine = PaymentSessionMachine(credentials, engine, archive_limit=2)
    builder = PaymentRequestBuilder(engine)
    for i in range(3):
        request = builder.build(credentials, {**checkout_fields, "invoiceId": f"INV{i}"}, PaymentKind.ONE_TIME)
        machine.dispatch(request)
        machine.surface_cancel(f"INV{i}")
    assert machine.get_session("INV0") is None
    assert machine.get_session("INV2").state is SessionState.CANCELLED


def test_listener_factory_is_used_per_session(credentials, engine, checkout_fields):
    created = {}

    def factory(invoice_id):
        created[invoice_id] = RecordingListener()
        return created[invoice_id]

    machine = PaymentSessionMachine(credentials, engine, listener_factory=factory)
    request = PaymentRequestBuilder(engine).build(credentials, checkout_fields, PaymentKind.ONE_TIME)
    machine.dispatch(request)
    machine.surface_cancel("INV1")
    assert created["INV1"].names() == ["started", "cancelled"]


def test_concurrent_confirmations_complete_once(machine, dispatched, make_result):
    results = []
    barrier = threading.Barrier(8)

    def worker(source):
        barrier.wait()
        if source == "webhook":
            results.append(machine.webhook_confirmed(make_result()))
        else:
            results.append(machine.surface_success("INV1", make_result()))

    threads = [threading.Thread(target=worker, args=("webhook" if i % 2 else "surface",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(EventOutcome.APPLIED) == 1
    assert results.count(EventOutcome.DUPLICATE) == 7
    assert dispatched.names() == ["started", "completed"]


def test_logging_listener_records_lifecycle(credentials, engine, checkout_fields, make_result):
    from domain.payment.events import PaymentCompleted, PaymentStarted
    from infrastructure.notifications import logging_listener_factory

    listeners = {}

    def factory(invoice_id):
        listeners[invoice_id] = logging_listener_factory(invoice_id)
        return listeners[invoice_id]

    machine = PaymentSessionMachine(credentials, engine, listener_factory=factory)
    request = PaymentRequestBuilder(engine).build(credentials, checkout_fields, PaymentKind.ONE_TIME)
    machine.dispatch(request)
    machine.webhook_confirmed(make_result())

    events = listeners["INV1"].events
    assert [type(e) for e in events] == [PaymentStarted, PaymentCompleted]
    assert events[1].payable_transaction_id == "T1"
    assert "checkValue" not in events[1].result
