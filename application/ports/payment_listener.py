"""
Caller-facing notification port for one payment session.

Exactly one of ``on_payment_completed``, ``on_payment_error`` and
``on_payment_cancelled`` fires per session, after ``on_payment_started``.
"""
from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from application.dtos.payments import PaymentResult
from domain.common.exceptions import BusinessException


@runtime_checkable
class PaymentListener(Protocol):
    def on_payment_started(self) -> None: ...

    def on_payment_completed(self, result: PaymentResult) -> None: ...

    def on_payment_error(self, error: BusinessException) -> None: ...

    def on_payment_cancelled(self) -> None: ...


ListenerFactory = Callable[[str], PaymentListener]
