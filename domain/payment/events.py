"""
Payment session notification events.

Dataclass events record the caller-visible lifecycle facts of one session
(started, completed, error, cancelled) for downstream handling such as
logging or projections. Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid


@dataclass
class PaymentSessionEvent:
    invoice_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentStarted(PaymentSessionEvent):
    pass


@dataclass
class PaymentCompleted(PaymentSessionEvent):
    status_code: Optional[str] = None
    payable_order_id: Optional[str] = None
    payable_transaction_id: Optional[str] = None
    result: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentErrored(PaymentSessionEvent):
    error_type: str = ""
    message: str = ""


@dataclass
class PaymentCancelled(PaymentSessionEvent):
    pass
