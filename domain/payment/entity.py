"""
支付领域实体 - 支付会话聚合根
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import InvalidStateTransitionException


class PaymentKind(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"
    TOKENIZE_CREATE = "tokenize_create"
    TOKENIZE_PAY = "tokenize_pay"
    TOKENIZE_LIST = "tokenize_list"
    TOKENIZE_DELETE = "tokenize_delete"
    TOKENIZE_EDIT = "tokenize_edit"

    @property
    def uses_hosted_checkout(self) -> bool:
        """Kinds that hand the customer to the hosted page and open a session."""
        return self in (PaymentKind.ONE_TIME, PaymentKind.RECURRING, PaymentKind.TOKENIZE_CREATE)

    @property
    def requires_bearer(self) -> bool:
        return self in (
            PaymentKind.TOKENIZE_PAY,
            PaymentKind.TOKENIZE_LIST,
            PaymentKind.TOKENIZE_DELETE,
            PaymentKind.TOKENIZE_EDIT,
        )


class SessionState(str, Enum):
    """会话状态枚举"""
    IDLE = "idle"                           # 尚未派发
    DISPATCHED = "dispatched"               # 已交给收银台
    AWAITING_OUTCOME = "awaiting_outcome"   # 收银台已接管，等待结果
    COMPLETED = "completed"                 # 支付完成
    CANCELLED = "cancelled"                 # 用户取消
    FAILED = "failed"                       # 支付失败

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)


class EventSource(str, Enum):
    SURFACE = "surface"
    WEBHOOK = "webhook"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentOutcome:
    """The terminal fact recorded for a session (first verified event wins)."""

    state: SessionState
    source: EventSource
    invoice_no: Optional[str] = None
    status_code: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "source": self.source.value,
            "invoice_no": self.invoice_no,
            "status_code": self.status_code,
            "reason": self.reason,
        }


@dataclass
class PaymentSession:
    """
    支付会话聚合根 - 管理一次支付尝试的生命周期

    业务规则：
    1. 每个 invoice_id 同时只存在一个会话
    2. 终态（completed/cancelled/failed）不可再转换
    3. 终态结果只记录一次，后续事件只做核对
    """

    invoice_id: str
    state: SessionState = SessionState.DISPATCHED
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    webhook_payload: Optional[dict[str, Any]] = None
    surface_outcome: Optional[dict[str, Any]] = None
    outcome: Optional[PaymentOutcome] = None
    anomalies: list[dict[str, Any]] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.started_at = _ensure_utc(self.started_at) or datetime.now(timezone.utc)
        self.updated_at = _ensure_utc(self.updated_at) or self.started_at

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.DISPATCHED, SessionState.AWAITING_OUTCOME)

    def _require_active(self, target: SessionState) -> None:
        if not self.is_active:
            raise InvalidStateTransitionException(self.state.value, target.value)

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def mark_awaiting_outcome(self) -> None:
        """只能从 dispatched 转为 awaiting_outcome"""
        if self.state != SessionState.DISPATCHED:
            raise InvalidStateTransitionException(self.state.value, SessionState.AWAITING_OUTCOME.value)
        self.state = SessionState.AWAITING_OUTCOME
        self._touch()

    def mark_completed(
        self,
        source: EventSource,
        result: dict[str, Any],
    ) -> None:
        self._require_active(SessionState.COMPLETED)
        if source is EventSource.WEBHOOK:
            self.webhook_payload = result
        else:
            self.surface_outcome = result
        self.state = SessionState.COMPLETED
        self.outcome = PaymentOutcome(
            state=SessionState.COMPLETED,
            source=source,
            invoice_no=result.get("invoiceNo"),
            status_code=None if result.get("statusCode") is None else str(result.get("statusCode")),
        )
        self._touch()

    def mark_failed(self, source: EventSource, reason: Optional[str] = None) -> None:
        self._require_active(SessionState.FAILED)
        self.state = SessionState.FAILED
        self.outcome = PaymentOutcome(state=SessionState.FAILED, source=source, reason=reason)
        self._touch()

    def mark_cancelled(self) -> None:
        self._require_active(SessionState.CANCELLED)
        self.state = SessionState.CANCELLED
        self.outcome = PaymentOutcome(state=SessionState.CANCELLED, source=EventSource.SURFACE)
        self._touch()

    def matches_outcome(self, result: dict[str, Any]) -> bool:
        """Whether a later success/webhook result confirms the recorded completion."""
        if self.outcome is None or self.state != SessionState.COMPLETED:
            return False
        status_code = result.get("statusCode")
        return (
            result.get("invoiceNo") == self.outcome.invoice_no
            and (None if status_code is None else str(status_code)) == self.outcome.status_code
        )

    def record_anomaly(self, source: EventSource, received: dict[str, Any]) -> None:
        self.anomalies.append(
            {
                "source": source.value,
                "received": received,
                "at": datetime.now(timezone.utc).isoformat(),
            }
        )

    def snapshot(self) -> dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "anomalies": len(self.anomalies),
        }
