"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional

from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class RequestValidationException(BusinessException):
    """A payment field is missing or malformed; raised before anything is dispatched."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        code: int = PaymentCode.VALIDATION_ERROR,
        error_type: str = "ValidationError",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=details,
            field=field,
        )


class MissingFieldException(RequestValidationException):
    def __init__(self, field: str, *, kind: str | None = None):
        details = {"kind": kind} if kind else None
        super().__init__(
            f"Required field '{field}' is missing",
            field=field,
            details=details,
            code=PaymentCode.MISSING_FIELD,
            error_type="MissingField",
        )


class IntegrityMismatchException(BusinessException):
    """Computed checksum differs from the claimed checkValue."""

    def __init__(self, invoice_id: Optional[str] = None, *, source: Optional[str] = None):
        details = {}
        if invoice_id is not None:
            details["invoice_id"] = invoice_id
        if source is not None:
            details["source"] = source
        super().__init__(
            code=PaymentCode.INTEGRITY_MISMATCH,
            message="checkValue verification failed",
            error_type="IntegrityMismatch",
            details=details or None,
            field="checkValue",
        )


class CredentialException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.CREDENTIAL_ERROR,
            message=message,
            error_type="CredentialError",
            details=details,
        )


class AccessTokenRejectedException(CredentialException):
    """The gateway answered 401 to a bearer call; the cached token is no longer valid."""

    def __init__(self, message: str = "Access token rejected by gateway", *, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.error_type = "AccessTokenRejected"


class StaleEventException(BusinessException):
    def __init__(self, invoice_id: str):
        super().__init__(
            code=PaymentCode.STALE_EVENT,
            message=f"No payment session for invoice {invoice_id}",
            error_type="StaleEvent",
            details={"invoice_id": invoice_id},
        )


class DuplicateConfirmationException(BusinessException):
    """A second terminal event disagrees with the outcome already recorded."""

    def __init__(self, invoice_id: str, *, recorded: dict, received: dict):
        super().__init__(
            code=PaymentCode.DUPLICATE_CONFIRMATION,
            message=f"Conflicting terminal event for invoice {invoice_id}",
            error_type="DuplicateConfirmation",
            details={"invoice_id": invoice_id, "recorded": recorded, "received": received},
        )


class SessionAlreadyExistsException(BusinessException):
    def __init__(self, invoice_id: str):
        super().__init__(
            code=PaymentCode.SESSION_ALREADY_EXISTS,
            message=f"A payment session already exists for invoice {invoice_id}",
            error_type="SessionAlreadyExists",
            details={"invoice_id": invoice_id},
            field="invoiceId",
        )


class CheckoutSurfaceException(BusinessException):
    """The checkout surface reported a navigation or gateway error."""

    def __init__(self, message: str, *, invoice_id: Optional[str] = None):
        super().__init__(
            code=PaymentCode.SURFACE_ERROR,
            message=message,
            error_type="CheckoutSurfaceError",
            details={"invoice_id": invoice_id} if invoice_id else None,
        )


class InvalidStateTransitionException(BusinessException):
    def __init__(self, current: str, target: str):
        super().__init__(
            code=PaymentCode.INVALID_STATE_TRANSITION,
            message=f"Cannot transition from {current} to {target}",
            error_type="InvalidStateTransition",
            details={"current": current, "target": target},
            field="state",
        )


__all__ = [
    "BusinessException",
    "RequestValidationException",
    "MissingFieldException",
    "IntegrityMismatchException",
    "CredentialException",
    "AccessTokenRejectedException",
    "StaleEventException",
    "DuplicateConfirmationException",
    "SessionAlreadyExistsException",
    "InvalidStateTransitionException",
    "CheckoutSurfaceException",
]
