"""
Payment specific codes.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Request/checksum errors (6xxxx)
    VALIDATION_ERROR = 60010
    MISSING_FIELD = 60011
    INTEGRITY_MISMATCH = 60012

    # Session lifecycle (61xxx)
    STALE_EVENT = 61000
    DUPLICATE_CONFIRMATION = 61001
    SESSION_ALREADY_EXISTS = 61002
    INVALID_STATE_TRANSITION = 61003
    SURFACE_ERROR = 61004

    # Credentials / provider (62xxx)
    CREDENTIAL_ERROR = 62000
    PROVIDER_ERROR = 62001
    PROVIDER_RECOVERABLE = 62002
