"""
Payment request builder.

Merges caller-supplied payment fields with the merchant identity, validates
them per ``PaymentKind`` and attaches the computed ``checkValue``. The
merchant token is read here and nowhere downstream.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from application.dtos.credentials import MerchantCredentials
from application.dtos.payments import PaymentRequest, TransportEnvelope
from application.services.credential_vault import CredentialVault
from core.logging_config import get_logger
from domain.checksum.engine import ChecksumEngine, ChecksumKind
from domain.common.exceptions import CredentialException, RequestValidationException
from domain.payment.entity import PaymentKind


logger = get_logger(__name__)

_CUSTOMER = (
    "customerFirstName",
    "customerLastName",
    "customerEmail",
    "customerMobilePhone",
    "billingAddressStreet",
    "billingAddressCity",
    "billingAddressCountry",
)
_ORDER = ("invoiceId", "amount", "currencyCode")

REQUIRED_FIELDS: dict[PaymentKind, tuple[str, ...]] = {
    PaymentKind.ONE_TIME: (*_ORDER, *_CUSTOMER),
    PaymentKind.RECURRING: (
        *_ORDER,
        *_CUSTOMER,
        "startDate",
        "endDate",
        "recurringAmount",
        "interval",
        "isRetry",
        "retryAttempts",
        "doFirstPayment",
    ),
    PaymentKind.TOKENIZE_CREATE: (*_ORDER, *_CUSTOMER, "customerRefNo", "customerId"),
    PaymentKind.TOKENIZE_PAY: (*_ORDER, "customerId", "tokenId"),
    PaymentKind.TOKENIZE_LIST: ("customerId",),
    PaymentKind.TOKENIZE_DELETE: ("customerId", "tokenId"),
    PaymentKind.TOKENIZE_EDIT: ("customerId", "tokenId"),
}

_TOKENIZE_KINDS = {
    PaymentKind.TOKENIZE_CREATE,
    PaymentKind.TOKENIZE_PAY,
    PaymentKind.TOKENIZE_LIST,
    PaymentKind.TOKENIZE_DELETE,
    PaymentKind.TOKENIZE_EDIT,
}

_CHECKSUM_KIND = {
    PaymentKind.ONE_TIME: ChecksumKind.ONE_TIME,
    PaymentKind.TOKENIZE_CREATE: ChecksumKind.TOKENIZE_CREATE,
    PaymentKind.TOKENIZE_PAY: ChecksumKind.TOKENIZE_PAY,
    PaymentKind.TOKENIZE_LIST: ChecksumKind.TOKENIZE_LIST,
    PaymentKind.TOKENIZE_DELETE: ChecksumKind.TOKENIZE_DELETE,
    PaymentKind.TOKENIZE_EDIT: ChecksumKind.TOKENIZE_EDIT,
}

# Identity fields are always taken from the credentials.
_RESERVED = {"merchantKey", "merchantId", "checkValue", "kind"}


def checksum_kind_for(request: PaymentRequest) -> ChecksumKind:
    """Recurring requests hash customerRefNo only when the field is present."""
    if request.kind is PaymentKind.RECURRING:
        if request.customer_ref_no is not None:
            return ChecksumKind.RECURRING_CUSTOMER_REF
        return ChecksumKind.RECURRING
    return _CHECKSUM_KIND[request.kind]


def _wire_key(key: str) -> str:
    return key if "_" not in key else to_camel(key)


class PaymentRequestBuilder:
    def __init__(self, engine: ChecksumEngine, vault: Optional[CredentialVault] = None) -> None:
        self._engine = engine
        self._vault = vault

    def build(
        self,
        credentials: MerchantCredentials,
        fields: Mapping[str, Any],
        kind: PaymentKind,
    ) -> PaymentRequest:
        """Validate ``fields`` for ``kind`` and return the signed request.

        Raises:
            RequestValidationException: a field is unknown, malformed or a
                required field is missing/empty. Nothing is hashed in that case.
        """
        data = {_wire_key(k): v for k, v in fields.items()}
        reserved = sorted(_RESERVED.intersection(data))
        if reserved:
            raise RequestValidationException(
                f"Field '{reserved[0]}' is set by the merchant configuration",
                field=reserved[0],
            )

        data["merchantKey"] = credentials.merchant_key
        if kind in _TOKENIZE_KINDS:
            data["merchantId"] = credentials.tokenize_merchant_id
        data["kind"] = kind

        try:
            request = PaymentRequest.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(loc) for loc in first.get("loc", ()))
            raise RequestValidationException(
                f"Invalid payment field '{field}': {first.get('msg')}",
                field=field or None,
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

        wire = request.wire_fields()
        for name in REQUIRED_FIELDS[kind]:
            value = wire.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise RequestValidationException(
                    f"Required field '{name}' is missing",
                    field=name,
                    details={"kind": kind.value},
                )

        checksum_kind = checksum_kind_for(request)
        check_value = self._engine.compute(checksum_kind, wire, credentials.merchant_token)
        logger.debug(
            "payment_request_built",
            kind=kind.value,
            checksum_kind=checksum_kind.value,
            invoice_id=request.invoice_id,
        )
        return request.model_copy(update={"check_value": check_value})

    async def build_envelope(
        self,
        credentials: MerchantCredentials,
        fields: Mapping[str, Any],
        kind: PaymentKind,
    ) -> TransportEnvelope:
        """``build`` plus the bearer header for tokenize API kinds."""
        request = self.build(credentials, fields, kind)
        headers: dict[str, str] = {}
        if kind.requires_bearer:
            if self._vault is None:
                raise CredentialException("No credential vault configured for tokenize operations")
            token = await self._vault.get_valid_token()
            headers["Authorization"] = f"Bearer {token.value}"
        return TransportEnvelope(request=request, headers=headers)
