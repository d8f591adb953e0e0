"""
Checksum engine: ordered field tables per operation kind plus one generic
chain builder.

Every checksum has the shape::

    SHA512(field_1|field_2|...|field_n|SHA512(merchantToken))

Only the ordered field list differs between kinds, so adding a kind means
adding a row to ``CHECKSUM_FIELDS``. Keep this module free of IO and logging:
the ordered values include the secret-derived hash.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from domain.checksum.hash_chain import chain, digest
from domain.common.exceptions import MissingFieldException


class ChecksumKind(str, Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"
    RECURRING_CUSTOMER_REF = "recurring_customer_ref"
    TOKENIZE_CREATE = "tokenize_create"
    TOKENIZE_PAY = "tokenize_pay"
    TOKENIZE_LIST = "tokenize_list"
    TOKENIZE_DELETE = "tokenize_delete"
    TOKENIZE_EDIT = "tokenize_edit"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    # Optional fields serialise as "" when absent; required ones fail closed.
    optional: bool = False


def _fields(*names: str) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(n) for n in names)


CHECKSUM_FIELDS: dict[ChecksumKind, tuple[FieldSpec, ...]] = {
    ChecksumKind.ONE_TIME: _fields("merchantKey", "invoiceId", "amount", "currencyCode"),
    ChecksumKind.RECURRING: _fields("merchantKey", "invoiceId", "amount", "currencyCode"),
    ChecksumKind.RECURRING_CUSTOMER_REF: _fields(
        "merchantKey", "invoiceId", "amount", "currencyCode", "customerRefNo"
    ),
    ChecksumKind.TOKENIZE_CREATE: (
        *_fields("merchantId", "invoiceId", "amount", "currencyCode", "customerId"),
        FieldSpec("tokenId", optional=True),
    ),
    ChecksumKind.TOKENIZE_PAY: _fields(
        "merchantId", "invoiceId", "amount", "currencyCode", "customerId", "tokenId"
    ),
    ChecksumKind.TOKENIZE_LIST: _fields("merchantId", "customerId"),
    ChecksumKind.TOKENIZE_DELETE: _fields("merchantId", "customerId", "tokenId"),
    ChecksumKind.TOKENIZE_EDIT: _fields("merchantId", "customerId", "tokenId"),
    ChecksumKind.WEBHOOK: _fields(
        "merchantKey",
        "payableOrderId",
        "payableTransactionId",
        "payableAmount",
        "payableCurrency",
        "invoiceNo",
        "statusCode",
    ),
}


class ChecksumEngine:
    """Builds and verifies checkValues for every ``ChecksumKind``.

    Stateless: the token hash is derived on every call and never cached.
    """

    def __init__(self, table: Optional[Mapping[ChecksumKind, tuple[FieldSpec, ...]]] = None) -> None:
        self._table = dict(table or CHECKSUM_FIELDS)

    @staticmethod
    def derive_token_hash(token: str) -> str:
        return digest(token)

    def field_names(self, kind: ChecksumKind) -> tuple[str, ...]:
        return tuple(spec.name for spec in self._table[kind])

    def ordered_values(self, kind: ChecksumKind, fields: Mapping[str, Any]) -> list[str]:
        """Values for ``kind`` in checksum order, without the token hash.

        Raises:
            MissingFieldException: a required field is absent (``None`` counts
                as absent; an empty string is a present value).
        """
        values: list[str] = []
        for spec in self._table[kind]:
            value = fields.get(spec.name)
            if value is None:
                if not spec.optional:
                    raise MissingFieldException(spec.name, kind=kind.value)
                value = ""
            values.append(value if isinstance(value, str) else str(value))
        return values

    def compute(self, kind: ChecksumKind, fields: Mapping[str, Any], token: str) -> str:
        parts = self.ordered_values(kind, fields)
        parts.append(self.derive_token_hash(token))
        return chain(parts)

    def verify(
        self,
        kind: ChecksumKind,
        fields: Mapping[str, Any],
        token: str,
        claimed_check_value: Optional[str],
    ) -> bool:
        if not claimed_check_value:
            return False
        expected = self.compute(kind, fields, token)
        try:
            claimed = claimed_check_value.upper().encode("ascii")
        except UnicodeEncodeError:
            return False
        return hmac.compare_digest(expected.encode("ascii"), claimed)
