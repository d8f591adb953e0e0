"""
Payment DTOs (Pydantic v2) used at application boundaries.

Wire names are camelCase (``invoiceId``, ``currencyCode``); Python code uses
snake_case. Both are accepted on input.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from domain.payment.entity import PaymentKind

AMOUNT_PATTERN = re.compile(r"^\d+\.\d{2}$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
FOREVER = "FOREVER"
INTERVALS = {"MONTHLY", "ANNUALLY"}


def _check_date(value: str) -> str:
    try:
        date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("must be a YYYY-MM-DD date") from exc
    if len(value) != 10:
        raise ValueError("must be a YYYY-MM-DD date")
    return value


class PaymentRequest(BaseModel):
    """Outbound request handed to the checkout surface or a tokenize endpoint.

    Built by ``PaymentRequestBuilder``; immutable once ``check_value`` is set.
    The merchant token has no field here and ``extra="forbid"`` keeps it out.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    kind: PaymentKind = Field(exclude=True)

    merchant_key: Optional[str] = None
    merchant_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: Optional[str] = None
    currency_code: Optional[str] = None
    order_description: Optional[str] = None

    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_mobile_phone: Optional[str] = None
    customer_phone: Optional[str] = None
    billing_address_street: Optional[str] = None
    billing_address_street2: Optional[str] = None
    billing_address_city: Optional[str] = None
    billing_address_country: Optional[str] = None
    billing_address_postcode_zip: Optional[str] = None
    billing_address_state_province: Optional[str] = None
    shipping_contact_first_name: Optional[str] = None
    shipping_contact_last_name: Optional[str] = None
    shipping_address_street: Optional[str] = None
    shipping_address_city: Optional[str] = None
    shipping_address_country: Optional[str] = None
    shipping_address_postcode_zip: Optional[str] = None

    return_url: Optional[str] = None
    webhook_url: Optional[str] = None
    logo_url: Optional[str] = None
    custom1: Optional[str] = None
    custom2: Optional[str] = None

    # Recurring schedule
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    recurring_amount: Optional[str] = None
    interval: Optional[str] = None
    is_retry: Optional[bool] = None
    retry_attempts: Optional[int] = Field(default=None, ge=0)
    do_first_payment: Optional[bool] = None

    # Tokenize
    customer_ref_no: Optional[str] = None
    customer_id: Optional[str] = None
    token_id: Optional[str] = None
    is_save_card: Optional[bool] = None
    nick_name: Optional[str] = None
    is_default_card: Optional[bool] = None

    check_value: Optional[str] = None

    @field_validator("amount", "recurring_amount")
    @classmethod
    def _validate_amount(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not AMOUNT_PATTERN.match(v):
            raise ValueError("amount must have exactly two fraction digits, e.g. 100.00")
        return v

    @field_validator("currency_code")
    @classmethod
    def _validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not CURRENCY_PATTERN.match(v):
            raise ValueError("currencyCode must be ISO-4217 alpha-3 in upper case")
        return v

    @field_validator("interval")
    @classmethod
    def _validate_interval(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in INTERVALS:
            raise ValueError("interval must be MONTHLY or ANNUALLY")
        return v

    @field_validator("start_date")
    @classmethod
    def _validate_start_date(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_date(v)

    @field_validator("end_date")
    @classmethod
    def _validate_end_date(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == FOREVER:
            return v
        return _check_date(v)

    @field_validator("customer_email")
    @classmethod
    def _validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v and "@" not in v:
            raise ValueError("customerEmail must be an email address")
        return v

    def wire_fields(self) -> dict[str, Any]:
        """camelCase mapping of every field (``None`` kept) for checksum lookup."""
        return self.model_dump(by_alias=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentResult(BaseModel):
    """Gateway-originated result: webhook body or the surface success redirect."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
        coerce_numbers_to_str=True,
    )

    merchant_key: str
    payable_order_id: str
    payable_transaction_id: str
    payable_amount: str
    payable_currency: str
    invoice_no: str
    status_code: str
    status_message: Optional[str] = None
    payment_type: Optional[str] = None
    payment_method: Optional[str] = None
    payment_scheme: Optional[str] = None
    custom1: Optional[str] = None
    custom2: Optional[str] = None
    card_holder_name: Optional[str] = None
    card_number: Optional[str] = None
    card_expiry: Optional[str] = None
    check_value: str

    @field_validator("*", mode="before")
    @classmethod
    def _reject_float(cls, v: Any) -> Any:
        # str(float) drops the signed text ("100.00" becomes "100.0")
        if isinstance(v, float):
            raise ValueError("decimal values must be sent as strings")
        return v

    def wire_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class TransportEnvelope(BaseModel):
    """Request body plus transport headers; the headers never enter the checksum."""

    model_config = ConfigDict(frozen=True)

    request: PaymentRequest
    headers: dict[str, str] = Field(default_factory=dict, repr=False)

    def to_payload(self) -> dict[str, Any]:
        return self.request.to_payload()


class CheckoutCommand(BaseModel):
    kind: PaymentKind = PaymentKind.ONE_TIME
    fields: dict[str, Any]


class CheckoutResponse(BaseModel):
    invoice_id: str
    kind: PaymentKind
    checkout_url: str
    payload: dict[str, Any]


class SurfaceEvent(BaseModel):
    type: Literal["acknowledged", "success", "error", "cancel"]
    result: Optional[PaymentResult] = None
    error: Optional[str] = None


class EditCardCommand(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    nick_name: Optional[str] = None
    is_default_card: Optional[bool] = None
