"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Merchant credentials used by the settings-backed context and the API tests
os.environ.setdefault("IPG_MERCHANT__MERCHANT_KEY", "MK1")
os.environ.setdefault("IPG_MERCHANT__MERCHANT_TOKEN", "SECRET")
os.environ.setdefault("IPG_MERCHANT__BUSINESS_KEY", "BK1")
os.environ.setdefault("IPG_MERCHANT__BUSINESS_TOKEN", "BT1")
os.environ.setdefault("IPG_ENVIRONMENT", "sandbox")

import pytest  # noqa: E402

from application.dtos.credentials import MerchantCredentials  # noqa: E402
from application.dtos.payments import PaymentResult  # noqa: E402
from domain.checksum.engine import ChecksumEngine, ChecksumKind  # noqa: E402


# SHA512("SECRET")
SECRET_HASH = (
    "FEB6541D492A1D50394CC448E9C4D08AC381C5C90A656B19201BACFDF9462B87"
    "A8A5579A47810609C2307DEC92F52C88F218FD3075AFE02629BC5FD01CE734FD"
)
# SHA512("MK1|P1|T1|100.00|LKR|INV1|1|" + SECRET_HASH)
WEBHOOK_CHECK_VALUE = (
    "FE68896C37EF9948543FB03B198239E4BC0DAF479437B33697948D03088D89F2"
    "535124CEDA8B88A212A0CB2C0CD6C2101920066C00B69FEE3A7948B164475C4A"
)

CHECKOUT_FIELDS = {
    "invoiceId": "INV1",
    "amount": "100.00",
    "currencyCode": "LKR",
    "orderDescription": "Order 1",
    "customerFirstName": "Ann",
    "customerLastName": "Perera",
    "customerEmail": "ann@example.com",
    "customerMobilePhone": "+94770000000",
    "billingAddressStreet": "1 Main St",
    "billingAddressCity": "Colombo",
    "billingAddressCountry": "LK",
}


@pytest.fixture
def credentials() -> MerchantCredentials:
    return MerchantCredentials(
        merchant_key="MK1",
        merchant_token="SECRET",
        business_key="BK1",
        business_token="BT1",
    )


@pytest.fixture
def engine() -> ChecksumEngine:
    return ChecksumEngine()


@pytest.fixture
def checkout_fields() -> dict:
    return dict(CHECKOUT_FIELDS)


@pytest.fixture
def make_result(engine):
    """Build a gateway result for an invoice, signed with the test merchant token."""

    def _make(invoice_no: str = "INV1", status_code: str = "1", *, check_value: str | None = None, **overrides) -> PaymentResult:
        data = {
            "merchantKey": "MK1",
            "payableOrderId": "P1",
            "payableTransactionId": "T1",
            "payableAmount": "100.00",
            "payableCurrency": "LKR",
            "invoiceNo": invoice_no,
            "statusCode": status_code,
            **overrides,
        }
        if check_value is None:
            check_value = engine.compute(ChecksumKind.WEBHOOK, data, "SECRET")
        data["checkValue"] = check_value
        return PaymentResult.model_validate(data)

    return _make
