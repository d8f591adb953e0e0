import json

import pytest
from fastapi.testclient import TestClient

from application.context import build_gateway_context
from application.dtos.credentials import AccessToken
from core.settings import PaymentSettings


class StubGateway:
    provider = "stub"

    async def request_token(self, basic):
        from datetime import datetime, timedelta, timezone
        return AccessToken(value="tok", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))

    async def list_cards(self, envelope):
        return {"status": 200, "tokenizedCards": [{"tokenId": "T9"}], "auth": envelope.headers["Authorization"]}

    async def delete_card(self, envelope):
        return {"status": 200}

    async def edit_card(self, envelope):
        return {"status": 200, "nickName": envelope.request.nick_name}

    async def pay(self, envelope):
        return {"status": 200, "invoiceId": envelope.request.invoice_id}


@pytest.fixture
def client():
    from main import app
    from api.dependencies import get_gateway_context

    context = build_gateway_context(PaymentSettings(base_url="https://ipg.test"), gateway=StubGateway())
    app.dependency_overrides[get_gateway_context] = lambda: context
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _checkout(client, checkout_fields):
    return client.post("/api/v1/payments/checkout", json={"kind": "one_time", "fields": checkout_fields})


def test_routes_registered():
    from main import app
    routes = {r.path for r in app.routes}
    assert "/api/v1/payments/webhook" in routes
    assert "/api/v1/payments/checkout" in routes
    assert "/health" in routes


def test_health(client):
    assert client.get("/health").json()["data"] == {"status": "healthy"}
    data = client.get("/api/v1/payments/health").json()["data"]
    assert data["base_url"] == "https://ipg.test"
    assert data["environment"] == "sandbox"


def test_checkout_returns_signed_payload(client, checkout_fields):
    resp = _checkout(client, checkout_fields)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["invoice_id"] == "INV1"
    assert data["checkout_url"] == "https://ipg.test/ipg/v2/checkout"
    assert data["payload"]["merchantKey"] == "MK1"
    assert resp.headers["X-Request-ID"]


def test_checkout_validation_error(client, checkout_fields):
    resp = _checkout(client, {**checkout_fields, "amount": "100.0"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["type"] == "ValidationError"
    assert body["error"]["field"] == "amount"


def test_duplicate_checkout_conflicts(client, checkout_fields):
    assert _checkout(client, checkout_fields).status_code == 200
    assert _checkout(client, checkout_fields).status_code == 409


def test_webhook_ack_and_duplicate(client, checkout_fields, make_result):
    _checkout(client, checkout_fields)
    payload = make_result().model_dump(by_alias=True, exclude_none=True)

    first = client.post("/api/v1/payments/webhook", json=payload)
    assert first.status_code == 200
    assert first.json() == {"Status": 200}

    again = client.post("/api/v1/payments/webhook", json=payload)
    assert again.json() == {"Status": 200}

    session = client.get("/api/v1/payments/sessions/INV1").json()["data"]
    assert session["state"] == "completed"
    assert session["outcome"]["source"] == "webhook"


def test_webhook_for_unknown_invoice_is_acknowledged(client, make_result):
    payload = make_result(invoice_no="OLD").model_dump(by_alias=True, exclude_none=True)
    assert client.post("/api/v1/payments/webhook", json=payload).json() == {"Status": 200}


def test_webhook_bad_checksum(client, checkout_fields, make_result):
    _checkout(client, checkout_fields)
    payload = make_result(check_value="AB" * 64).model_dump(by_alias=True, exclude_none=True)

    resp = client.post("/api/v1/payments/webhook", json=payload)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "IntegrityMismatch"
    assert client.get("/api/v1/payments/sessions/INV1").json()["data"]["state"] == "failed"


def test_webhook_conflict(client, checkout_fields, make_result):
    _checkout(client, checkout_fields)
    client.post("/api/v1/payments/webhook", json=make_result().model_dump(by_alias=True, exclude_none=True))
    resp = client.post(
        "/api/v1/payments/webhook",
        json=make_result(status_code="2").model_dump(by_alias=True, exclude_none=True),
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "DuplicateConfirmation"


def test_webhook_numeric_amount_keeps_signed_text(client, checkout_fields, make_result):
    _checkout(client, checkout_fields)
    raw = json.dumps(make_result().model_dump(by_alias=True, exclude_none=True))
    raw = raw.replace('"payableAmount": "100.00"', '"payableAmount": 100.00')
    assert '100.00,' in raw

    resp = client.post("/api/v1/payments/webhook", content=raw, headers={"content-type": "application/json"})
    assert resp.json() == {"Status": 200}
    assert client.get("/api/v1/payments/sessions/INV1").json()["data"]["state"] == "completed"


def test_surface_success_with_numeric_amount(client, checkout_fields, make_result):
    _checkout(client, checkout_fields)
    result = json.dumps(make_result().model_dump(by_alias=True, exclude_none=True))
    raw = '{"type": "success", "result": ' + result.replace('"100.00"', "100.00") + "}"

    resp = client.post(
        "/api/v1/payments/sessions/INV1/events", content=raw, headers={"content-type": "application/json"}
    )
    assert resp.json()["data"]["session"]["state"] == "completed"


def test_webhook_body_not_json(client):
    resp = client.post("/api/v1/payments/webhook", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 422


def test_webhook_listener_failure_still_acknowledged(client, checkout_fields, make_result):
    from api.dependencies import get_gateway_context
    from main import app

    context = app.dependency_overrides[get_gateway_context]()
    _checkout(client, checkout_fields)

    class Boom:
        def on_payment_completed(self, result):
            raise RuntimeError("listener down")

    context.machine._listeners["INV1"] = Boom()
    resp = client.post("/api/v1/payments/webhook", json=make_result().model_dump(by_alias=True, exclude_none=True))
    assert resp.status_code == 200
    assert resp.json() == {"Status": 200}


def test_webhook_malformed_body(client):
    resp = client.post("/api/v1/payments/webhook", json={"invoiceNo": "INV1"})
    assert resp.status_code == 422


def test_webhook_ip_allowlist(client, make_result, monkeypatch):
    from core.settings import payment_settings
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["10.0.0.0/8"])
    payload = make_result().model_dump(by_alias=True, exclude_none=True)
    # TestClient connects from "testclient"
    assert client.post("/api/v1/payments/webhook", json=payload).status_code == 403


def test_surface_events(client, checkout_fields):
    _checkout(client, checkout_fields)
    resp = client.post("/api/v1/payments/sessions/INV1/events", json={"type": "acknowledged"})
    assert resp.json()["data"]["outcome"] == "applied"
    assert resp.json()["data"]["session"]["state"] == "awaiting_outcome"

    resp = client.post("/api/v1/payments/sessions/INV1/events", json={"type": "cancel"})
    assert resp.json()["data"]["session"]["state"] == "cancelled"

    resp = client.post("/api/v1/payments/sessions/INV1/events", json={"type": "cancel"})
    assert resp.json()["data"]["outcome"] == "stale"


def test_unknown_session_is_404(client):
    assert client.get("/api/v1/payments/sessions/NOPE").status_code == 404


def test_card_endpoints(client):
    cards = client.get("/api/v1/payments/customers/C1/cards").json()["data"]
    assert cards["auth"] == "Bearer tok"
    assert client.delete("/api/v1/payments/customers/C1/cards/T9").status_code == 200
    edited = client.patch("/api/v1/payments/customers/C1/cards/T9", json={"nickName": "Work"}).json()["data"]
    assert edited["nickName"] == "Work"
    paid = client.post(
        "/api/v1/payments/tokenize/pay",
        json={"invoiceId": "INV7", "amount": "10.00", "currencyCode": "LKR", "customerId": "C1", "tokenId": "T9"},
    ).json()["data"]
    assert paid["invoiceId"] == "INV7"
