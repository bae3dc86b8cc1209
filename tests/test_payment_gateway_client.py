from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

import httpx
import pytest

from sentra.business.payments.gateway import (
    PRODUCTION_URL,
    SANDBOX_URL,
    AuthorizeNetClient,
    OpaqueCardData,
)
from sentra.context import reset_correlation_id, set_correlation_id
from sentra.otel import setup_inmemory_otel

BOM = "\ufeff"


def _client(handler: Callable[[httpx.Request], httpx.Response], *, environment: str = "sandbox") -> AuthorizeNetClient:
    return AuthorizeNetClient(
        "login-id",
        "txn-key",
        environment=environment,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _reply(payload: dict[str, Any], *, bom: bool = True) -> httpx.Response:
    text = json.dumps(payload)
    return httpx.Response(200, content=((BOM if bom else "") + text).encode("utf-8"))


def _ok(**extra: Any) -> dict[str, Any]:
    return {"messages": {"resultCode": "Ok", "message": [{"code": "I00001", "text": "Successful."}]}, **extra}


def test_charge_success_sends_profile_and_invoice_number() -> None:
    captured: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        assert str(request.url) == SANDBOX_URL
        return _reply(
            _ok(
                transactionResponse={
                    "responseCode": "1",
                    "transId": "60123",
                    "messages": [{"code": "1", "description": "This transaction has been approved."}],
                }
            )
        )

    result = _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("19.9"), "INV-2026-0001")

    assert result.success
    assert result.transaction_id == "60123"
    assert result.response_code == "1"
    assert result.message == "This transaction has been approved."
    request = captured[0]["createTransactionRequest"]
    assert request["merchantAuthentication"] == {"name": "login-id", "transactionKey": "txn-key"}
    assert request["transactionRequest"]["amount"] == "19.90"
    assert request["transactionRequest"]["profile"] == {
        "customerProfileId": "cp-1",
        "paymentProfile": {"paymentProfileId": "pp-1"},
    }
    assert request["transactionRequest"]["order"] == {"invoiceNumber": "INV-2026-0001"}


def test_charge_decline_surfaces_transaction_error_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply(
            {
                "messages": {"resultCode": "Error", "message": [{"code": "E00027", "text": "The transaction was unsuccessful."}]},
                "transactionResponse": {
                    "responseCode": "2",
                    "transId": "0",
                    "errors": [{"errorCode": "2", "errorText": "This transaction has been declined."}],
                },
            }
        )

    result = _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("5.00"))

    assert not result.success
    assert result.transaction_id is None
    assert result.response_code == "2"
    assert result.message == "This transaction has been declined."


def test_charge_held_for_review_is_not_success() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply(_ok(transactionResponse={"responseCode": "4", "transId": "60124"}))

    result = _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("5.00"))

    assert not result.success
    assert result.transaction_id == "60124"
    assert result.failure_message


def test_error_result_code_fails_profile_creation() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply({"messages": {"resultCode": "Error", "message": [{"code": "E00039", "text": "A duplicate record already exists."}]}})

    result = _client(handler).create_customer_profile("buyer@example.com", "Sale 1")

    assert not result.success
    assert result.customer_profile_id is None
    assert result.message == "A duplicate record already exists."


def test_reply_without_bom_parses_too() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply(_ok(customerPaymentProfileId="900"), bom=False)

    result = _client(handler).create_payment_profile("cp-1", OpaqueCardData("COMMON.ACCEPT.INAPP.PAYMENT", "nonce"))

    assert result.success
    assert result.payment_profile_id == "900"


def test_subscription_round_trip_fields() -> None:
    captured: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return _reply(_ok(subscriptionId="7001"))

    result = _client(handler, environment="production").create_subscription(
        name="Retainer",
        interval_length=1,
        interval_unit="months",
        start_date=date(2026, 11, 1),
        total_occurrences=12,
        amount=Decimal("99"),
        customer_profile_id="cp-1",
        payment_profile_id="pp-1",
    )

    assert result.success
    assert result.subscription_id == "7001"
    subscription = captured[0]["ARBCreateSubscriptionRequest"]["subscription"]
    assert subscription["paymentSchedule"] == {
        "interval": {"length": 1, "unit": "months"},
        "startDate": "2026-11-01",
        "totalOccurrences": 12,
    }
    assert subscription["amount"] == "99.00"


def test_production_environment_uses_live_endpoint() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return _reply(_ok(status="active"))

    result = _client(handler, environment="production").get_subscription_status("7001")

    assert seen == [PRODUCTION_URL]
    assert result.message == "active"


def test_timeout_is_normalized() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("5.00"))

    assert not result.success
    assert result.message == "Payment gateway timeout"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(502, content=b"bad gateway"),
        httpx.Response(200, content=b"<html>maintenance</html>"),
        httpx.Response(200, content=b"[]"),
        httpx.Response(200, content=json.dumps({"messages": ["oops"]}).encode("utf-8")),
    ],
)
def test_transport_and_parse_errors_never_raise(response: httpx.Response) -> None:
    result = _client(lambda request: response).cancel_subscription("7001")

    assert not result.success
    assert result.failure_message


def test_each_call_records_a_span_with_outcome() -> None:
    exporter = setup_inmemory_otel()
    exporter.clear()

    def handler(request: httpx.Request) -> httpx.Response:
        return _reply(_ok(transactionResponse={"responseCode": "1", "transId": "60125"}))

    token = set_correlation_id("gw-corr-1")
    try:
        _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("5.00"))
    finally:
        reset_correlation_id(token)

    spans = [span for span in exporter.get_finished_spans() if span.name == "payments.gateway.charge_customer_profile"]
    assert len(spans) == 1
    assert spans[0].attributes["gateway.success"] is True
    assert spans[0].attributes["correlation_id"] == "gw-corr-1"


def test_malformed_transaction_reply_is_a_failed_charge() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply(_ok(transactionResponse=["x"]))

    result = _client(handler).charge_customer_profile("cp-1", "pp-1", Decimal("5.00"))

    assert not result.success
    assert result.transaction_id is None
    assert result.failure_message


def test_malformed_message_list_fails_subscription_cancel() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return _reply({"messages": {"resultCode": "Error", "message": ["not-a-dict"]}})

    result = _client(handler).cancel_subscription("7001")

    assert not result.success
    assert result.message == "Unknown Authorize.net error"
