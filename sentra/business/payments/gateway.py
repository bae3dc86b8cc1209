"""Card payment gateway client.

``AuthorizeNetClient`` talks to the Authorize.net JSON API. Every call returns
a ``GatewayResult``; transport failures, timeouts, malformed replies and
``resultCode == "Error"`` replies are all folded into ``success=False`` so
callers never see a raw ``httpx`` exception.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import httpx
from opentelemetry import trace

from sentra.context import get_correlation_id
from sentra.core.config import Settings, get_settings
from sentra.metrics import observe_gateway_call

logger = logging.getLogger("sentra.payments.gateway")
tracer = trace.get_tracer("sentra.payments.gateway")

SANDBOX_URL = "https://apitest.authorize.net/xml/v1/request.api"
PRODUCTION_URL = "https://api.authorize.net/xml/v1/request.api"

APPROVED_RESPONSE_CODE = "1"
DEFAULT_FAILURE_MESSAGE = "Payment gateway request failed"
TIMEOUT_MESSAGE = "Payment gateway timeout"


@dataclass(slots=True)
class GatewayResult:
    success: bool
    transaction_id: str | None = None
    customer_profile_id: str | None = None
    payment_profile_id: str | None = None
    subscription_id: str | None = None
    response_code: str | None = None
    message: str | None = None

    @property
    def failure_message(self) -> str:
        return self.message or DEFAULT_FAILURE_MESSAGE


@dataclass(slots=True)
class OpaqueCardData:
    data_descriptor: str
    data_value: str


class PaymentGatewayClient(Protocol):
    def create_customer_profile(self, email: str, description: str | None = None) -> GatewayResult: ...

    def create_payment_profile(self, customer_profile_id: str, opaque_data: OpaqueCardData) -> GatewayResult: ...

    def charge_customer_profile(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        amount: Decimal,
        invoice_number: str | None = None,
    ) -> GatewayResult: ...

    def create_subscription(
        self,
        *,
        name: str,
        interval_length: int,
        interval_unit: str,
        start_date: date,
        total_occurrences: int,
        amount: Decimal,
        customer_profile_id: str,
        payment_profile_id: str,
    ) -> GatewayResult: ...

    def cancel_subscription(self, subscription_id: str) -> GatewayResult: ...

    def get_subscription_status(self, subscription_id: str) -> GatewayResult: ...


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_entry(value: Any) -> dict[str, Any]:
    if isinstance(value, list) and value:
        return _mapping(value[0])
    return {}


def _first_message(data: dict[str, Any]) -> str | None:
    return _optional_str(_first_entry(_mapping(data.get("messages")).get("message")).get("text"))


def _error_message(data: dict[str, Any]) -> str | None:
    # Anything but an explicit "Ok" result is a failed request.
    if _mapping(data.get("messages")).get("resultCode") != "Ok":
        return _first_message(data) or "Unknown Authorize.net error"
    return None


def _format_amount(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(Decimal("0.01")))


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class AuthorizeNetClient:
    def __init__(
        self,
        api_login_id: str,
        transaction_key: str,
        *,
        environment: str = "sandbox",
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_login_id = api_login_id
        self.transaction_key = transaction_key
        self.url = PRODUCTION_URL if environment == "production" else SANDBOX_URL
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthorizeNetClient:
        return cls(
            settings.authorize_net_api_login_id,
            settings.authorize_net_transaction_key,
            environment=settings.authorize_net_environment,
            timeout_seconds=settings.payment_gateway_timeout_seconds,
        )

    def create_customer_profile(self, email: str, description: str | None = None) -> GatewayResult:
        body = {
            "createCustomerProfileRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "profile": {"email": email, "description": description or ""},
                "validationMode": "none",
            }
        }

        def parse(data: dict[str, Any]) -> GatewayResult:
            return GatewayResult(
                success=True,
                customer_profile_id=_optional_str(data.get("customerProfileId")),
                message=_first_message(data),
            )

        return self._execute("create_customer_profile", body, parse)

    def create_payment_profile(self, customer_profile_id: str, opaque_data: OpaqueCardData) -> GatewayResult:
        body = {
            "createCustomerPaymentProfileRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "customerProfileId": customer_profile_id,
                "paymentProfile": {
                    "payment": {
                        "opaqueData": {
                            "dataDescriptor": opaque_data.data_descriptor,
                            "dataValue": opaque_data.data_value,
                        }
                    }
                },
                "validationMode": "none",
            }
        }

        def parse(data: dict[str, Any]) -> GatewayResult:
            return GatewayResult(
                success=True,
                payment_profile_id=_optional_str(data.get("customerPaymentProfileId")),
                message=_first_message(data),
            )

        return self._execute("create_payment_profile", body, parse)

    def charge_customer_profile(
        self,
        customer_profile_id: str,
        payment_profile_id: str,
        amount: Decimal,
        invoice_number: str | None = None,
    ) -> GatewayResult:
        transaction_request: dict[str, Any] = {
            "transactionType": "authCaptureTransaction",
            "amount": _format_amount(amount),
            "profile": {
                "customerProfileId": customer_profile_id,
                "paymentProfile": {"paymentProfileId": payment_profile_id},
            },
        }
        if invoice_number:
            transaction_request["order"] = {"invoiceNumber": invoice_number}
        body = {
            "createTransactionRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "transactionRequest": transaction_request,
            }
        }
        return self._execute("charge_customer_profile", body, self._parse_transaction, check_result_code=False)

    def create_subscription(
        self,
        *,
        name: str,
        interval_length: int,
        interval_unit: str,
        start_date: date,
        total_occurrences: int,
        amount: Decimal,
        customer_profile_id: str,
        payment_profile_id: str,
    ) -> GatewayResult:
        body = {
            "ARBCreateSubscriptionRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "subscription": {
                    "name": name,
                    "paymentSchedule": {
                        "interval": {"length": interval_length, "unit": interval_unit},
                        "startDate": start_date.isoformat(),
                        "totalOccurrences": total_occurrences,
                    },
                    "amount": _format_amount(amount),
                    "profile": {
                        "customerProfileId": customer_profile_id,
                        "customerPaymentProfileId": payment_profile_id,
                    },
                },
            }
        }

        def parse(data: dict[str, Any]) -> GatewayResult:
            return GatewayResult(
                success=True,
                subscription_id=_optional_str(data.get("subscriptionId")),
                message=_first_message(data),
            )

        return self._execute("create_subscription", body, parse)

    def cancel_subscription(self, subscription_id: str) -> GatewayResult:
        body = {
            "ARBCancelSubscriptionRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "subscriptionId": subscription_id,
            }
        }

        def parse(data: dict[str, Any]) -> GatewayResult:
            return GatewayResult(success=True, subscription_id=subscription_id, message=_first_message(data))

        return self._execute("cancel_subscription", body, parse)

    def get_subscription_status(self, subscription_id: str) -> GatewayResult:
        body = {
            "ARBGetSubscriptionStatusRequest": {
                "merchantAuthentication": self._merchant_auth(),
                "subscriptionId": subscription_id,
            }
        }

        def parse(data: dict[str, Any]) -> GatewayResult:
            return GatewayResult(success=True, subscription_id=subscription_id, message=_optional_str(data.get("status")))

        return self._execute("get_subscription_status", body, parse)

    @staticmethod
    def _parse_transaction(data: dict[str, Any]) -> GatewayResult:
        transaction = _mapping(data.get("transactionResponse"))
        response_code = _optional_str(transaction.get("responseCode"))
        transaction_id = _optional_str(transaction.get("transId"))
        # A declined capture still carries transId "0".
        if transaction_id == "0":
            transaction_id = None

        error_text = _optional_str(_first_entry(transaction.get("errors")).get("errorText"))
        description = _optional_str(_first_entry(transaction.get("messages")).get("description"))

        request_error = _error_message(data)
        success = request_error is None and response_code == APPROVED_RESPONSE_CODE
        if success:
            message = description or _first_message(data)
        else:
            message = error_text or request_error or description
        return GatewayResult(
            success=success,
            transaction_id=transaction_id,
            response_code=response_code,
            message=message,
        )

    def _merchant_auth(self) -> dict[str, str]:
        return {"name": self.api_login_id, "transactionKey": self.transaction_key}

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        response = self._http.post(self.url, json=body, headers={"Content-Type": "application/json"})
        response.raise_for_status()
        # Replies start with a UTF-8 byte order mark.
        text = response.content.decode("utf-8-sig").lstrip("\ufeff")
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("unexpected gateway reply")
        return data

    def _execute(
        self,
        operation: str,
        body: dict[str, Any],
        parse: Callable[[dict[str, Any]], GatewayResult],
        *,
        check_result_code: bool = True,
    ) -> GatewayResult:
        started = time.perf_counter()
        with tracer.start_as_current_span(f"payments.gateway.{operation}") as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            span.set_attribute("gateway.operation", operation)
            try:
                data = self._post(body)
                error = _error_message(data) if check_result_code else None
                result = GatewayResult(success=False, message=error) if error else parse(data)
            except httpx.TimeoutException:
                result = GatewayResult(success=False, message=TIMEOUT_MESSAGE)
            except (httpx.HTTPError, ValueError, TypeError, AttributeError, KeyError) as exc:
                result = GatewayResult(success=False, message=str(exc) or DEFAULT_FAILURE_MESSAGE)
            span.set_attribute("gateway.success", result.success)

        observe_gateway_call(operation, result.success, time.perf_counter() - started)
        if not result.success:
            logger.warning(
                "payments.gateway_call_failed",
                extra={"operation": operation, "error": result.message, "transaction_id": result.transaction_id},
            )
        return result


@lru_cache
def _default_gateway() -> AuthorizeNetClient:
    return AuthorizeNetClient.from_settings(get_settings())


def get_payment_gateway() -> PaymentGatewayClient:
    return _default_gateway()
