"""Pass-through service wrappers over the gateway client."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from urllib.parse import quote

from paysign.client.gateway_client import GatewayClient
from paysign.common.errors import GatewayClientError, PaySignError
from paysign.common.logging import get_logger

ESSENTIAL_LOG_KEYS = ("customerId", "paymentId", "paymentInstrumentId", "shippingAddressId")
CARD_FIELDS = ("number", "securitycode", "cvv", "cvn", "password", "pin", "token", "key")
REDACTED = "***REDACTED***"


def _essentials(log_data: Mapping[str, Any] | None) -> dict[str, Any]:
    if not log_data:
        return {}
    return {key: log_data[key] for key in ESSENTIAL_LOG_KEYS if log_data.get(key)}


def sanitize_request_for_logging(data: Any) -> Any:
    """Redact card data and credentials anywhere in a request body."""
    if isinstance(data, Mapping):
        return {
            key: REDACTED
            if any(field in str(key).lower() for field in CARD_FIELDS)
            else sanitize_request_for_logging(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_request_for_logging(item) for item in data]
    return data


class BaseGatewayService:
    """Shared logging and error handling for gateway services."""

    def __init__(self, client: GatewayClient, service_name: str | None = None) -> None:
        self._client = client
        self._logger = get_logger(service_name or type(self).__name__)

    async def execute_api_call(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        log_data: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Run a gateway call, logging its start, outcome and essential ids.

        Errors are logged and re-raised unchanged.
        """
        self._logger.info(f"{operation}...")
        try:
            result = await call()
        except PaySignError as exc:
            error_info = _essentials(log_data)
            if isinstance(exc, GatewayClientError):
                if exc.status_code is not None:
                    error_info["status"] = exc.status_code
                if exc.parsed is not None:
                    error_info["code"] = exc.parsed.code
            self._logger.error(f"{operation} failed", error=str(exc), **error_info)
            raise

        success_info = _essentials(log_data)
        if isinstance(result, Mapping):
            for key in ("id", "status"):
                if result.get(key):
                    success_info[key] = result[key]
        self._logger.info(f"{operation} succeeded", **success_info)
        return result


class PaymentService(BaseGatewayService):
    """Payment processing endpoints."""

    async def create_payment(self, request: Mapping[str, Any]) -> Any:
        amount = request.get("orderInformation", {}).get("amountDetails", {}).get("totalAmount")
        self._logger.debug("Creating payment", amount=amount)
        return await self.execute_api_call(
            "Creating payment",
            lambda: self._client.post("/pts/v2/payments", body=request),
        )

    async def capture_payment(self, payment_id: str, request: Mapping[str, Any]) -> Any:
        return await self.execute_api_call(
            "Capturing payment",
            lambda: self._client.post(f"/pts/v2/payments/{quote(payment_id, safe='')}/captures", body=request),
            {"paymentId": payment_id},
        )

    async def refund_payment(self, payment_id: str, request: Mapping[str, Any]) -> Any:
        return await self.execute_api_call(
            "Refunding payment",
            lambda: self._client.post(f"/pts/v2/payments/{quote(payment_id, safe='')}/refunds", body=request),
            {"paymentId": payment_id},
        )

    async def void_payment(self, payment_id: str, request: Mapping[str, Any]) -> Any:
        return await self.execute_api_call(
            "Voiding payment",
            lambda: self._client.post(f"/pts/v2/payments/{quote(payment_id, safe='')}/voids", body=request),
            {"paymentId": payment_id},
        )


class CustomerService(BaseGatewayService):
    """Token management customer endpoints."""

    async def create_customer(self, request: Mapping[str, Any]) -> Any:
        self._logger.debug("Customer request", body=sanitize_request_for_logging(request))
        return await self.execute_api_call(
            "Creating customer",
            lambda: self._client.post("/tms/v2/customers", body=request),
        )

    async def get_customer(self, customer_id: str) -> Any:
        return await self.execute_api_call(
            "Retrieving customer",
            lambda: self._client.get(f"/tms/v2/customers/{quote(customer_id, safe='')}"),
            {"customerId": customer_id},
        )

    async def update_customer(self, customer_id: str, request: Mapping[str, Any]) -> Any:
        self._logger.debug("Customer request", body=sanitize_request_for_logging(request))
        return await self.execute_api_call(
            "Updating customer",
            lambda: self._client.patch(f"/tms/v2/customers/{quote(customer_id, safe='')}", body=request),
            {"customerId": customer_id},
        )

    async def delete_customer(self, customer_id: str) -> None:
        await self.execute_api_call(
            "Deleting customer",
            lambda: self._client.delete(f"/tms/v2/customers/{quote(customer_id, safe='')}"),
            {"customerId": customer_id},
        )
