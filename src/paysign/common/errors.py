"""Shared error types and gateway error parsing."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class ErrorCode:
    INVALID_DATA = "INVALID_DATA"
    INVALID_CARD = "INVALID_CARD"
    EXPIRED_CARD = "EXPIRED_CARD"
    INSUFFICIENT_FUND = "INSUFFICIENT_FUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    PROCESSOR_DECLINED = "PROCESSOR_DECLINED"
    DECLINE = "DECLINE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    DUPLICATE_REQUEST = "DUPLICATE_REQUEST"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class PaySignError(Exception):
    """Base class for all paysign errors."""


class SigningError(PaySignError):
    """A request could not be signed."""


class MalformedKeyError(SigningError):
    """Shared secret is not usable as an HMAC key."""


class MissingFieldError(SigningError):
    """A required field is absent or empty."""

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Missing required field: {field}")
        self.field = field


class InvalidFieldError(SigningError):
    """A field is present but has an unusable value."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class SignatureFormatError(PaySignError):
    """Signature header could not be parsed."""


class CircuitBreakerOpen(PaySignError):
    """Exception raised when circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open"):
        super().__init__(message)


@dataclass(frozen=True)
class ParsedError:
    """Uniform view of a gateway error response."""

    code: str
    message: str
    user_message: str
    retryable: bool
    field: str | None = None
    details: str | None = None


class GatewayClientError(PaySignError):
    """Error communicating with the payment gateway."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        parsed: ParsedError | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.parsed = parsed

    @property
    def retryable(self) -> bool:
        # No parsed body means the request never got an answer (transport error)
        if self.parsed is None:
            return self.status_code is None
        return self.parsed.retryable


_CODE_MAP: dict[str, tuple[str, str, bool]] = {
    ErrorCode.INVALID_DATA: (
        "The provided data is invalid",
        "Please check your payment information and try again.",
        False,
    ),
    ErrorCode.INVALID_CARD: (
        "Invalid card number",
        "The card number you entered is invalid. Please check and try again.",
        False,
    ),
    ErrorCode.EXPIRED_CARD: (
        "Card has expired",
        "This card has expired. Please use a different card.",
        False,
    ),
    ErrorCode.INSUFFICIENT_FUND: (
        "Insufficient funds",
        "The card has insufficient funds. Please use a different payment method.",
        False,
    ),
    ErrorCode.UNAUTHORIZED: (
        "Authentication failed",
        "Authentication failed. Please contact support.",
        False,
    ),
    ErrorCode.FORBIDDEN: (
        "Access forbidden",
        "You do not have permission to perform this action.",
        False,
    ),
    ErrorCode.PROCESSOR_DECLINED: (
        "Transaction declined by processor",
        "Your payment was declined. Please contact your bank or try a different card.",
        False,
    ),
    ErrorCode.DECLINE: (
        "Transaction declined",
        "Your payment was declined. Please try a different payment method.",
        False,
    ),
    ErrorCode.GATEWAY_TIMEOUT: (
        "Gateway timeout",
        "The request timed out. Please try again.",
        True,
    ),
    ErrorCode.SERVICE_UNAVAILABLE: (
        "Service temporarily unavailable",
        "The service is temporarily unavailable. Please try again in a few moments.",
        True,
    ),
    ErrorCode.SYSTEM_ERROR: (
        "System error occurred",
        "A system error occurred. Please try again or contact support.",
        True,
    ),
    ErrorCode.DUPLICATE_REQUEST: (
        "Duplicate request detected",
        "This request has already been processed.",
        False,
    ),
}


def _field_details(payload: Mapping[str, Any]) -> tuple[str | None, str | None]:
    details = payload.get("details")
    if not isinstance(details, list) or not details:
        return None, None
    parts = [
        f"{item.get('field')}: {item.get('reason')}"
        for item in details
        if isinstance(item, Mapping)
    ]
    first = details[0].get("field") if isinstance(details[0], Mapping) else None
    return first, ", ".join(parts) or None


def parse_gateway_error(
    status_code: int | None,
    payload: Any,
    fallback_message: str | None = None,
) -> ParsedError:
    """
    Map a gateway error response to a ParsedError.

    Gateway ``status``/``reason`` codes win over the HTTP status code.

    Args:
        status_code: HTTP status of the response (None for transport errors)
        payload: Decoded JSON body, or anything else when the body was not JSON
        fallback_message: Message used when nothing more specific is known

    Returns:
        ParsedError describing the failure
    """
    default = ParsedError(
        code=ErrorCode.UNKNOWN_ERROR,
        message=fallback_message or "An unknown error occurred",
        user_message="We encountered an error processing your request. Please try again.",
        retryable=True,
    )
    if not isinstance(payload, Mapping):
        payload = {}

    status = str(payload.get("status") or "")
    reason = str(payload.get("reason") or "")
    message = str(payload.get("message") or "")
    field, details = _field_details(payload)

    for code in (status, reason):
        if code in _CODE_MAP:
            default_message, user_message, retryable = _CODE_MAP[code]
            return ParsedError(
                code=code,
                message=message or default_message,
                user_message=user_message,
                retryable=retryable,
                field=field,
                details=details,
            )

    if status_code is None:
        return default
    if status_code == 400:
        return ParsedError(
            code=ErrorCode.BAD_REQUEST,
            message=message or "Bad request",
            user_message="Invalid request. Please check your information and try again.",
            retryable=False,
            field=field,
            details=details,
        )
    if status_code == 401:
        return ParsedError(
            code=ErrorCode.UNAUTHORIZED,
            message="Authentication required",
            user_message="Authentication failed. Please contact support.",
            retryable=False,
        )
    if status_code == 404:
        return ParsedError(
            code=ErrorCode.NOT_FOUND,
            message="Resource not found",
            user_message="The requested resource was not found.",
            retryable=False,
        )
    if status_code == 429:
        return ParsedError(
            code=ErrorCode.RATE_LIMIT,
            message="Rate limit exceeded",
            user_message="Too many requests. Please try again in a few moments.",
            retryable=True,
        )
    if status_code >= 500:
        return ParsedError(
            code=ErrorCode.SERVER_ERROR,
            message="Server error",
            user_message="A server error occurred. Please try again later.",
            retryable=True,
        )
    return default


def is_retryable(error: BaseException) -> bool:
    """Check whether an operation that raised ``error`` may be retried."""
    if isinstance(error, GatewayClientError):
        return error.retryable
    # Signing and configuration errors repeat identically on retry
    return False
