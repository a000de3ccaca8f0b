"""Masking helpers that keep credentials and card data out of logs."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

NOT_SET = "[NOT SET]"

DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "apikey",
    "api_key",
    "secret",
    "password",
    "token",
    "authorization",
    "signature",
    "cardnumber",
    "card_number",
    "cvv",
    "securitycode",
    "security_code",
)


def mask_sensitive(
    value: str | None,
    visible_start: int = 4,
    visible_end: int = 4,
) -> str:
    """
    Mask a sensitive string, keeping only a few characters at each end.

    >>> mask_sensitive("sk_live_1234567890abcdef")
    'sk_l****************cdef'
    >>> mask_sensitive("secret123", 2, 2)
    'se*****23'
    """
    if not value:
        return NOT_SET
    if len(value) <= visible_start + visible_end:
        return "*" * len(value)
    hidden = len(value) - visible_start - visible_end
    return f"{value[:visible_start]}{'*' * hidden}{value[len(value) - visible_end:]}"


def mask_api_key(api_key: str | None) -> str:
    """Mask an API key id for logging."""
    return mask_sensitive(api_key, 4, 4)


def mask_merchant_id(merchant_id: str | None) -> str:
    """Mask a merchant id, keeping the first 8 characters."""
    if not merchant_id:
        return NOT_SET
    if len(merchant_id) <= 8:
        return "*" * len(merchant_id)
    return merchant_id[:8] + "*" * (len(merchant_id) - 8)


def secret_info(secret: str | None) -> dict[str, Any]:
    """Describe a secret by its length only."""
    return {"length": len(secret or ""), "set": bool(secret)}


def _is_sensitive(key: str, sensitive_keys: Iterable[str]) -> bool:
    lowered = key.lower()
    return any(candidate.lower() in lowered for candidate in sensitive_keys)


def sanitize_for_logging(
    data: Mapping[str, Any],
    sensitive_keys: Iterable[str] = DEFAULT_SENSITIVE_KEYS,
) -> dict[str, Any]:
    """Return a copy of ``data`` with sensitive string values masked, recursing into mappings."""
    sensitive_keys = tuple(sensitive_keys)
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str) and _is_sensitive(str(key), sensitive_keys):
            sanitized[key] = mask_sensitive(value)
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_for_logging(value, sensitive_keys)
        else:
            sanitized[key] = value
    return sanitized
