"""HTTP Signature request signing for the payment gateway.

Every outbound call carries a timestamp, an optional SHA-256 body digest and a
``signature`` header holding an HMAC-SHA256 over a canonical string built from
those values. The field names and their order in the canonical string are part
of the wire contract and must match the ``headers="..."`` list exactly.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any

from paysign.common.errors import InvalidFieldError, MalformedKeyError, MissingFieldError

Clock = Callable[[], datetime]

ALGORITHM = "HmacSHA256"
CONTENT_TYPE = "application/json"

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
HTTP_METHODS = frozenset(
    {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"}
)

# Wire header names
MERCHANT_HEADER = "v-c-merchant-id"
DATE_HEADER = "v-c-date"
DIGEST_HEADER = "digest"
SIGNATURE_HEADER = "signature"
HOST_HEADER = "host"
CONTENT_TYPE_HEADER = "content-type"

Body = str | bytes | Mapping[str, Any] | list[Any] | None


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def format_rfc1123(moment: datetime) -> str:
    """Format a datetime as an RFC 1123 GMT timestamp (naive values are UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def serialize_body(body: Body) -> bytes | None:
    """
    Convert a request body to the exact bytes that are digested and sent.

    Mappings and lists become compact JSON (no whitespace, insertion order,
    non-ASCII kept as UTF-8). Strings are encoded as UTF-8 verbatim. ``None``
    and empty strings mean "no body".
    """
    if body is None:
        return None
    if isinstance(body, bytes):
        return body or None
    if isinstance(body, str):
        return body.encode("utf-8") if body else None
    if isinstance(body, (Mapping, list)):
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    raise InvalidFieldError("body", f"Unsupported body type: {type(body).__name__}")


def compute_digest(payload: bytes) -> str:
    """Digest header value for a serialized body."""
    encoded = base64.b64encode(hashlib.sha256(payload).digest()).decode("ascii")
    return f"SHA-256={encoded}"


def decode_secret(shared_secret: str) -> bytes:
    """Decode the base64 shared secret into HMAC key bytes."""
    try:
        key = base64.b64decode(shared_secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedKeyError(f"Shared secret is not valid base64: {exc}") from exc
    if not key:
        raise MalformedKeyError("Shared secret decodes to an empty key")
    return key


def signed_header_names(has_digest: bool) -> tuple[str, ...]:
    """Ordered field names covered by the signature."""
    if has_digest:
        return ("host", "date", "request-target", "digest", MERCHANT_HEADER)
    return ("host", "date", "request-target", MERCHANT_HEADER)


def build_signing_string(
    host: str,
    timestamp: str,
    method: str,
    path: str,
    merchant_id: str,
    digest: str | None = None,
) -> str:
    """Build the newline-joined canonical string that gets MACed."""
    values = {
        "host": host,
        "date": timestamp,
        "request-target": f"{method.lower()} {path}",
        "digest": digest,
        MERCHANT_HEADER: merchant_id,
    }
    names = signed_header_names(digest is not None)
    return "\n".join(f"{name}: {values[name]}" for name in names)


def compute_signature(key: bytes, signing_string: str) -> str:
    """Base64 HMAC-SHA256 of the canonical string."""
    mac = hmac.new(key, signing_string.encode("utf-8"), hashlib.sha256)
    return base64.b64encode(mac.digest()).decode("ascii")


@dataclass(frozen=True)
class SigningRequest:
    """Inputs for signing one outbound request."""

    merchant_id: str
    api_key_id: str
    shared_secret: str = field(repr=False)
    method: str
    path: str
    host: str
    body: Body = None

    def __post_init__(self) -> None:
        for name in ("merchant_id", "api_key_id", "shared_secret", "method", "path", "host"):
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise MissingFieldError(name)
        if self.method.upper() not in HTTP_METHODS:
            raise InvalidFieldError("method", f"Unsupported HTTP method: {self.method}")

    @property
    def carries_body(self) -> bool:
        return self.method.upper() in BODY_METHODS


@dataclass(frozen=True)
class SigningResult:
    """Authentication header values for one signed request."""

    timestamp: str
    signature: str
    signed_headers: tuple[str, ...]
    merchant_id: str
    host: str
    digest: str | None = None
    content_type: str = CONTENT_TYPE

    def to_headers(self) -> dict[str, str]:
        """Wire headers to attach to the outbound request."""
        headers = {
            MERCHANT_HEADER: self.merchant_id,
            DATE_HEADER: self.timestamp,
        }
        if self.digest is not None:
            headers[DIGEST_HEADER] = self.digest
        headers[SIGNATURE_HEADER] = self.signature
        headers[HOST_HEADER] = self.host
        headers[CONTENT_TYPE_HEADER] = self.content_type
        return headers


class RequestSigner:
    """Signs requests with an injectable clock."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utc_now

    def sign(self, request: SigningRequest) -> SigningResult:
        """
        Compute the authentication headers for a request.

        Args:
            request: Validated signing inputs

        Returns:
            SigningResult with timestamp, optional digest and signature header

        Raises:
            MalformedKeyError: If the shared secret is not valid base64
            InvalidFieldError: If the body has an unsupported type
        """
        timestamp = format_rfc1123(self._clock())

        digest = None
        if request.carries_body:
            payload = serialize_body(request.body)
            if payload is not None:
                digest = compute_digest(payload)

        signing_string = build_signing_string(
            host=request.host,
            timestamp=timestamp,
            method=request.method,
            path=request.path,
            merchant_id=request.merchant_id,
            digest=digest,
        )
        signature_value = compute_signature(decode_secret(request.shared_secret), signing_string)

        names = signed_header_names(digest is not None)
        signature = (
            f'keyid="{request.api_key_id}", algorithm="{ALGORITHM}", '
            f'headers="{" ".join(names)}", signature="{signature_value}"'
        )
        return SigningResult(
            timestamp=timestamp,
            signature=signature,
            signed_headers=names,
            merchant_id=request.merchant_id,
            host=request.host,
            digest=digest,
        )


def sign(request: SigningRequest, clock: Clock | None = None) -> SigningResult:
    """Sign ``request`` using ``clock`` (defaults to the system UTC clock)."""
    return RequestSigner(clock).sign(request)
