"""Server-side verification of gateway request signatures."""

from __future__ import annotations

import hmac
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime

from paysign.auth.signer import (
    ALGORITHM,
    BODY_METHODS,
    DATE_HEADER,
    DIGEST_HEADER,
    HOST_HEADER,
    MERCHANT_HEADER,
    SIGNATURE_HEADER,
    Body,
    Clock,
    build_signing_string,
    compute_digest,
    compute_signature,
    decode_secret,
    serialize_body,
    signed_header_names,
    utc_now,
)
from paysign.common.errors import SignatureFormatError
from paysign.common.logging import get_logger

logger = get_logger(__name__)

_PARAM = re.compile(r'\s*([A-Za-z]+)="([^"]*)"\s*(?:,|$)')
_REQUIRED_PARAMS = ("keyid", "algorithm", "headers", "signature")


@dataclass(frozen=True)
class SignatureParams:
    """Parsed ``signature`` header."""

    keyid: str
    algorithm: str
    headers: tuple[str, ...]
    signature: str


def parse_signature_header(value: str) -> SignatureParams:
    """
    Parse ``keyid="..", algorithm="..", headers="..", signature=".."``.

    Raises:
        SignatureFormatError: If the value is malformed or a parameter is missing
    """
    params: dict[str, str] = {}
    position = 0
    while position < len(value):
        match = _PARAM.match(value, position)
        if match is None or match.end() == position:
            raise SignatureFormatError(f"Malformed signature header near offset {position}")
        params[match.group(1)] = match.group(2)
        position = match.end()

    missing = [name for name in _REQUIRED_PARAMS if name not in params]
    if missing:
        raise SignatureFormatError(f"Signature header missing: {', '.join(missing)}")

    return SignatureParams(
        keyid=params["keyid"],
        algorithm=params["algorithm"],
        headers=tuple(params["headers"].split()),
        signature=params["signature"],
    )


def verify_signature(
    headers: Mapping[str, str],
    method: str,
    path: str,
    shared_secret: str,
    body: Body = None,
    max_skew_seconds: float | None = None,
    clock: Clock | None = None,
) -> bool:
    """
    Verify the signature headers of a received request.

    Args:
        headers: Received wire headers (names are matched case-insensitively)
        method: HTTP method of the request
        path: Request target including query string
        shared_secret: Base64-encoded shared secret for the request's keyid
        body: Received body (str, bytes or decoded JSON)
        max_skew_seconds: Reject v-c-date values further than this from now
        clock: Clock used for the skew check

    Returns:
        True if the signature, digest and timestamp are all valid

    Raises:
        SignatureFormatError: If the signature header is missing or malformed
        MalformedKeyError: If the shared secret is not valid base64
    """
    received = {name.lower(): value for name, value in headers.items()}
    raw_signature = received.get(SIGNATURE_HEADER)
    if not raw_signature:
        raise SignatureFormatError("Missing signature header")
    params = parse_signature_header(raw_signature)

    if params.algorithm != ALGORITHM:
        logger.warning("Unsupported signature algorithm", algorithm=params.algorithm)
        return False

    digest = received.get(DIGEST_HEADER)
    if params.headers != signed_header_names(digest is not None):
        logger.warning("Unexpected signed header list", headers=" ".join(params.headers))
        return False

    payload = serialize_body(body) if method.upper() in BODY_METHODS else None
    if payload is not None and digest is None:
        logger.warning("Body present without digest")
        return False
    if digest is not None and (payload is None or not hmac.compare_digest(digest, compute_digest(payload))):
        logger.warning("Digest mismatch")
        return False

    host = received.get(HOST_HEADER)
    timestamp = received.get(DATE_HEADER)
    merchant_id = received.get(MERCHANT_HEADER)
    if not host or not timestamp or not merchant_id:
        logger.warning("Missing signed headers")
        return False

    if max_skew_seconds is not None:
        try:
            sent_at = parsedate_to_datetime(timestamp)
        except (TypeError, ValueError):
            logger.warning("Invalid signature timestamp", timestamp=timestamp)
            return False
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=timezone.utc)
        now = (clock or utc_now)()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if abs((now - sent_at).total_seconds()) > max_skew_seconds:
            logger.warning("Signature timestamp outside allowed skew", timestamp=timestamp)
            return False

    signing_string = build_signing_string(
        host=host,
        timestamp=timestamp,
        method=method,
        path=path,
        merchant_id=merchant_id,
        digest=digest,
    )
    expected = compute_signature(decode_secret(shared_secret), signing_string)
    return hmac.compare_digest(expected, params.signature)
