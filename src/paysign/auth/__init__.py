"""Request signing and verification for the payment gateway."""

from paysign.auth.signer import (
    RequestSigner,
    SigningRequest,
    SigningResult,
    format_rfc1123,
    serialize_body,
    sign,
)
from paysign.auth.urls import extract_host, extract_path
from paysign.auth.verifier import SignatureParams, parse_signature_header, verify_signature

__all__ = [
    "RequestSigner",
    "SigningRequest",
    "SigningResult",
    "SignatureParams",
    "extract_host",
    "extract_path",
    "format_rfc1123",
    "parse_signature_header",
    "serialize_body",
    "sign",
    "verify_signature",
]
