"""
paysign: signed API client for a payment-processing gateway.

Computes the gateway's HTTP Signature headers (HMAC-SHA256 over a canonical
string plus a SHA-256 body digest) and sends signed requests.
"""

__version__ = "1.0.0"
