"""Pytest configuration and fixtures."""

import base64
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from paysign.auth.signer import RequestSigner, SigningRequest
from paysign.common.settings import Settings

MERCHANT_ID = "test_merchant_123"
API_KEY_ID = "test-api-key-uuid"
RAW_SECRET = b"test-shared-secret"
SHARED_SECRET = base64.b64encode(RAW_SECRET).decode("ascii")
HOST = "apitest.example.com"
FIXED_TIME = datetime(2025, 10, 23, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    """Clock pinned to a known instant."""
    return lambda: FIXED_TIME


@pytest.fixture
def signer(fixed_clock) -> RequestSigner:
    """Signer with a pinned clock."""
    return RequestSigner(clock=fixed_clock)


@pytest.fixture
def make_request():
    """Factory for signing requests with test credentials."""

    def _make(**overrides: Any) -> SigningRequest:
        fields: dict[str, Any] = {
            "merchant_id": MERCHANT_ID,
            "api_key_id": API_KEY_ID,
            "shared_secret": SHARED_SECRET,
            "method": "GET",
            "path": "/tms/v2/customers",
            "host": HOST,
        }
        fields.update(overrides)
        return SigningRequest(**fields)

    return _make


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        merchant_id=MERCHANT_ID,
        api_key_id=API_KEY_ID,
        shared_secret=SHARED_SECRET,
        base_url=f"https://{HOST}",
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


def make_response(status: int, text: str = "") -> AsyncMock:
    """Mock aiohttp response usable as an async context manager."""
    response = AsyncMock()
    response.status = status
    response.text = AsyncMock(return_value=text)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response
