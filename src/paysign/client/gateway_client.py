"""Async HTTP client that signs every request sent to the payment gateway."""

import asyncio
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode, urlsplit

import aiohttp
from yarl import URL

from paysign.auth.signer import BODY_METHODS, Body, RequestSigner, SigningRequest, serialize_body
from paysign.auth.urls import extract_host
from paysign.client.resilience import CircuitBreaker, ExponentialBackoff
from paysign.common.errors import GatewayClientError, parse_gateway_error
from paysign.common.logging import get_logger
from paysign.common.security import mask_api_key, mask_merchant_id
from paysign.common.settings import Settings

logger = get_logger(__name__)

ACCEPT = "application/hal+json;charset=utf-8"


class GatewayClient:
    """
    HTTP client for the payment gateway REST API.

    Each attempt is signed with a fresh timestamp; the body is serialized once
    so the bytes on the wire are exactly the bytes covered by the digest.
    Includes a circuit breaker and retry with exponential backoff for
    retryable failures. Signing errors are raised before anything is sent.
    """

    def __init__(
        self,
        settings: Settings,
        circuit_breaker: CircuitBreaker | None = None,
        signer: RequestSigner | None = None,
    ):
        """
        Initialize the gateway client.

        Args:
            settings: Application settings (credentials must be configured)
            circuit_breaker: Optional circuit breaker instance
            signer: Optional signer (inject a clock through it in tests)
        """
        self._merchant_id, self._api_key_id, self._shared_secret = settings.require_credentials()

        base = urlsplit(settings.effective_base_url)
        self._origin = f"{base.scheme}://{base.netloc}"
        self._path_prefix = base.path.rstrip("/")
        self._host = extract_host(settings.effective_base_url)

        self._timeout = aiohttp.ClientTimeout(total=settings.http_timeout)
        self._session: aiohttp.ClientSession | None = None
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_timeout,
            half_open_max_calls=settings.circuit_half_open_max_calls,
        )
        self._signer = signer or RequestSigner()
        self._max_attempts = max(1, settings.retry_max_attempts)
        self._retry_base_delay = settings.retry_base_delay
        self._retry_max_delay = settings.retry_max_delay

        logger.info(
            "Gateway client initialized",
            base_url=settings.effective_base_url,
            merchant=mask_merchant_id(self._merchant_id),
            key=mask_api_key(self._api_key_id),
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the circuit breaker instance."""
        return self._circuit_breaker

    @property
    def host(self) -> str:
        """Host value that is signed and sent."""
        return self._host

    async def __aenter__(self) -> "GatewayClient":
        """Enter async context."""
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        await self.close()

    async def close(self) -> None:
        """Close the underlying session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists."""
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def build_target(self, path: str, params: Mapping[str, Any] | None = None) -> str:
        """Request target (path plus query) as it is signed and sent."""
        if not path.startswith("/"):
            path = f"/{path}"
        target = f"{self._path_prefix}{path}"
        if params:
            query = urlencode({key: value for key, value in params.items() if value is not None})
            if query:
                separator = "&" if "?" in target else "?"
                target = f"{target}{separator}{query}"
        return target

    async def request(
        self,
        method: str,
        path: str,
        body: Body = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Send a signed request and return the decoded JSON response.

        Args:
            method: HTTP method
            path: API path relative to the base URL
            body: JSON-serializable body, or a pre-serialized str/bytes
            params: Query parameters (None values are dropped)

        Returns:
            Decoded JSON, raw text for non-JSON bodies, or None when empty

        Raises:
            SigningError: If the request cannot be signed (never retried)
            CircuitBreakerOpen: If the circuit breaker is open
            GatewayClientError: On transport failure or non-2xx response
        """
        method = method.upper()
        target = self.build_target(path, params)
        payload = serialize_body(body) if method in BODY_METHODS else None
        backoff = ExponentialBackoff(
            base_delay=self._retry_base_delay,
            max_delay=self._retry_max_delay,
        )

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._send(method, target, payload)
            except GatewayClientError as exc:
                if attempt >= self._max_attempts or not exc.retryable:
                    raise
                delay = backoff.next_delay()
                logger.warning(
                    "Retrying gateway request",
                    method=method,
                    path=target,
                    attempt=attempt,
                    status=exc.status_code,
                    delay=round(delay, 3),
                )
                await asyncio.sleep(delay)

    async def _send(self, method: str, target: str, payload: bytes | None) -> Any:
        """Sign and send one attempt."""
        signed = self._signer.sign(
            SigningRequest(
                merchant_id=self._merchant_id,
                api_key_id=self._api_key_id,
                shared_secret=self._shared_secret,
                method=method,
                path=target,
                host=self._host,
                body=payload,
            )
        )
        headers = signed.to_headers()
        headers["accept"] = ACCEPT

        logger.debug(
            "Sending signed gateway request",
            method=method,
            path=target,
            has_digest=signed.digest is not None,
        )

        self._circuit_breaker.ensure_can_execute()
        session = self._ensure_session()
        url = URL(f"{self._origin}{target}", encoded=True)
        try:
            # Signed headers are bound to this target; redirects are not followed
            response = await session.request(
                method, url, data=payload, headers=headers, allow_redirects=False
            )
            async with response:
                text = await response.text()
        except asyncio.CancelledError:
            self._circuit_breaker.release()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self._circuit_breaker.record_failure()
            raise GatewayClientError(f"Request failed: {exc!r}") from exc

        # 4xx answers are the caller's problem, not a gateway outage
        if response.status < 500:
            self._circuit_breaker.record_success()
        else:
            self._circuit_breaker.record_failure()

        return self._handle_response(method, target, response.status, text)

    @staticmethod
    def _handle_response(method: str, target: str, status: int, text: str) -> Any:
        payload: Any = None
        if text:
            try:
                payload = json.loads(text)
            except ValueError:
                payload = text

        if 200 <= status < 300:
            return payload

        parsed = parse_gateway_error(status, payload, fallback_message=text[:200] or None)
        logger.warning(
            "Gateway returned error",
            method=method,
            path=target,
            status=status,
            code=parsed.code,
        )
        raise GatewayClientError(
            f"Gateway returned {status}: {parsed.message}",
            status_code=status,
            parsed=parsed,
        )

    # === Convenience methods ===

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Body = None) -> Any:
        return await self.request("POST", path, body=body)

    async def put(self, path: str, body: Body = None) -> Any:
        return await self.request("PUT", path, body=body)

    async def patch(self, path: str, body: Body = None) -> Any:
        return await self.request("PATCH", path, body=body)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
