"""Tests for the signing gateway client and its circuit breaker."""

import asyncio
import itertools
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from conftest import FIXED_TIME, HOST, SHARED_SECRET, make_response

from paysign.auth.signer import RequestSigner
from paysign.auth.verifier import verify_signature
from paysign.client.gateway_client import GatewayClient
from paysign.client.resilience import CircuitBreaker, CircuitState, ExponentialBackoff
from paysign.common.errors import (
    CircuitBreakerOpen,
    ErrorCode,
    GatewayClientError,
    MalformedKeyError,
    MissingFieldError,
)
from paysign.common.settings import Settings


class FakeMonotonic:
    """Manually advanced time source."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    """Tests for circuit breaker functionality."""

    def test_initial_state_closed(self):
        """Circuit breaker starts in closed state."""
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.can_execute() is True

    def test_opens_after_failure_threshold(self):
        """Circuit opens after reaching failure threshold."""
        cb = CircuitBreaker(failure_threshold=3)

        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.can_execute() is False

    def test_half_open_after_recovery_timeout(self):
        """Circuit probes again once the recovery timeout passes."""
        clock = FakeMonotonic()
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=30.0, monotonic=clock)

        cb.record_failure()
        clock.now += 29.0
        assert cb.state == CircuitState.OPEN

        clock.now += 2.0
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.can_execute() is True

    def test_closes_after_successful_probes(self):
        """Answered probes close the circuit."""
        clock = FakeMonotonic()
        cb = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1.0,
            half_open_max_calls=2,
            monotonic=clock,
        )
        cb.record_failure()
        clock.now += 5.0
        assert cb.state == CircuitState.HALF_OPEN

        cb.record_success()
        assert cb.state == CircuitState.HALF_OPEN
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_reopens_on_failed_probe(self):
        """A failed probe reopens the circuit with a fresh timeout."""
        clock = FakeMonotonic()
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=10.0, monotonic=clock)
        cb.record_failure()
        clock.now += 11.0
        assert cb.state == CircuitState.HALF_OPEN

        cb.record_failure()
        assert cb.state == CircuitState.OPEN
        clock.now += 5.0
        assert cb.state == CircuitState.OPEN

    def test_half_open_limits_admitted_probes(self):
        """Probes are counted when admitted, before any of them completes."""
        clock = FakeMonotonic()
        cb = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1.0,
            half_open_max_calls=2,
            monotonic=clock,
        )
        cb.record_failure()
        clock.now += 2.0

        cb.ensure_can_execute()
        cb.ensure_can_execute()
        assert cb.can_execute() is False
        assert cb.stats["probes_in_flight"] == 2
        with pytest.raises(CircuitBreakerOpen):
            cb.ensure_can_execute()

        cb.record_success()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED
        assert cb.stats["probes_in_flight"] == 0

    def test_release_frees_probe_slot(self):
        """An abandoned probe gives its slot back."""
        clock = FakeMonotonic()
        cb = CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=1.0,
            half_open_max_calls=1,
            monotonic=clock,
        )
        cb.record_failure()
        clock.now += 2.0

        cb.ensure_can_execute()
        assert cb.can_execute() is False

        cb.release()
        assert cb.can_execute() is True

    def test_success_resets_failure_count(self):
        """Success resets failure count in closed state."""
        cb = CircuitBreaker(failure_threshold=3)

        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()

        assert cb.state == CircuitState.CLOSED
        assert cb.stats["failure_count"] == 1

    def test_ensure_can_execute_raises_when_open(self):
        """ensure_can_execute raises exception when circuit is open."""
        cb = CircuitBreaker(failure_threshold=1)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            cb.ensure_can_execute()

        assert "open" in str(exc_info.value).lower()


class TestExponentialBackoff:
    """Backoff delays."""

    def test_grows_and_caps(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter=0.0)

        assert [backoff.next_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert backoff.attempt_count == 5

        backoff.reset()
        assert backoff.next_delay() == 1.0

    def test_jitter_bounded(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0, jitter=0.5)

        for expected in (1.0, 2.0, 4.0):
            delay = backoff.next_delay()
            assert expected <= delay <= expected * 1.5


class TestGatewayClientSigning:
    """Requests leave the client signed."""

    @pytest.fixture
    def client(self, settings, fixed_clock):
        """Client with a pinned signing clock."""
        return GatewayClient(settings, signer=RequestSigner(clock=fixed_clock))

    def test_requires_credentials(self):
        """Missing credentials fail at construction."""
        with pytest.raises(MissingFieldError):
            GatewayClient(Settings(_env_file=None, merchant_id="m", api_key_id="k", shared_secret=None))

    def test_host_from_base_url(self, client):
        assert client.host == HOST

    def test_build_target(self, settings):
        """Base URL path prefix and query are part of the target."""
        settings.base_url = "https://apitest.example.com/gateway/"
        client = GatewayClient(settings)

        assert client.build_target("tms/v2/customers") == "/gateway/tms/v2/customers"
        assert (
            client.build_target("/tms/v2/customers", {"offset": 0, "limit": 20, "skip": None})
            == "/gateway/tms/v2/customers?offset=0&limit=20"
        )

    @pytest.mark.asyncio
    async def test_get_is_signed(self, client):
        """GET carries verifiable signature headers and no digest."""
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(200, '{"id": "cust-1"}')

                result = await client.get("/tms/v2/customers", params={"limit": 10})

                assert result == {"id": "cust-1"}
                args, kwargs = mock_request.call_args
                assert args[0] == "GET"
                assert str(args[1]) == f"https://{HOST}/tms/v2/customers?limit=10"
                headers = kwargs["headers"]
                assert "digest" not in headers
                assert kwargs["data"] is None
                assert verify_signature(headers, "GET", "/tms/v2/customers?limit=10", SHARED_SECRET)

    @pytest.mark.asyncio
    async def test_post_sends_digested_bytes(self, client):
        """The bytes sent are exactly the bytes covered by the digest."""
        body = {"customerInformation": {"email": "test@example.com"}}
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(201, '{"id": "cust-2", "status": "CREATED"}')

                result = await client.post("/tms/v2/customers", body=body)

                assert result["status"] == "CREATED"
                _, kwargs = mock_request.call_args
                assert kwargs["data"] == b'{"customerInformation":{"email":"test@example.com"}}'
                assert kwargs["headers"]["content-type"] == "application/json"
                assert verify_signature(
                    kwargs["headers"], "POST", "/tms/v2/customers", SHARED_SECRET, body=kwargs["data"]
                )

    @pytest.mark.asyncio
    async def test_empty_response_returns_none(self, client):
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(204, "")

                assert await client.delete("/tms/v2/customers/abc") is None

    @pytest.mark.asyncio
    async def test_signing_error_never_sends(self, settings):
        """A malformed secret raises before any request is made."""
        settings.shared_secret = "not base64!!"
        client = GatewayClient(settings)

        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                with pytest.raises(MalformedKeyError):
                    await client.get("/tms/v2/customers")

                mock_request.assert_not_called()


class TestGatewayClientErrors:
    """Error mapping, retries and circuit breaking."""

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, settings):
        """4xx responses raise immediately with parsed details."""
        client = GatewayClient(settings)
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(
                    400,
                    '{"status": "INVALID_REQUEST", "reason": "INVALID_DATA", "message": "Bad card",'
                    ' "details": [{"field": "card.number", "reason": "INVALID"}]}',
                )

                with pytest.raises(GatewayClientError) as exc_info:
                    await client.post("/pts/v2/payments", body={})

                assert mock_request.call_count == 1
                error = exc_info.value
                assert error.status_code == 400
                assert error.parsed.code == ErrorCode.INVALID_DATA
                assert error.parsed.field == "card.number"
                assert client.circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_server_error_retried_and_resigned(self, settings):
        """5xx responses are retried with a fresh signature each time."""
        ticks = itertools.count()
        signer = RequestSigner(clock=lambda: FIXED_TIME + timedelta(seconds=next(ticks)))
        client = GatewayClient(settings, signer=signer)

        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.side_effect = [
                    make_response(503, "Service Unavailable"),
                    make_response(201, '{"id": "pay-1"}'),
                ]

                result = await client.post("/pts/v2/payments", body={"amount": "1.00"})

                assert result == {"id": "pay-1"}
                assert mock_request.call_count == 2
                first, second = (call.kwargs["headers"] for call in mock_request.call_args_list)
                assert first["v-c-date"] != second["v-c-date"]
                assert first["signature"] != second["signature"]
                assert first["digest"] == second["digest"]

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self, settings):
        """Connection failures are retried up to the attempt limit."""
        client = GatewayClient(settings)
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.side_effect = aiohttp.ClientConnectionError("connection reset")

                with pytest.raises(GatewayClientError) as exc_info:
                    await client.get("/tms/v2/customers")

                assert mock_request.call_count == settings.retry_max_attempts
                assert exc_info.value.status_code is None
                assert client.circuit_breaker.stats["failure_count"] == settings.retry_max_attempts

    @pytest.mark.asyncio
    async def test_circuit_opens_on_server_errors(self, settings):
        """Circuit opens after repeated 5xx errors and then rejects requests."""
        settings.retry_max_attempts = 1
        cb = CircuitBreaker(failure_threshold=2)
        client = GatewayClient(settings, circuit_breaker=cb)

        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.side_effect = lambda *args, **kwargs: make_response(500, "Server Error")

                for _ in range(2):
                    with pytest.raises(GatewayClientError):
                        await client.get("/tms/v2/customers")

                assert cb.state == CircuitState.OPEN
                with pytest.raises(CircuitBreakerOpen):
                    await client.get("/tms/v2/customers")
                assert mock_request.call_count == 2

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, settings):
        """Non-JSON error bodies still produce a parsed error."""
        client = GatewayClient(settings)
        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(404, "<html>Not Found</html>")

                with pytest.raises(GatewayClientError) as exc_info:
                    await client.get("/tms/v2/customers/missing")

                assert exc_info.value.parsed.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_body_read_timeout_retried(self, settings):
        """A timeout while reading the body is a retryable transport failure."""
        client = GatewayClient(settings)
        response = make_response(200)
        response.text = AsyncMock(side_effect=asyncio.TimeoutError())

        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = response

                with pytest.raises(GatewayClientError) as exc_info:
                    await client.get("/tms/v2/customers")

                assert exc_info.value.status_code is None
                assert mock_request.call_count == settings.retry_max_attempts
                stats = client.circuit_breaker.stats
                assert stats["failure_count"] == settings.retry_max_attempts
                assert stats["success_count"] == 0

    @pytest.mark.asyncio
    async def test_redirects_not_followed(self, settings):
        """Signed headers are never replayed to a redirect target."""
        settings.retry_max_attempts = 1
        client = GatewayClient(settings)

        async with client:
            with patch.object(client._ensure_session(), "request", new_callable=AsyncMock) as mock_request:
                mock_request.return_value = make_response(302, "")

                with pytest.raises(GatewayClientError) as exc_info:
                    await client.get("/tms/v2/customers")

                assert exc_info.value.status_code == 302
                assert mock_request.call_args.kwargs["allow_redirects"] is False
