"""Tests for the OAuth device authorization state machine.

Covers:
- pending answers keep polling at the configured interval
- slow_down grows the interval monotonically until the code expires
- denial, server-side expiry and unexpected statuses
- cancellation before a request and between polls
- client registration and device authorization failures
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from readeck_sync.adapters.readeck.auth.device_flow import (
    DeviceAuthClient,
    DeviceFlowState,
    PollOutcome,
    classify_token_response,
    state_after_poll,
)
from readeck_sync.adapters.readeck.models import DeviceAuthorization, OAuthClient
from readeck_sync.domain.exceptions import (
    AuthorizationRejectedError,
    AuthorizationTimedOutError,
    AuthServerError,
    InvalidStateTransitionError,
)

TOKEN = {"access_token": "tok-123", "token_type": "Bearer", "scope": "bookmarks:read"}
PENDING = (400, {"error": "authorization_pending"})
SLOW_DOWN = (400, {"error": "slow_down"})


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep: Any = None

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


class ScriptedAuthServer:
    """Answers token requests from a script; the last answer repeats forever."""

    def __init__(self, *answers: tuple[int, Any]) -> None:
        self.answers = list(answers)
        self.token_requests = 0
        self.revoked: list[str] = []
        self.register_error: Exception | None = None
        self.device_error: Exception | None = None
        self.revoke_error: Exception | None = None

    async def register_oauth_client(self, client_name: str) -> OAuthClient:
        if self.register_error:
            raise self.register_error
        return OAuthClient(client_id="client-1", client_name=client_name)

    async def authorize_device(self, client_id: str, scope: str) -> DeviceAuthorization:
        if self.device_error:
            raise self.device_error
        return DeviceAuthorization(
            device_code="dev-1",
            user_code="ABCD-EFGH",
            verification_uri="https://readeck.example.com/device",
            expires_in=300,
            interval=5,
        )

    async def request_device_token(self, client_id: str, device_code: str) -> httpx.Response:
        self.token_requests += 1
        status, payload = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(payload, dict):
            return httpx.Response(status, json=payload)
        return httpx.Response(status, text=str(payload))

    async def revoke_token(self, token: str) -> None:
        if self.revoke_error:
            raise self.revoke_error
        self.revoked.append(token)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://readeck.example.com/api/oauth/device")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def _client(server: ScriptedAuthServer, clock: FakeClock) -> DeviceAuthClient:
    return DeviceAuthClient(server, sleep=clock.sleep, clock=clock)


class TestClassifyTokenResponse:
    def test_success_with_token(self) -> None:
        poll = classify_token_response(httpx.Response(200, json=TOKEN))
        assert poll.outcome is PollOutcome.TOKEN
        assert poll.token is not None
        assert poll.token.access_token == "tok-123"

    def test_success_without_token_is_an_error(self) -> None:
        poll = classify_token_response(httpx.Response(200, json={"nope": True}))
        assert poll.outcome is PollOutcome.ERROR

    @pytest.mark.parametrize(
        ("error", "outcome"),
        [
            ("authorization_pending", PollOutcome.PENDING),
            ("slow_down", PollOutcome.SLOW_DOWN),
            ("access_denied", PollOutcome.DENIED),
            ("expired_token", PollOutcome.EXPIRED),
            ("invalid_grant", PollOutcome.ERROR),
            ("token", PollOutcome.ERROR),
        ],
    )
    def test_error_codes(self, error: str, outcome: PollOutcome) -> None:
        poll = classify_token_response(httpx.Response(400, json={"error": error}))
        assert poll.outcome is outcome

    def test_non_json_failure(self) -> None:
        poll = classify_token_response(httpx.Response(502, text="Bad Gateway"))
        assert poll.outcome is PollOutcome.ERROR
        assert poll.status == 502

    def test_transition_function(self) -> None:
        assert state_after_poll(PollOutcome.PENDING) is DeviceFlowState.POLLING
        assert state_after_poll(PollOutcome.SLOW_DOWN) is DeviceFlowState.POLLING
        assert state_after_poll(PollOutcome.TOKEN) is DeviceFlowState.AUTHORIZED
        assert state_after_poll(PollOutcome.DENIED) is DeviceFlowState.DENIED
        assert state_after_poll(PollOutcome.EXPIRED) is DeviceFlowState.EXPIRED
        assert state_after_poll(PollOutcome.ERROR) is DeviceFlowState.FAILED


class TestPollForToken:
    @pytest.mark.asyncio
    async def test_pending_three_times_then_token(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer(PENDING, PENDING, PENDING, (200, TOKEN))
        client = _client(server, clock)

        result = await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert result.token is not None
        assert result.token.access_token == "tok-123"
        assert result.state is DeviceFlowState.AUTHORIZED
        assert clock.sleeps == [5, 5, 5]
        assert server.token_requests == 4
        assert client.state is DeviceFlowState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_slow_down_grows_interval_until_timeout(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer(SLOW_DOWN)
        client = _client(server, clock)

        with pytest.raises(AuthorizationTimedOutError):
            await client.poll_for_token("client-1", "dev-1", 5, 60)

        assert clock.sleeps == [10, 15, 20, 25]
        assert all(later > earlier for earlier, later in zip(clock.sleeps, clock.sleeps[1:]))
        assert server.token_requests == 4
        assert client.state is DeviceFlowState.EXPIRED

    @pytest.mark.asyncio
    async def test_slow_down_is_never_reset_by_pending(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer(SLOW_DOWN, PENDING, PENDING, (200, TOKEN))
        client = _client(server, clock)

        result = await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert clock.sleeps == [10, 10, 10]
        assert result.interval == 10

    @pytest.mark.asyncio
    async def test_access_denied(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer(PENDING, (400, {"error": "access_denied"}))
        client = _client(server, clock)

        with pytest.raises(AuthorizationRejectedError) as exc_info:
            await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert exc_info.value.reason == "access_denied"
        assert client.state is DeviceFlowState.DENIED
        assert clock.sleeps == [5]

    @pytest.mark.asyncio
    async def test_expired_token(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer((400, {"error": "expired_token"}))
        client = _client(server, clock)

        with pytest.raises(AuthorizationRejectedError) as exc_info:
            await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert exc_info.value.reason == "expired_token"
        assert client.state is DeviceFlowState.EXPIRED
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_unexpected_status(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer((500, "internal error"))
        client = _client(server, clock)

        with pytest.raises(AuthServerError) as exc_info:
            await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert exc_info.value.status == 500
        assert client.state is DeviceFlowState.FAILED

    @pytest.mark.asyncio
    async def test_cancel_between_polls_stops_requests(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer(PENDING)
        client = _client(server, clock)
        cancel = asyncio.Event()
        clock.on_sleep = lambda count: cancel.set() if count == 2 else None

        result = await client.poll_for_token("client-1", "dev-1", 5, 300, cancel)

        assert result.cancelled
        assert result.token is None
        assert client.state is DeviceFlowState.CANCELLED
        assert server.token_requests == 2

    @pytest.mark.asyncio
    async def test_cancel_before_first_request(self) -> None:
        clock = FakeClock()
        server = ScriptedAuthServer((200, TOKEN))
        client = _client(server, clock)
        cancel = asyncio.Event()
        cancel.set()

        result = await client.poll_for_token("client-1", "dev-1", 5, 300, cancel)

        assert result.state is DeviceFlowState.CANCELLED
        assert server.token_requests == 0

    @pytest.mark.asyncio
    async def test_in_flight_request_is_bounded_by_expiry(self) -> None:
        class HangingServer(ScriptedAuthServer):
            async def request_device_token(
                self, client_id: str, device_code: str
            ) -> httpx.Response:
                self.token_requests += 1
                await asyncio.sleep(10)
                return httpx.Response(200, json=TOKEN)

        clock = FakeClock()
        client = _client(HangingServer(), clock)

        with pytest.raises(AuthorizationTimedOutError):
            await client.poll_for_token("client-1", "dev-1", 5, 0.05)  # type: ignore[arg-type]

        assert client.state is DeviceFlowState.EXPIRED

    @pytest.mark.asyncio
    async def test_transport_error_fails_attempt(self) -> None:
        class BrokenServer(ScriptedAuthServer):
            async def request_device_token(
                self, client_id: str, device_code: str
            ) -> httpx.Response:
                raise httpx.ConnectError("connection refused")

        clock = FakeClock()
        client = _client(BrokenServer(), clock)

        with pytest.raises(AuthServerError) as exc_info:
            await client.poll_for_token("client-1", "dev-1", 5, 300)

        assert exc_info.value.status is None
        assert client.state is DeviceFlowState.FAILED

    @pytest.mark.asyncio
    async def test_terminal_state_cannot_poll_again(self) -> None:
        clock = FakeClock()
        client = _client(ScriptedAuthServer((200, TOKEN)), clock)
        await client.poll_for_token("client-1", "dev-1", 5, 300)

        with pytest.raises(InvalidStateTransitionError):
            await client.poll_for_token("client-1", "dev-1", 5, 300)


class TestRegistrationAndAuthorization:
    @pytest.mark.asyncio
    async def test_full_happy_path_walks_every_state(self) -> None:
        clock = FakeClock()
        client = _client(ScriptedAuthServer((200, TOKEN)), clock)

        client_id = await client.register_client("vault sync")
        assert client.state is DeviceFlowState.CLIENT_REGISTERED

        device = await client.start_device_authorization(client_id)
        assert client.state is DeviceFlowState.DEVICE_AUTHORIZED
        assert device.user_code == "ABCD-EFGH"

        result = await client.poll_for_token(
            client_id, device.device_code, device.interval, device.expires_in
        )
        assert result.state is DeviceFlowState.AUTHORIZED

    @pytest.mark.asyncio
    async def test_registration_failure(self) -> None:
        server = ScriptedAuthServer()
        server.register_error = _status_error(403)
        client = _client(server, FakeClock())

        with pytest.raises(AuthServerError) as exc_info:
            await client.register_client("vault sync")

        assert exc_info.value.status == 403
        assert client.state is DeviceFlowState.FAILED

    @pytest.mark.asyncio
    async def test_device_endpoint_missing_on_old_servers(self) -> None:
        server = ScriptedAuthServer()
        server.device_error = _status_error(404)
        client = _client(server, FakeClock())
        client_id = await client.register_client("vault sync")

        with pytest.raises(AuthServerError) as exc_info:
            await client.start_device_authorization(client_id)

        assert exc_info.value.status == 404
        assert client.state is DeviceFlowState.FAILED

    @pytest.mark.asyncio
    async def test_authorization_requires_registered_client(self) -> None:
        client = _client(ScriptedAuthServer(), FakeClock())

        with pytest.raises(InvalidStateTransitionError):
            await client.start_device_authorization("client-1")


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_success(self) -> None:
        server = ScriptedAuthServer()
        client = _client(server, FakeClock())

        assert await client.revoke("tok-123") is True
        assert server.revoked == ["tok-123"]

    @pytest.mark.asyncio
    async def test_revoke_failure_is_reported_not_raised(self) -> None:
        server = ScriptedAuthServer()
        server.revoke_error = httpx.ConnectError("offline")
        client = _client(server, FakeClock())

        assert await client.revoke("tok-123") is False
