"""OAuth 2.0 device authorization grant against a Readeck server.

One :class:`DeviceAuthClient` drives one login attempt through an explicit
state machine::

    IDLE -> CLIENT_REGISTERED -> DEVICE_AUTHORIZED -> POLLING
         -> AUTHORIZED | DENIED | EXPIRED | FAILED | CANCELLED

Polling sleeps between token requests; cancellation, slow-down backoff and the
``expires_in`` ceiling are each checked in exactly one place of the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

import httpx
from pydantic import ValidationError

from readeck_sync.adapters.readeck.client import ReadeckClientError
from readeck_sync.adapters.readeck.models import (
    AccessToken,
    DeviceAuthorization,
    OAuthClient,
    OAuthErrorResponse,
)
from readeck_sync.domain.exceptions import (
    AuthorizationRejectedError,
    AuthorizationTimedOutError,
    AuthServerError,
    InvalidStateTransitionError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

SLOW_DOWN_INCREMENT_SECONDS = 5


class DeviceAuthTransport(Protocol):
    async def register_oauth_client(self, client_name: str) -> OAuthClient: ...

    async def authorize_device(self, client_id: str, scope: str) -> DeviceAuthorization: ...

    async def request_device_token(self, client_id: str, device_code: str) -> httpx.Response: ...

    async def revoke_token(self, token: str) -> None: ...


class DeviceFlowState(Enum):
    IDLE = "idle"
    CLIENT_REGISTERED = "client_registered"
    DEVICE_AUTHORIZED = "device_authorized"
    POLLING = "polling"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        DeviceFlowState.AUTHORIZED,
        DeviceFlowState.DENIED,
        DeviceFlowState.EXPIRED,
        DeviceFlowState.FAILED,
        DeviceFlowState.CANCELLED,
    }
)

_ALLOWED_TRANSITIONS: dict[DeviceFlowState, frozenset[DeviceFlowState]] = {
    DeviceFlowState.IDLE: frozenset(
        {
            DeviceFlowState.CLIENT_REGISTERED,
            # A device code obtained elsewhere can be polled directly
            DeviceFlowState.POLLING,
            DeviceFlowState.FAILED,
            DeviceFlowState.CANCELLED,
        }
    ),
    DeviceFlowState.CLIENT_REGISTERED: frozenset(
        {DeviceFlowState.DEVICE_AUTHORIZED, DeviceFlowState.FAILED, DeviceFlowState.CANCELLED}
    ),
    DeviceFlowState.DEVICE_AUTHORIZED: frozenset(
        {DeviceFlowState.POLLING, DeviceFlowState.FAILED, DeviceFlowState.CANCELLED}
    ),
    DeviceFlowState.POLLING: frozenset({DeviceFlowState.POLLING} | _TERMINAL_STATES),
}


class PollOutcome(Enum):
    TOKEN = "token"
    PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    DENIED = "access_denied"
    EXPIRED = "expired_token"
    ERROR = "error"


_OUTCOME_STATES: dict[PollOutcome, DeviceFlowState] = {
    PollOutcome.TOKEN: DeviceFlowState.AUTHORIZED,
    PollOutcome.PENDING: DeviceFlowState.POLLING,
    PollOutcome.SLOW_DOWN: DeviceFlowState.POLLING,
    PollOutcome.DENIED: DeviceFlowState.DENIED,
    PollOutcome.EXPIRED: DeviceFlowState.EXPIRED,
    PollOutcome.ERROR: DeviceFlowState.FAILED,
}


def state_after_poll(outcome: PollOutcome) -> DeviceFlowState:
    """Transition function of the polling state."""
    return _OUTCOME_STATES[outcome]


@dataclass(frozen=True)
class TokenPoll:
    outcome: PollOutcome
    status: int
    token: AccessToken | None = None
    reason: str = ""


def classify_token_response(response: httpx.Response) -> TokenPoll:
    """Map one token endpoint answer onto a :class:`PollOutcome`."""
    status = response.status_code
    if response.is_success:
        try:
            token = AccessToken.model_validate(response.json())
        except (ValueError, ValidationError):
            return TokenPoll(PollOutcome.ERROR, status, reason="malformed token response")
        return TokenPoll(PollOutcome.TOKEN, status, token=token)

    try:
        error = OAuthErrorResponse.model_validate(response.json())
    except (ValueError, ValidationError):
        error = OAuthErrorResponse()

    try:
        outcome = PollOutcome(error.error)
    except ValueError:
        outcome = PollOutcome.ERROR
    if outcome is PollOutcome.TOKEN:
        outcome = PollOutcome.ERROR
    return TokenPoll(outcome, status, reason=error.error_description or error.error)


@dataclass(frozen=True)
class DeviceFlowResult:
    """Terminal outcome of polling that did not raise."""

    state: DeviceFlowState
    token: AccessToken | None
    interval: int
    attempts: int

    @property
    def cancelled(self) -> bool:
        return self.state is DeviceFlowState.CANCELLED


class DeviceAuthClient:
    """Three-step device code exchange, cancellable and bounded by ``expires_in``."""

    def __init__(
        self,
        transport: DeviceAuthTransport,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        slow_down_increment: int = SLOW_DOWN_INCREMENT_SECONDS,
    ) -> None:
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._slow_down_increment = slow_down_increment
        self.state = DeviceFlowState.IDLE

    def _transition(self, new_state: DeviceFlowState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidStateTransitionError(
                f"Cannot move device login from {self.state.value} to {new_state.value}",
                {"from": self.state.value, "to": new_state.value},
            )
        if new_state is not self.state:
            logger.debug(
                "device_flow_transition",
                extra={"from_state": self.state.value, "to_state": new_state.value},
            )
        self.state = new_state

    def _fail(self, message: str, status: int | None) -> AuthServerError:
        self._transition(DeviceFlowState.FAILED)
        return AuthServerError(message, status)

    async def register_client(self, client_name: str) -> str:
        """Register an OAuth client and return its ``client_id``."""
        try:
            client = await self._transport.register_oauth_client(client_name)
        except httpx.HTTPStatusError as exc:
            raise self._fail(
                f"Client registration failed: HTTP {exc.response.status_code}",
                exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ReadeckClientError, ValidationError) as exc:
            raise self._fail(f"Client registration failed: {exc}", None) from exc

        self._transition(DeviceFlowState.CLIENT_REGISTERED)
        logger.info("device_flow_client_registered", extra={"client_id": client.client_id})
        return client.client_id

    async def start_device_authorization(
        self, client_id: str, scope: str = "bookmarks:read"
    ) -> DeviceAuthorization:
        """Obtain the device and user codes.

        Older Readeck releases have no device endpoint and answer 404; the
        resulting :class:`AuthServerError` tells the caller to fall back to
        the password grant.
        """
        try:
            device = await self._transport.authorize_device(client_id, scope)
        except httpx.HTTPStatusError as exc:
            raise self._fail(
                f"Device authorization failed: HTTP {exc.response.status_code}",
                exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ReadeckClientError, ValidationError) as exc:
            raise self._fail(f"Device authorization failed: {exc}", None) from exc

        self._transition(DeviceFlowState.DEVICE_AUTHORIZED)
        logger.info(
            "device_flow_authorization_started",
            extra={
                "verification_uri": device.verification_uri,
                "expires_in": device.expires_in,
                "interval": device.interval,
            },
        )
        return device

    async def poll_for_token(
        self,
        client_id: str,
        device_code: str,
        interval: int,
        expires_in: int,
        cancel_event: asyncio.Event | None = None,
    ) -> DeviceFlowResult:
        """Poll the token endpoint until the user decides or the code expires.

        Returns a result in state AUTHORIZED (with the token) or CANCELLED
        (without one; cancellation is not an error).

        Raises:
            AuthorizationRejectedError: The user denied access or the code expired.
            AuthorizationTimedOutError: ``expires_in`` elapsed while polling.
            AuthServerError: Any other failure answer or transport error.
        """
        self._transition(DeviceFlowState.POLLING)
        cancel_event = cancel_event or asyncio.Event()
        started = self._clock()
        current_interval = max(0, interval)
        attempts = 0

        while True:
            if cancel_event.is_set():
                return self._cancelled(current_interval, attempts)

            remaining = expires_in - (self._clock() - started)
            if remaining < 0:
                raise self._timed_out(expires_in, attempts)

            attempts += 1
            try:
                async with asyncio.timeout(remaining):
                    response = await self._transport.request_device_token(client_id, device_code)
            except TimeoutError as exc:
                raise self._timed_out(expires_in, attempts) from exc
            except (httpx.HTTPError, ReadeckClientError) as exc:
                raise self._fail(f"Token request failed: {exc}", None) from exc

            poll = classify_token_response(response)
            self._transition(state_after_poll(poll.outcome))

            if poll.outcome is PollOutcome.TOKEN and poll.token is not None:
                logger.info("device_flow_authorized", extra={"attempts": attempts})
                return DeviceFlowResult(self.state, poll.token, current_interval, attempts)
            if poll.outcome in (PollOutcome.DENIED, PollOutcome.EXPIRED):
                logger.warning(
                    "device_flow_rejected",
                    extra={"reason": poll.outcome.value, "attempts": attempts},
                )
                raise AuthorizationRejectedError(poll.outcome.value)
            if poll.outcome is PollOutcome.ERROR:
                raise AuthServerError(
                    f"Token endpoint answered HTTP {poll.status}: {poll.reason or 'no detail'}",
                    poll.status,
                )
            if poll.outcome is PollOutcome.SLOW_DOWN:
                current_interval += self._slow_down_increment
                logger.debug("device_flow_slow_down", extra={"interval": current_interval})

            if cancel_event.is_set():
                return self._cancelled(current_interval, attempts)
            await self._sleep(current_interval)

    def _cancelled(self, interval: int, attempts: int) -> DeviceFlowResult:
        self._transition(DeviceFlowState.CANCELLED)
        logger.info("device_flow_cancelled", extra={"attempts": attempts})
        return DeviceFlowResult(self.state, None, interval, attempts)

    def _timed_out(self, expires_in: int, attempts: int) -> AuthorizationTimedOutError:
        self._transition(DeviceFlowState.EXPIRED)
        logger.warning(
            "device_flow_timed_out", extra={"expires_in": expires_in, "attempts": attempts}
        )
        return AuthorizationTimedOutError(
            f"Device code expired after {expires_in} seconds", {"attempts": attempts}
        )

    async def revoke(self, token: str) -> bool:
        """Best-effort token revocation; failures are logged, never raised."""
        try:
            await self._transport.revoke_token(token)
        except (httpx.HTTPError, ReadeckClientError) as exc:
            logger.warning("device_flow_revoke_failed", extra={"error": str(exc)})
            return False
        return True
