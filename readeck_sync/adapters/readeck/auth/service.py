"""Login and logout against Readeck, persisting the token in the settings store."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

import httpx

from readeck_sync.adapters.readeck.auth.device_flow import DeviceAuthClient
from readeck_sync.adapters.readeck.client import ReadeckClient, ReadeckClientError
from readeck_sync.adapters.readeck.sync.constants import (
    SETTING_API_TOKEN,
    SETTING_OAUTH_CLIENT_ID,
    SETTING_USERNAME,
)
from readeck_sync.domain.exceptions import AuthServerError, InvalidStateTransitionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from contextlib import AbstractAsyncContextManager

    from readeck_sync.adapters.readeck.models import AccessToken, DeviceAuthorization
    from readeck_sync.adapters.readeck.sync.protocols import ReadeckClientFactory, SettingsStore
    from readeck_sync.config.integrations import ReadeckConfig

logger = logging.getLogger(__name__)


class AuthService:
    """Drives one login attempt at a time.

    ``start_login`` registers a client and returns the code to show to the
    user; ``await_login`` then polls until the user decides. The token is only
    stored once polling succeeds.
    """

    def __init__(
        self,
        config: ReadeckConfig,
        settings_store: SettingsStore,
        *,
        client_factory: ReadeckClientFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._settings = settings_store
        self._client_factory = client_factory or ReadeckClient
        self._sleep = sleep
        self._clock = clock
        self._stack: AsyncExitStack | None = None
        self._flow: DeviceAuthClient | None = None
        self._client_id: str | None = None
        self._device: DeviceAuthorization | None = None
        self._cancel_event = asyncio.Event()

    @property
    def is_logged_in(self) -> bool:
        return bool(self._settings.get(SETTING_API_TOKEN))

    @property
    def login_in_progress(self) -> bool:
        return self._flow is not None

    def _open_client(self, api_token: str = "") -> AbstractAsyncContextManager[Any]:
        return self._client_factory(
            self.config.api_url, api_token, self.config.request_timeout_sec
        )

    async def start_login(self, client_name: str | None = None) -> DeviceAuthorization:
        """Register a client and start a device authorization.

        Raises:
            AuthServerError: Registration or authorization was refused; the
                caller may fall back to :meth:`login_with_password`.
        """
        if self._flow is not None:
            raise InvalidStateTransitionError("A login is already in progress")

        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._open_client())
            flow = DeviceAuthClient(client, sleep=self._sleep, clock=self._clock)
            client_id = await flow.register_client(client_name or self.config.client_name)
            device = await flow.start_device_authorization(client_id, self.config.oauth_scope)
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._flow = flow
        self._client_id = client_id
        self._device = device
        self._cancel_event = asyncio.Event()
        return device

    async def await_login(self) -> AccessToken | None:
        """Poll for the token of the pending login; None means it was cancelled."""
        if self._flow is None or self._device is None or self._client_id is None:
            raise InvalidStateTransitionError("No login in progress; call start_login first")

        try:
            result = await self._flow.poll_for_token(
                self._client_id,
                self._device.device_code,
                self._device.interval,
                self._device.expires_in,
                self._cancel_event,
            )
            if result.token is None:
                logger.info("readeck_login_cancelled")
                return None

            self._settings.set(SETTING_API_TOKEN, result.token.access_token)
            self._settings.set(SETTING_OAUTH_CLIENT_ID, self._client_id)
            self._settings.save()
            logger.info("readeck_login_succeeded", extra={"attempts": result.attempts})
            return result.token
        finally:
            await self._finish_attempt()

    def cancel_login(self) -> None:
        self._cancel_event.set()

    async def _finish_attempt(self) -> None:
        stack, self._stack = self._stack, None
        self._flow = None
        self._device = None
        self._client_id = None
        if stack is not None:
            await stack.aclose()

    async def login_with_password(self, username: str, password: str) -> str:
        """Password grant for Readeck servers without the device flow."""
        async with self._open_client() as client:
            try:
                token = await client.get_token(username, password, self.config.client_name)
            except httpx.HTTPStatusError as exc:
                raise AuthServerError(
                    f"Password login failed: HTTP {exc.response.status_code}",
                    exc.response.status_code,
                ) from exc
            except (httpx.HTTPError, ReadeckClientError) as exc:
                raise AuthServerError(f"Password login failed: {exc}") from exc

        self._settings.set(SETTING_API_TOKEN, token)
        self._settings.set(SETTING_USERNAME, username)
        self._settings.save()
        logger.info("readeck_password_login_succeeded", extra={"username": username})
        return token

    async def logout(self) -> bool:
        """Forget the stored token, revoking it first when possible.

        Returns:
            Whether the server confirmed the revocation
        """
        token = str(self._settings.get(SETTING_API_TOKEN) or "")
        revoked = False
        if token and self.config.api_url:
            try:
                async with self._open_client(token) as client:
                    revoked = await DeviceAuthClient(client).revoke(token)
            except (httpx.HTTPError, ReadeckClientError) as exc:
                logger.warning("readeck_logout_revoke_failed", extra={"error": str(exc)})

        self._settings.delete(SETTING_API_TOKEN)
        self._settings.delete(SETTING_OAUTH_CLIENT_ID)
        self._settings.delete(SETTING_USERNAME)
        self._settings.save()
        logger.info("readeck_logged_out", extra={"revoked": revoked})
        return revoked
