"""Readeck API client."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from readeck_sync import __version__
from readeck_sync.adapters.readeck.models import (
    Annotation,
    DeviceAuthorization,
    OAuthClient,
)
from readeck_sync.core.time_utils import format_checkpoint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from datetime import datetime
    from typing import Self

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
PASSWORD_TOKEN_ROLES = ["scoped_bookmarks_r"]
CLIENT_URI = "https://readeck.org"


class ReadeckClientError(Exception):
    """Base exception for Readeck client errors."""


@dataclass(frozen=True)
class MultipartPayload:
    """Raw multipart answer of the sync endpoint, not yet demultiplexed."""

    content_type: str
    body: bytes


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with up to ``jitter`` extra delay per attempt."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        return delay + delay * self.jitter * random.random()


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_transient(exc: httpx.HTTPError) -> bool:
    """Timeouts, refused connections and 408/429/5xx answers are worth another try."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> T:
    """Await ``func`` until it succeeds or ``policy`` gives up.

    Raises:
        ReadeckClientError: A transient failure outlived every retry.
        httpx.HTTPError: Any other HTTP failure, unchanged.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except httpx.HTTPError as exc:
            if not is_transient(exc):
                raise
            if attempt >= policy.max_retries:
                logger.error(
                    "readeck_retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": attempt + 1,
                        "error": str(exc),
                    },
                )
                raise ReadeckClientError(
                    f"{operation_name} failed after {attempt + 1} attempts: {exc}"
                ) from exc
            delay = policy.delay(attempt)
            attempt += 1
            logger.warning(
                "readeck_retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "delay_seconds": round(delay, 2),
                    "error": str(exc),
                },
            )
            await asyncio.sleep(delay)


class ReadeckClient:
    """Async HTTP client for the Readeck API."""

    # Default per-endpoint timeouts (seconds)
    DEFAULT_TIMEOUTS: dict[str, float] = {
        "get_bookmarks_status": 30.0,
        "fetch_bookmarks_multipart": 120.0,  # Carries images for a whole batch
        "get_bookmark_annotations": 15.0,
        "oauth": 15.0,
        "auth": 15.0,
    }

    def __init__(
        self,
        api_url: str,
        api_token: str = "",
        timeout: float = 30.0,
        *,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        endpoint_timeouts: dict[str, float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Readeck client.

        Args:
            api_url: Base URL of the Readeck instance (e.g., https://readeck.example.com)
            api_token: Bearer token; empty while logging in
            timeout: Default request timeout in seconds
            max_retries: Maximum number of retry attempts for transient failures
            retry_base_delay: Base delay between retries in seconds
            retry_max_delay: Maximum delay between retries in seconds
            endpoint_timeouts: Custom per-endpoint timeouts (overrides defaults)
            transport: Optional httpx transport, used by tests
        """
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self.retry = RetryPolicy(
            max_retries=max_retries, base_delay=retry_base_delay, max_delay=retry_max_delay
        )
        self.endpoint_timeouts = {**self.DEFAULT_TIMEOUTS}
        if endpoint_timeouts:
            self.endpoint_timeouts.update(endpoint_timeouts)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def get_timeout(self, endpoint: str) -> float:
        """Get timeout for a specific endpoint.

        Args:
            endpoint: Name of the endpoint (e.g., 'get_bookmarks_status')

        Returns:
            Timeout in seconds
        """
        return self.endpoint_timeouts.get(endpoint, self.timeout)

    async def __aenter__(self) -> Self:
        """Enter async context."""
        headers = {
            "Accept": "application/json",
            "User-Agent": f"readeck-vault-sync/{__version__}",
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        self._client = httpx.AsyncClient(
            base_url=f"{self.api_url}/api",
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client."""
        if self._client is None:
            raise ReadeckClientError("Client not initialized. Use async context manager.")
        return self._client

    async def _with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        operation_name: str,
    ) -> T:
        return await retry_with_backoff(func, operation_name=operation_name, policy=self.retry)

    async def get_bookmarks_status(self, since: datetime | None = None) -> list[dict[str, Any]]:
        """List bookmarks created, changed or deleted since ``since``.

        Args:
            since: Last successful sync; None lists every bookmark

        Returns:
            Raw status rows (``id``, ``time``, ``type``)
        """
        params: dict[str, str] = {}
        if since is not None:
            params["since"] = format_checkpoint(since)
        timeout = self.get_timeout("get_bookmarks_status")

        async def _fetch() -> list[dict[str, Any]]:
            response = await self.client.get("/bookmarks/sync", params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
            if isinstance(data, dict):
                data = data.get("items", [])
            return [row for row in data if isinstance(row, dict)]

        rows = await self._with_retry(_fetch, "get_bookmarks_status")
        logger.info(
            "readeck_status_fetched",
            extra={"count": len(rows), "since": params.get("since")},
        )
        return rows

    async def fetch_bookmarks_multipart(
        self,
        ids: Sequence[str],
        *,
        markdown: bool,
        resources: bool,
        json_meta: bool,
    ) -> MultipartPayload:
        """Request markdown, resources and metadata of many bookmarks in one call.

        Args:
            ids: Bookmark ids of the batch
            markdown: Include the article as markdown
            resources: Include images referenced by the article
            json_meta: Include the bookmark metadata as JSON

        Returns:
            The undecoded multipart body and its Content-Type
        """
        payload = {
            "id": list(ids),
            "with_markdown": markdown,
            "with_resources": resources,
            "with_json": json_meta,
            "with_html": False,
        }
        timeout = self.get_timeout("fetch_bookmarks_multipart")

        async def _fetch() -> MultipartPayload:
            response = await self.client.post(
                "/bookmarks/sync",
                json=payload,
                headers={"Accept": "multipart/alternative"},
                timeout=timeout,
            )
            response.raise_for_status()
            return MultipartPayload(
                content_type=response.headers.get("content-type", ""),
                body=response.content,
            )

        result = await self._with_retry(_fetch, f"fetch_bookmarks_multipart({len(ids)})")
        logger.debug(
            "readeck_multipart_fetched",
            extra={"ids": len(ids), "bytes": len(result.body), "content_type": result.content_type},
        )
        return result

    async def get_bookmark_annotations(self, bookmark_id: str) -> list[Annotation]:
        """Get the annotations of a bookmark, oldest first."""
        timeout = self.get_timeout("get_bookmark_annotations")

        async def _fetch() -> list[Annotation]:
            response = await self.client.get(
                f"/bookmarks/{bookmark_id}/annotations", timeout=timeout
            )
            response.raise_for_status()
            data = response.json() or []
            return [Annotation.model_validate(item) for item in data]

        return await self._with_retry(_fetch, f"get_bookmark_annotations({bookmark_id})")

    async def register_oauth_client(self, client_name: str) -> OAuthClient:
        """Register a public OAuth client allowed to use the device grant."""
        response = await self.client.post(
            "/oauth/client",
            json={
                "client_name": client_name,
                "client_uri": CLIENT_URI,
                "software_id": "readeck-vault-sync",
                "software_version": __version__,
                "grant_types": [DEVICE_CODE_GRANT],
            },
            timeout=self.get_timeout("oauth"),
        )
        response.raise_for_status()
        return OAuthClient.model_validate(response.json())

    async def authorize_device(self, client_id: str, scope: str) -> DeviceAuthorization:
        """Start a device authorization and get the user code to display."""
        response = await self.client.post(
            "/oauth/device",
            data={"client_id": client_id, "scope": scope},
            timeout=self.get_timeout("oauth"),
        )
        response.raise_for_status()
        return DeviceAuthorization.model_validate(response.json())

    async def request_device_token(
        self, client_id: str, device_code: str, *, timeout: float | None = None
    ) -> httpx.Response:
        """Ask the token endpoint once. Non-2xx answers are returned, not raised."""
        return await self.client.post(
            "/oauth/token",
            data={
                "grant_type": DEVICE_CODE_GRANT,
                "client_id": client_id,
                "device_code": device_code,
            },
            timeout=timeout if timeout is not None else self.get_timeout("oauth"),
        )

    async def revoke_token(self, token: str) -> None:
        """Revoke an access token."""
        response = await self.client.post(
            "/oauth/revoke",
            data={"token": token},
            timeout=self.get_timeout("oauth"),
        )
        response.raise_for_status()

    async def get_token(self, username: str, password: str, application: str) -> str:
        """Password grant used by Readeck versions without the device flow."""
        response = await self.client.post(
            "/auth",
            json={
                "username": username,
                "password": password,
                "application": application,
                "roles": PASSWORD_TOKEN_ROLES,
            },
            timeout=self.get_timeout("auth"),
        )
        response.raise_for_status()
        token = response.json().get("token")
        if not token:
            raise ReadeckClientError("Readeck did not return a token")
        return str(token)
