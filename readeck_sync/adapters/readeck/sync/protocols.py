"""Protocol definitions (ports) for Readeck sync.

Keeping these as Protocols isolates the sync orchestration from the concrete
HTTP client, the note storage and the credential storage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from readeck_sync.adapters.readeck.client import MultipartPayload
    from readeck_sync.adapters.readeck.models import Annotation


class ReadeckClientProtocol(Protocol):
    async def get_bookmarks_status(self, since: datetime | None = None) -> list[dict[str, Any]]: ...

    async def fetch_bookmarks_multipart(
        self,
        ids: Sequence[str],
        *,
        markdown: bool,
        resources: bool,
        json_meta: bool,
    ) -> MultipartPayload: ...

    async def get_bookmark_annotations(self, bookmark_id: str) -> list[Annotation]: ...


class ReadeckClientFactory(Protocol):
    def __call__(
        self, api_url: str, api_token: str, timeout: float
    ) -> AbstractAsyncContextManager[Any]: ...


class Vault(Protocol):
    """Note storage addressed by ``/``-separated paths relative to its root."""

    def exists(self, path: str) -> bool: ...

    def create_folder(self, path: str) -> None: ...

    def create_file(self, path: str, data: str | bytes) -> None: ...

    def modify_file(self, path: str, data: str | bytes) -> None: ...

    def read_file(self, path: str) -> str: ...

    def delete_folder(self, path: str, recursive: bool = True) -> None: ...


class SettingsStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def save(self) -> None: ...


class Notifier(Protocol):
    def __call__(self, message: str) -> None: ...
