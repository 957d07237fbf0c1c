"""Pydantic models for the Readeck API."""

from __future__ import annotations

import posixpath
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from readeck_sync.core.time_utils import ensure_datetime


class StatusKind(StrEnum):
    UPDATED = "update"
    DELETED = "delete"


class BookmarkStatusEntry(BaseModel):
    """One row of ``GET /api/bookmarks/sync``."""

    id: str
    changed_at: datetime | None = Field(default=None, alias="time")
    kind: StatusKind = Field(alias="type")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("changed_at", mode="before")
    @classmethod
    def _coerce_time(cls, value: Any) -> datetime | None:
        return ensure_datetime(value)


class BookmarkMetadata(BaseModel):
    """JSON part of a bookmark in a sync multipart response."""

    id: str | None = None
    title: str = ""
    url: str | None = None
    href: str | None = None
    site: str | None = None
    site_name: str | None = None
    description: str | None = None
    lang: str | None = None
    document_type: str | None = None
    created: datetime | None = None
    published: datetime | None = None
    updated: datetime | None = None
    authors: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    is_archived: bool = False
    is_marked: bool = False
    is_deleted: bool = False
    word_count: int | None = None
    reading_time: int | None = None
    read_progress: int | None = None
    resources: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    @field_validator("created", "published", "updated", mode="before")
    @classmethod
    def _coerce_dates(cls, value: Any) -> datetime | None:
        return ensure_datetime(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> str:
        return str(value or "")

    @field_validator("authors", "labels", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if not isinstance(value, (list, tuple)):
            msg = "Expected a list of strings"
            raise ValueError(msg)
        return [str(item) for item in value]

    @property
    def cover_filename(self) -> str | None:
        """Basename of the article image, as stored next to the note."""
        image = self.resources.get("image")
        if not isinstance(image, dict):
            return None
        src = image.get("src")
        if not src:
            return None
        return posixpath.basename(str(src).split("?", 1)[0]) or None


class Annotation(BaseModel):
    """A highlight made on a bookmark."""

    id: str
    text: str = ""
    created: datetime | None = None
    color: str | None = None
    bookmark_id: str | None = None
    href: str | None = None
    bookmark_url: str | None = None
    bookmark_href: str | None = None
    bookmark_title: str | None = None
    bookmark_site_name: str | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("created", mode="before")
    @classmethod
    def _coerce_created(cls, value: Any) -> datetime | None:
        return ensure_datetime(value)


class OAuthClient(BaseModel):
    """Response of the dynamic client registration endpoint."""

    client_id: str
    client_name: str | None = None
    grant_types: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class DeviceAuthorization(BaseModel):
    """Response of the device authorization endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None = None
    expires_in: int
    interval: int = 5

    model_config = {"extra": "ignore"}


class AccessToken(BaseModel):
    """Successful answer of the token endpoint."""

    access_token: str
    token_type: str = "Bearer"
    scope: str = ""
    id: str | None = None

    model_config = {"extra": "ignore"}


class OAuthErrorResponse(BaseModel):
    """RFC 6749 error body returned by the token endpoint."""

    error: str = ""
    error_description: str | None = None

    model_config = {"extra": "ignore"}


class SyncReport(BaseModel):
    """Result of one reconciliation pass."""

    correlation_id: str = ""
    notes_created: int = 0
    notes_updated: int = 0
    notes_skipped: int = 0
    notes_deleted: int = 0
    images_written: int = 0
    nothing_to_do: bool = False
    checkpoint: str | None = None
    warnings: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def notes_written(self) -> int:
        return self.notes_created + self.notes_updated

    def summary(self) -> str:
        if self.nothing_to_do:
            return "Readeck sync: no new bookmarks found"
        text = (
            f"Readeck sync: {self.notes_created} created, {self.notes_updated} updated, "
            f"{self.notes_skipped} skipped, {self.notes_deleted} deleted"
        )
        if self.warnings:
            text += f" ({len(self.warnings)} warnings)"
        return text
