from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

logger = logging.getLogger(__name__)

DEFAULT_FRONTMATTER_FIELDS: tuple[str, ...] = (
    "title",
    "url",
    "site",
    "created",
    "published",
    "authors",
    "labels",
)


class SyncMode(StrEnum):
    """What a sync pass pulls for every updated bookmark."""

    TEXT = "text"
    TEXT_IMAGES = "textImages"
    TEXT_ANNOTATIONS = "textAnnotations"
    TEXT_IMAGES_ANNOTATIONS = "textImagesAnnotations"
    ANNOTATIONS = "annotations"

    @property
    def wants_markdown(self) -> bool:
        return self is not SyncMode.ANNOTATIONS

    @property
    def wants_images(self) -> bool:
        return self in (SyncMode.TEXT_IMAGES, SyncMode.TEXT_IMAGES_ANNOTATIONS)

    @property
    def wants_annotations(self) -> bool:
        return self in (
            SyncMode.TEXT_ANNOTATIONS,
            SyncMode.TEXT_IMAGES_ANNOTATIONS,
            SyncMode.ANNOTATIONS,
        )


class ReadeckConfig(BaseModel):
    """Readeck integration configuration for bookmark synchronization."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_url: str = Field(default="", validation_alias="READECK_API_URL")
    folder: str = Field(default="Readeck", validation_alias="READECK_FOLDER")
    mode: SyncMode = Field(default=SyncMode.TEXT, validation_alias="READECK_SYNC_MODE")
    overwrite: bool = Field(default=False, validation_alias="READECK_OVERWRITE")
    delete: bool = Field(default=False, validation_alias="READECK_DELETE")
    frontmatter_fields: tuple[str, ...] = Field(
        default=DEFAULT_FRONTMATTER_FIELDS,
        validation_alias="READECK_FRONTMATTER_FIELDS",
        description="Ordered frontmatter keys written into every note",
    )
    sync_batch_size: int = Field(default=100, validation_alias="READECK_SYNC_BATCH_SIZE")
    request_timeout_sec: float = Field(default=30.0, validation_alias="READECK_REQUEST_TIMEOUT_SEC")
    client_name: str = Field(default="readeck-vault-sync", validation_alias="READECK_CLIENT_NAME")
    oauth_scope: str = Field(default="bookmarks:read", validation_alias="READECK_OAUTH_SCOPE")

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_api_url(cls, value: Any) -> str:
        url = str(value or "").strip()
        if url and not url.startswith(("http://", "https://")):
            msg = "Readeck API URL must start with http:// or https://"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("folder", mode="before")
    @classmethod
    def _validate_folder(cls, value: Any) -> str:
        folder = str(value or "Readeck").strip().strip("/")
        if not folder:
            return "Readeck"
        if ".." in folder.split("/") or "\x00" in folder:
            msg = "Readeck folder contains invalid path segments"
            raise ValueError(msg)
        return folder

    @field_validator("mode", mode="before")
    @classmethod
    def _validate_mode(cls, value: Any) -> SyncMode:
        if value in (None, ""):
            return SyncMode.TEXT
        try:
            return SyncMode(str(value).strip())
        except ValueError as exc:
            valid = ", ".join(mode.value for mode in SyncMode)
            msg = f"Invalid sync mode: {value}. Must be one of {valid}"
            raise ValueError(msg) from exc

    @field_validator("frontmatter_fields", mode="before")
    @classmethod
    def _parse_frontmatter_fields(cls, value: Any) -> tuple[str, ...]:
        if value in (None, ""):
            return DEFAULT_FRONTMATTER_FIELDS
        if isinstance(value, str):
            return tuple(field.strip() for field in value.split(",") if field.strip())
        return tuple(str(field).strip() for field in value if str(field).strip())

    @field_validator("sync_batch_size", mode="before")
    @classmethod
    def _validate_batch_size(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = int(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = "Sync batch size must be a valid integer"
            raise ValueError(msg) from exc
        if parsed < 1 or parsed > 1000:
            msg = "Sync batch size must be between 1 and 1000"
            raise ValueError(msg)
        return parsed

    @field_validator("request_timeout_sec", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        try:
            timeout = float(str(value if value not in (None, "") else 30))
        except ValueError as exc:
            msg = "Request timeout must be a valid number"
            raise ValueError(msg) from exc
        if timeout <= 0 or timeout > 600:
            msg = "Request timeout must be between 0 and 600 seconds"
            raise ValueError(msg)
        return timeout
