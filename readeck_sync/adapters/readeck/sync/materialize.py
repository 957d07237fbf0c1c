"""Writes bookmark aggregates into the vault."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from readeck_sync.adapters.readeck.sync.constants import (
    IMAGES_FOLDER,
    MAX_FILE_NAME_LENGTH,
    NOTE_EXTENSION,
)
from readeck_sync.adapters.readeck.sync.errors import record_warning
from readeck_sync.adapters.readeck.sync.frontmatter import (
    build_annotations_block,
    build_frontmatter,
    sanitize_file_name,
)
from readeck_sync.adapters.readeck.sync.status_diff import is_valid_bookmark_id
from readeck_sync.domain.exceptions import InvalidBookmarkIdError

if TYPE_CHECKING:
    from readeck_sync.adapters.readeck.models import SyncReport
    from readeck_sync.adapters.readeck.sync.aggregate import BookmarkAggregate
    from readeck_sync.adapters.readeck.sync.protocols import Vault
    from readeck_sync.config.integrations import ReadeckConfig

logger = logging.getLogger(__name__)


class NoteMaterializer:
    """Creates, updates, skips and deletes bookmark folders.

    Notes are created when absent. An existing note is rewritten only when
    overwriting is enabled and its content actually changed. Images are
    written once and never touched again.
    """

    def __init__(self, vault: Vault, config: ReadeckConfig, *, correlation_id: str = "") -> None:
        self._vault = vault
        self._config = config
        self._correlation_id = correlation_id

    def bookmark_folder(self, bookmark_id: str) -> str:
        if not is_valid_bookmark_id(bookmark_id):
            raise InvalidBookmarkIdError(bookmark_id)
        return f"{self._config.folder}/{bookmark_id}"

    def ensure_folder(self, path: str) -> bool:
        if self._vault.exists(path):
            return False
        self._vault.create_folder(path)
        return True

    def note_file_name(self, aggregate: BookmarkAggregate, report: SyncReport) -> str:
        max_length = MAX_FILE_NAME_LENGTH - len(NOTE_EXTENSION)
        name = sanitize_file_name(aggregate.metadata.title, max_length)
        if not name:
            record_warning(report, f"Bookmark {aggregate.id} has no usable title; named by id")
            name = sanitize_file_name(aggregate.id, max_length) or "untitled"
        return f"{name}{NOTE_EXTENSION}"

    def render_note(self, aggregate: BookmarkAggregate) -> str:
        folder = self.bookmark_folder(aggregate.id)
        content = build_frontmatter(aggregate.metadata, self._config.frontmatter_fields, folder)
        content += aggregate.markdown_text or ""
        if aggregate.annotations:
            block = build_annotations_block(
                self._config.api_url, aggregate.id, aggregate.annotations
            )
            content += f"\n{block}"
        return content

    def write_note(self, aggregate: BookmarkAggregate, report: SyncReport) -> str:
        """Materialize the note of ``aggregate`` and return its vault path."""
        folder = self.bookmark_folder(aggregate.id)
        self.ensure_folder(folder)
        path = f"{folder}/{self.note_file_name(aggregate, report)}"
        content = self.render_note(aggregate)

        if not self._vault.exists(path):
            self._vault.create_file(path, content)
            report.notes_created += 1
            action = "created"
        elif self._config.overwrite and self._vault.read_file(path) != content:
            self._vault.modify_file(path, content)
            report.notes_updated += 1
            action = "updated"
        else:
            report.notes_skipped += 1
            action = "skipped"

        logger.debug(
            "readeck_note_materialized",
            extra={
                "correlation_id": self._correlation_id,
                "bookmark_id": aggregate.id,
                "path": path,
                "action": action,
            },
        )
        return path

    def write_images(self, aggregate: BookmarkAggregate, report: SyncReport) -> int:
        folder = f"{self.bookmark_folder(aggregate.id)}/{IMAGES_FOLDER}"
        self.ensure_folder(folder)
        written = 0
        for image in aggregate.images:
            path = f"{folder}/{image.filename}"
            if self._vault.exists(path):
                continue
            self._vault.create_file(path, image.content)
            written += 1
        report.images_written += written
        return written

    def delete_bookmark(self, bookmark_id: str, report: SyncReport) -> bool:
        folder = self.bookmark_folder(bookmark_id)
        if not self._vault.exists(folder):
            return False
        self._vault.delete_folder(folder, recursive=True)
        report.notes_deleted += 1
        logger.info(
            "readeck_bookmark_deleted",
            extra={"correlation_id": self._correlation_id, "bookmark_id": bookmark_id},
        )
        return True
