"""Public Readeck sync service composed of small use-case classes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from readeck_sync.adapters.readeck.client import ReadeckClient, ReadeckClientError
from readeck_sync.adapters.readeck.models import SyncReport
from readeck_sync.adapters.readeck.sync.aggregate import AggregateArena
from readeck_sync.adapters.readeck.sync.constants import SETTING_API_TOKEN, SETTING_LAST_SYNC_AT
from readeck_sync.adapters.readeck.sync.errors import merge_warnings, record_warning
from readeck_sync.adapters.readeck.sync.fetch import BookmarkFetchOrchestrator, chunked
from readeck_sync.adapters.readeck.sync.materialize import NoteMaterializer
from readeck_sync.adapters.readeck.sync.status_diff import diff_status, parse_status_entries
from readeck_sync.core.logging_utils import generate_correlation_id
from readeck_sync.core.time_utils import ensure_datetime, format_checkpoint, utc_now
from readeck_sync.domain.exceptions import (
    InvalidBookmarkIdError,
    MalformedMultipartError,
    SyncAbortedError,
    SyncAlreadyRunningError,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from readeck_sync.adapters.readeck.sync.protocols import (
        Notifier,
        ReadeckClientFactory,
        ReadeckClientProtocol,
        SettingsStore,
        Vault,
    )
    from readeck_sync.adapters.readeck.sync.status_diff import StatusDiff
    from readeck_sync.config.integrations import ReadeckConfig

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (ReadeckClientError, httpx.HTTPError)


def _log_notifier(message: str) -> None:
    logger.info("readeck_sync_notice", extra={"notice": message})


class BookmarkSyncService:
    """One-way sync of Readeck bookmarks into a vault folder.

    A pass reads the checkpoint, diffs the remote status feed, fetches the
    updated bookmarks in combined batches, writes notes and images, applies
    deletions, and finally moves the checkpoint. Any abort leaves the
    checkpoint where it was so the next pass retries the same changes.
    """

    def __init__(
        self,
        config: ReadeckConfig,
        vault: Vault,
        settings_store: SettingsStore,
        *,
        client_factory: ReadeckClientFactory | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self._vault = vault
        self._settings = settings_store
        self._client_factory = client_factory or ReadeckClient
        self._notify = notifier or _log_notifier
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def read_checkpoint(self) -> datetime | None:
        return ensure_datetime(self._settings.get(SETTING_LAST_SYNC_AT) or None)

    def reset_checkpoint(self) -> None:
        """Forget the last sync so the next pass treats every bookmark as updated."""
        if self.is_running:
            raise SyncAlreadyRunningError("Cannot reset the checkpoint while a sync is running")
        self._settings.delete(SETTING_LAST_SYNC_AT)
        self._settings.save()
        logger.info("readeck_checkpoint_reset")

    async def run_sync(self) -> SyncReport:
        """Run one reconciliation pass.

        Raises:
            SyncAlreadyRunningError: Another pass is in flight.
            SyncAbortedError: The pass stopped before the checkpoint moved.
        """
        if self._lock.locked():
            raise SyncAlreadyRunningError("A Readeck sync is already running")

        async with self._lock:
            correlation_id = generate_correlation_id()
            try:
                return await self._run_pass(correlation_id)
            except SyncAbortedError as exc:
                logger.error(
                    "readeck_sync_aborted",
                    extra={
                        "correlation_id": correlation_id,
                        "stage": exc.stage,
                        "error": exc.message,
                    },
                )
                self._notify(f"Readeck sync failed: {exc.message}")
                raise

    async def _run_pass(self, correlation_id: str) -> SyncReport:
        start_time = time.monotonic()
        report = SyncReport(correlation_id=correlation_id)

        api_url = self.config.api_url
        if not api_url:
            raise SyncAbortedError("Readeck API URL is not configured", stage="config")
        api_token = str(self._settings.get(SETTING_API_TOKEN) or "")
        if not api_token:
            raise SyncAbortedError("Not logged in to Readeck", stage="auth")

        checkpoint = self.read_checkpoint()
        logger.info(
            "readeck_sync_started",
            extra={
                "correlation_id": correlation_id,
                "since": format_checkpoint(checkpoint) if checkpoint else None,
                "mode": self.config.mode.value,
            },
        )

        async with self._client_factory(
            api_url, api_token, self.config.request_timeout_sec
        ) as client:
            diff = await self._load_status(client, checkpoint, report)
            if diff.is_empty:
                report.nothing_to_do = True
            else:
                await self._reconcile(client, diff, report)

        report.checkpoint = self._advance_checkpoint()
        report.duration_seconds = time.monotonic() - start_time

        logger.info(
            "readeck_sync_complete",
            extra={
                "correlation_id": correlation_id,
                "notes_created": report.notes_created,
                "notes_updated": report.notes_updated,
                "notes_skipped": report.notes_skipped,
                "notes_deleted": report.notes_deleted,
                "images_written": report.images_written,
                "warnings": len(report.warnings),
                "checkpoint": report.checkpoint,
                "duration_seconds": round(report.duration_seconds, 3),
            },
        )
        self._notify(report.summary())
        return report

    async def _load_status(
        self,
        client: ReadeckClientProtocol,
        checkpoint: datetime | None,
        report: SyncReport,
    ) -> StatusDiff:
        try:
            rows = await client.get_bookmarks_status(checkpoint)
        except _TRANSPORT_ERRORS as exc:
            raise SyncAbortedError(
                f"Could not fetch bookmark status: {exc}", stage="status"
            ) from exc

        entries, warnings = parse_status_entries(rows)
        merge_warnings(report, warnings)
        diff = diff_status(entries, checkpoint)
        merge_warnings(report, diff.warnings)
        logger.info(
            "readeck_status_diffed",
            extra={
                "correlation_id": report.correlation_id,
                "to_update": len(diff.to_update),
                "to_delete": len(diff.to_delete),
            },
        )
        return diff

    async def _reconcile(
        self, client: ReadeckClientProtocol, diff: StatusDiff, report: SyncReport
    ) -> None:
        correlation_id = report.correlation_id
        mode = self.config.mode
        materializer = NoteMaterializer(self._vault, self.config, correlation_id=correlation_id)
        orchestrator = BookmarkFetchOrchestrator(client, correlation_id=correlation_id)

        # Every update id has a target before any response is consumed
        arena = AggregateArena(diff.to_update)

        try:
            materializer.ensure_folder(self.config.folder)
        except OSError as exc:
            raise SyncAbortedError(
                f"Could not create folder {self.config.folder}: {exc}", stage="folder"
            ) from exc

        try:
            await self._fetch_content(orchestrator, arena, report)
            if mode.wants_annotations:
                await self._fetch_annotations(orchestrator, arena, report)
            self._materialize(materializer, arena, report)
            if self.config.delete:
                self._apply_deletes(materializer, diff.to_delete, report)
        except OSError as exc:
            raise SyncAbortedError(f"Could not write to the vault: {exc}", stage="write") from exc
        finally:
            arena.clear()

    async def _fetch_content(
        self,
        orchestrator: BookmarkFetchOrchestrator,
        arena: AggregateArena,
        report: SyncReport,
    ) -> None:
        mode = self.config.mode
        if not arena or not (mode.wants_markdown or mode.wants_annotations):
            return

        for batch in chunked(arena.ids(), self.config.sync_batch_size):
            try:
                await orchestrator.fetch_batch(
                    arena,
                    batch,
                    markdown=mode.wants_markdown,
                    resources=mode.wants_images,
                    json_meta=True,
                    report=report,
                )
            except MalformedMultipartError as exc:
                raise SyncAbortedError(
                    f"Malformed bookmark batch: {exc.message}",
                    stage="fetch",
                    details={"batch_size": len(batch)},
                ) from exc
            except _TRANSPORT_ERRORS as exc:
                raise SyncAbortedError(
                    f"Could not fetch bookmarks: {exc}",
                    stage="fetch",
                    details={"batch_size": len(batch)},
                ) from exc

    async def _fetch_annotations(
        self,
        orchestrator: BookmarkFetchOrchestrator,
        arena: AggregateArena,
        report: SyncReport,
    ) -> None:
        for aggregate in arena:
            try:
                aggregate.annotations.extend(await orchestrator.fetch_annotations(aggregate.id))
            except (*_TRANSPORT_ERRORS, ValidationError) as exc:
                logger.warning(
                    "readeck_annotations_failed",
                    extra={
                        "correlation_id": report.correlation_id,
                        "bookmark_id": aggregate.id,
                        "error": str(exc),
                    },
                )
                record_warning(report, f"Could not fetch annotations of bookmark {aggregate.id}")

    def _materialize(
        self, materializer: NoteMaterializer, arena: AggregateArena, report: SyncReport
    ) -> None:
        for aggregate in arena:
            if aggregate.metadata_error is not None:
                logger.info(
                    "readeck_note_skipped_invalid_metadata",
                    extra={"correlation_id": report.correlation_id, "bookmark_id": aggregate.id},
                )
                continue
            try:
                if aggregate.has_content:
                    materializer.write_note(aggregate, report)
                if aggregate.images:
                    materializer.write_images(aggregate, report)
            except InvalidBookmarkIdError as exc:
                self._skip_invalid_id(exc, report)

    def _apply_deletes(
        self,
        materializer: NoteMaterializer,
        bookmark_ids: tuple[str, ...],
        report: SyncReport,
    ) -> None:
        for bookmark_id in bookmark_ids:
            try:
                materializer.delete_bookmark(bookmark_id, report)
            except InvalidBookmarkIdError as exc:
                self._skip_invalid_id(exc, report)

    def _skip_invalid_id(self, exc: InvalidBookmarkIdError, report: SyncReport) -> None:
        logger.warning(
            "readeck_bookmark_invalid_id",
            extra={"correlation_id": report.correlation_id, "bookmark_id": exc.bookmark_id},
        )
        record_warning(report, f"Skipped bookmark with unusable id {exc.bookmark_id!r}")

    def _advance_checkpoint(self) -> str:
        checkpoint = format_checkpoint(self._clock())
        try:
            self._settings.set(SETTING_LAST_SYNC_AT, checkpoint)
            self._settings.save()
        except OSError as exc:
            raise SyncAbortedError(
                f"Could not persist the sync checkpoint: {exc}", stage="checkpoint"
            ) from exc
        return checkpoint
