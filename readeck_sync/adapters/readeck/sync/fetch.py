"""Combined bookmark fetches and dispatch of their multipart parts."""

from __future__ import annotations

import logging
import posixpath
import re
from typing import TYPE_CHECKING

from pydantic import ValidationError

from readeck_sync.adapters.readeck.models import BookmarkMetadata
from readeck_sync.adapters.readeck.multipart import PartKind, demux_multipart
from readeck_sync.adapters.readeck.sync.aggregate import BookmarkImage
from readeck_sync.adapters.readeck.sync.errors import record_warning
from readeck_sync.core.logging_utils import truncate_log_content

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from readeck_sync.adapters.readeck.models import Annotation, SyncReport
    from readeck_sync.adapters.readeck.multipart import MultipartPart
    from readeck_sync.adapters.readeck.sync.aggregate import AggregateArena, BookmarkAggregate
    from readeck_sync.adapters.readeck.sync.protocols import ReadeckClientProtocol

logger = logging.getLogger(__name__)

# Readeck prefixes exported markdown with its own header block
_LEADING_HEADER_RE = re.compile(r"^---[\s\S]*?---\s*")


def strip_leading_header(text: str) -> str:
    return _LEADING_HEADER_RE.sub("", text, count=1)


def chunked(ids: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(ids), size):
        yield list(ids[start : start + size])


class BookmarkFetchOrchestrator:
    """Fetch bookmark content in combined batches and fill the pass arena."""

    def __init__(self, client: ReadeckClientProtocol, *, correlation_id: str = "") -> None:
        self._client = client
        self._correlation_id = correlation_id

    async def fetch_batch(
        self,
        arena: AggregateArena,
        ids: Sequence[str],
        *,
        markdown: bool,
        resources: bool,
        json_meta: bool,
        report: SyncReport,
    ) -> int:
        """Fetch one batch with a single request and dispatch its parts.

        Transport failures and malformed multipart bodies propagate; per-part
        problems only add warnings to ``report``.

        Returns:
            Number of parts received
        """
        payload = await self._client.fetch_bookmarks_multipart(
            ids, markdown=markdown, resources=resources, json_meta=json_meta
        )
        parts = demux_multipart(payload.content_type, payload.body)
        for part in parts:
            self._dispatch(arena, part, report)

        logger.info(
            "readeck_batch_fetched",
            extra={
                "correlation_id": self._correlation_id,
                "ids": len(ids),
                "parts": len(parts),
            },
        )
        return len(parts)

    def _dispatch(self, arena: AggregateArena, part: MultipartPart, report: SyncReport) -> None:
        aggregate = arena.get(part.correlation_id)
        if aggregate is None:
            logger.warning(
                "readeck_part_unknown_bookmark",
                extra={
                    "correlation_id": self._correlation_id,
                    "bookmark_id": part.correlation_id,
                    "media_type": part.media_type,
                },
            )
            record_warning(
                report,
                f"Skipped {part.media_type or 'untyped'} part for unknown bookmark "
                f"{part.correlation_id or '<missing>'}",
            )
            return

        if part.kind is PartKind.MARKDOWN:
            aggregate.markdown_text = strip_leading_header(part.text())
        elif part.kind is PartKind.IMAGE:
            self._add_image(aggregate, part, report)
        elif part.kind is PartKind.JSON:
            self._set_metadata(aggregate, part, report)
        else:
            logger.debug(
                "readeck_part_unrecognized",
                extra={"bookmark_id": aggregate.id, "media_type": part.media_type},
            )
            record_warning(
                report,
                f"Ignored {part.media_type or 'untyped'} part for bookmark {aggregate.id}",
            )

    def _add_image(
        self, aggregate: BookmarkAggregate, part: MultipartPart, report: SyncReport
    ) -> None:
        filename = posixpath.basename((part.filename or "").replace("\\", "/"))
        if not filename or filename in (".", ".."):
            record_warning(report, f"Ignored unnamed image for bookmark {aggregate.id}")
            return
        aggregate.images.append(BookmarkImage(filename=filename, content=part.body))

    def _set_metadata(
        self, aggregate: BookmarkAggregate, part: MultipartPart, report: SyncReport
    ) -> None:
        try:
            aggregate.metadata = BookmarkMetadata.model_validate_json(part.body)
        except ValidationError as exc:
            aggregate.metadata_error = str(exc)
            logger.warning(
                "readeck_metadata_invalid",
                extra={
                    "correlation_id": self._correlation_id,
                    "bookmark_id": aggregate.id,
                    "errors": exc.error_count(),
                    "detail": truncate_log_content(str(exc)),
                },
            )
            record_warning(report, f"Could not parse metadata of bookmark {aggregate.id}")
            return
        aggregate.metadata_received = True
        aggregate.metadata_error = None

    async def fetch_annotations(self, bookmark_id: str) -> list[Annotation]:
        annotations = await self._client.get_bookmark_annotations(bookmark_id)
        logger.debug(
            "readeck_annotations_fetched",
            extra={
                "correlation_id": self._correlation_id,
                "bookmark_id": bookmark_id,
                "count": len(annotations),
            },
        )
        return annotations
