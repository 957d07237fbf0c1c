"""Decoding of Readeck's multipart sync responses.

``POST /api/bookmarks/sync`` answers with one multipart body that carries the
markdown, JSON metadata and image resources of many bookmarks at once. Every
part names the bookmark it belongs to in a ``Bookmark-Id`` header. This module
only frames the body into tagged parts; interpreting part bodies is left to
the fetch orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from readeck_sync.domain.exceptions import MalformedMultipartError

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "bookmark-id"
FEED_CHUNK_SIZE = 64 * 1024


class PartKind(Enum):
    MARKDOWN = "markdown"
    IMAGE = "image"
    JSON = "json"
    UNRECOGNIZED = "unrecognized"


def classify_media_type(media_type: str) -> PartKind:
    if media_type == "text/markdown":
        return PartKind.MARKDOWN
    if "image" in media_type:
        return PartKind.IMAGE
    if "json" in media_type:
        return PartKind.JSON
    return PartKind.UNRECOGNIZED


@dataclass(frozen=True)
class MultipartPart:
    media_type: str
    kind: PartKind
    correlation_id: str
    body: bytes
    charset: str | None = None
    filename: str | None = None

    def text(self) -> str:
        return self.body.decode(self.charset or "utf-8", errors="replace")


def parse_boundary(content_type: str | None) -> str:
    """Extract the boundary token from a ``multipart/*`` Content-Type value."""
    if not content_type:
        raise MalformedMultipartError("Missing multipart Content-Type")

    ctype, options = parse_options_header(content_type)
    media_type = ctype.decode("latin-1").strip().lower()
    if not media_type.startswith("multipart/"):
        raise MalformedMultipartError(
            f"Expected a multipart response, got {media_type or 'nothing'}",
            {"content_type": content_type},
        )

    boundary = options.get(b"boundary", b"").decode("latin-1").strip()
    if not boundary:
        raise MalformedMultipartError(
            "Multipart Content-Type has no boundary", {"content_type": content_type}
        )
    return boundary


class MultipartDemuxer:
    """Incremental multipart decoder producing :class:`MultipartPart` objects.

    Feed the raw body with :meth:`feed` (any chunking) and call :meth:`close`
    to obtain the parts in input order. ``close`` fails when the closing
    boundary was never seen, which is how truncated bodies are detected.
    """

    def __init__(self, content_type: str | None) -> None:
        self.boundary = parse_boundary(content_type)
        self._parts: list[MultipartPart] = []
        self._headers: dict[str, str] = {}
        self._field = bytearray()
        self._value = bytearray()
        self._body = bytearray()
        self._finished = False
        self._parser = MultipartParser(
            self.boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_end": self._on_end,
            },
        )

    def feed(self, chunk: bytes) -> None:
        if self._finished:
            # Epilogue after the closing boundary is ignored per RFC 2046
            return
        try:
            self._parser.write(chunk)
        except MultipartParseError as exc:
            raise MalformedMultipartError(
                f"Invalid multipart framing: {exc}", {"boundary": self.boundary}
            ) from exc

    def close(self) -> list[MultipartPart]:
        self._parser.finalize()
        if not self._finished:
            raise MalformedMultipartError(
                "Multipart body ended before its closing boundary",
                {"boundary": self.boundary, "parts_decoded": len(self._parts)},
            )
        return list(self._parts)

    def _on_part_begin(self) -> None:
        self._headers = {}
        self._body = bytearray()

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._value += data[start:end]

    def _on_header_end(self) -> None:
        name = self._field.decode("latin-1").strip().lower()
        self._headers[name] = self._value.decode("latin-1").strip()
        self._field = bytearray()
        self._value = bytearray()

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._body += data[start:end]

    def _on_part_end(self) -> None:
        ctype, options = parse_options_header(self._headers.get("content-type", ""))
        media_type = ctype.decode("latin-1").strip().lower()
        charset = options.get(b"charset")

        filename: str | None = None
        disposition = self._headers.get("content-disposition")
        if disposition:
            _, disposition_options = parse_options_header(disposition)
            raw_filename = disposition_options.get(b"filename")
            if raw_filename:
                filename = raw_filename.decode("latin-1")

        self._parts.append(
            MultipartPart(
                media_type=media_type,
                kind=classify_media_type(media_type),
                correlation_id=self._headers.get(CORRELATION_HEADER, ""),
                body=bytes(self._body),
                charset=charset.decode("latin-1") if charset else None,
                filename=filename,
            )
        )

    def _on_end(self) -> None:
        self._finished = True


def demux_multipart(content_type: str | None, body: bytes) -> list[MultipartPart]:
    """Decode a whole multipart body held in memory."""
    demuxer = MultipartDemuxer(content_type)
    for offset in range(0, len(body), FEED_CHUNK_SIZE):
        demuxer.feed(body[offset : offset + FEED_CHUNK_SIZE])
    parts = demuxer.close()
    logger.debug(
        "multipart_demuxed",
        extra={"parts": len(parts), "bytes": len(body), "boundary": demuxer.boundary},
    )
    return parts
