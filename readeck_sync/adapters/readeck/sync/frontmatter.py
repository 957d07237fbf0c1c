"""Deterministic note headers and note naming.

Everything here is pure: identical metadata always yields byte-identical
output, which is what keeps a re-sync from rewriting unchanged notes.
"""

from __future__ import annotations

import re
from datetime import UTC
from typing import TYPE_CHECKING

from readeck_sync.adapters.readeck.sync.constants import (
    ANNOTATIONS_HEADING,
    IMAGES_FOLDER,
    MAX_FILE_NAME_LENGTH,
)
from readeck_sync.config.integrations import DEFAULT_FRONTMATTER_FIELDS

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from datetime import datetime

    from readeck_sync.adapters.readeck.models import Annotation, BookmarkMetadata

HEADER_DELIMITER = "---"

_HEADER_BLOCK_RE = re.compile(r"\A---\n(?:.*?\n)?---(?:\n|\Z)", re.DOTALL)
_ILLEGAL_FILE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x80-\x9f]')
_DOTS_ONLY_RE = re.compile(r"^\.+$")
_TRAILING_SPACE_OR_DOT_RE = re.compile(r"[\s.]+$")

_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}
# Characters YAML readers refuse raw or treat as line breaks
_UNICODE_ESCAPED = frozenset({0x7F, 0x85, 0x2028, 0x2029, 0xFEFF, 0xFFFE, 0xFFFF})


def _needs_unicode_escape(code: int) -> bool:
    if code < 0x20 or 0x80 <= code <= 0x9F or 0xD800 <= code <= 0xDFFF:
        return True
    return code in _UNICODE_ESCAPED


def quote_string(value: str) -> str:
    """Render ``value`` as a double-quoted YAML scalar."""
    out: list[str] = []
    for char in value:
        escaped = _ESCAPES.get(char)
        if escaped is not None:
            out.append(escaped)
        elif _needs_unicode_escape(ord(char)):
            out.append(f"\\u{ord(char):04x}")
        else:
            out.append(char)
    return f'"{"".join(out)}"'


def format_timestamp(value: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a ``Z`` suffix."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_date(value: datetime) -> str:
    return value.astimezone(UTC).date().isoformat()


def _string_line(key: str, value: str | None) -> list[str]:
    if not value:
        return []
    return [f"{key}: {quote_string(value)}"]


def _list_lines(key: str, values: Sequence[str]) -> list[str]:
    items = [value for value in values if value]
    if not items:
        return []
    return [f"{key}:", *(f"- {quote_string(item)}" for item in items)]


def _number_line(key: str, value: int | float | None) -> list[str]:
    if value is None:
        return []
    return [f"{key}: {value}"]


def _bool_line(key: str, value: bool) -> list[str]:
    return [f"{key}: {'true' if value else 'false'}"]


def _timestamp_line(key: str, value: datetime | None) -> list[str]:
    if value is None:
        return []
    return [f"{key}: {quote_string(format_timestamp(value))}"]


def _cover_path(metadata: BookmarkMetadata, folder_path: str) -> str | None:
    filename = metadata.cover_filename
    if not filename:
        return None
    prefix = folder_path.rstrip("/")
    return f"{prefix}/{IMAGES_FOLDER}/{filename}" if prefix else f"{IMAGES_FOLDER}/{filename}"


_RENDERERS: dict[str, Callable[[BookmarkMetadata, str], list[str]]] = {
    "title": lambda m, _: _string_line("title", m.title),
    "url": lambda m, _: _string_line("url", m.url),
    "site": lambda m, _: _string_line("site", m.site),
    "site_name": lambda m, _: _string_line("site_name", m.site_name),
    "description": lambda m, _: _string_line("description", m.description),
    "lang": lambda m, _: _string_line("lang", m.lang),
    "document_type": lambda m, _: _string_line("document_type", m.document_type),
    "created": lambda m, _: _timestamp_line("created", m.created),
    "updated": lambda m, _: _timestamp_line("updated", m.updated),
    "published": lambda m, _: (
        [f"published: {quote_string(format_date(m.published))}"] if m.published else []
    ),
    "authors": lambda m, _: _list_lines("authors", m.authors),
    "labels": lambda m, _: _list_lines("labels", m.labels),
    "word_count": lambda m, _: _number_line("word_count", m.word_count),
    "reading_time": lambda m, _: _number_line("reading_time", m.reading_time),
    "read_progress": lambda m, _: _number_line("read_progress", m.read_progress),
    "is_archived": lambda m, _: _bool_line("is_archived", m.is_archived),
    "is_marked": lambda m, _: _bool_line("is_marked", m.is_marked),
    "cover": lambda m, folder: _string_line("cover", _cover_path(m, folder)),
}

AVAILABLE_FRONTMATTER_FIELDS: tuple[str, ...] = tuple(_RENDERERS)


def build_frontmatter(
    metadata: BookmarkMetadata,
    fields: Iterable[str] = DEFAULT_FRONTMATTER_FIELDS,
    folder_path: str = "",
) -> str:
    """Render the ``---`` delimited header of a bookmark note.

    Args:
        metadata: Parsed bookmark metadata
        fields: Ordered header keys; unknown and repeated keys are skipped
        folder_path: Vault folder of the note, used to derive ``cover``

    Returns:
        Header text ending with a newline
    """
    lines = [HEADER_DELIMITER]
    seen: set[str] = set()
    for field in fields:
        renderer = _RENDERERS.get(field)
        if renderer is None or field in seen:
            continue
        seen.add(field)
        lines.extend(renderer(metadata, folder_path))
    lines.append(HEADER_DELIMITER)
    return "\n".join(lines) + "\n"


def replace_frontmatter(text: str, header: str) -> str:
    """Swap the leading header block of ``text`` for ``header``, or prepend it."""
    match = _HEADER_BLOCK_RE.match(text)
    if match is None:
        return header + text
    return header + text[match.end() :]


def sanitize_file_name(name: str, max_length: int = MAX_FILE_NAME_LENGTH) -> str:
    """Make a bookmark title usable as a file name on common filesystems."""
    sanitized = _ILLEGAL_FILE_CHARS_RE.sub("", name)
    sanitized = _DOTS_ONLY_RE.sub("", sanitized)
    sanitized = sanitized.strip()
    sanitized = _TRAILING_SPACE_OR_DOT_RE.sub("", sanitized)
    sanitized = sanitized[:max_length]
    return _TRAILING_SPACE_OR_DOT_RE.sub("", sanitized)


def build_annotations_block(
    api_url: str, bookmark_id: str, annotations: Sequence[Annotation]
) -> str:
    """Quote every highlight with a link back to it in Readeck."""
    base = api_url.rstrip("/")
    quotes = [
        f"> {annotation.text} - [#]({base}/bookmarks/{bookmark_id}#annotation-{annotation.id})"
        for annotation in annotations
    ]
    return f"{ANNOTATIONS_HEADING}\n" + "\n\n".join(quotes)

