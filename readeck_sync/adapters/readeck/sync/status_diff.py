"""Turn the remote status feed into update and delete id sets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from readeck_sync.adapters.readeck.models import BookmarkStatusEntry, StatusKind

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

logger = logging.getLogger(__name__)

_FORBIDDEN_ID_CHARS = frozenset("/\\\0")


def is_valid_bookmark_id(bookmark_id: str) -> bool:
    """Return True when ``bookmark_id`` can name exactly one folder under the sync root."""
    if not bookmark_id or bookmark_id.strip(" .") == "":
        return False
    return not any(char in _FORBIDDEN_ID_CHARS for char in bookmark_id)


@dataclass(frozen=True)
class StatusDiff:
    """Disjoint, ordered id sets for one pass."""

    to_update: tuple[str, ...] = ()
    to_delete: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    since: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.to_update and not self.to_delete


def parse_status_entries(
    rows: Iterable[dict[str, Any]],
) -> tuple[list[BookmarkStatusEntry], list[str]]:
    """Validate raw status rows.

    Rows with an unknown kind, no id, or an id that is not a plain folder name
    are dropped with a warning.
    """
    entries: list[BookmarkStatusEntry] = []
    warnings: list[str] = []
    for row in rows:
        try:
            entry = BookmarkStatusEntry.model_validate(row)
        except ValidationError:
            bookmark_id = row.get("id") if isinstance(row, dict) else None
            kind = row.get("type") if isinstance(row, dict) else None
            warnings.append(f"Ignored status entry {bookmark_id!r} with type {kind!r}")
            continue
        if not is_valid_bookmark_id(entry.id):
            logger.warning(
                "readeck_status_invalid_id",
                extra={"bookmark_id": entry.id, "kind": entry.kind.value},
            )
            warnings.append(f"Ignored status entry with unusable id {entry.id!r}")
            continue
        entries.append(entry)
    return entries, warnings


def diff_status(
    entries: Iterable[BookmarkStatusEntry], checkpoint: datetime | None = None
) -> StatusDiff:
    """Split status entries into updates and deletions.

    Ids keep the order in which they were first seen and duplicates collapse.
    An id reported both updated and deleted is kept as an update only and a
    warning is recorded.

    Args:
        entries: Status entries returned for ``checkpoint``
        checkpoint: The ``since`` value the entries were requested with

    Returns:
        StatusDiff with disjoint ``to_update`` and ``to_delete``
    """
    updated: dict[str, None] = {}
    deleted: dict[str, None] = {}
    for entry in entries:
        if entry.kind is StatusKind.UPDATED:
            updated.setdefault(entry.id, None)
        else:
            deleted.setdefault(entry.id, None)

    warnings: list[str] = []
    conflicting = [bookmark_id for bookmark_id in deleted if bookmark_id in updated]
    for bookmark_id in conflicting:
        del deleted[bookmark_id]
        warnings.append(
            f"Bookmark {bookmark_id} reported as both updated and deleted; keeping the update"
        )

    if conflicting:
        logger.warning(
            "readeck_status_conflicts",
            extra={"count": len(conflicting), "ids": conflicting[:10]},
        )

    return StatusDiff(
        to_update=tuple(updated),
        to_delete=tuple(deleted),
        warnings=tuple(warnings),
        since=checkpoint,
    )
