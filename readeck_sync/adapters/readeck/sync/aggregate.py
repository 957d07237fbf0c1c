"""Pass-scoped accumulators for bookmark content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from readeck_sync.adapters.readeck.models import Annotation, BookmarkMetadata

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


@dataclass(frozen=True)
class BookmarkImage:
    filename: str
    content: bytes


@dataclass
class BookmarkAggregate:
    """Everything received for one bookmark during a pass."""

    id: str
    markdown_text: str | None = None
    metadata: BookmarkMetadata = field(default_factory=BookmarkMetadata)
    images: list[BookmarkImage] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)
    metadata_received: bool = False
    metadata_error: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.markdown_text) or bool(self.annotations)


class AggregateArena:
    """Id-keyed aggregates owned by a single sync pass.

    Every id of the update set gets an empty aggregate up front so that any
    part arriving later always has a target. Iteration follows creation order.
    """

    def __init__(self, ids: Iterable[str] = ()) -> None:
        self._aggregates: dict[str, BookmarkAggregate] = {}
        for bookmark_id in ids:
            self._aggregates.setdefault(bookmark_id, BookmarkAggregate(id=bookmark_id))

    def get(self, bookmark_id: str) -> BookmarkAggregate | None:
        return self._aggregates.get(bookmark_id)

    def __contains__(self, bookmark_id: object) -> bool:
        return bookmark_id in self._aggregates

    def __len__(self) -> int:
        return len(self._aggregates)

    def __iter__(self) -> Iterator[BookmarkAggregate]:
        return iter(self._aggregates.values())

    def ids(self) -> list[str]:
        return list(self._aggregates)

    def clear(self) -> None:
        self._aggregates.clear()
