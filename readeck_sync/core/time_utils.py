from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_datetime(value: Any) -> datetime | None:
    """Convert a value to datetime if it's a string, or return as-is if already datetime.

    Readeck serializes dates as RFC 3339 strings, and stored checkpoints are ISO
    strings as well. Always returns timezone-aware (UTC) datetimes -- naive values
    are assumed UTC. Empty strings and unparseable values yield None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    if isinstance(value, str):
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("ensure_datetime_parse_failed", extra={"value": repr(value)})
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed
    logger.warning(
        "ensure_datetime_unexpected_type",
        extra={"type": type(value).__name__, "value": repr(value)},
    )
    return None


def format_checkpoint(value: datetime) -> str:
    """Serialize a checkpoint as an ISO-8601 UTC string."""
    return value.astimezone(UTC).isoformat()
