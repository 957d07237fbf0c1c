"""Readeck integration adapter for bookmark synchronization."""

from readeck_sync.adapters.readeck.client import ReadeckClient
from readeck_sync.adapters.readeck.sync.service import BookmarkSyncService

__all__ = ["BookmarkSyncService", "ReadeckClient"]
