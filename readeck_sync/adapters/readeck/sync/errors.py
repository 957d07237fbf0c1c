"""Warning collection helpers for sync reports."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from readeck_sync.adapters.readeck.models import SyncReport


def record_warning(report: SyncReport, message: str) -> None:
    if message not in report.warnings:
        report.warnings.append(message)


def merge_warnings(report: SyncReport, messages: list[str] | tuple[str, ...]) -> None:
    for message in messages:
        record_warning(report, message)
