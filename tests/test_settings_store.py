"""Tests for the JSON settings store."""

from __future__ import annotations

import json
import os
import stat
from typing import TYPE_CHECKING

import pytest

from readeck_sync.infrastructure.settings_store import JsonSettingsStore

if TYPE_CHECKING:
    from pathlib import Path


class TestJsonSettingsStore:
    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        store = JsonSettingsStore(tmp_path / "state.json")

        assert store.as_dict() == {}
        assert store.get("api_token") is None
        assert store.get("api_token", "fallback") == "fallback"

    def test_save_and_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        store = JsonSettingsStore(path)
        store.set("api_token", "tok")
        store.set("last_sync_at", "2024-06-01T12:00:00+00:00")
        store.save()

        reloaded = JsonSettingsStore(path)

        assert reloaded.as_dict() == {
            "api_token": "tok",
            "last_sync_at": "2024-06-01T12:00:00+00:00",
        }
        assert json.loads(path.read_text(encoding="utf-8"))["api_token"] == "tok"

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_saved_file_is_private(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = JsonSettingsStore(path)
        store.set("api_token", "tok")
        store.save()

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_delete(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = JsonSettingsStore(path)
        store.set("a", 1)
        store.delete("a")
        store.delete("never-set")
        store.save()

        assert JsonSettingsStore(path).as_dict() == {}

    def test_no_temp_files_are_left_behind(self, tmp_path: Path) -> None:
        store = JsonSettingsStore(tmp_path / "state.json")
        store.set("a", 1)
        store.save()
        store.save()

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", '"text"'])
    def test_unreadable_content_starts_empty(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "state.json"
        path.write_text(content, encoding="utf-8")

        assert JsonSettingsStore(path).as_dict() == {}
