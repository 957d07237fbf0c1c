"""Vault implementation backed by a local directory."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def _to_bytes(data: str | bytes) -> bytes:
    return data if isinstance(data, bytes) else data.encode("utf-8")


class VaultPathError(OSError):
    """A vault path points outside the vault root."""


class FileSystemVault:
    """Markdown vault rooted at a directory, addressed with ``/`` separated paths."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()

    def _resolve(self, path: str) -> Path:
        relative = path.replace("\\", "/").strip("/")
        if not relative:
            raise VaultPathError("Empty vault path")
        resolved = (self.root / relative).resolve()
        if not resolved.is_relative_to(self.root) or resolved == self.root:
            raise VaultPathError(f"Path escapes the vault: {path}")
        return resolved

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def create_folder(self, path: str) -> None:
        self._resolve(path).mkdir(parents=True, exist_ok=True)

    def create_file(self, path: str, data: str | bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("xb") as f:
            f.write(_to_bytes(data))
        logger.debug("vault_file_created", extra={"path": path})

    def modify_file(self, path: str, data: str | bytes) -> None:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        target.write_bytes(_to_bytes(data))
        logger.debug("vault_file_modified", extra={"path": path})

    def read_file(self, path: str) -> str:
        return self._resolve(path).read_bytes().decode("utf-8", errors="replace")

    def delete_folder(self, path: str, recursive: bool = True) -> None:
        target = self._resolve(path)
        if not target.exists():
            return
        if recursive:
            shutil.rmtree(target)
        else:
            target.rmdir()
        logger.debug("vault_folder_deleted", extra={"path": path, "recursive": recursive})
