"""
Local filesystem storage backend.

Provides a filesystem-based implementation of the storage interface,
suitable for development and single-machine deployments.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..core.types import utcnow
from .interface import StorageBackend


class LocalStorageBackend(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, base_path: Path) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for all storage operations
        """
        self.base_path = base_path.resolve()
        self._metadata_suffix = ".meta.json"

    def _get_full_path(self, key: str) -> Path:
        """Get full filesystem path for a key.

        Normalizes the key and ensures the resulting path stays within the
        base storage directory; traversal attempts are flattened into a single
        file name under the base directory.
        """
        clean_key = key.lstrip("/\\").replace("..", "").replace(":", "")
        full_path = (self.base_path / clean_key).resolve()

        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            clean_key = clean_key.replace("/", "_").replace("\\", "_")
            full_path = self.base_path / clean_key

        return full_path

    def _get_metadata_path(self, key: str) -> Path:
        return self._get_full_path(key + self._metadata_suffix)

    async def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never observe a half-written checkpoint
        tmp_path = path.with_name(path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(content)
        await aiofiles.os.replace(tmp_path, path)

    async def store_text(self, key: str, content: str, metadata: dict[str, Any] | None = None) -> str:
        full_path = self._get_full_path(key)
        await self._write(full_path, content)

        meta = dict(metadata or {})
        meta["size_chars"] = len(content)
        meta["hash"] = self.compute_hash(content.encode("utf-8"))
        meta["_stored_at"] = utcnow().isoformat()
        meta["_key"] = key
        await self._write(self._get_metadata_path(key), json.dumps(meta, indent=2, default=str))

        return key

    async def load_text(self, key: str) -> str:
        full_path = self._get_full_path(key)

        if not full_path.exists():
            raise FileNotFoundError(f"Key not found: {key}")

        async with aiofiles.open(full_path, "r", encoding="utf-8") as f:
            return await f.read()

    async def exists(self, key: str) -> bool:
        return self._get_full_path(key).exists()

    async def delete(self, key: str) -> bool:
        """Delete a key together with its metadata file."""
        full_path = self._get_full_path(key)
        meta_path = self._get_metadata_path(key)

        deleted = False
        if full_path.exists():
            await aiofiles.os.remove(full_path)
            deleted = True
        if meta_path.exists():
            await aiofiles.os.remove(meta_path)

        return deleted

    async def list_keys(self, prefix: str = "") -> list[str]:
        search_path = self._get_full_path(prefix) if prefix else self.base_path

        if not search_path.exists():
            return []

        keys = []
        base_len = len(str(self.base_path)) + 1
        for path in search_path.rglob("*"):
            if path.is_file() and not path.name.endswith((self._metadata_suffix, ".tmp")):
                keys.append(str(path)[base_len:].replace("\\", "/"))

        return sorted(keys)

    async def get_metadata(self, key: str) -> dict[str, Any]:
        meta_path = self._get_metadata_path(key)

        if not meta_path.exists():
            return {}

        async with aiofiles.open(meta_path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())

    def get_local_path(self, key: str) -> Path | None:
        full_path = self._get_full_path(key)
        if full_path.exists():
            return full_path
        return None
