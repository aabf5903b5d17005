"""
In-memory storage backend.

Used when durability is not required (tests, ephemeral sessions) and as the
fallback when no filesystem location is configured.
"""

from __future__ import annotations

from typing import Any

from ..core.types import utcnow
from .interface import StorageBackend


class InMemoryStorageBackend(StorageBackend):
    """Dictionary-backed storage."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    @staticmethod
    def _normalize(key: str) -> str:
        return key.lstrip("/")

    async def store_text(self, key: str, content: str, metadata: dict[str, Any] | None = None) -> str:
        clean = self._normalize(key)
        self._data[clean] = content
        meta = dict(metadata or {})
        meta["size_chars"] = len(content)
        meta["hash"] = self.compute_hash(content.encode("utf-8"))
        meta["_stored_at"] = utcnow().isoformat()
        meta["_key"] = key
        self._metadata[clean] = meta
        return key

    async def load_text(self, key: str) -> str:
        try:
            return self._data[self._normalize(key)]
        except KeyError:
            raise FileNotFoundError(f"Key not found: {key}") from None

    async def exists(self, key: str) -> bool:
        return self._normalize(key) in self._data

    async def delete(self, key: str) -> bool:
        clean = self._normalize(key)
        self._metadata.pop(clean, None)
        return self._data.pop(clean, None) is not None

    async def list_keys(self, prefix: str = "") -> list[str]:
        clean = self._normalize(prefix)
        return sorted(k for k in self._data if k.startswith(clean))

    async def get_metadata(self, key: str) -> dict[str, Any]:
        return dict(self._metadata.get(self._normalize(key), {}))
