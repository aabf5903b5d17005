"""
Storage backend interface.

Defines the abstract interface for durable state (checkpoints, circuit breaker
state, deployed artifacts), enabling pluggable backends (local filesystem, memory).
Keys are relative, slash-separated strings such as ``checkpoints/<session>/0003-building.json``.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class StorageBackend(ABC):
    """Abstract storage backend interface."""

    @abstractmethod
    async def store_text(self, key: str, content: str, metadata: dict[str, Any] | None = None) -> str:
        """Store text content and return the storage key.

        Args:
            key: Storage key/path.
            content: Text content to store.
            metadata: Optional metadata to associate.

        Returns:
            The final storage key.
        """
        ...

    async def store_model(self, key: str, model: BaseModel, metadata: dict[str, Any] | None = None) -> str:
        """Store a Pydantic model as JSON.

        Args:
            key: Storage key/path.
            model: Pydantic model instance to store.
            metadata: Optional metadata to associate.

        Returns:
            The final storage key.
        """
        meta = dict(metadata or {})
        meta["model_type"] = type(model).__name__
        return await self.store_text(key, model.model_dump_json(indent=2), meta)

    @abstractmethod
    async def load_text(self, key: str) -> str:
        """Load text content from storage.

        Raises:
            FileNotFoundError: If the key does not exist.
        """
        ...

    async def load_model(self, key: str, model_type: type[T]) -> T:
        """Load a Pydantic model from storage.

        Args:
            key: Storage key/path to load from.
            model_type: The Pydantic model class to deserialize into.

        Returns:
            The deserialized Pydantic model instance.
        """
        return model_type.model_validate_json(await self.load_text(key))

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a key exists in storage."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key from storage.

        Returns:
            True if the key was deleted, False if it did not exist.
        """
        ...

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """List all keys with the given prefix, sorted."""
        ...

    @abstractmethod
    async def get_metadata(self, key: str) -> dict[str, Any]:
        """Get metadata for a key (empty dict if none)."""
        ...

    @staticmethod
    def compute_hash(data: bytes) -> str:
        """Compute SHA-256 hash of data.

        Args:
            data: Raw bytes to hash.

        Returns:
            Hexadecimal string representation of the SHA-256 hash.
        """
        return hashlib.sha256(data).hexdigest()

    def get_local_path(self, key: str) -> Path | None:
        """Get local filesystem path if available.

        Backends without a filesystem presence return None.
        """
        return None
