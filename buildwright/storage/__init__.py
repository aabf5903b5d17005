"""Storage abstraction for Buildwright."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .interface import StorageBackend
from .local import LocalStorageBackend
from .memory import InMemoryStorageBackend

if TYPE_CHECKING:
    from ..core.config import StorageConfig


def create_storage(config: StorageConfig) -> StorageBackend:
    """Build the storage backend selected by configuration."""
    if config.backend == "memory":
        return InMemoryStorageBackend()
    return LocalStorageBackend(config.base_path)


__all__ = ["StorageBackend", "LocalStorageBackend", "InMemoryStorageBackend", "create_storage"]
