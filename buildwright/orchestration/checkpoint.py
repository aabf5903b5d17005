"""
Phase-boundary checkpoints.

A checkpoint is a knowledge snapshot plus the session bookkeeping needed to
continue a run from the phase after the one that just finished. Checkpoints
live in memory and, when a storage backend is configured, are also written
under ``checkpoints/<session_id>/``. Storage failures never stop a run.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..core.logging import get_logger
from ..core.types import utcnow
from ..knowledge import VersionedDocument
from ..models.session import GenerationSession, Phase
from ..storage import StorageBackend

logger = get_logger(__name__)

CHECKPOINT_PREFIX = "checkpoints"


class Checkpoint(BaseModel):
    """Everything needed to resume a session."""

    session_id: str
    sequence: int = Field(ge=1)
    phase: Phase = Field(description="Phase that just finished")
    next_phase: Phase = Field(description="Phase the run continues with")
    created_at: datetime = Field(default_factory=utcnow)
    documents: dict[str, VersionedDocument] = Field(default_factory=dict)
    session: GenerationSession
    budget: dict[str, Any] = Field(default_factory=dict)
    counters: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{CHECKPOINT_PREFIX}/{self.session_id}/{self.sequence:04d}-{self.phase.value}.json"


class CheckpointSummary(BaseModel):
    """Listing entry for a stored checkpoint."""

    session_id: str
    sequence: int
    phase: Phase
    next_phase: Phase
    created_at: datetime
    documents: int


class CheckpointManager:
    """Saves and loads checkpoints."""

    def __init__(self, storage: StorageBackend | None = None) -> None:
        self.storage = storage
        self._memory: dict[str, list[Checkpoint]] = {}

    def next_sequence(self, session_id: str) -> int:
        existing = self._memory.get(session_id, [])
        return existing[-1].sequence + 1 if existing else 1

    async def save(self, checkpoint: Checkpoint) -> str:
        self._memory.setdefault(checkpoint.session_id, []).append(checkpoint)
        if self.storage is not None:
            try:
                await self.storage.store_model(
                    checkpoint.key,
                    checkpoint,
                    metadata={"phase": checkpoint.phase.value, "next_phase": checkpoint.next_phase.value},
                )
            except Exception as e:
                logger.warning("Checkpoint persistence failed", session_id=checkpoint.session_id, error=str(e))
        logger.debug("Checkpoint saved", session_id=checkpoint.session_id, phase=checkpoint.phase.value)
        return checkpoint.key

    async def _stored_keys(self, session_id: str) -> list[str]:
        if self.storage is None:
            return []
        keys = await self.storage.list_keys(f"{CHECKPOINT_PREFIX}/{session_id}/")
        return sorted(k for k in keys if k.endswith(".json"))

    async def latest(self, session_id: str) -> Checkpoint | None:
        """Most recent checkpoint of a session, from memory or storage."""
        in_memory = self._memory.get(session_id)
        if in_memory:
            return in_memory[-1]
        keys = await self._stored_keys(session_id)
        if not keys:
            return None
        checkpoint = await self.storage.load_model(keys[-1], Checkpoint)  # type: ignore[union-attr]
        self._memory[session_id] = [checkpoint]
        return checkpoint

    async def list_checkpoints(self, session_id: str) -> list[CheckpointSummary]:
        checkpoints = list(self._memory.get(session_id, []))
        if not checkpoints:
            for key in await self._stored_keys(session_id):
                checkpoints.append(await self.storage.load_model(key, Checkpoint))  # type: ignore[union-attr]
        return [
            CheckpointSummary(
                session_id=c.session_id,
                sequence=c.sequence,
                phase=c.phase,
                next_phase=c.next_phase,
                created_at=c.created_at,
                documents=len(c.documents),
            )
            for c in checkpoints
        ]

    async def list_sessions(self) -> list[str]:
        """Session ids with at least one checkpoint."""
        sessions = set(self._memory)
        if self.storage is not None:
            for key in await self.storage.list_keys(CHECKPOINT_PREFIX):
                parts = key.split("/")
                if len(parts) >= 3 and parts[-1].endswith(".json"):
                    sessions.add(parts[-2])
        return sorted(sessions)

    def remember(self, checkpoint: Checkpoint) -> None:
        """Adopt a checkpoint loaded elsewhere so sequences continue after it."""
        existing = self._memory.setdefault(checkpoint.session_id, [])
        if checkpoint not in existing:
            existing.append(checkpoint)

    def forget(self, session_id: str) -> None:
        self._memory.pop(session_id, None)
