"""
Core type definitions for Buildwright.

Token accounting, canonical content serialization and time helpers shared by
the knowledge store, budget tracker and agents.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def content_hash(content: Any) -> str:
    """SHA-256 over a canonical serialization of ``content``."""
    return hashlib.sha256(serialize_content(content)).hexdigest()


def serialize_content(content: Any) -> bytes:
    """Canonical byte form of a document payload.

    Strings and bytes are taken as-is; anything else is serialized as sorted-key JSON.
    """
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")
    return json.dumps(content, sort_keys=True, default=str).encode("utf-8")


class TokenUsage(BaseModel):
    """Token accounting for one or more model calls."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )
