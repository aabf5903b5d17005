"""
Knowledge document models.

A document is addressed by a hierarchical path and carries a monotonically
increasing version that only successful writes advance.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..core.types import utcnow

# Well-known document paths shared by the phase agents
REQUIREMENTS_PATH = "/requirements/main"
RESEARCH_PATH = "/research/findings"
PLAN_PATH = "/plan/main"
FILES_PREFIX = "/files"
VERIFICATION_PATH = "/verification/report"
DEPLOYMENT_PATH = "/deployment/result"


class VersionedDocument(BaseModel):
    """A single document held by the knowledge store."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Hierarchical key, e.g. /requirements/main")
    content: Any = Field(description="Opaque payload, typically JSON-compatible")
    version: int = Field(ge=1, description="Starts at 1 on first write")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: str = Field(default="system")
    updated_by: str = Field(default="system")
    content_hash: str = Field(default="")

    @property
    def category(self) -> str:
        """First path segment, used to filter searches."""
        return self.path.strip("/").split("/", 1)[0]


class ChangeKind(str, Enum):
    """What happened to a document."""

    WRITTEN = "written"
    UPDATED = "updated"
    DELETED = "deleted"


class KnowledgeChange(BaseModel):
    """Notification delivered to path subscribers."""

    path: str
    kind: ChangeKind
    document: VersionedDocument | None = None


class SearchResult(BaseModel):
    """A ranked search hit."""

    document: VersionedDocument
    relevance: float = Field(ge=0.0, le=1.0)
