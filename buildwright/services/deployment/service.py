"""
Deployment Service.

Publishes the generated files of a session. The bundled deployer writes them
under ``deployments/<project>/`` in the storage backend and returns a
``file://`` URL when the backend lives on disk.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from ...core.exceptions import ValidationError
from ...core.logging import get_logger
from ...storage import StorageBackend

logger = get_logger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")
    return slug or "project"


class DeploymentOutcome(BaseModel):
    """Where a deployment ended up."""

    url: str
    provider: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeployCapability(ABC):
    """External deployment capability injected into agents."""

    @abstractmethod
    async def deploy(self, project_name: str, artifacts: Mapping[str, str]) -> DeploymentOutcome:
        """Publish ``artifacts`` (relative path to file content)."""
        ...


class LocalDirectoryDeployer(DeployCapability):
    """Deploy by copying artifacts into the storage backend."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def deploy(self, project_name: str, artifacts: Mapping[str, str]) -> DeploymentOutcome:
        if not artifacts:
            raise ValidationError(message="Nothing to deploy", field_name="artifacts")

        slug = slugify(project_name)
        root = f"deployments/{slug}"
        for relative_path, content in sorted(artifacts.items()):
            await self.storage.store_text(f"{root}/{relative_path.lstrip('/')}", content)

        local = self.storage.get_local_path(root)
        url = local.resolve().as_uri() if local is not None else f"memory://{root}"
        logger.info("Deployment written", project=slug, files=len(artifacts), url=url)
        return DeploymentOutcome(url=url, provider="local", metadata={"files": len(artifacts)})
