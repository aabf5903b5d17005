"""External capabilities consumed by the orchestrator."""

from .deployment import DeployCapability, DeploymentOutcome, LocalDirectoryDeployer
from .research import HttpResearchService, SearchCapability, SearchHit
from .webhooks import TaskRegistry, TaskStatus, WebhookProcessor

__all__ = [
    "DeployCapability",
    "DeploymentOutcome",
    "LocalDirectoryDeployer",
    "HttpResearchService",
    "SearchCapability",
    "SearchHit",
    "TaskRegistry",
    "TaskStatus",
    "WebhookProcessor",
]
