"""Deployment capability."""

from .service import DeployCapability, DeploymentOutcome, LocalDirectoryDeployer, slugify

__all__ = ["DeployCapability", "DeploymentOutcome", "LocalDirectoryDeployer", "slugify"]
