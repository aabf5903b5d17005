"""Versioned knowledge store shared by the agents of a session."""

from .models import (
    DEPLOYMENT_PATH,
    FILES_PREFIX,
    PLAN_PATH,
    REQUIREMENTS_PATH,
    RESEARCH_PATH,
    VERIFICATION_PATH,
    ChangeKind,
    KnowledgeChange,
    SearchResult,
    VersionedDocument,
)
from .search import keyword_relevance
from .store import KnowledgeStore, collect_files, validate_path

__all__ = [
    "DEPLOYMENT_PATH",
    "FILES_PREFIX",
    "PLAN_PATH",
    "REQUIREMENTS_PATH",
    "RESEARCH_PATH",
    "VERIFICATION_PATH",
    "ChangeKind",
    "KnowledgeChange",
    "KnowledgeStore",
    "SearchResult",
    "VersionedDocument",
    "collect_files",
    "keyword_relevance",
    "validate_path",
]
