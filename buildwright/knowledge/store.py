"""
Versioned knowledge store.

Agents hand state to each other through documents addressed by path. Writes
use optimistic locking: a write carrying an ``expected_version`` that differs
from the current version is rejected without touching the store, and the
caller re-reads and retries. The internal mutex only covers the
compare-and-set itself and is never held across a caller's think time.
"""

from __future__ import annotations

import copy
import re
import threading
from collections.abc import Callable, Mapping
from typing import Any

from ..core.exceptions import ContentTooLargeError, InvalidPathError, VersionConflictError
from ..core.logging import get_logger
from ..core.types import content_hash, serialize_content, utcnow
from ..events import EventStream, EventType
from .models import FILES_PREFIX, ChangeKind, KnowledgeChange, SearchResult, VersionedDocument
from .search import RelevanceScorer, keyword_relevance

logger = get_logger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")

KnowledgeCallback = Callable[[KnowledgeChange], None]


def validate_path(path: str) -> str:
    """Check that ``path`` is made of non-empty hierarchical segments.

    Returns:
        The path with any trailing slash removed.

    Raises:
        InvalidPathError: On an empty path, empty segment, relative segment
            or disallowed characters.
    """
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidPathError(message="path must start with '/'", path=str(path))
    trimmed = path.rstrip("/") if len(path) > 1 else path
    segments = trimmed.split("/")[1:]
    if not segments or segments == [""]:
        raise InvalidPathError(message="path has no segments", path=path)
    for segment in segments:
        if not segment:
            raise InvalidPathError(message="path contains an empty segment", path=path)
        if segment in (".", ".."):
            raise InvalidPathError(message="relative segments are not allowed", path=path)
        if not _SEGMENT_RE.match(segment):
            raise InvalidPathError(message=f"invalid characters in segment '{segment}'", path=path)
    return trimmed


class KnowledgeStore:
    """Per-session versioned document store."""

    def __init__(
        self,
        session_id: str,
        events: EventStream | None = None,
        *,
        max_content_bytes: int = 1_048_576,
        default_limit: int = 10,
        default_min_relevance: float = 0.0,
        scorer: RelevanceScorer = keyword_relevance,
    ) -> None:
        self.session_id = session_id
        self.events = events
        self.max_content_bytes = max_content_bytes
        self.default_limit = default_limit
        self.default_min_relevance = default_min_relevance
        self.scorer = scorer
        self._documents: dict[str, VersionedDocument] = {}
        self._subscriptions: dict[int, tuple[str, KnowledgeCallback]] = {}
        self._next_subscription = 0
        self._lock = threading.RLock()

    # -- writes ------------------------------------------------------------

    def write(
        self,
        path: str,
        content: Any,
        expected_version: int | None = None,
        *,
        author: str = "system",
    ) -> VersionedDocument:
        """Create or update a document.

        Args:
            path: Hierarchical document path.
            content: Payload (string, bytes or JSON-compatible value).
            expected_version: When given, the write only succeeds if it equals
                the current version (0 means "must not exist yet").
            author: Agent identity recorded on the document.

        Returns:
            The stored document, carrying its new version.

        Raises:
            InvalidPathError: Path fails the structural check.
            ContentTooLargeError: Payload exceeds the byte ceiling.
            VersionConflictError: ``expected_version`` is stale.
        """
        path = validate_path(path)
        size = len(serialize_content(content))
        if size > self.max_content_bytes:
            raise ContentTooLargeError(
                message="content exceeds size ceiling",
                path=path,
                size_bytes=size,
                limit_bytes=self.max_content_bytes,
            )

        with self._lock:
            current = self._documents.get(path)
            current_version = current.version if current else 0
            if expected_version is not None and expected_version != current_version:
                raise VersionConflictError(
                    message="stale expected version",
                    path=path,
                    current_version=current_version,
                    expected_version=expected_version,
                )
            now = utcnow()
            document = VersionedDocument(
                path=path,
                content=copy.deepcopy(content),
                version=current_version + 1,
                created_at=current.created_at if current else now,
                updated_at=now,
                created_by=current.created_by if current else author,
                updated_by=author,
                content_hash=content_hash(content),
            )
            self._documents[path] = document

        kind = ChangeKind.UPDATED if current else ChangeKind.WRITTEN
        logger.debug("Knowledge written", path=path, version=document.version, author=author)
        self._emit(
            EventType.KNOWLEDGE_UPDATED if current else EventType.KNOWLEDGE_WRITTEN,
            {"path": path, "version": document.version, "author": author},
            agent=author,
        )
        self._notify(KnowledgeChange(path=path, kind=kind, document=document))
        return document

    def delete(self, path: str) -> bool:
        """Explicitly remove a document. Returns False if it did not exist."""
        path = validate_path(path)
        with self._lock:
            removed = self._documents.pop(path, None)
        if removed is None:
            return False
        self._emit(EventType.KNOWLEDGE_DELETED, {"path": path, "version": removed.version})
        self._notify(KnowledgeChange(path=path, kind=ChangeKind.DELETED))
        return True

    # -- reads -------------------------------------------------------------

    def read(self, path: str, version: int | None = None) -> VersionedDocument | None:
        """Return the current document, or None if not found.

        No history is retained: asking for any version other than the current
        one returns None. Point-in-time views come from snapshots.
        """
        path = validate_path(path)
        with self._lock:
            document = self._documents.get(path)
        if document is None:
            return None
        if version is not None and version != document.version:
            return None
        return document

    def list_paths(self, prefix: str | None = None) -> list[str]:
        """Sorted paths, optionally restricted to a path prefix."""
        with self._lock:
            paths = list(self._documents)
        if prefix:
            base = prefix.rstrip("/")
            paths = [p for p in paths if p == base or p.startswith(base + "/")]
        return sorted(paths)

    def search(
        self,
        query: str,
        *,
        category: str | None = None,
        limit: int | None = None,
        min_relevance: float | None = None,
    ) -> list[SearchResult]:
        """Rank documents by relevance to ``query``.

        Documents with zero relevance are never returned. Ties are broken by
        most recent update, then path. Unset ``limit`` and ``min_relevance``
        fall back to the store defaults.
        """
        limit = self.default_limit if limit is None else limit
        min_relevance = self.default_min_relevance if min_relevance is None else min_relevance
        with self._lock:
            documents = list(self._documents.values())

        results: list[SearchResult] = []
        for document in documents:
            if category and document.category != category.strip("/"):
                continue
            relevance = self.scorer(query, document)
            if relevance <= 0.0 or relevance < min_relevance:
                continue
            results.append(SearchResult(document=document, relevance=min(relevance, 1.0)))

        results.sort(key=lambda r: r.document.path)
        results.sort(key=lambda r: (r.relevance, r.document.updated_at), reverse=True)
        return results[:limit]

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, path: str, callback: KnowledgeCallback) -> Callable[[], None]:
        """Notify ``callback`` on changes to ``path`` or anything beneath it.

        Returns:
            A function that removes the subscription.
        """
        path = "/" if path == "/" else validate_path(path)
        with self._lock:
            token = self._next_subscription
            self._next_subscription += 1
            self._subscriptions[token] = (path, callback)

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(token, None)

        return unsubscribe

    def close(self) -> None:
        """Release every subscription (session ended or aborted)."""
        with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def _notify(self, change: KnowledgeChange) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
        for prefix, callback in subscriptions:
            if prefix == "/" or change.path == prefix or change.path.startswith(prefix + "/"):
                try:
                    callback(change)
                except Exception:
                    logger.exception("Knowledge subscriber failed", path=change.path)

    # -- snapshots ---------------------------------------------------------

    def get_snapshot(self) -> dict[str, VersionedDocument]:
        """Consistent point-in-time copy of every document."""
        with self._lock:
            return dict(self._documents)

    def restore_snapshot(self, snapshot: Mapping[str, VersionedDocument]) -> None:
        """Replace the store contents with ``snapshot``, keeping its versions."""
        restored = {validate_path(path): doc for path, doc in snapshot.items()}
        with self._lock:
            self._documents = restored
        logger.info("Knowledge snapshot restored", session_id=self.session_id, documents=len(restored))

    def _emit(self, event_type: EventType, payload: dict[str, Any], agent: str | None = None) -> None:
        if self.events is not None:
            self.events.emit(event_type, self.session_id, payload, agent=agent)


def collect_files(store: KnowledgeStore) -> dict[str, str]:
    """Generated files keyed by project-relative path."""
    files: dict[str, str] = {}
    for path in store.list_paths(FILES_PREFIX):
        document = store.read(path)
        if document is None:
            continue
        content = document.content
        if isinstance(content, dict):
            relative = content.get("path") or path[len(FILES_PREFIX) + 1 :]
            files[relative] = str(content.get("content", ""))
        else:
            files[path[len(FILES_PREFIX) + 1 :]] = content if isinstance(content, str) else str(content)
    return files
