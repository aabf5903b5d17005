"""Unit tests for the versioned knowledge store."""

import pytest

from buildwright.core.exceptions import ContentTooLargeError, InvalidPathError, VersionConflictError
from buildwright.events import EventStream, EventType
from buildwright.knowledge import ChangeKind, KnowledgeStore, collect_files, validate_path


@pytest.fixture
def store(events):
    return KnowledgeStore("session-1", events)


class TestValidatePath:
    """Tests for the structural path check."""

    @pytest.mark.parametrize("path", ["", "requirements/main", "/", "/a//b", "/a/../b", "/a/b c"])
    def test_rejects_malformed_paths(self, path):
        """Test that malformed paths are rejected."""
        with pytest.raises(InvalidPathError):
            validate_path(path)

    def test_strips_trailing_slash(self):
        """Test that a trailing slash is ignored."""
        assert validate_path("/plan/main/") == "/plan/main"


class TestKnowledgeWrites:
    """Tests for writes and optimistic locking."""

    def test_versions_start_at_one_and_increment(self, store):
        """Test that each successful write advances the version by one."""
        first = store.write("/requirements/main", {"summary": "v1"}, author="intake")
        second = store.write("/requirements/main", {"summary": "v2"}, author="architect")

        assert first.version == 1
        assert second.version == 2
        assert second.created_by == "intake"
        assert second.updated_by == "architect"
        assert second.created_at == first.created_at

    def test_stale_expected_version_is_rejected(self, store):
        """Test that a stale expected version leaves the store unchanged."""
        store.write("/plan/main", "first")

        with pytest.raises(VersionConflictError) as exc_info:
            store.write("/plan/main", "second", expected_version=0)

        assert exc_info.value.current_version == 1
        assert store.read("/plan/main").content == "first"

    def test_matching_expected_version_succeeds(self, store):
        """Test that a current expected version allows the write."""
        store.write("/plan/main", "first", expected_version=0)
        updated = store.write("/plan/main", "second", expected_version=1)

        assert updated.version == 2

    def test_content_size_ceiling(self, events):
        """Test that oversized content is rejected."""
        store = KnowledgeStore("s", events, max_content_bytes=10)

        with pytest.raises(ContentTooLargeError):
            store.write("/research/findings", "x" * 11)
        assert store.read("/research/findings") is None

    def test_stored_content_is_isolated_from_caller(self, store):
        """Test that mutating the written object does not change the document."""
        content = {"items": [1]}
        store.write("/research/findings", content)
        content["items"].append(2)

        assert store.read("/research/findings").content == {"items": [1]}

    def test_write_events(self, store, events):
        """Test that creates and updates emit distinct events."""
        store.write("/plan/main", "a", author="architect")
        store.write("/plan/main", "b", author="architect")
        store.delete("/plan/main")

        types = [e.type for e in events.history("session-1")]
        assert types == [EventType.KNOWLEDGE_WRITTEN, EventType.KNOWLEDGE_UPDATED, EventType.KNOWLEDGE_DELETED]


class TestKnowledgeReads:
    """Tests for reads, listing and search."""

    def test_read_missing_returns_none(self, store):
        """Test that a missing document reads as None."""
        assert store.read("/nothing/here") is None

    def test_read_specific_version(self, store):
        """Test that only the current version can be read."""
        store.write("/plan/main", "a")
        store.write("/plan/main", "b")

        assert store.read("/plan/main", version=2).content == "b"
        assert store.read("/plan/main", version=1) is None

    def test_list_paths_by_prefix(self, store):
        """Test prefix listing on segment boundaries."""
        store.write("/files/src/app.js", "1")
        store.write("/files/index.html", "2")
        store.write("/filesystem/notes", "3")

        assert store.list_paths("/files") == ["/files/index.html", "/files/src/app.js"]
        assert len(store.list_paths()) == 3

    def test_search_ranks_by_relevance(self, store):
        """Test that documents matching more terms rank first."""
        store.write("/research/findings", "Use localStorage for todo persistence")
        store.write("/research/alternatives", "IndexedDB also works for persistence")
        store.write("/plan/main", "Nothing relevant")

        results = store.search("todo persistence")
        assert [r.document.path for r in results] == ["/research/findings", "/research/alternatives"]
        assert results[0].relevance == 1.0
        assert results[1].relevance == 0.5

    def test_search_filters(self, store):
        """Test category, limit and minimum relevance filters."""
        store.write("/research/findings", "todo persistence")
        store.write("/plan/main", "todo tasks")

        assert [r.document.path for r in store.search("todo", category="plan")] == ["/plan/main"]
        assert len(store.search("todo", limit=1)) == 1
        assert [r.document.path for r in store.search("todo persistence", min_relevance=0.75)] == [
            "/research/findings"
        ]
        assert store.search("unrelated") == []

    def test_search_uses_store_defaults(self, events):
        """Test that unset limit and minimum relevance fall back to the configured defaults."""
        store = KnowledgeStore("session-1", events, default_limit=1, default_min_relevance=0.75)
        store.write("/research/findings", "todo persistence")
        store.write("/research/alternatives", "persistence options")
        store.write("/plan/main", "todo persistence tasks")

        assert len(store.search("todo persistence")) == 1
        assert len(store.search("todo persistence", limit=5)) == 2
        assert len(store.search("todo persistence", limit=5, min_relevance=0.0)) == 3


class TestSubscriptionsAndSnapshots:
    """Tests for change subscriptions and snapshots."""

    def test_subscribers_see_changes_under_their_prefix(self, store):
        """Test that subscribers only receive changes beneath their path."""
        seen = []
        unsubscribe = store.subscribe("/files", seen.append)

        store.write("/files/app.js", "x")
        store.write("/plan/main", "y")
        store.delete("/files/app.js")
        unsubscribe()
        store.write("/files/other.js", "z")

        assert [(c.path, c.kind) for c in seen] == [
            ("/files/app.js", ChangeKind.WRITTEN),
            ("/files/app.js", ChangeKind.DELETED),
        ]

    def test_failing_subscriber_does_not_break_writes(self, store):
        """Test that a raising subscriber is isolated."""

        def broken(change):
            raise RuntimeError("boom")

        store.subscribe("/", broken)
        assert store.write("/plan/main", "ok").version == 1

    def test_close_releases_subscriptions(self, store):
        """Test that closing the store drops every subscription."""
        store.subscribe("/files", lambda c: None)
        store.subscribe("/plan", lambda c: None)

        store.close()
        assert store.subscription_count == 0

    def test_snapshot_restore_keeps_versions(self, store):
        """Test that restoring a snapshot brings back documents and versions."""
        store.write("/plan/main", "a")
        store.write("/plan/main", "b")
        snapshot = store.get_snapshot()

        store.write("/plan/main", "c")
        store.write("/files/app.js", "x")
        store.restore_snapshot(snapshot)

        assert store.read("/plan/main").version == 2
        assert store.read("/plan/main").content == "b"
        assert store.read("/files/app.js") is None


class TestCollectFiles:
    """Tests for gathering generated files."""

    def test_collects_structured_and_plain_files(self):
        """Test that both file documents and plain strings are collected."""
        store = KnowledgeStore("s", EventStream())
        store.write("/files/src/app.js", {"path": "src/app.js", "content": "console.log(1)"})
        store.write("/files/README.md", "# Todo")
        store.write("/plan/main", "not a file")

        assert collect_files(store) == {"src/app.js": "console.log(1)", "README.md": "# Todo"}
