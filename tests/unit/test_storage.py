"""Unit tests for storage backends."""

import pytest

from buildwright.core.config import StorageConfig
from buildwright.models.documents import PlanDocument, PlanTask
from buildwright.storage import InMemoryStorageBackend, LocalStorageBackend, create_storage


@pytest.mark.asyncio
class TestLocalStorageBackend:
    """Tests for local filesystem storage."""

    async def test_store_and_load_text(self, temp_dir):
        """Test storing and loading text."""
        storage = LocalStorageBackend(temp_dir)

        content = "Hello, World!"
        key = "test/text.txt"

        stored_key = await storage.store_text(key, content)
        assert stored_key == key
        assert await storage.load_text(key) == content

    async def test_store_and_load_model(self, temp_dir):
        """Test storing and loading Pydantic models."""
        storage = LocalStorageBackend(temp_dir)

        plan = PlanDocument(
            summary="Todo app",
            tasks=[PlanTask(id="T1", title="Scaffold", requirement_ids=["REQ-001"])],
            requirements_version=2,
        )
        key = "test/plan.json"

        await storage.store_model(key, plan)
        loaded = await storage.load_model(key, PlanDocument)

        assert loaded.summary == plan.summary
        assert loaded.tasks[0].requirement_ids == ["REQ-001"]
        assert loaded.requirements_version == 2
        assert (await storage.get_metadata(key))["model_type"] == "PlanDocument"

    async def test_load_missing_key_raises(self, temp_dir):
        """Test that loading a missing key raises FileNotFoundError."""
        storage = LocalStorageBackend(temp_dir)

        with pytest.raises(FileNotFoundError):
            await storage.load_text("missing.txt")

    async def test_exists_and_delete(self, temp_dir):
        """Test existence checks and deletion.

        Deleting a missing key reports False.
        """
        storage = LocalStorageBackend(temp_dir)

        key = "test/delete.txt"
        assert not await storage.exists(key)
        await storage.store_text(key, "content")
        assert await storage.exists(key)

        assert await storage.delete(key)
        assert not await storage.exists(key)
        assert not await storage.delete(key)

    async def test_list_keys(self, temp_dir):
        """Test listing keys, excluding metadata sidecar files."""
        storage = LocalStorageBackend(temp_dir)

        await storage.store_text("dir1/file1.txt", "content1")
        await storage.store_text("dir1/file2.txt", "content2")
        await storage.store_text("dir2/file3.txt", "content3")

        all_keys = await storage.list_keys()
        assert all_keys == ["dir1/file1.txt", "dir1/file2.txt", "dir2/file3.txt"]
        assert len(await storage.list_keys("dir1")) == 2
        assert await storage.list_keys("nothing-here") == []

    async def test_get_metadata(self, temp_dir):
        """Test getting metadata."""
        storage = LocalStorageBackend(temp_dir)

        key = "test/meta.txt"
        await storage.store_text(key, "content", {"custom": "value"})

        meta = await storage.get_metadata(key)
        assert meta["custom"] == "value"
        assert meta["size_chars"] == 7
        assert "hash" in meta
        assert "_stored_at" in meta

    async def test_get_local_path(self, temp_dir):
        """Test getting local path."""
        storage = LocalStorageBackend(temp_dir)

        key = "test/path.txt"
        await storage.store_text(key, "content")

        path = storage.get_local_path(key)
        assert path is not None
        assert path.exists()
        assert storage.get_local_path("nonexistent") is None

    async def test_path_traversal_prevention(self, temp_dir):
        """Test that path traversal is prevented."""
        storage = LocalStorageBackend(temp_dir)

        key = "../../../etc/passwd"
        await storage.store_text(key, "content")

        path = storage.get_local_path(key)
        assert path is not None
        assert str(temp_dir.resolve()) in str(path)


@pytest.mark.asyncio
class TestInMemoryStorageBackend:
    """Tests for the dictionary-backed storage."""

    async def test_round_trip_and_prefix_listing(self):
        """Test that keys are normalized and listed by prefix."""
        storage = InMemoryStorageBackend()

        await storage.store_text("/checkpoints/a/0001-intake.json", "{}")
        await storage.store_text("checkpoints/ab/0001-intake.json", "{}")

        assert await storage.load_text("checkpoints/a/0001-intake.json") == "{}"
        assert await storage.list_keys("checkpoints/a/") == ["checkpoints/a/0001-intake.json"]
        assert len(await storage.list_keys("checkpoints")) == 2

    async def test_has_no_local_path(self):
        """Test that memory storage never exposes filesystem paths."""
        storage = InMemoryStorageBackend()
        await storage.store_text("k.txt", "v")

        assert storage.get_local_path("k.txt") is None

    async def test_missing_key(self):
        """Test that a missing key raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            await InMemoryStorageBackend().load_text("nope")


class TestCreateStorage:
    """Tests for backend selection."""

    def test_memory_backend(self):
        """Test that the memory backend is selected by configuration."""
        assert isinstance(create_storage(StorageConfig(backend="memory")), InMemoryStorageBackend)

    def test_local_backend(self, temp_dir):
        """Test that the local backend is rooted at the configured path."""
        storage = create_storage(StorageConfig(backend="local", base_path=temp_dir))

        assert isinstance(storage, LocalStorageBackend)
        assert storage.base_path == temp_dir.resolve()
