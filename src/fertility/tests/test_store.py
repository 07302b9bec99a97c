"""Tests for the record store adapters."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.fertility.store import (
    InMemoryRecordStore,
    JsonFileRecordStore,
    StorageError,
    create_store,
)


class TestInMemoryRecordStore:
    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        store = InMemoryRecordStore()
        await store.set_item("cycles", [{"startDate": "2025-01-01"}])
        assert await store.get_item("cycles") == [{"startDate": "2025-01-01"}]

    @pytest.mark.asyncio
    async def test_absent_key_is_none(self) -> None:
        assert await InMemoryRecordStore().get_item("nothing") is None

    @pytest.mark.asyncio
    async def test_values_are_copied(self) -> None:
        store = InMemoryRecordStore()
        value = {"2025-01-06": {"date": "2025-01-06"}}
        await store.set_item("day_records", value)
        value["2025-01-07"] = {}
        fetched = await store.get_item("day_records")
        fetched.clear()
        assert await store.get_item("day_records") == {"2025-01-06": {"date": "2025-01-06"}}

    @pytest.mark.asyncio
    async def test_remove_item(self) -> None:
        store = InMemoryRecordStore({"app_version": "1.0.0"})
        await store.remove_item("app_version")
        await store.remove_item("app_version")
        assert store.snapshot() == {}


class TestJsonFileRecordStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        await JsonFileRecordStore(path).set_item("user_settings", {"averageCycleLength": 30})

        reopened = JsonFileRecordStore(path)
        assert await reopened.get_item("user_settings") == {"averageCycleLength": 30}

    @pytest.mark.asyncio
    async def test_missing_file_reads_as_empty(self, tmp_path: Path) -> None:
        store = JsonFileRecordStore(tmp_path / "absent.json")
        assert await store.get_item("cycles") is None

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "records.json"
        await JsonFileRecordStore(path).set_item("cycles", [])
        assert path.exists()

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, tmp_path: Path) -> None:
        store = JsonFileRecordStore(tmp_path / "records.json")
        await store.set_item("cycles", [])
        await store.set_item("app_version", "1.0.0")
        await store.remove_item("cycles")
        assert await store.get_item("cycles") is None
        assert await store.get_item("app_version") == "1.0.0"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text("{not json")
        with pytest.raises(StorageError, match="Corrupt"):
            await JsonFileRecordStore(path).get_item("cycles")

    @pytest.mark.asyncio
    async def test_non_object_document_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(StorageError):
            await JsonFileRecordStore(path).get_item("cycles")

    @pytest.mark.asyncio
    async def test_unserialisable_value_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "records.json"
        store = JsonFileRecordStore(path)
        await store.set_item("cycles", [])
        with pytest.raises(StorageError):
            await store.set_item("cycles", {object()})
        assert await store.get_item("cycles") == []
        assert [p.name for p in tmp_path.iterdir()] == ["records.json"]


class TestCreateStore:
    def test_memory_backend(self) -> None:
        assert isinstance(create_store("memory"), InMemoryRecordStore)

    def test_json_backend(self, tmp_path: Path) -> None:
        store = create_store("json", tmp_path / "records.json")
        assert isinstance(store, JsonFileRecordStore)
        assert store.path == tmp_path / "records.json"

    def test_json_backend_needs_path(self) -> None:
        with pytest.raises(ValueError, match="storage path"):
            create_store("json")

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_store("redis")
