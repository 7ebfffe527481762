"""Unit tests for IdSetStore bulk imports (override and merge)."""

import pytest

from seen_store.backends.memory_backend import MemoryBackend
from seen_store.errors import InvalidSnapshotError, SnapshotTooLargeError
from seen_store.storage.id_set_store import IdSetStore
from seen_store.storage.records import INDEX_KEY, SEQUENCE_KEY, SIDECAR_KEY


async def _add_all(store, identifiers):
    for identifier in identifiers:
        await store.add(identifier)


class TestImportOverride:
    """import_override() replaces the whole store."""

    @pytest.mark.asyncio
    async def test_override_replaces_previous_contents(self, store, memory_backend):
        await _add_all(store, ["a", "b"])

        result = await store.import_override(["c"])

        assert result.total == 1
        assert result.chunks_written == 1
        assert result.removed_chunks == 1
        assert result.orphaned_chunks == []
        assert await store.count() == 1
        assert (await store.export_all()).ids == ["c"]
        assert await memory_backend.get("chunk_0000") is None

    @pytest.mark.asyncio
    async def test_override_writes_chunks_after_existing_sequence_numbers(
        self, store, memory_backend
    ):
        await _add_all(store, ["a", "b", "c"])

        await store.import_override(["w", "x", "y", "z", "v"])

        index = await memory_backend.get(INDEX_KEY)
        assert index["chunks"] == ["chunk_0002", "chunk_0003", "chunk_0004"]
        assert index["counts"] == {"chunk_0002": 2, "chunk_0003": 2, "chunk_0004": 1}
        assert await memory_backend.get(SEQUENCE_KEY) == {"next": 5}

    @pytest.mark.asyncio
    async def test_export_then_override_round_trip(self, store):
        identifiers = ["a", "b", "c", "d", "e"]
        await _add_all(store, identifiers)
        exported = await store.export_all()

        await store.clear()
        await store.import_override(exported.ids)

        assert await store.count() == 5
        assert (await store.export_all()).ids == identifiers

    @pytest.mark.asyncio
    async def test_export_then_override_without_clear(self, store):
        identifiers = ["a", "b", "c", "d", "e"]
        await _add_all(store, identifiers)

        result = await store.import_override((await store.export_all()).ids)

        assert result.total == 5
        assert await store.count() == 5
        assert (await store.export_all()).ids == identifiers
        for identifier in identifiers:
            assert await store.contains(identifier) is True

    @pytest.mark.asyncio
    async def test_override_filters_and_deduplicates(self, store):
        result = await store.import_override(["a", "", None, 3, "b", "a", {"x": 1}])

        assert result.total == 2
        assert (await store.export_all()).ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_override_with_empty_list_empties_store(self, store):
        await _add_all(store, ["a", "b", "c"])

        result = await store.import_override([])

        assert result.total == 0
        assert result.chunks_written == 0
        assert await store.count() == 0
        assert await store.contains("a") is False

    @pytest.mark.asyncio
    async def test_add_after_override_continues_in_last_chunk(self, store):
        await store.import_override(["a"])

        result = await store.add("b")

        assert result.chunk == (await store.describe()).chunks[-1]
        assert await store.count() == 2

    @pytest.mark.asyncio
    async def test_override_without_index_replaces_discovered_chunks(self):
        backend = MemoryBackend({"chunk_0000": {"old": 1}, "chunk_0001": {"older": 1}})
        store = IdSetStore(backend, chunk_size=2)

        result = await store.import_override(["new"])

        assert result.removed_chunks == 2
        assert (await store.export_all()).ids == ["new"]
        assert (await store.describe()).chunks == ["chunk_0002"]
        await store.close()


class TestImportMerge:
    """import_merge() adds only identifiers not yet present."""

    @pytest.mark.asyncio
    async def test_merge_accounting(self, store):
        await store.add("a")

        result = await store.import_merge(["a", "b"])

        assert result.new_count == 1
        assert result.duplicate_count == 1
        assert result.total == 2
        assert await store.count() == 2
        assert await store.contains("b") is True

    @pytest.mark.asyncio
    async def test_merge_never_rewrites_existing_chunks(self, store, memory_backend):
        await store.add("a")
        before = await memory_backend.get("chunk_0000")

        result = await store.import_merge(["b", "c", "d"])

        assert await memory_backend.get("chunk_0000") == before
        index = await memory_backend.get(INDEX_KEY)
        assert index["chunks"] == ["chunk_0000", "chunk_0001", "chunk_0002"]
        assert result.chunks_written == 2
        assert index["total"] == 4

    @pytest.mark.asyncio
    async def test_merge_with_nothing_new_writes_nothing(self, store, memory_backend):
        await _add_all(store, ["a", "b"])
        index_before = await memory_backend.get(INDEX_KEY)

        result = await store.import_merge(["a", "b", "a"])

        assert result.new_count == 0
        assert result.duplicate_count == 2
        assert result.total == 2
        assert result.chunks_written == 0
        assert await memory_backend.get(INDEX_KEY) == index_before

    @pytest.mark.asyncio
    async def test_merge_into_empty_store(self, store):
        result = await store.import_merge(["x", "y", "z"])

        assert result.new_count == 3
        assert result.duplicate_count == 0
        assert (await store.export_all()).ids == ["x", "y", "z"]

    @pytest.mark.asyncio
    async def test_merge_ignores_invalid_entries(self, store):
        result = await store.import_merge(["a", None, "", 5, "a"])

        assert result.new_count == 1
        assert result.duplicate_count == 0
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_merge_packs_by_stored_chunk_size(self, store, memory_backend):
        await store.add("a")
        wider = IdSetStore(memory_backend, chunk_size=5)

        await wider.import_merge(["b", "c", "d", "e", "f"])

        index = await memory_backend.get(INDEX_KEY)
        assert index["chunkSize"] == 2
        assert [index["counts"][key] for key in index["chunks"]] == [1, 2, 2, 1]
        assert (await wider.export_all()).ids == ["a", "b", "c", "d", "e", "f"]
        await wider.close()

    @pytest.mark.asyncio
    async def test_add_after_merge_fills_new_last_chunk(self, store):
        await store.add("a")
        await store.import_merge(["b"])

        result = await store.add("c")

        assert result.chunk == "chunk_0001"
        assert await store.count() == 3


class TestImportValidation:
    """Payload checks shared by both import modes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, "a,b", {"ids": ["a"]}, 42])
    async def test_non_list_payload_rejected(self, store, payload):
        with pytest.raises(InvalidSnapshotError):
            await store.import_override(payload)
        with pytest.raises(InvalidSnapshotError):
            await store.import_merge(payload)

    @pytest.mark.asyncio
    async def test_oversized_payload_rejected_before_any_write(self, memory_backend):
        store = IdSetStore(memory_backend, chunk_size=2, max_import_ids=3)

        with pytest.raises(SnapshotTooLargeError) as exc_info:
            await store.import_override(["a", "b", "c", "d"])

        assert exc_info.value.size == 4
        assert exc_info.value.limit == 3
        assert await memory_backend.list_keys() == []
        await store.close()

    @pytest.mark.asyncio
    async def test_payload_at_limit_accepted(self, memory_backend):
        store = IdSetStore(memory_backend, chunk_size=2, max_import_ids=3)

        result = await store.import_merge(["a", "b", "c"])

        assert result.new_count == 3
        await store.close()


class TestImportSidecar:
    """Sidecar data travels with imports and exports."""

    @pytest.mark.asyncio
    async def test_override_stores_sidecar(self, store, memory_backend):
        await store.import_override(["a"], {"labels": {"a": "done"}})

        assert await memory_backend.get(SIDECAR_KEY) == {"labels": {"a": "done"}}
        assert (await store.export_all()).sidecar == {"labels": {"a": "done"}}

    @pytest.mark.asyncio
    async def test_override_replaces_sidecar(self, store):
        await store.import_override(["a"], {"owner": "ops", "v": 1})

        await store.import_override(["b"], {"v": 2})

        assert (await store.export_all()).sidecar == {"v": 2}

    @pytest.mark.asyncio
    async def test_override_without_sidecar_keeps_stored_one(self, store):
        await store.import_override(["a"], {"v": 1})

        await store.import_override(["b"])

        assert (await store.export_all()).sidecar == {"v": 1}

    @pytest.mark.asyncio
    async def test_merge_merges_sidecar_key_by_key(self, store):
        await store.import_override(["a"], {"owner": "ops", "labels": {"a": "done"}})

        await store.import_merge(["b"], {"labels": {"b": "new"}, "v": 2})

        assert (await store.export_all()).sidecar == {
            "owner": "ops",
            "labels": {"a": "done", "b": "new"},
            "v": 2,
        }

    @pytest.mark.asyncio
    async def test_merge_with_nothing_new_still_merges_sidecar(self, store):
        await store.import_override(["a"], {"v": 1})

        result = await store.import_merge(["a"], {"w": 2})

        assert result.new_count == 0
        assert (await store.export_all()).sidecar == {"v": 1, "w": 2}

    @pytest.mark.asyncio
    async def test_export_without_sidecar(self, store):
        await store.add("a")

        assert (await store.export_all()).sidecar is None

    @pytest.mark.asyncio
    async def test_clear_keeps_sidecar(self, store):
        await store.import_override(["a"], {"v": 1})

        await store.clear()

        assert await store.count() == 0
        assert (await store.export_all()).sidecar == {"v": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sidecar", [["a"], "text", 3])
    async def test_non_mapping_sidecar_rejected(self, store, memory_backend, sidecar):
        with pytest.raises(InvalidSnapshotError):
            await store.import_override(["a"], sidecar)
        with pytest.raises(InvalidSnapshotError):
            await store.import_merge(["a"], sidecar)

        assert await memory_backend.get(SIDECAR_KEY) is None
        assert await store.count() == 0
