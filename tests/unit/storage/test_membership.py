"""Unit tests for MembershipView."""

import pytest

from seen_store.errors import InvalidIdentifierError
from seen_store.storage.id_set_store import IdSetStore
from seen_store.storage.membership import MembershipView


class TestMembershipView:
    @pytest.mark.asyncio
    async def test_load_reflects_store_contents(self, store):
        for identifier in ["a", "b", "c"]:
            await store.add(identifier)

        view = await MembershipView(store).load()

        assert view.loaded
        assert "a" in view
        assert "z" not in view
        assert len(view) == 3
        assert sorted(view) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_unloaded_view_is_empty(self, store):
        view = MembershipView(store)

        assert not view.loaded
        assert len(view) == 0

    @pytest.mark.asyncio
    async def test_mark_records_in_store_and_view(self, store):
        view = await MembershipView(store).load()

        result = await view.mark("a")

        assert result is not None
        assert result.added is True
        assert "a" in view
        assert await store.contains("a")

    @pytest.mark.asyncio
    async def test_mark_skips_store_for_known_identifier(self, store, memory_backend):
        await store.add("a")
        view = await MembershipView(store).load()
        index_before = await memory_backend.get("index")

        assert await view.mark("a") is None
        assert await memory_backend.get("index") == index_before

    @pytest.mark.asyncio
    async def test_mark_rejects_invalid_identifier(self, store):
        view = MembershipView(store)

        with pytest.raises(InvalidIdentifierError):
            await view.mark("")

    @pytest.mark.asyncio
    async def test_view_is_stale_until_refresh(self, store, memory_backend):
        view = await MembershipView(store).load()
        other = IdSetStore(memory_backend, chunk_size=2)

        await other.add("from-elsewhere")
        assert "from-elsewhere" not in view

        await view.refresh()
        assert "from-elsewhere" in view
        await other.close()
