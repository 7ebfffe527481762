"""
Shared pytest fixtures for Seen Store tests.

Stores built here use a small chunk size so that sharding behaviour shows up
after a handful of identifiers.
"""

from pathlib import Path

import pytest
import pytest_asyncio

from seen_store.backends.filesystem_backend import FilesystemBackend
from seen_store.backends.memory_backend import MemoryBackend
from seen_store.storage.id_set_store import IdSetStore

SMALL_CHUNK_SIZE = 2


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def filesystem_backend(tmp_path: Path) -> FilesystemBackend:
    backend = FilesystemBackend(storage_dir=tmp_path / "records")
    backend.initialize()
    return backend


@pytest_asyncio.fixture
async def store(memory_backend):
    """IdSetStore over an in-memory backend with a chunk size of 2."""
    id_store = IdSetStore(memory_backend, chunk_size=SMALL_CHUNK_SIZE)
    yield id_store
    await id_store.close()


@pytest_asyncio.fixture
async def fs_store(filesystem_backend):
    """IdSetStore over a filesystem backend with a chunk size of 2."""
    id_store = IdSetStore(filesystem_backend, chunk_size=SMALL_CHUNK_SIZE)
    yield id_store
    await id_store.close()
