"""Index manager for the chunked identifier store.

Produces a usable index on demand with as little backend traffic as possible
on the common path:

- Fast path: the persisted index parses, so it is trusted as-is. No scan.
- Repair path: the index is missing or malformed, so every chunk record in
  the backend is discovered by key listing, read, and counted, and the
  rebuilt index is persisted before it is returned.

The fast path does not check that every listed chunk still exists. A chunk
deleted out-of-band goes unnoticed until the next rebuild.
"""

import logging
from typing import List, Optional

from ..backends.record_backend import RecordBackend
from .records import (
    INDEX_KEY,
    SEQUENCE_KEY,
    IndexRecord,
    chunk_members,
    parse_index,
    parse_next_sequence,
    sort_chunk_keys,
)

logger = logging.getLogger(__name__)


class IndexManager:
    """Loads, validates and rebuilds the index record."""

    def __init__(self, backend: RecordBackend, chunk_size: int):
        """Initialize IndexManager.

        Args:
            backend: Record backend holding index and chunk records
            chunk_size: Chunk capacity used for a freshly built index
        """
        self.backend = backend
        self.chunk_size = chunk_size

    async def load_index_or_none(self) -> Optional[IndexRecord]:
        """Read the persisted index, or None if absent or invalid."""
        raw = await self.backend.get(INDEX_KEY)
        return parse_index(raw, self.chunk_size)

    async def ensure_index(self) -> IndexRecord:
        """Return a valid index, rebuilding it from the chunks when needed."""
        index = await self.load_index_or_none()
        if index is not None:
            return index

        logger.warning("Index record missing or invalid, rebuilding from chunk records")
        return await self.rebuild_index()

    async def rebuild_index(self) -> IndexRecord:
        """Rebuild the index by scanning every chunk record and persist it."""
        chunk_keys = await self.discover_chunk_keys()
        chunks_data = await self.backend.get_many(chunk_keys)

        counts = {}
        total = 0
        for key in chunk_keys:
            count = len(chunk_members(chunks_data.get(key), key))
            counts[key] = count
            total += count

        index = IndexRecord(
            chunk_size=self.chunk_size,
            chunks=list(chunk_keys),
            counts=counts,
            total=total,
        )
        await self.backend.set(INDEX_KEY, index.to_record())

        logger.info(
            f"Rebuilt index from {len(chunk_keys)} chunk records ({total} identifiers)"
        )
        return index

    async def discover_chunk_keys(self) -> List[str]:
        """Every chunk record key in the backend, ordered by sequence number."""
        keys = await self.backend.list_keys()
        return sort_chunk_keys(keys)

    async def load_next_sequence(self) -> int:
        """Next sequence number recorded by the high-water mark record."""
        return parse_next_sequence(await self.backend.get(SEQUENCE_KEY))
