"""Persistent, sharded set of processed identifiers.

Identifiers are spread over fixed-capacity chunk records. A single index
record lists the chunks in sequence order together with their counts and the
running total. Only the last chunk receives new identifiers; when it is full
a new chunk is allocated with the next unused sequence number.

All mutations (add, clear, import_override, import_merge) are executed by a
MutationSerializer, one at a time in submission order. Reads do not queue
unless the index needs to be rebuilt.

Bulk imports follow write-then-swap: new chunks are written under fresh
sequence numbers first, and a single index write then repoints the store at
them. Until that write the previous contents stay fully readable.

Backups may carry a sidecar mapping of extra data. It is kept in its own
record: override replaces it, merge merges it key by key, export returns it
and clear leaves it alone.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..backends.backend_factory import BackendFactory
from ..backends.record_backend import RecordBackend
from ..errors import InvalidIdentifierError, InvalidSnapshotError
from .index_manager import IndexManager
from .mutation_serializer import MutationSerializer
from .records import (
    DEFAULT_CHUNK_SIZE,
    INDEX_KEY,
    SEQUENCE_KEY,
    SIDECAR_KEY,
    IndexRecord,
    chunk_key,
    chunk_members,
    max_sequence,
    merge_sidecar,
    parse_sidecar,
    sequence_record,
)
from .snapshot import DEFAULT_MAX_IDS, check_import_size, clean_identifiers

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


@dataclass
class AddResult:
    """Outcome of add(): whether the identifier was new, and the new total."""

    added: bool
    total: int
    chunk: Optional[str] = None

    @property
    def already_present(self) -> bool:
        return not self.added


@dataclass
class ClearResult:
    removed_chunks: int


@dataclass
class ExportResult:
    ids: List[str]
    count: int
    sidecar: Optional[Dict[str, Any]] = None


@dataclass
class OverrideResult:
    """Outcome of import_override()."""

    total: int
    chunks_written: int
    removed_chunks: int
    orphaned_chunks: List[str] = field(default_factory=list)


@dataclass
class MergeResult:
    """Outcome of import_merge()."""

    new_count: int
    duplicate_count: int
    total: int
    chunks_written: int = 0


def validate_identifier(identifier: Any) -> str:
    if not isinstance(identifier, str) or not identifier:
        raise InvalidIdentifierError(
            f"Identifier must be a non-empty string, got {identifier!r}"
        )
    return identifier


class IdSetStore:
    """Crash-safe identifier set on top of a RecordBackend."""

    def __init__(
        self,
        backend: RecordBackend,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_import_ids: int = DEFAULT_MAX_IDS,
    ):
        """Initialize IdSetStore.

        Args:
            backend: Record backend holding the index and chunk records
            chunk_size: Capacity of newly written chunks
            max_import_ids: Largest import payload accepted by the bulk imports
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.backend = backend
        self.chunk_size = chunk_size
        self.max_import_ids = max_import_ids
        self.index_manager = IndexManager(backend, chunk_size)
        self._serializer = MutationSerializer()

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "IdSetStore":
        """Build a store and its backend from configuration."""
        return cls(
            BackendFactory.create(config),
            chunk_size=config.chunk_size,
            max_import_ids=config.max_import_ids,
        )

    async def close(self) -> None:
        """Let queued mutations finish and stop accepting new ones."""
        await self._serializer.close()

    async def __aenter__(self) -> "IdSetStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def add(self, identifier: str) -> AddResult:
        """Record identifier as processed.

        Raises:
            InvalidIdentifierError: identifier is empty or not a string
        """
        validate_identifier(identifier)
        return await self._serializer.submit(
            lambda: self._add_locked(identifier), name="add"
        )

    async def count(self) -> int:
        """Total number of identifiers in the store."""
        index = await self._current_index()
        return index.total

    async def contains(self, identifier: str) -> bool:
        """Whether identifier has already been recorded."""
        validate_identifier(identifier)
        index = await self._current_index()
        return await self._find_chunk(index, identifier) is not None

    async def describe(self) -> IndexRecord:
        """Current index, for status reporting."""
        return await self._current_index()

    async def clear(self) -> ClearResult:
        """Remove every identifier. Clearing an empty store is a no-op."""
        return await self._serializer.submit(self._clear_locked, name="clear")

    async def export_all(self) -> ExportResult:
        """Every identifier, in chunk order then insertion order within a chunk."""
        index = await self._current_index()
        chunks_data = await self.backend.get_many(index.chunks)

        ids: List[str] = []
        seen = set()
        for key in index.chunks:
            for member in chunk_members(chunks_data.get(key), key):
                if member not in seen:
                    seen.add(member)
                    ids.append(member)

        sidecar = parse_sidecar(await self.backend.get(SIDECAR_KEY))
        return ExportResult(ids=ids, count=len(ids), sidecar=sidecar)

    async def import_override(
        self, ids: List[Any], sidecar: Optional[Dict[str, Any]] = None
    ) -> OverrideResult:
        """Replace the whole store with the non-empty, deduplicated strings in ids.

        A given sidecar replaces the stored one; without one the stored
        sidecar is kept.

        Raises:
            InvalidSnapshotError: ids is not a list, or sidecar is not a mapping
            SnapshotTooLargeError: ids exceeds max_import_ids
        """
        cleaned = self._prepare_import(ids, sidecar)
        return await self._serializer.submit(
            lambda: self._import_override_locked(cleaned, sidecar),
            name="import_override",
        )

    async def import_merge(
        self, ids: List[Any], sidecar: Optional[Dict[str, Any]] = None
    ) -> MergeResult:
        """Add the identifiers from ids that are not already present.

        A given sidecar is merged key by key into the stored one.

        Raises:
            InvalidSnapshotError: ids is not a list, or sidecar is not a mapping
            SnapshotTooLargeError: ids exceeds max_import_ids
        """
        cleaned = self._prepare_import(ids, sidecar)
        return await self._serializer.submit(
            lambda: self._import_merge_locked(cleaned, sidecar), name="import_merge"
        )

    # ------------------------------------------------------------------
    # Serialized operation bodies
    # ------------------------------------------------------------------

    async def _add_locked(self, identifier: str) -> AddResult:
        index = await self.index_manager.ensure_index()

        existing = await self._find_chunk(index, identifier)
        if existing is not None:
            return AddResult(added=False, total=index.total, chunk=existing)

        index, active = await self._resolve_active_chunk(index)

        # Re-read the chunk right before writing it
        members = chunk_members(await self.backend.get(active), active)
        if identifier in members:
            return AddResult(added=False, total=index.total, chunk=active)

        members[identifier] = 1
        previous_count = index.count_of(active)
        index.counts[active] = len(members)
        index.total += len(members) - previous_count

        # Index goes last: it is what makes the new member visible
        await self.backend.set_many({active: members, INDEX_KEY: index.to_record()})
        return AddResult(added=True, total=index.total, chunk=active)

    async def _clear_locked(self) -> ClearResult:
        index = await self.index_manager.load_index_or_none()
        discovered = await self.index_manager.discover_chunk_keys()

        keys = list(index.chunks) if index is not None else []
        indexed = set(keys)
        keys += [k for k in discovered if k not in indexed]

        next_sequence = await self._next_sequence(keys)

        # An empty index is the commit point; chunks left behind by a crash
        # after it are unreferenced and swept by the next clear
        empty = IndexRecord.empty(index.chunk_size if index else self.chunk_size)
        await self.backend.set_many(
            {SEQUENCE_KEY: sequence_record(next_sequence), INDEX_KEY: empty.to_record()}
        )
        await self.backend.remove_many(keys)
        await self.backend.remove(INDEX_KEY)

        logger.info(f"Cleared store: removed {len(keys)} chunk records")
        return ClearResult(removed_chunks=len(keys))

    async def _import_override_locked(
        self, cleaned: List[str], sidecar: Optional[Dict[str, Any]]
    ) -> OverrideResult:
        old_index = await self.index_manager.load_index_or_none()
        if old_index is not None:
            old_keys = list(old_index.chunks)
        else:
            old_keys = await self.index_manager.discover_chunk_keys()

        new_keys, new_counts = await self._write_new_chunks(
            cleaned, old_keys, self.chunk_size
        )

        index = IndexRecord(
            chunk_size=self.chunk_size,
            chunks=new_keys,
            counts=new_counts,
            total=len(cleaned),
        )
        await self.backend.set(INDEX_KEY, index.to_record())
        logger.info(
            f"Override import committed: {index.total} identifiers in {len(new_keys)} chunks"
        )
        if sidecar is not None:
            await self.backend.set(SIDECAR_KEY, sidecar)

        orphaned = await self._remove_best_effort(old_keys)
        return OverrideResult(
            total=index.total,
            chunks_written=len(new_keys),
            removed_chunks=len(old_keys) - len(orphaned),
            orphaned_chunks=orphaned,
        )

    async def _import_merge_locked(
        self, cleaned: List[str], sidecar: Optional[Dict[str, Any]]
    ) -> MergeResult:
        old_index = await self.index_manager.ensure_index()
        chunks_data = await self.backend.get_many(old_index.chunks)

        existing = set()
        for key in old_index.chunks:
            existing.update(chunk_members(chunks_data.get(key), key))

        to_write = [member for member in cleaned if member not in existing]
        duplicate_count = len(cleaned) - len(to_write)

        if sidecar:
            stored = parse_sidecar(await self.backend.get(SIDECAR_KEY))
            await self.backend.set(SIDECAR_KEY, merge_sidecar(stored, sidecar))

        if not to_write:
            return MergeResult(
                new_count=0, duplicate_count=duplicate_count, total=old_index.total
            )

        new_keys, new_counts = await self._write_new_chunks(
            to_write, old_index.chunks, old_index.chunk_size
        )

        counts = dict(old_index.counts)
        counts.update(new_counts)
        index = IndexRecord(
            chunk_size=old_index.chunk_size,
            chunks=list(old_index.chunks) + new_keys,
            counts=counts,
            total=old_index.total + len(to_write),
        )
        await self.backend.set(INDEX_KEY, index.to_record())
        logger.info(
            f"Merge import committed: {len(to_write)} new, {duplicate_count} duplicates, "
            f"total {index.total}"
        )

        return MergeResult(
            new_count=len(to_write),
            duplicate_count=duplicate_count,
            total=index.total,
            chunks_written=len(new_keys),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _current_index(self) -> IndexRecord:
        index = await self.index_manager.load_index_or_none()
        if index is not None:
            return index
        # Rebuilding writes the index, so it waits its turn behind mutations
        return await self._serializer.submit(
            self.index_manager.ensure_index, name="repair"
        )

    async def _find_chunk(self, index: IndexRecord, identifier: str) -> Optional[str]:
        for key in index.chunks:
            if identifier in chunk_members(await self.backend.get(key), key):
                return key
        return None

    async def _next_sequence(self, keys: List[str]) -> int:
        recorded = await self.index_manager.load_next_sequence()
        return max(max_sequence(keys) + 1, recorded)

    async def _resolve_active_chunk(self, index: IndexRecord) -> Tuple[IndexRecord, str]:
        last = index.last_chunk
        if last is not None and index.count_of(last) < index.chunk_size:
            return index, last

        sequence = await self._next_sequence(index.chunks)
        key = chunk_key(sequence)
        index.chunks.append(key)
        index.counts[key] = 0

        # Persist the allocation before any identifier goes into the chunk
        await self.backend.set_many(
            {
                SEQUENCE_KEY: sequence_record(sequence + 1),
                key: {},
                INDEX_KEY: index.to_record(),
            }
        )
        logger.debug(f"Allocated chunk {key}")
        return index, key

    async def _write_new_chunks(
        self, members: List[str], existing_keys: List[str], chunk_size: int
    ) -> Tuple[List[str], Dict[str, int]]:
        """Write members into fresh chunks numbered after every existing one.

        The sequence range is reserved before any chunk is written so that
        numbers stay unique even if the import dies half-way.
        """
        start = await self._next_sequence(existing_keys)
        groups = [
            members[i : i + chunk_size]
            for i in range(0, len(members), chunk_size)
        ]
        await self.backend.set(SEQUENCE_KEY, sequence_record(start + len(groups)))

        keys: List[str] = []
        counts: Dict[str, int] = {}
        for offset, group in enumerate(groups):
            key = chunk_key(start + offset)
            await self.backend.set(key, {member: 1 for member in group})
            keys.append(key)
            counts[key] = len(group)

        logger.debug(f"Wrote {len(keys)} new chunks starting at sequence {start}")
        return keys, counts

    async def _remove_best_effort(self, keys: List[str]) -> List[str]:
        orphaned = []
        for key in keys:
            try:
                await self.backend.remove(key)
            except Exception as e:
                logger.warning(f"Failed to remove superseded chunk {key}: {e}")
                orphaned.append(key)
        return orphaned

    def _prepare_import(self, ids: Any, sidecar: Any = None) -> List[str]:
        if not isinstance(ids, list):
            raise InvalidSnapshotError(
                f"Import expects a list of identifiers, got {type(ids).__name__}"
            )
        if sidecar is not None and not isinstance(sidecar, dict):
            raise InvalidSnapshotError(
                f"Import sidecar must be a mapping, got {type(sidecar).__name__}"
            )
        check_import_size(ids, self.max_import_ids)
        return clean_identifiers(ids)
