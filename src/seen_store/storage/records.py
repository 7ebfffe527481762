"""Record shapes persisted by the seen store.

Four kinds of record live in the backend:

    index          {version, chunkSize, chunks, counts, total}
    chunk_<NNNN>   {identifier: 1, ...}
    sequence       {next}
    sidecar        {...}   optional data carried by backups

Records are validated when they are read. A record with the wrong shape is
reported as missing so the caller can fall back to its repair path instead
of failing.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

INDEX_KEY = "index"
SEQUENCE_KEY = "sequence"
SIDECAR_KEY = "sidecar"
CHUNK_PREFIX = "chunk_"
CHUNK_KEY_WIDTH = 4
INDEX_VERSION = 2
DEFAULT_CHUNK_SIZE = 5000

_CHUNK_KEY_PATTERN = re.compile(rf"^{CHUNK_PREFIX}(\d{{{CHUNK_KEY_WIDTH},}})$")


def chunk_key(sequence_number: int) -> str:
    """Record key for a chunk, e.g. ``chunk_0007``."""
    if sequence_number < 0:
        raise ValueError(f"Chunk sequence number must be >= 0, got {sequence_number}")
    return f"{CHUNK_PREFIX}{sequence_number:0{CHUNK_KEY_WIDTH}d}"


def parse_chunk_sequence(key: str) -> Optional[int]:
    """Sequence number encoded in a chunk key, or None for any other key."""
    match = _CHUNK_KEY_PATTERN.match(key)
    return int(match.group(1)) if match else None


def is_chunk_key(key: str) -> bool:
    return parse_chunk_sequence(key) is not None


def sort_chunk_keys(keys: Iterable[str]) -> List[str]:
    """Chunk keys from keys, ordered by sequence number."""
    chunk_keys = [k for k in keys if is_chunk_key(k)]
    return sorted(chunk_keys, key=lambda k: parse_chunk_sequence(k) or 0)


def max_sequence(keys: Iterable[str]) -> int:
    """Highest sequence number among keys, -1 when there is none."""
    highest = -1
    for key in keys:
        n = parse_chunk_sequence(key)
        if n is not None and n > highest:
            highest = n
    return highest


class IndexRecord(BaseModel):
    """Metadata describing chunk order, per-chunk counts and the running total."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = INDEX_VERSION
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, alias="chunkSize", gt=0)
    chunks: List[str]
    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0

    @classmethod
    def empty(cls, chunk_size: int) -> "IndexRecord":
        return cls(chunk_size=chunk_size, chunks=[], counts={}, total=0)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def count_of(self, key: str) -> int:
        return self.counts.get(key, 0)

    @property
    def last_chunk(self) -> Optional[str]:
        return self.chunks[-1] if self.chunks else None

    @property
    def max_sequence(self) -> int:
        return max_sequence(self.chunks)


def parse_index(raw: Any, default_chunk_size: int) -> Optional[IndexRecord]:
    """Validate a raw index record.

    Only the chunk list is mandatory. Missing or null optional fields are
    filled with defaults.

    Returns:
        IndexRecord, or None when the record is absent or structurally invalid
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("chunks"), list):
        return None

    data = dict(raw)
    if not data.get("chunkSize"):
        data["chunkSize"] = default_chunk_size
    if data.get("counts") is None:
        data["counts"] = {}
    if data.get("total") is None:
        data["total"] = 0
    if data.get("version") is None:
        data["version"] = INDEX_VERSION

    try:
        return IndexRecord.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Index record failed validation: {e.error_count()} errors")
        return None


def chunk_members(raw: Any, key: str = "") -> Dict[str, int]:
    """Presence map held by a raw chunk record.

    A missing chunk is empty. A chunk with the wrong shape is logged and
    also treated as empty.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        logger.warning(f"Chunk record {key or '?'} is not a mapping, treating as empty")
        return {}
    return {member: 1 for member in raw if isinstance(member, str) and member}


def parse_next_sequence(raw: Any) -> int:
    """Next unused sequence number from a raw sequence record (0 if unknown)."""
    if isinstance(raw, dict):
        value = raw.get("next")
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
    return 0


def sequence_record(next_sequence: int) -> Dict[str, int]:
    return {"next": next_sequence}


def parse_sidecar(raw: Any) -> Optional[Dict[str, Any]]:
    """Sidecar mapping from a raw sidecar record, or None when absent."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Sidecar record is not a mapping, ignoring it")
        return None
    return raw


def merge_sidecar(
    existing: Optional[Dict[str, Any]], incoming: Dict[str, Any]
) -> Dict[str, Any]:
    """Merge incoming into existing key by key.

    Nested mappings present on both sides are merged one level deep, so a
    backup carrying a few entries of a mapping does not drop the others.
    Any other value from incoming replaces the existing one.
    """
    merged = dict(existing or {})
    for key, value in incoming.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = {**current, **value}
        else:
            merged[key] = value
    return merged
