"""Bulk export/import document format.

An export document looks like::

    {
      "format": "seenStoreBackup",
      "version": 2,
      "exportedAt": "2026-01-31T12:00:00+00:00",
      "count": 3,
      "ids": ["a", "b", "c"],
      "sidecar": {...}              # optional, carried through untouched
    }

For backward compatibility an import also accepts a bare JSON array of
strings, or an object with an ``ids`` array and no ``format`` tag.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..errors import InvalidSnapshotError, SnapshotTooLargeError

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "seenStoreBackup"
SNAPSHOT_VERSION = 2
DEFAULT_MAX_IDS = 5_000_000


@dataclass
class Snapshot:
    """Identifiers (and optional sidecar data) read from an import document."""

    ids: List[Any]
    sidecar: Optional[Dict[str, Any]] = None
    exported_at: Optional[str] = None
    legacy: bool = False


def clean_identifiers(ids: Iterable[Any]) -> List[str]:
    """Non-empty string identifiers from ids, deduplicated, first occurrence wins."""
    seen = set()
    cleaned = []
    for item in ids:
        if isinstance(item, str) and item and item not in seen:
            seen.add(item)
            cleaned.append(item)
    return cleaned


def check_import_size(ids: List[Any], max_ids: int) -> None:
    """Raise SnapshotTooLargeError when ids holds more than max_ids entries."""
    if len(ids) > max_ids:
        raise SnapshotTooLargeError(len(ids), max_ids)


def build_snapshot(
    ids: List[str],
    sidecar: Optional[Dict[str, Any]] = None,
    exported_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build an export document for ids."""
    timestamp = exported_at or datetime.now(timezone.utc)
    document: Dict[str, Any] = {
        "format": SNAPSHOT_FORMAT,
        "version": SNAPSHOT_VERSION,
        "exportedAt": timestamp.isoformat(),
        "count": len(ids),
        "ids": list(ids),
    }
    if sidecar is not None:
        document["sidecar"] = sidecar
    return document


def parse_snapshot(payload: Any, max_ids: int = DEFAULT_MAX_IDS) -> Snapshot:
    """Extract identifiers from a decoded import payload.

    Args:
        payload: Decoded JSON value
        max_ids: Maximum number of entries accepted in the ids array

    Returns:
        Snapshot with the raw ids array (not yet cleaned)

    Raises:
        InvalidSnapshotError: Unrecognized payload shape
        SnapshotTooLargeError: More than max_ids entries
    """
    if isinstance(payload, list):
        snapshot = Snapshot(ids=payload, legacy=True)
    elif isinstance(payload, dict):
        tag = payload.get("format")
        ids = payload.get("ids")
        if not isinstance(ids, list):
            raise InvalidSnapshotError("Snapshot has no 'ids' array")

        if tag is None:
            snapshot = Snapshot(ids=ids, legacy=True)
        elif tag == SNAPSHOT_FORMAT:
            sidecar = payload.get("sidecar")
            if sidecar is not None and not isinstance(sidecar, dict):
                raise InvalidSnapshotError("Snapshot 'sidecar' must be an object")
            snapshot = Snapshot(
                ids=ids,
                sidecar=sidecar,
                exported_at=payload.get("exportedAt"),
            )
        else:
            raise InvalidSnapshotError(f"Unrecognized snapshot format: {tag!r}")
    else:
        raise InvalidSnapshotError(
            f"Unrecognized snapshot payload of type {type(payload).__name__}"
        )

    check_import_size(snapshot.ids, max_ids)
    return snapshot


def read_snapshot_file(path: Path, max_ids: int = DEFAULT_MAX_IDS) -> Snapshot:
    """Load and parse an import document from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidSnapshotError(f"Invalid JSON in {path}: {e}") from e

    snapshot = parse_snapshot(payload, max_ids=max_ids)
    logger.debug(f"Read snapshot {path} with {len(snapshot.ids)} entries")
    return snapshot


def write_snapshot_file(path: Path, document: Dict[str, Any]) -> None:
    """Write an export document as indented JSON, replacing path atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_file, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    tmp_file.replace(path)


def default_snapshot_filename(today: Optional[datetime] = None) -> str:
    """File name for an export taken today, e.g. seen-store-backup-2026-01-31.json."""
    day = (today or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    return f"seen-store-backup-{day}.json"
