"""Filesystem-based record backend.

Stores each record as its own file under a storage directory. Writes go to a
temporary file that is then renamed over the target, so a reader (or a
process restarted after a crash) sees either the old or the new record,
never a torn one.

Directory structure:
    storage_dir/
    ├── .store.lock
    ├── index.json
    ├── sequence.json
    ├── chunk_0000.json
    └── chunk_0001.json
"""

import asyncio
import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import msgpack

from ..errors import RecordBackendError
from .record_backend import RecordBackend

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
_SUFFIXES = {"json": ".json", "msgpack": ".msgpack"}


class FilesystemBackend(RecordBackend):
    """One file per record, written atomically via temp-file rename."""

    LOCK_FILENAME = ".store.lock"

    def __init__(
        self,
        storage_dir: Path,
        record_format: str = "json",
        temp_file_max_age: int = 3600,
    ):
        """Initialize FilesystemBackend.

        Args:
            storage_dir: Directory holding the record files
            record_format: "json" or "msgpack"
            temp_file_max_age: Age in seconds after which leftover .tmp files
                are removed by initialize()
        """
        if record_format not in _SUFFIXES:
            raise ValueError(f"Unsupported record format: {record_format}")

        self.storage_dir = Path(storage_dir)
        self.record_format = record_format
        self.suffix = _SUFFIXES[record_format]
        self.temp_file_max_age = temp_file_max_age

    @property
    def lock_file(self) -> Path:
        return self.storage_dir / self.LOCK_FILENAME

    def initialize(self) -> None:
        """Create the storage directory and sweep stale temp files.

        Raises:
            RecordBackendError: If the directory cannot be created
        """
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RecordBackendError(
                f"Failed to initialize filesystem backend at {self.storage_dir}: {e}"
            ) from e

        removed = self.cleanup_orphaned_temp_files(self.temp_file_max_age)
        if removed:
            logger.info(f"Removed {removed} orphaned temp files from {self.storage_dir}")

    def get_status(self) -> Dict[str, Any]:
        exists = self.storage_dir.exists()
        return {
            "provider": "filesystem",
            "status": "ready" if exists else "not_initialized",
            "storage_dir": str(self.storage_dir),
            "record_format": self.record_format,
            "writable": exists and os.access(self.storage_dir, os.W_OK),
        }

    # ------------------------------------------------------------------
    # RecordBackend interface
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read_record, self._path_for(key))

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._atomic_write, self._path_for(key), value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._unlink, self._path_for(key))

    async def list_keys(self) -> List[str]:
        return await asyncio.to_thread(self._scan_keys)

    # ------------------------------------------------------------------
    # File helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid record key: {key!r}")
        return self.storage_dir / f"{key}{self.suffix}"

    def _encode(self, value: Any) -> bytes:
        if self.record_format == "msgpack":
            return msgpack.packb(value, use_bin_type=True)
        return json.dumps(value, separators=(",", ":")).encode("utf-8")

    def _decode(self, raw: bytes) -> Any:
        if self.record_format == "msgpack":
            return msgpack.unpackb(raw, raw=False)
        return json.loads(raw.decode("utf-8"))

    def _read_record(self, path: Path) -> Optional[Any]:
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RecordBackendError(f"Failed to read record {path.name}: {e}") from e

        try:
            return self._decode(raw)
        except ValueError as e:
            # Unreadable records are treated as absent so callers fall back
            # to their repair path
            logger.warning(f"Ignoring unreadable record {path.name}: {e}")
            return None

    def _atomic_write(self, path: Path, value: Any) -> None:
        tmp_file = path.with_suffix(".tmp")
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "wb") as f:
                f.write(self._encode(value))
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        except OSError as e:
            if tmp_file.exists():
                tmp_file.unlink()
            raise RecordBackendError(f"Failed to write record {path.name}: {e}") from e

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise RecordBackendError(f"Failed to remove record {path.name}: {e}") from e

    def _scan_keys(self) -> List[str]:
        if not self.storage_dir.exists():
            return []
        try:
            return [
                entry.stem
                for entry in self.storage_dir.iterdir()
                if entry.is_file() and entry.suffix == self.suffix
            ]
        except OSError as e:
            raise RecordBackendError(
                f"Failed to list records in {self.storage_dir}: {e}"
            ) from e

    def cleanup_orphaned_temp_files(self, age_threshold_seconds: int = 3600) -> int:
        """Remove .tmp files older than the threshold left behind by crashes.

        Recent temp files may belong to a write in progress and are kept.

        Returns:
            Number of temp files removed
        """
        if not self.storage_dir.exists():
            return 0

        removed_count = 0
        current_time = time.time()

        for temp_path in self.storage_dir.glob("*.tmp"):
            try:
                file_age_seconds = current_time - temp_path.stat().st_mtime
                if file_age_seconds <= age_threshold_seconds:
                    continue
                temp_path.unlink()
                logger.debug(
                    f"Removed orphaned temp file (age: {file_age_seconds:.0f}s): {temp_path}"
                )
                removed_count += 1
            except FileNotFoundError:
                # Renamed into place or swept by another process meanwhile
                continue
            except OSError as e:
                logger.warning(f"Failed to remove orphaned temp file {temp_path}: {e}")

        return removed_count
