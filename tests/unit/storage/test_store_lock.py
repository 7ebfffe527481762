"""Unit tests for the cross-process StoreLock."""

from pathlib import Path

import pytest

from seen_store.errors import StoreLockedError
from seen_store.storage.store_lock import StoreLock


class TestStoreLock:
    def test_acquire_creates_lock_file(self, tmp_path: Path):
        lock_file = tmp_path / "records" / ".store.lock"

        with StoreLock(lock_file).acquire():
            assert lock_file.exists()

    def test_second_non_blocking_acquire_fails_while_held(self, tmp_path: Path):
        lock_file = tmp_path / ".store.lock"
        first = StoreLock(lock_file)
        second = StoreLock(lock_file)

        with first.acquire():
            with pytest.raises(StoreLockedError):
                with second.acquire(blocking=False):
                    pass

    def test_lock_released_after_block(self, tmp_path: Path):
        lock_file = tmp_path / ".store.lock"

        with StoreLock(lock_file).acquire():
            pass

        with StoreLock(lock_file).acquire(blocking=False):
            pass

    def test_lock_released_when_block_raises(self, tmp_path: Path):
        lock_file = tmp_path / ".store.lock"

        with pytest.raises(RuntimeError):
            with StoreLock(lock_file).acquire():
                raise RuntimeError("interrupted")

        with StoreLock(lock_file).acquire(blocking=False):
            pass
