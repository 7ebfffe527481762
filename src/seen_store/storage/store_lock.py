"""Cross-process owner lock for a filesystem store.

The MutationSerializer orders mutations inside one process. Separate
processes writing the same storage directory (for example two CLI
invocations) must also take turns, so each holds an exclusive fcntl.flock()
on the directory's lock file while it mutates the store.
"""

import contextlib
import fcntl
import logging
from pathlib import Path
from typing import Generator

from ..errors import StoreLockedError

logger = logging.getLogger(__name__)


class StoreLock:
    """Exclusive advisory lock on a storage directory."""

    def __init__(self, lock_file: Path):
        """Initialize StoreLock.

        Args:
            lock_file: Path of the lock file; created if missing
        """
        self.lock_file = Path(lock_file)

    @contextlib.contextmanager
    def acquire(self, blocking: bool = True) -> Generator[None, None, None]:
        """Hold the lock for the duration of the with-block.

        Args:
            blocking: Wait for the current owner to release the lock. When
                False, fail immediately instead.

        Raises:
            StoreLockedError: blocking is False and another process owns the lock
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_file.touch(exist_ok=True)

        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        with open(self.lock_file, "r") as lock_f:
            try:
                fcntl.flock(lock_f.fileno(), flags)
            except BlockingIOError as e:
                raise StoreLockedError(
                    f"Store is in use by another process: {self.lock_file}"
                ) from e

            logger.debug(f"Acquired store lock: {self.lock_file}")
            try:
                yield
            finally:
                fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)
                logger.debug(f"Released store lock: {self.lock_file}")
