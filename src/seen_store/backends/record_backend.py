"""Abstract base class for record backends.

A record backend is a flat key-value store of JSON-compatible values. It has
per-key get/set/remove and a listing of every key, but no multi-key
transactions. The seen store builds its index and chunk records on top of it.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional


class RecordBackend(ABC):
    """Abstract interface for record backends.

    Implementations:
    - MemoryBackend: process-local dictionary, used for tests and ephemeral stores
    - FilesystemBackend: one file per record under a storage directory

    All methods are coroutines. Failures are raised as RecordBackendError and
    are never retried at this layer.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the value stored under key, or None if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete key. Removing a missing key is a no-op."""
        pass

    @abstractmethod
    async def list_keys(self) -> List[str]:
        """Return every key currently stored."""
        pass

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Read several keys. Missing keys are left out of the result."""
        out: Dict[str, Any] = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                out[key] = value
        return out

    async def set_many(self, records: Mapping[str, Any]) -> None:
        """Write several records in mapping order.

        Callers place the record that acts as a commit marker last, so that an
        interrupted call never leaves it pointing at data not yet written.
        """
        for key, value in records.items():
            await self.set(key, value)

    async def remove_many(self, keys: Iterable[str]) -> None:
        """Delete several keys."""
        for key in keys:
            await self.remove(key)

    def initialize(self) -> None:
        """Prepare backend storage. Default is a no-op."""
        pass

    def get_status(self) -> Dict[str, Any]:
        """Describe the backend for status output."""
        return {"provider": type(self).__name__}
