"""In-memory record backend."""

import asyncio
import copy
from typing import Any, Dict, List, Mapping, Optional

from .record_backend import RecordBackend


class MemoryBackend(RecordBackend):
    """Process-local dictionary backend.

    Values are deep-copied on the way in and out so callers can never mutate
    stored records by accident. Every call yields to the event loop once,
    which gives concurrent callers the same interleaving points a real I/O
    backend would.
    """

    def __init__(self, records: Optional[Dict[str, Any]] = None):
        self._records: Dict[str, Any] = copy.deepcopy(records) if records else {}

    async def get(self, key: str) -> Optional[Any]:
        await asyncio.sleep(0)
        value = self._records.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        await asyncio.sleep(0)
        self._records[key] = copy.deepcopy(value)

    async def set_many(self, records: Mapping[str, Any]) -> None:
        await asyncio.sleep(0)
        for key, value in records.items():
            self._records[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        await asyncio.sleep(0)
        self._records.pop(key, None)

    async def list_keys(self) -> List[str]:
        await asyncio.sleep(0)
        return list(self._records.keys())

    def get_status(self) -> Dict[str, Any]:
        return {"provider": "memory", "records": len(self._records)}
