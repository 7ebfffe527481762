"""Read-only cached view of store membership.

Producers that check presence for every item they see should not scan chunk
records each time. A MembershipView loads every identifier once and answers
``in`` checks from memory.

The view is a snapshot. Writes made through another store instance are not
reflected until refresh() is called; writes made through mark() go to the
owning store and are applied locally as well.
"""

import logging
from typing import Iterator, Optional, Set

from .id_set_store import AddResult, IdSetStore, validate_identifier

logger = logging.getLogger(__name__)


class MembershipView:
    """In-memory snapshot of the identifiers held by an IdSetStore."""

    def __init__(self, store: IdSetStore):
        self.store = store
        self._members: Set[str] = set()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> "MembershipView":
        """Load every identifier from the store."""
        exported = await self.store.export_all()
        self._members = set(exported.ids)
        self._loaded = True
        logger.debug(f"Membership view loaded {len(self._members)} identifiers")
        return self

    async def refresh(self) -> "MembershipView":
        """Discard the snapshot and load it again."""
        return await self.load()

    async def mark(self, identifier: str) -> Optional[AddResult]:
        """Record identifier through the owning store.

        Returns None without touching the store when the view already holds
        identifier.
        """
        validate_identifier(identifier)
        if identifier in self._members:
            return None
        result = await self.store.add(identifier)
        self._members.add(identifier)
        return result

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._members

    def __len__(self) -> int:
        return len(self._members)

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)
