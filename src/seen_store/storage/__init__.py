"""Chunked identifier storage components."""

from .records import IndexRecord
from .index_manager import IndexManager
from .mutation_serializer import MutationSerializer
from .id_set_store import IdSetStore
from .membership import MembershipView
from .store_lock import StoreLock

__all__ = [
    "IndexRecord",
    "IndexManager",
    "MutationSerializer",
    "IdSetStore",
    "MembershipView",
    "StoreLock",
]
