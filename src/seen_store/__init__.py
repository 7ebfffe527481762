"""
Seen Store - persistent, sharded set of already-processed identifiers.

Keeps track of which opaque string identifiers have been handled across
long-lived sessions, with crash-safe bulk import/export and serialized
mutations.
"""

__version__ = "1.2.0"

from .storage.id_set_store import (  # noqa: E402
    AddResult,
    ClearResult,
    ExportResult,
    IdSetStore,
    MergeResult,
    OverrideResult,
)

__all__ = [
    "AddResult",
    "ClearResult",
    "ExportResult",
    "IdSetStore",
    "MergeResult",
    "OverrideResult",
]
