"""Record backends for the seen store."""

from .record_backend import RecordBackend
from .memory_backend import MemoryBackend
from .filesystem_backend import FilesystemBackend
from .backend_factory import BackendFactory

__all__ = [
    "RecordBackend",
    "MemoryBackend",
    "FilesystemBackend",
    "BackendFactory",
]
