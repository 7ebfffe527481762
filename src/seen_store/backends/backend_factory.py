"""Factory for creating record backends."""

import logging
from typing import TYPE_CHECKING

from .filesystem_backend import FilesystemBackend
from .memory_backend import MemoryBackend
from .record_backend import RecordBackend

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


class BackendFactory:
    """Factory for creating a record backend from configuration."""

    @staticmethod
    def create(config: "StoreConfig") -> RecordBackend:
        """Create and initialize the backend named by the configuration.

        Args:
            config: Store configuration

        Returns:
            Initialized RecordBackend instance

        Raises:
            ValueError: If the configured provider is unknown
        """
        provider = config.backend

        if provider == "filesystem":
            logger.debug(f"Creating FilesystemBackend at {config.storage_dir}")
            backend: RecordBackend = FilesystemBackend(
                storage_dir=config.storage_dir,
                record_format=config.record_format,
                temp_file_max_age=config.temp_file_max_age,
            )
        elif provider == "memory":
            logger.debug("Creating MemoryBackend")
            backend = MemoryBackend()
        else:
            raise ValueError(f"Unsupported record backend provider: {provider}")

        backend.initialize()
        return backend
