"""Exception types raised by the seen store."""


class SeenStoreError(Exception):
    """Base class for all seen store errors."""

    pass


class InvalidIdentifierError(SeenStoreError, ValueError):
    """Raised when an identifier is missing, empty or not a string."""

    pass


class InvalidSnapshotError(SeenStoreError, ValueError):
    """Raised when an import payload has an unrecognized shape."""

    pass


class SnapshotTooLargeError(InvalidSnapshotError):
    """Raised when an import payload exceeds the configured identifier limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Snapshot too large: {size} identifiers exceeds limit of {limit}"
        )
        self.size = size
        self.limit = limit


class RecordBackendError(SeenStoreError):
    """Raised when the record backend fails to read, write or delete."""

    pass


class StoreLockedError(SeenStoreError):
    """Raised when another process already owns the store."""

    pass
