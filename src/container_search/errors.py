"""Exception hierarchy for the container search backend."""


class ContainerSearchError(Exception):
    """Base class for all container search failures."""


class ContainerPathError(ContainerSearchError, ValueError):
    """Raised when a serialized container path cannot be decoded."""


class EmbeddingError(ContainerSearchError):
    """Raised when an embedding provider fails or returns malformed vectors."""


class StorageError(ContainerSearchError):
    """Raised when a vector storage backend operation fails."""
