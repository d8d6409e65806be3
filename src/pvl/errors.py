"""Exception types raised by PVL."""


class PVLError(Exception):
    """Base class for all PVL errors."""


class ConfigError(PVLError):
    """Raised when a configuration value is missing or invalid."""


class EmbeddingError(PVLError):
    """Embedding generation failed for a single input."""


class EmptyInputError(EmbeddingError):
    def __init__(self, message: str = "Cannot generate embedding for empty text."):
        super().__init__(message)


class ModelUnavailableError(EmbeddingError):
    def __init__(self, message: str = "Embedding model is not available."):
        super().__init__(message)


class InferenceFailedError(EmbeddingError):
    """The encoder raised or returned an unusable vector."""

    def __init__(self, cause: Exception | str):
        self.cause = cause
        super().__init__(f"Failed to generate embedding: {cause}")


class DimensionMismatchError(PVLError):
    """A vector does not have the dimensionality the index was built with."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimensionality {actual} does not match index dimension {expected}.")


class SnapshotError(PVLError):
    """An index snapshot is missing, truncated or corrupt."""


class ItemNotFoundError(PVLError, KeyError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Unknown item: {item_id!r}")

    def __str__(self) -> str:
        return self.args[0]


class ClusterNotFoundError(PVLError, KeyError):
    def __init__(self, cluster_id):
        self.cluster_id = cluster_id
        super().__init__(f"Unknown cluster: {cluster_id!r}")

    def __str__(self) -> str:
        return self.args[0]


class TaskCancelled(PVLError):
    """A background pass noticed its cancellation token and stopped early."""
