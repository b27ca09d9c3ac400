"""Custom exception hierarchy for the docvec embedding layer."""

from __future__ import annotations

from enum import Enum


class ErrorCategory(Enum):
    """Failure categories used for retry decisions and reporting."""

    # Store operation categories
    SCHEMA = "schema"
    CONSTRAINT = "constraint"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    LOCK = "lock"
    MEMORY = "memory"
    NETWORK = "network"

    # Initialization categories
    PERMISSION = "permission"
    FILESYSTEM = "filesystem"
    DATABASE = "database"
    TABLE = "table"

    # Embedding categories
    VALIDATION = "validation"
    MODEL = "model"

    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        """True when an operation failing with this category may be retried."""
        return self in _TRANSIENT


_TRANSIENT = frozenset(
    {
        ErrorCategory.CONNECTION,
        ErrorCategory.TIMEOUT,
        ErrorCategory.LOCK,
        ErrorCategory.MEMORY,
        ErrorCategory.NETWORK,
    }
)


class DocVecError(Exception):
    """Base exception for all docvec errors."""


class ValidationError(DocVecError, ValueError):
    """Raised when caller input is malformed. Never retried."""


class StoreNotReadyError(DocVecError):
    """Raised when the vector store is used before ``initialize`` succeeded."""


class CategorizedError(DocVecError):
    """An error carrying an :class:`ErrorCategory` and its underlying cause."""

    operation = "operation"

    def __init__(
        self,
        category: ErrorCategory,
        cause: BaseException | None = None,
        message: str | None = None,
    ) -> None:
        self.category = category
        self.cause = cause
        if message is None:
            detail = f": {cause}" if cause is not None else ""
            message = f"{self.operation} failed ({category.value}){detail}"
        super().__init__(message)


class InitializationError(CategorizedError):
    """Raised when the vector store or embedding model cannot be brought up."""

    operation = "Initialization"


class StoreOperationError(CategorizedError):
    """Base for failures of a row-level store operation."""

    operation = "Store operation"


class UpsertError(StoreOperationError):
    """Raised when an upsert fails fatally or exhausts its retries."""

    operation = "Upsert"


class DeleteError(StoreOperationError):
    """Raised when a delete fails fatally or exhausts its retries."""

    operation = "Delete"


class QueryError(StoreOperationError):
    """Raised when a scan or similarity search fails."""

    operation = "Query"


class PartialDeleteError(DeleteError):
    """Raised after a batched delete in which some ids could not be removed.

    Attributes:
        deleted: Number of ids removed.
        failed: Number of ids that could not be removed.
        sample: A few of the failed ids, for logging.
    """

    operation = "Batch delete"

    def __init__(
        self,
        deleted: int,
        failed: int,
        sample: list[str],
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        cause: BaseException | None = None,
    ) -> None:
        self.deleted = deleted
        self.failed = failed
        self.sample = list(sample)
        message = (
            f"Batch delete incomplete: {deleted} deleted, {failed} failed "
            f"(sample: {', '.join(self.sample)})"
        )
        super().__init__(category, cause, message)


class EmbeddingError(CategorizedError):
    """Raised when the embedding model fails to produce a usable vector."""

    operation = "Embedding generation"
