"""docvec — keeps a local vector store of documented code symbols in sync."""

from docvec.config import SyncConfig
from docvec.embedder import EmbeddingGenerator
from docvec.exceptions import (
    CategorizedError,
    DeleteError,
    DocVecError,
    EmbeddingError,
    ErrorCategory,
    InitializationError,
    PartialDeleteError,
    QueryError,
    StoreNotReadyError,
    StoreOperationError,
    UpsertError,
    ValidationError,
)
from docvec.lifecycle import InitState
from docvec.planner import plan
from docvec.stores.lance import VectorStoreGateway
from docvec.sync import EmbeddingSync
from docvec.types import (
    CodeSymbol,
    DeleteResult,
    EmbeddingRecord,
    OperationMetrics,
    ReconciliationPlan,
    SearchResult,
)
from docvec.utils import generate_content_hash, generate_id, normalize_path

__version__ = "0.1.0"

__all__ = [
    "CategorizedError",
    "CodeSymbol",
    "DeleteError",
    "DeleteResult",
    "DocVecError",
    "EmbeddingError",
    "EmbeddingGenerator",
    "EmbeddingRecord",
    "EmbeddingSync",
    "ErrorCategory",
    "InitState",
    "InitializationError",
    "OperationMetrics",
    "PartialDeleteError",
    "QueryError",
    "ReconciliationPlan",
    "SearchResult",
    "StoreNotReadyError",
    "StoreOperationError",
    "SyncConfig",
    "UpsertError",
    "ValidationError",
    "VectorStoreGateway",
    "__version__",
    "generate_content_hash",
    "generate_id",
    "normalize_path",
    "plan",
]
