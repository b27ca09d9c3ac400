"""Protocols — async-first interfaces for embedding and vector storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from docvec.lifecycle import InitState
    from docvec.types import DeleteResult, SearchResult


@runtime_checkable
class EmbeddingProvider(Protocol):
    """A local model turning text into a raw embedding.

    ``encode`` may return any array-like (a numpy array, nested lists, ...);
    :class:`~docvec.embedder.EmbeddingGenerator` flattens and validates it.
    """

    async def load(self) -> None:
        """Load model weights.  Called once before the first ``encode``."""
        ...

    async def encode(self, text: str) -> Any:
        """Embed one preprocessed text with mean pooling and normalization."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Async interface of the vector store gateway used by sync passes."""

    async def initialize(self, workspace_root: str) -> None:
        """Open or create the table under *workspace_root*."""
        ...

    async def upsert(
        self,
        id: str,  # noqa: A002
        text: str,
        vector: Sequence[float],
        file_path: str,
    ) -> None:
        """Replace the record *id* with new text and vector."""
        ...

    async def delete(self, ids: Iterable[str]) -> DeleteResult:
        """Delete records by id."""
        ...

    async def get_ids_by_file_path(self, file_path: str) -> set[str]:
        """Return the ids of every record belonging to *file_path*."""
        ...

    async def get_content_hashes_by_file_path(self, file_path: str) -> dict[str, str]:
        """Return ``{id: content_hash}`` for every record of *file_path*."""
        ...

    async def delete_file_embeddings(self, file_path: str) -> None:
        """Delete every record whose id starts with ``file_path + ":"``."""
        ...

    async def search(self, vector: Sequence[float], limit: int = 5) -> list[SearchResult]:
        """Return the *limit* nearest records."""
        ...

    @property
    def state(self) -> InitState:
        """Lifecycle state of the underlying table handle."""
        ...

    @property
    def is_ready(self) -> bool:
        """True once ``initialize`` has succeeded."""
        ...
