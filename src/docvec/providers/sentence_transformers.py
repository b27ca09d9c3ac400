"""SentenceTransformerEmbedding — local embedding provider (all-MiniLM-L6-v2)."""

from __future__ import annotations

import asyncio
from typing import Any

from sentence_transformers import SentenceTransformer


class SentenceTransformerEmbedding:
    """Embedding provider backed by ``sentence-transformers``.

    The model is loaded by :meth:`load` (or lazily on the first encode).
    CPU-bound loading and inference run in a worker thread via
    :func:`asyncio.to_thread`.  all-MiniLM-L6-v2 applies mean pooling; the
    output is L2-normalized here.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2") -> None:
        self._model_name = model_name
        self._model: SentenceTransformer | None = None

    def _load_model(self) -> SentenceTransformer:
        if self._model is None:
            self._model = SentenceTransformer(self._model_name)
        return self._model

    # ------------------------------------------------------------------
    # Sync methods
    # ------------------------------------------------------------------

    def encode_sync(self, text: str) -> Any:
        """Embed a single text string (synchronous)."""
        model = self._load_model()
        return model.encode([text], normalize_embeddings=True)

    # ------------------------------------------------------------------
    # Async methods (EmbeddingProvider protocol)
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load the model weights in a thread pool."""
        await asyncio.to_thread(self._load_model)

    async def encode(self, text: str) -> Any:
        """Embed a single text string in a thread pool."""
        return await asyncio.to_thread(self.encode_sync, text)

    @property
    def dimensions(self) -> int:
        """Return the embedding dimensionality."""
        model = self._load_model()
        dim = model.get_sentence_embedding_dimension()
        if dim is None:
            msg = f"Model {self._model_name!r} did not report embedding dimensions"
            raise RuntimeError(msg)
        return dim

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model_name
