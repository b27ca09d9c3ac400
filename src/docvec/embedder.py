"""EmbeddingGenerator — turns documentation text into validated vectors."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import numpy as np

from docvec.config import SyncConfig
from docvec.exceptions import (
    EmbeddingError,
    ErrorCategory,
    InitializationError,
    ValidationError,
)
from docvec.lifecycle import AsyncOnce, InitState
from docvec.retry import classify_embedding_error, classify_init_error
from docvec.utils import preprocess_text

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docvec.protocols import EmbeddingProvider

logger = logging.getLogger(__name__)

_CONTAINER_KEYS = ("data", "embedding", "tensor")


class EmbeddingGenerator:
    """Embeds text with a local model, loaded once per generator.

    When no *provider* is given a
    :class:`~docvec.providers.SentenceTransformerEmbedding` for
    ``config.model_name`` is created.  The model is loaded on first use or by
    :meth:`initialize`; concurrent callers share a single load.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        self._config = config or SyncConfig()
        if provider is None:
            from docvec.providers.sentence_transformers import SentenceTransformerEmbedding

            provider = SentenceTransformerEmbedding(self._config.model_name)
        self._provider = provider
        self._once: AsyncOnce[EmbeddingProvider] = AsyncOnce("embedding model")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the model.  Safe to call repeatedly.

        Raises:
            InitializationError: If the model cannot be loaded.  A later call
                retries the load.
        """
        await self._once.get_or_init(self._load)

    async def _load(self) -> EmbeddingProvider:
        start = time.perf_counter()
        try:
            await self._provider.load()
        except Exception as exc:
            category = classify_init_error(exc)
            logger.error(
                "Failed to load embedding model %s (%s): %s",
                self.model_name,
                category.value,
                exc,
            )
            raise InitializationError(category, exc) from exc
        logger.info(
            "Loaded embedding model %s in %.0fms",
            self.model_name,
            (time.perf_counter() - start) * 1000,
        )
        return self._provider

    @property
    def state(self) -> InitState:
        return self._once.state

    @property
    def is_ready(self) -> bool:
        """True once the model has loaded."""
        return self._once.is_ready

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def dimensions(self) -> int:
        """Vector length produced by the model.

        Reported by the provider once loaded, otherwise the configured
        dimension.
        """
        if self.is_ready:
            dim = getattr(self._provider, "dimensions", None)
            if isinstance(dim, int) and dim > 0:
                return dim
        return self._config.dimension

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*.

        The text is whitespace-collapsed and truncated to
        ``config.max_text_chars`` before it reaches the model.

        Raises:
            ValidationError: If *text* is not a non-blank string.
            InitializationError: If the model cannot be loaded.
            EmbeddingError: If the model fails or returns an unusable vector.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Invalid input: text must be a non-empty string")

        provider = await self._once.get_or_init(self._load)
        processed = preprocess_text(text, self._config.max_text_chars)

        try:
            raw = await provider.encode(processed)
        except Exception as exc:
            category = classify_embedding_error(exc)
            logger.warning("Embedding generation failed (%s): %s", category.value, exc)
            raise EmbeddingError(category, exc) from exc

        vector = extract_vector(raw)
        if len(vector) != self._config.dimension:
            logger.warning(
                "Embedding dimension mismatch: expected %d, got %d (model %s)",
                self._config.dimension,
                len(vector),
                self.model_name,
            )
        return vector

    async def embed_batch(self, texts: Iterable[str]) -> list[list[float]]:
        """Embed several texts in order.  Fails on the first bad text."""
        return [await self.embed(text) for text in texts]


# ------------------------------------------------------------------
# Output normalization
# ------------------------------------------------------------------


def extract_vector(raw: Any) -> list[float]:
    """Flatten a model output into a list of finite floats.

    Accepts 1-D arrays, ``(1, d)`` batches, nested lists, tensor-like
    objects exposing ``tolist()``, and mappings holding the values under
    ``data``, ``embedding`` or ``tensor``.

    Raises:
        EmbeddingError: With category ``VALIDATION`` when no non-empty,
            all-finite vector can be extracted.
    """
    if isinstance(raw, Mapping):
        for key in _CONTAINER_KEYS:
            if key in raw:
                return extract_vector(raw[key])
        raise EmbeddingError(
            ErrorCategory.VALIDATION,
            message=f"Unrecognized embedding output keys: {sorted(map(str, raw))}",
        )

    if not isinstance(raw, np.ndarray) and hasattr(raw, "tolist"):
        raw = raw.tolist()

    try:
        arr = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise EmbeddingError(
            ErrorCategory.VALIDATION, exc, message=f"Embedding output is not numeric: {exc}"
        ) from exc

    if arr.size == 0:
        raise EmbeddingError(ErrorCategory.VALIDATION, message="Embedding output is empty")
    # (1, d) rows and (d, 1) columns both flatten to (d,)
    arr = np.squeeze(arr)
    # Multi-text batches: the first row belongs to the first text
    while arr.ndim > 1:
        arr = arr[0]
    if arr.ndim == 0:
        arr = arr.reshape(1)
    if not np.isfinite(arr).all():
        raise EmbeddingError(
            ErrorCategory.VALIDATION, message="Embedding contains NaN or infinite values"
        )
    return arr.tolist()
