"""Tests for EmbeddingGenerator and the sentence-transformers provider."""

from __future__ import annotations

import asyncio
import math
from unittest.mock import MagicMock

import numpy as np
import pytest
from conftest import DIM, FakeProvider

from docvec.config import SyncConfig
from docvec.embedder import EmbeddingGenerator, extract_vector
from docvec.exceptions import (
    EmbeddingError,
    ErrorCategory,
    InitializationError,
    ValidationError,
)
from docvec.lifecycle import InitState
from docvec.protocols import EmbeddingProvider

# ==================================================================
# Loading
# ==================================================================


class TestLoading:
    @pytest.mark.asyncio
    async def test_lazy_load_on_first_embed(self, generator, provider):
        assert generator.state is InitState.UNINITIALIZED
        await generator.embed("hello")
        assert generator.is_ready
        assert provider.load_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_embeds_load_once(self, generator, provider):
        await asyncio.gather(*(generator.embed(f"text {i}") for i in range(5)))
        assert provider.load_calls == 1

    @pytest.mark.asyncio
    async def test_load_failure_raises_and_retries(self, generator, provider):
        provider.load_error = PermissionError("cache directory is read-only")
        with pytest.raises(InitializationError) as info:
            await generator.initialize()
        assert info.value.category is ErrorCategory.PERMISSION
        assert generator.state is InitState.UNINITIALIZED

        provider.load_error = None
        await generator.initialize()
        assert generator.is_ready
        assert provider.load_calls == 2

    def test_model_name_and_dimensions(self, generator):
        assert generator.model_name == "fake-model"
        assert generator.dimensions == DIM

    @pytest.mark.asyncio
    async def test_dimensions_from_provider_once_ready(self, config):
        provider = FakeProvider(dim=DIM * 2)
        gen = EmbeddingGenerator(provider, config)
        assert gen.dimensions == DIM
        await gen.initialize()
        assert gen.dimensions == DIM * 2


# ==================================================================
# Embedding
# ==================================================================


class TestEmbed:
    @pytest.mark.asyncio
    async def test_returns_flat_finite_vector(self, generator):
        vector = await generator.embed("Parses the config")
        assert isinstance(vector, list)
        assert len(vector) == DIM
        assert all(isinstance(x, float) and math.isfinite(x) for x in vector)

    @pytest.mark.asyncio
    async def test_deterministic(self, generator):
        assert await generator.embed("same") == await generator.embed("same")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n\t", None, 42])
    async def test_invalid_input(self, generator, provider, text):
        with pytest.raises(ValidationError):
            await generator.embed(text)
        assert provider.encoded == []

    @pytest.mark.asyncio
    async def test_preprocesses_before_model(self, provider):
        gen = EmbeddingGenerator(provider, SyncConfig(dimension=DIM, max_text_chars=10))
        await gen.embed("  Parses\n\n   the   configuration file  ")
        assert provider.encoded == ["Parses the"]

    @pytest.mark.asyncio
    async def test_model_failure_categorized(self, generator, provider):
        provider.encode_error = RuntimeError("CUDA out of memory")
        with pytest.raises(EmbeddingError) as info:
            await generator.embed("hello")
        assert info.value.category is ErrorCategory.MEMORY
        assert isinstance(info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_nan_output_rejected(self, generator, provider):
        provider.output = np.array([[0.1, float("nan")]])
        with pytest.raises(EmbeddingError) as info:
            await generator.embed("hello")
        assert info.value.category is ErrorCategory.VALIDATION

    @pytest.mark.asyncio
    async def test_dimension_mismatch_warns(self, generator, provider, caplog):
        provider.output = [0.5, 0.5]
        with caplog.at_level("WARNING", logger="docvec.embedder"):
            vector = await generator.embed("hello")
        assert vector == [0.5, 0.5]
        assert "dimension mismatch" in caplog.text

    @pytest.mark.asyncio
    async def test_embed_batch_in_order(self, generator):
        batch = await generator.embed_batch(["a", "b"])
        assert batch == [await generator.embed("a"), await generator.embed("b")]


# ==================================================================
# Output normalization
# ==================================================================


class _Tensor:
    def __init__(self, values):
        self._values = values

    def tolist(self):
        return self._values


class TestExtractVector:
    @pytest.mark.parametrize(
        "raw",
        [
            [0.1, 0.2, 0.3],
            [[0.1, 0.2, 0.3]],
            np.array([0.1, 0.2, 0.3], dtype=np.float32),
            np.array([[0.1, 0.2, 0.3]]),
            np.array([[0.1], [0.2], [0.3]]),
            [[[0.1, 0.2, 0.3]]],
            np.array([[0.1, 0.2, 0.3], [0.9, 0.9, 0.9]]),
            _Tensor([[0.1, 0.2, 0.3]]),
            {"data": [0.1, 0.2, 0.3]},
            {"embedding": np.array([[0.1, 0.2, 0.3]])},
            {"tensor": _Tensor([0.1, 0.2, 0.3])},
        ],
    )
    def test_shapes(self, raw):
        assert extract_vector(raw) == pytest.approx([0.1, 0.2, 0.3])

    @pytest.mark.parametrize(
        "raw",
        [
            [],
            np.zeros((0, 4)),
            [0.1, float("inf")],
            ["a", "b"],
            [[0.1, 0.2], [0.3]],
            {"other": [0.1]},
        ],
    )
    def test_rejects(self, raw):
        with pytest.raises(EmbeddingError) as info:
            extract_vector(raw)
        assert info.value.category is ErrorCategory.VALIDATION


# ==================================================================
# SentenceTransformer provider
# ==================================================================


class TestSentenceTransformerEmbedding:
    def _make(self, model=None):
        from docvec.providers.sentence_transformers import SentenceTransformerEmbedding

        p = SentenceTransformerEmbedding.__new__(SentenceTransformerEmbedding)
        p._model_name = "test-model"
        p._model = model
        return p

    def test_model_name(self):
        assert self._make().model_name == "test-model"

    def test_isinstance_embedding_provider(self):
        assert isinstance(self._make(), EmbeddingProvider)

    @pytest.mark.asyncio
    async def test_encode_normalizes_in_thread(self):
        model = MagicMock()
        model.encode = MagicMock(return_value=np.array([[0.6, 0.8]]))
        p = self._make(model)

        result = await p.encode("hello")

        model.encode.assert_called_once_with(["hello"], normalize_embeddings=True)
        assert extract_vector(result) == pytest.approx([0.6, 0.8])

    @pytest.mark.asyncio
    async def test_load_uses_loaded_model(self):
        model = MagicMock()
        p = self._make(model)
        await p.load()
        assert p._model is model

    def test_dimensions(self):
        model = MagicMock()
        model.get_sentence_embedding_dimension = MagicMock(return_value=384)
        assert self._make(model).dimensions == 384

    def test_dimensions_unknown_raises(self):
        model = MagicMock()
        model.get_sentence_embedding_dimension = MagicMock(return_value=None)
        with pytest.raises(RuntimeError, match="did not report"):
            _ = self._make(model).dimensions

    @pytest.mark.asyncio
    async def test_default_generator_uses_configured_model(self, monkeypatch):
        from docvec.providers import sentence_transformers as st_module

        created = MagicMock()
        created.encode = MagicMock(return_value=np.ones((1, DIM)) / math.sqrt(DIM))
        factory = MagicMock(return_value=created)
        monkeypatch.setattr(st_module, "SentenceTransformer", factory)

        gen = EmbeddingGenerator(config=SyncConfig(dimension=DIM, model_name="local/mini"))
        vector = await gen.embed("hello")

        factory.assert_called_once_with("local/mini")
        assert len(vector) == DIM
