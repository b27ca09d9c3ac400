"""Embedding providers — protocol and implementations."""

from docvec.protocols import EmbeddingProvider
from docvec.providers.sentence_transformers import SentenceTransformerEmbedding

__all__ = [
    "EmbeddingProvider",
    "SentenceTransformerEmbedding",
]
