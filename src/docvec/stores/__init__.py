"""Vector store backends."""

from docvec.stores.lance import VectorStoreGateway, build_schema

__all__ = [
    "VectorStoreGateway",
    "build_schema",
]
