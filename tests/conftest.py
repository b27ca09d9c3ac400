"""Shared fixtures and fakes for docvec tests."""

from __future__ import annotations

import hashlib
import re
from collections import defaultdict
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from docvec.config import SyncConfig
from docvec.embedder import EmbeddingGenerator
from docvec.stores.lance import VectorStoreGateway

if TYPE_CHECKING:
    from collections.abc import Callable

DIM = 8

# ------------------------------------------------------------------
# Vectors
# ------------------------------------------------------------------


def hash_vector(text: str, dim: int = DIM) -> list[float]:
    """Deterministic unit vector from text hash."""
    digest = hashlib.sha256(text.encode()).digest()
    raw = np.array([float(b) + 1.0 for b in digest[:dim]])
    return (raw / np.linalg.norm(raw)).tolist()


# ------------------------------------------------------------------
# Fake embedding provider
# ------------------------------------------------------------------


class FakeProvider:
    """Deterministic provider returning ``(1, dim)`` arrays like sentence-transformers."""

    def __init__(self, dim: int = DIM) -> None:
        self.dim = dim
        self.load_calls = 0
        self.encoded: list[str] = []
        self.load_error: Exception | None = None
        self.encode_error: Exception | None = None
        self.output: Any = None

    async def load(self) -> None:
        self.load_calls += 1
        if self.load_error is not None:
            raise self.load_error

    async def encode(self, text: str) -> Any:
        self.encoded.append(text)
        if self.encode_error is not None:
            raise self.encode_error
        if self.output is not None:
            return self.output
        return np.array([hash_vector(text, self.dim)], dtype=np.float32)

    @property
    def dimensions(self) -> int:
        return self.dim

    @property
    def model_name(self) -> str:
        return "fake-model"


# ------------------------------------------------------------------
# Fake LanceDB
# ------------------------------------------------------------------

_LITERAL = re.compile(r"'((?:[^']|'')*)'")


def _literals(where: str) -> list[str]:
    return [m.replace("''", "'") for m in _LITERAL.findall(where)]


class FakeQuery:
    def __init__(self, table: FakeTable, vector: list[float]) -> None:
        self._table = table
        self._vector = np.asarray(vector, dtype=np.float64)
        self._limit = 10

    def limit(self, n: int) -> FakeQuery:
        self._limit = n
        return self

    def to_list(self) -> list[dict[str, Any]]:
        self._table._check("search", "")
        hits = []
        for row in self._table.rows.values():
            distance = float(np.sum((np.asarray(row["vector"]) - self._vector) ** 2))
            hits.append({**row, "_distance": distance})
        hits.sort(key=lambda r: r["_distance"])
        return hits[: self._limit]


class FakeTable:
    """In-memory table understanding the predicates the gateway emits.

    Faults: ``inject(method, *errors)`` raises the errors on the next calls;
    ``rules[method]`` maps the call argument to an error (or None) on every
    call.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: dict[str, list[str]] = defaultdict(list)
        self.rules: dict[str, Callable[[str], Exception | None]] = {}
        self._faults: dict[str, list[Exception]] = defaultdict(list)

    def inject(self, method: str, *errors: Exception) -> None:
        self._faults[method].extend(errors)

    def _check(self, method: str, arg: str) -> None:
        self.calls[method].append(arg)
        if self._faults[method]:
            raise self._faults[method].pop(0)
        rule = self.rules.get(method)
        if rule is not None:
            exc = rule(arg)
            if exc is not None:
                raise exc

    def add(self, rows: list[dict[str, Any]]) -> None:
        self._check("add", ",".join(r["id"] for r in rows))
        for row in rows:
            self.rows[row["id"]] = dict(row)

    def delete(self, where: str) -> None:
        self._check("delete", where)
        if where.startswith("id LIKE "):
            prefix = _literals(where)[0].rstrip("%")
            doomed = [i for i in self.rows if i.startswith(prefix)]
        elif where.startswith("id IN "):
            doomed = _literals(where)
        elif where.startswith("id = "):
            doomed = _literals(where)
        else:
            raise ValueError(f"unsupported predicate: {where}")
        for entry_id in doomed:
            self.rows.pop(entry_id, None)

    def search(self, vector: list[float]) -> FakeQuery:
        return FakeQuery(self, vector)

    def count_rows(self) -> int:
        return len(self.rows)


class FakeDB:
    def __init__(self) -> None:
        self.tables: dict[str, FakeTable] = {}
        self.created: list[str] = []
        self.dropped: list[str] = []
        self.connect_error: Exception | None = None

    def connect(self, path: str) -> FakeDB:
        if self.connect_error is not None:
            raise self.connect_error
        return self

    def list_tables(self) -> SimpleNamespace:
        return SimpleNamespace(tables=list(self.tables))

    def open_table(self, name: str) -> FakeTable:
        return self.tables[name]

    def create_table(self, name: str, schema: Any = None, mode: str = "create") -> FakeTable:
        self.created.append(name)
        self.tables[name] = FakeTable()
        return self.tables[name]

    def drop_table(self, name: str) -> None:
        self.dropped.append(name)
        self.tables.pop(name, None)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def config() -> SyncConfig:
    """Small vectors, no backoff sleeps."""
    return SyncConfig(dimension=DIM, retry_base_delay=0.0)


@pytest.fixture
def fake_db() -> FakeDB:
    return FakeDB()


@pytest.fixture
async def fake_gateway(config: SyncConfig, fake_db: FakeDB, tmp_path) -> VectorStoreGateway:
    """Gateway over the in-memory fake, already initialized."""
    gateway = VectorStoreGateway(config, connect=fake_db.connect)
    await gateway.initialize(str(tmp_path))
    return gateway


@pytest.fixture
async def lance_gateway(config: SyncConfig, tmp_path) -> VectorStoreGateway:
    """Gateway over a real LanceDB table under ``tmp_path``."""
    gateway = VectorStoreGateway(config)
    await gateway.initialize(str(tmp_path))
    return gateway


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def generator(provider: FakeProvider, config: SyncConfig) -> EmbeddingGenerator:
    return EmbeddingGenerator(provider, config)
