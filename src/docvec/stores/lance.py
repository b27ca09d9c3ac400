"""VectorStoreGateway — LanceDB-backed embedding table with retried operations."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

import lancedb
import numpy as np
import pyarrow as pa

from docvec.config import SyncConfig
from docvec.exceptions import (
    DeleteError,
    ErrorCategory,
    InitializationError,
    PartialDeleteError,
    QueryError,
    StoreNotReadyError,
    UpsertError,
    ValidationError,
)
from docvec.lifecycle import AsyncOnce, InitState
from docvec.retry import classify_init_error, retry_with_backoff
from docvec.types import DeleteResult, EmbeddingRecord, SearchResult
from docvec.utils import generate_content_hash, generate_id, id_prefix_path

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

logger = logging.getLogger(__name__)

_META_FILE = "store_meta.json"
_FAILED_SAMPLE_SIZE = 5
_LIKE_WILDCARDS = ("%", "_")


def build_schema(dimension: int) -> pa.Schema:
    """Arrow schema of the embedding table."""
    return pa.schema(
        [
            pa.field("id", pa.string()),
            pa.field("text", pa.string()),
            pa.field("vector", pa.list_(pa.float32(), dimension)),
            pa.field("file_path", pa.string()),
            pa.field("content_hash", pa.string()),
        ]
    )


class VectorStoreGateway:
    """Owns the embedding table and mediates every read and write.

    One gateway per process: build it once and hand it to
    :class:`~docvec.sync.EmbeddingSync`.  :meth:`initialize` opens (or
    creates) the table under ``<workspace_root>/<config.storage_dir>``;
    concurrent callers share a single attempt, and a failed attempt leaves
    the gateway uninitialized so a later call may retry.

    Row operations validate their input, run the blocking LanceDB call in a
    worker thread, and retry transient failures with exponential backoff.
    *connect* defaults to :func:`lancedb.connect`.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        connect: Callable[[str], Any] | None = None,
    ) -> None:
        self._config = config or SyncConfig()
        self._connect = connect or lancedb.connect
        self._once: AsyncOnce[Any] = AsyncOnce("vector store")
        self._db: Any = None
        self._storage_path: Path | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, workspace_root: str) -> None:
        """Open the table for *workspace_root*.  Idempotent.

        Raises:
            ValidationError: If *workspace_root* is empty.
            InitializationError: If the directory is not writable, the
                database cannot be opened, or the table cannot be created.
        """
        if not isinstance(workspace_root, str) or not workspace_root.strip():
            raise ValidationError("workspace_root must be a non-empty string")
        if self._once.is_ready:
            return
        path = Path(workspace_root) / self._config.storage_dir
        await self._once.get_or_init(lambda: self._open(path))

    async def _open(self, path: Path) -> Any:
        start = time.perf_counter()
        try:
            table = await asyncio.to_thread(self._open_sync, path)
        except InitializationError:
            raise
        except Exception as exc:
            category = classify_init_error(exc)
            logger.error("Failed to open vector store at %s (%s): %s", path, category.value, exc)
            raise InitializationError(category, exc) from exc
        self._storage_path = path
        logger.info(
            "Vector store ready at %s (table %r) in %.0fms",
            path,
            self._config.table_name,
            (time.perf_counter() - start) * 1000,
        )
        return table

    def _open_sync(self, path: Path) -> Any:
        path.mkdir(parents=True, exist_ok=True)
        if not os.access(path, os.W_OK):
            raise InitializationError(
                ErrorCategory.PERMISSION,
                message=f"Storage directory {path} is not writable",
            )

        db = self._connect(str(path))
        self._db = db
        name = self._config.table_name
        meta_path = path / _META_FILE

        if name in _table_names(db):
            table = db.open_table(name)
            reason = self._incompatibility(meta_path)
            if reason is None:
                return table
            discarded = table.count_rows()
            logger.warning(
                "Recreating vector table %r (%s); discarding %d rows",
                name,
                reason,
                discarded,
            )
            db.drop_table(name)

        table = db.create_table(name, schema=build_schema(self._config.dimension), mode="overwrite")
        self._write_meta(meta_path)
        return table

    def _incompatibility(self, meta_path: Path) -> str | None:
        """Return why an existing table must be rebuilt, or None to keep it."""
        if self._config.recreate_on_open:
            return "recreate_on_open is set"
        if not meta_path.exists():
            return "no schema marker"
        try:
            with meta_path.open() as f:
                meta = json.load(f)
        except (OSError, ValueError) as exc:
            return f"unreadable schema marker: {exc}"
        if not isinstance(meta, dict):
            return "malformed schema marker"

        if meta.get("table_name") != self._config.table_name:
            return f"marker describes table {meta.get('table_name')!r}"
        if meta.get("schema_version") != self._config.schema_version:
            return (
                f"schema version {meta.get('schema_version')} != {self._config.schema_version}"
            )
        if meta.get("dimension") != self._config.dimension:
            return f"dimension {meta.get('dimension')} != {self._config.dimension}"
        if meta.get("model_name") != self._config.model_name:
            logger.warning(
                "Vector table %r was built with model %r; configured model is %r",
                self._config.table_name,
                meta.get("model_name"),
                self._config.model_name,
            )
        return None

    def _write_meta(self, meta_path: Path) -> None:
        sidecar = {
            "schema_version": self._config.schema_version,
            "table_name": self._config.table_name,
            "dimension": self._config.dimension,
            "model_name": self._config.model_name,
        }
        with meta_path.open("w") as f:
            json.dump(sidecar, f)

    async def close(self) -> None:
        """Release the table handle.  A later :meth:`initialize` reopens it."""
        if self._once.reset() is not None:
            logger.debug("Closed vector store at %s", self._storage_path)
        self._db = None

    @property
    def state(self) -> InitState:
        """Lifecycle state of the table handle."""
        return self._once.state

    @property
    def is_ready(self) -> bool:
        return self._once.is_ready

    @property
    def storage_path(self) -> Path | None:
        """Directory holding the table, once initialized."""
        return self._storage_path

    def _require_table(self) -> Any:
        if not self._once.is_ready:
            raise StoreNotReadyError(
                f"Vector store is {self._once.state.value}; call initialize() first"
            )
        return self._once.value

    # ------------------------------------------------------------------
    # Ids
    # ------------------------------------------------------------------

    @staticmethod
    def generate_id(file_path: str, symbol_name: str) -> str:
        """Record id for *symbol_name* in *file_path*.  See :func:`docvec.utils.generate_id`."""
        return generate_id(file_path, symbol_name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        id: str,  # noqa: A002
        text: str,
        vector: Sequence[float],
        file_path: str,
    ) -> None:
        """Replace the record *id* with *text* and *vector*.

        The delete and the insert are retried together, so a retry never
        leaves two rows for one id.

        Raises:
            StoreNotReadyError: Before :meth:`initialize` has succeeded.
            ValidationError: On empty strings or a malformed vector.
            UpsertError: On a fatal failure or after the last retry.
        """
        table = self._require_table()
        _require_text("id", id)
        _require_text("text", text)
        _require_text("file_path", file_path)
        values = self._validate_vector(vector)

        record = EmbeddingRecord(
            id=id,
            text=text,
            vector=values,
            file_path=file_path,
            content_hash=generate_content_hash(text),
        )
        row = record.to_row()
        where = f"id = '{_escape(id)}'"

        def _replace() -> None:
            table.delete(where)
            table.add([row])

        await retry_with_backoff(
            lambda: asyncio.to_thread(_replace),
            description=f"Upsert {id!r}",
            error_cls=UpsertError,
            max_attempts=self._config.max_attempts,
            base_delay=self._config.retry_base_delay,
        )
        logger.debug("Upserted %s", id)

    async def delete(self, ids: Iterable[str]) -> DeleteResult:
        """Delete records by id in batches of ``config.delete_batch_size``.

        Batches run one after another, each with its own retries.  A batch
        that fails with a connection error stops the remaining batches; other
        failed batches are recorded and the rest still run.

        Raises:
            StoreNotReadyError: Before :meth:`initialize` has succeeded.
            ValidationError: If any id is empty.
            PartialDeleteError: After all attempted batches, if any id could
                not be deleted.
        """
        table = self._require_table()
        unique: list[str] = []
        for entry_id in dict.fromkeys(ids):
            _require_text("id", entry_id)
            unique.append(entry_id)
        if not unique:
            return DeleteResult(deleted_count=0)

        size = self._config.delete_batch_size
        batches = [unique[i : i + size] for i in range(0, len(unique), size)]

        deleted = 0
        failed: list[str] = []
        last_error: DeleteError | None = None
        for index, batch in enumerate(batches):
            where = "id IN (" + ", ".join(f"'{_escape(i)}'" for i in batch) + ")"
            try:
                await retry_with_backoff(
                    lambda where=where: asyncio.to_thread(table.delete, where),
                    description=f"Delete batch {index + 1}/{len(batches)}",
                    error_cls=DeleteError,
                    max_attempts=self._config.max_attempts,
                    base_delay=self._config.retry_base_delay,
                )
            except DeleteError as exc:
                last_error = exc
                failed.extend(batch)
                if exc.category is ErrorCategory.CONNECTION:
                    remaining = batches[index + 1 :]
                    for skipped in remaining:
                        failed.extend(skipped)
                    logger.error(
                        "Delete batch %d/%d lost the connection; abandoning %d remaining batches",
                        index + 1,
                        len(batches),
                        len(remaining),
                    )
                    break
                continue
            deleted += len(batch)

        if last_error is not None:
            raise PartialDeleteError(
                deleted,
                len(failed),
                failed[:_FAILED_SAMPLE_SIZE],
                category=last_error.category,
                cause=last_error,
            )
        logger.debug("Deleted %d records in %d batches", deleted, len(batches))
        return DeleteResult(deleted_count=deleted)

    async def delete_file_embeddings(self, file_path: str) -> None:
        """Delete every record whose id starts with ``file_path + ":"``.

        Raises:
            StoreNotReadyError: Before :meth:`initialize` has succeeded.
            DeleteError: On a fatal failure or after the last retry.
        """
        table = self._require_table()
        prefix = id_prefix_path(file_path) + ":"

        if any(w in prefix for w in _LIKE_WILDCARDS):
            # A LIKE pattern would over-match; delete the exact ids instead
            rows = await self._scan()
            ids = [r["id"] for r in rows if str(r.get("id", "")).startswith(prefix)]
            if ids:
                await self.delete(ids)
            logger.debug("Deleted %d records with prefix %r", len(ids), prefix)
            return

        where = f"id LIKE '{_escape(prefix)}%'"
        await retry_with_backoff(
            lambda: asyncio.to_thread(table.delete, where),
            description=f"Delete records of {file_path!r}",
            error_cls=DeleteError,
            max_attempts=self._config.max_attempts,
            base_delay=self._config.retry_base_delay,
        )
        logger.debug("Deleted records with prefix %r", prefix)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_ids_by_file_path(self, file_path: str) -> set[str]:
        """Ids of every record stored for *file_path*.

        Scans up to ``config.scan_limit`` records and filters them here, so
        the cost grows with the size of the whole table.

        Raises:
            StoreNotReadyError: Before :meth:`initialize` has succeeded.
            QueryError: If the scan fails.
        """
        rows = await self._scan_file(file_path)
        return {r["id"] for r in rows}

    async def get_content_hashes_by_file_path(self, file_path: str) -> dict[str, str]:
        """``{id: content_hash}`` for every record stored for *file_path*."""
        rows = await self._scan_file(file_path)
        return {r["id"]: r.get("content_hash") or "" for r in rows}

    async def search(self, vector: Sequence[float], limit: int = 5) -> list[SearchResult]:
        """Return the *limit* records nearest to *vector*, closest first.

        Raises:
            StoreNotReadyError: Before :meth:`initialize` has succeeded.
            ValidationError: On a malformed vector or ``limit <= 0``.
            QueryError: If the search fails.
        """
        table = self._require_table()
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        values = self._validate_vector(vector)

        rows = await retry_with_backoff(
            lambda: asyncio.to_thread(lambda: table.search(values).limit(limit).to_list()),
            description="Similarity search",
            error_cls=QueryError,
            max_attempts=self._config.max_attempts,
            base_delay=self._config.retry_base_delay,
        )
        results = [
            SearchResult(
                id=r["id"],
                text=r.get("text") or "",
                file_path=r.get("file_path") or "",
                score=1.0 / (1.0 + abs(float(r.get("_distance", 0.0)))),
            )
            for r in rows
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    async def count(self) -> int:
        """Number of records in the table."""
        table = self._require_table()
        return await retry_with_backoff(
            lambda: asyncio.to_thread(table.count_rows),
            description="Count records",
            error_cls=QueryError,
            max_attempts=self._config.max_attempts,
            base_delay=self._config.retry_base_delay,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _scan(self) -> list[dict[str, Any]]:
        """Broad similarity query returning up to ``scan_limit`` rows."""
        table = self._require_table()
        zero = [0.0] * self._config.dimension
        limit = self._config.scan_limit
        rows = await retry_with_backoff(
            lambda: asyncio.to_thread(lambda: table.search(zero).limit(limit).to_list()),
            description="Record scan",
            error_cls=QueryError,
            max_attempts=self._config.max_attempts,
            base_delay=self._config.retry_base_delay,
        )
        if len(rows) >= limit:
            logger.warning("Record scan hit scan_limit=%d; results may be incomplete", limit)
        return rows

    async def _scan_file(self, file_path: str) -> list[dict[str, Any]]:
        self._require_table()
        _require_text("file_path", file_path)
        rows = await self._scan()
        return [r for r in rows if r.get("file_path") == file_path]

    def _validate_vector(self, vector: Sequence[float]) -> list[float]:
        if isinstance(vector, (str, bytes)) or vector is None:
            raise ValidationError("vector must be a sequence of numbers")
        try:
            arr = np.asarray(vector, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"vector must contain only numbers: {exc}") from exc
        if arr.ndim != 1 or arr.size == 0:
            raise ValidationError("vector must be a non-empty, one-dimensional sequence")
        if not np.isfinite(arr).all():
            raise ValidationError("vector contains NaN or infinite values")
        if arr.size != self._config.dimension:
            raise ValidationError(
                f"vector has dimension {arr.size}, table expects {self._config.dimension}"
            )
        return arr.tolist()


def _table_names(db: Any) -> list[str]:
    if hasattr(db, "list_tables"):
        # Newer lancedb returns a response object with a .tables attribute
        response = db.list_tables()
        return list(getattr(response, "tables", response))
    return list(db.table_names())


def _escape(value: str) -> str:
    return value.replace("'", "''")


def _require_text(name: str, value: object) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid {name}: must be a non-empty string")
