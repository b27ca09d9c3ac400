"""EmbeddingSync — reconciles one file's symbols with the vector store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING

from docvec.config import SyncConfig
from docvec.exceptions import ValidationError
from docvec.planner import plan
from docvec.retry import is_infrastructure_error, run_recoverable
from docvec.types import OperationMetrics
from docvec.utils import extract_plain_text, generate_id, normalize_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from docvec.embedder import EmbeddingGenerator
    from docvec.protocols import VectorStore
    from docvec.types import CodeSymbol, SearchResult

logger = logging.getLogger(__name__)


class EmbeddingSync:
    """Runs reconciliation passes against an injected gateway and generator.

    :meth:`sync_file` and :meth:`remove_file` never raise: every failure
    becomes a log record and a metrics count, so a documentation pipeline
    can call them on each save without guarding.  Passes for the same file
    run one at a time unless ``config.serialize_file_passes`` is off.
    """

    def __init__(
        self,
        gateway: VectorStore,
        generator: EmbeddingGenerator,
        config: SyncConfig | None = None,
    ) -> None:
        self._gateway = gateway
        self._generator = generator
        self._config = config or SyncConfig()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def initialize(self, workspace_root: str) -> None:
        """Open the store and load the model.

        Raises:
            InitializationError: If either cannot be brought up.
        """
        await self._gateway.initialize(workspace_root)
        await self._generator.initialize()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def sync_file(
        self,
        symbols: Iterable[CodeSymbol],
        file_path: str,
        workspace_root: str,
    ) -> OperationMetrics:
        """Align the stored records of *file_path* with *symbols*.

        Stale records are deleted before any new record is written.  Each
        symbol ends up counted exactly once as successful, failed, or
        skipped.
        """
        symbols = list(symbols)
        metrics = OperationMetrics()
        try:
            path = normalize_path(file_path, workspace_root)
        except ValidationError as exc:
            logger.warning("Skipping embedding sync for %s: %s", file_path, exc)
            metrics.skipped = len(symbols)
            metrics.errors.append(str(exc))
            return metrics

        async with self._file_lock(path):
            await self._sync(symbols, path, workspace_root, metrics)
        return metrics

    async def _sync(
        self,
        symbols: list[CodeSymbol],
        path: str,
        workspace_root: str,
        metrics: OperationMetrics,
    ) -> None:
        start = time.perf_counter()
        try:
            if not await self._ensure_ready(workspace_root):
                metrics.skipped = len(symbols)
                return

            existing = await run_recoverable(
                f"Listing records of {path}",
                lambda: self._gateway.get_ids_by_file_path(path),
                fallback=set(),
            )
            hashes = None
            if self._config.compare_content_hash and existing:
                hashes = await run_recoverable(
                    f"Reading content hashes of {path}",
                    lambda: self._gateway.get_content_hashes_by_file_path(path),
                    fallback=None,
                )

            reconciliation = plan(existing, symbols, path, hashes)
            metrics.skipped += len(reconciliation.skipped) + len(reconciliation.unchanged_ids)

            stale = reconciliation.ids_to_delete
            if stale:
                await run_recoverable(
                    f"Deleting {len(stale)} stale records of {path}",
                    lambda: self._gateway.delete(stale),
                    fallback=None,
                )

            await self._store_all(reconciliation.symbols_to_upsert, path, metrics)
        except Exception as exc:
            remaining = max(len(symbols) - metrics.total, 0)
            metrics.failed += remaining
            metrics.errors.append(f"sync aborted: {exc}")
            logger.error(
                "Embedding sync for %s aborted; %d symbols marked failed",
                path,
                remaining,
                exc_info=True,
            )
        finally:
            logger.info(
                "Embedding sync for %s: %d stored, %d failed, %d skipped in %.0fms",
                path,
                metrics.successful,
                metrics.failed,
                metrics.skipped,
                (time.perf_counter() - start) * 1000,
            )

    async def _store_all(
        self,
        symbols: tuple[CodeSymbol, ...],
        path: str,
        metrics: OperationMetrics,
    ) -> None:
        for index, symbol in enumerate(symbols):
            text = extract_plain_text(symbol.documentation)
            if not text:
                logger.debug("No documentation text for %s in %s", symbol.name, path)
                metrics.skipped += 1
                continue

            metrics.processed += 1
            try:
                vector = await self._generator.embed(text)
                await self._gateway.upsert(generate_id(path, symbol.name), text, vector, path)
            except Exception as exc:
                metrics.failed += 1
                metrics.errors.append(f"{symbol.name}: {exc}")
                logger.warning("Failed to store embedding for %s in %s: %s", symbol.name, path, exc)
                if is_infrastructure_error(exc):
                    abandoned = len(symbols) - index - 1
                    metrics.failed += abandoned
                    logger.error(
                        "Vector store unavailable; abandoning %d remaining symbols of %s",
                        abandoned,
                        path,
                    )
                    return
                continue
            metrics.successful += 1

    async def remove_file(self, file_path: str, workspace_root: str) -> bool:
        """Delete every record of *file_path*.  Returns False on any failure."""
        try:
            path = normalize_path(file_path, workspace_root)
            await self._gateway.initialize(workspace_root)
            async with self._file_lock(path):
                await self._gateway.delete_file_embeddings(path)
        except Exception as exc:
            logger.warning("Failed to remove embeddings for %s: %s", file_path, exc, exc_info=True)
            return False
        logger.info("Removed embeddings for %s", path)
        return True

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 5) -> list[SearchResult]:
        """Embed *query* and return the *limit* closest records.

        Unlike the passes, this raises: ``StoreNotReadyError`` before the
        store is initialized, ``ValidationError`` on a blank query, and the
        embedding or query error otherwise.
        """
        vector = await self._generator.embed(query)
        return await self._gateway.search(vector, limit)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _ensure_ready(self, workspace_root: str) -> bool:
        try:
            await self._gateway.initialize(workspace_root)
            await self._generator.initialize()
        except Exception as exc:
            logger.warning("Embedding services unavailable; skipping sync: %s", exc, exc_info=True)
            return False
        return True

    @contextlib.asynccontextmanager
    async def _file_lock(self, path: str) -> AsyncIterator[None]:
        if not self._config.serialize_file_passes:
            yield
            return
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._locks[path]
