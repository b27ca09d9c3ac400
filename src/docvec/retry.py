"""Error classification, exponential backoff, and recoverable operations."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, TypeVar

from docvec.exceptions import (
    CategorizedError,
    ErrorCategory,
    InitializationError,
    StoreNotReadyError,
    StoreOperationError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ------------------------------------------------------------------
# Classification
# ------------------------------------------------------------------

# Checked in order; the first rule with a matching keyword wins.
_OPERATION_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("schema", "invalid type", "mismatched type", "type mismatch"), ErrorCategory.SCHEMA),
    (("constraint", "duplicate"), ErrorCategory.CONSTRAINT),
    (("connection", "database", "closed", "unavailable"), ErrorCategory.CONNECTION),
    (("timeout", "timed out"), ErrorCategory.TIMEOUT),
    (("lock", "busy", "conflict"), ErrorCategory.LOCK),
    (("memory", "allocation"), ErrorCategory.MEMORY),
    (("network", "i/o", "io error"), ErrorCategory.NETWORK),
)

_INIT_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("permission", "access", "eacces", "read-only"), ErrorCategory.PERMISSION),
    (("enoent", "directory", "path", "no such file"), ErrorCategory.FILESYSTEM),
    (("connection", "database", "lance"), ErrorCategory.DATABASE),
    (("table", "schema"), ErrorCategory.TABLE),
    (("memory", "allocation"), ErrorCategory.MEMORY),
)

_EMBEDDING_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("invalid input",), ErrorCategory.VALIDATION),
    (("memory", "allocation"), ErrorCategory.MEMORY),
    (("model", "pipeline", "tokenizer"), ErrorCategory.MODEL),
    (("timeout", "timed out"), ErrorCategory.TIMEOUT),
)


def _match(message: str, rules: tuple[tuple[tuple[str, ...], ErrorCategory], ...]) -> ErrorCategory:
    lowered = message.lower()
    for keywords, category in rules:
        if any(k in lowered for k in keywords):
            return category
    return ErrorCategory.UNKNOWN


def classify_error(exc: BaseException) -> ErrorCategory:
    """Categorize a failed store operation.

    Known exception types decide first; otherwise the message is matched
    against keyword rules.  Unrecognized failures are ``UNKNOWN`` (fatal).
    """
    if isinstance(exc, CategorizedError):
        return exc.category
    if isinstance(exc, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCategory.CONNECTION
    if isinstance(exc, MemoryError):
        return ErrorCategory.MEMORY
    if isinstance(exc, BlockingIOError):
        return ErrorCategory.LOCK
    if isinstance(exc, PermissionError):
        return ErrorCategory.PERMISSION
    category = _match(str(exc), _OPERATION_RULES)
    if category is ErrorCategory.UNKNOWN and isinstance(exc, OSError):
        return ErrorCategory.NETWORK
    if category is ErrorCategory.UNKNOWN and isinstance(exc, TypeError):
        return ErrorCategory.SCHEMA
    return category


def classify_init_error(exc: BaseException) -> ErrorCategory:
    """Categorize a failure while opening the store or loading the model."""
    if isinstance(exc, CategorizedError):
        return exc.category
    if isinstance(exc, PermissionError):
        return ErrorCategory.PERMISSION
    if isinstance(exc, MemoryError):
        return ErrorCategory.MEMORY
    if isinstance(exc, (FileNotFoundError, NotADirectoryError, IsADirectoryError, FileExistsError)):
        return ErrorCategory.FILESYSTEM
    category = _match(str(exc), _INIT_RULES)
    if category is ErrorCategory.UNKNOWN and isinstance(exc, OSError):
        return ErrorCategory.FILESYSTEM
    return category


def classify_embedding_error(exc: BaseException) -> ErrorCategory:
    """Categorize a failed model invocation."""
    if isinstance(exc, CategorizedError):
        return exc.category
    if isinstance(exc, ValidationError):
        return ErrorCategory.VALIDATION
    if isinstance(exc, MemoryError):
        return ErrorCategory.MEMORY
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    return _match(str(exc), _EMBEDDING_RULES)


def is_infrastructure_error(exc: BaseException) -> bool:
    """True when *exc* suggests the store or model itself is gone.

    Sync passes stop issuing work after such a failure instead of paying
    the retry cost once per remaining symbol.
    """
    if isinstance(exc, (StoreNotReadyError, InitializationError, ConnectionError)):
        return True
    return isinstance(exc, CategorizedError) and exc.category is ErrorCategory.CONNECTION


# ------------------------------------------------------------------
# Backoff
# ------------------------------------------------------------------


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    description: str,
    error_cls: type[StoreOperationError],
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Await *operation*, retrying transient failures with exponential backoff.

    Attempt ``n`` (0-based) that fails transiently is followed by a sleep of
    ``base_delay * 2**n``.  Validation errors and not-ready errors propagate
    untouched; fatal categories and the final transient failure are wrapped
    in *error_cls*.
    """
    for attempt in range(max_attempts):
        try:
            return await operation()
        except (ValidationError, StoreNotReadyError):
            raise
        except Exception as exc:
            category = classify_error(exc)
            final = attempt + 1 >= max_attempts or not category.is_transient
            logger.warning(
                "%s attempt %d/%d failed (%s, retryable=%s): %s",
                description,
                attempt + 1,
                max_attempts,
                category.value,
                category.is_transient,
                exc,
            )
            if final:
                raise error_cls(category, exc) from exc
            await asyncio.sleep(base_delay * 2**attempt)

    msg = f"{description}: max_attempts must be >= 1"
    raise ValueError(msg)


# ------------------------------------------------------------------
# Recoverable operations
# ------------------------------------------------------------------


async def run_recoverable(
    description: str,
    operation: Callable[[], Awaitable[T]],
    *,
    fallback: T,
) -> T:
    """Await *operation*; on any failure log it and return *fallback*.

    Used around steps whose failure must degrade a sync pass rather than
    abort it.
    """
    start = time.perf_counter()
    try:
        result = await operation()
    except Exception as exc:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.warning(
            "%s failed after %.0fms (%s); continuing with fallback",
            description,
            elapsed_ms,
            classify_error(exc).value,
            exc_info=True,
        )
        return fallback
    logger.debug("%s completed in %.0fms", description, (time.perf_counter() - start) * 1000)
    return result
