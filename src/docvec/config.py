"""SyncConfig — tunables for the vector store, embedding model, and sync passes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any

from docvec.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ENV_PREFIX = "DOCVEC_"
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SyncConfig:
    """Configuration shared by the gateway, the generator, and the orchestrator."""

    storage_dir: str = ".docvec/vector-store"
    """Directory holding the vector table, relative to the workspace root."""

    table_name: str = "embeddings"
    """Name of the LanceDB table."""

    schema_version: int = 2
    """Marker written beside the table; a mismatch triggers a rebuild."""

    dimension: int = 384
    """Expected embedding dimensionality (all-MiniLM-L6-v2 produces 384)."""

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    """Local sentence-transformers model used for embeddings."""

    max_text_chars: int = 512
    """Character budget applied to text before embedding."""

    max_attempts: int = 3
    """Attempts per store operation, including the first."""

    retry_base_delay: float = 1.0
    """Backoff base in seconds; attempt *n* waits ``base * 2**n``."""

    delete_batch_size: int = 100
    """Ids per delete statement."""

    scan_limit: int = 10_000
    """Row cap for the similarity scan used to list a file's ids."""

    compare_content_hash: bool = False
    """Refresh records whose stored hash differs from the current text."""

    recreate_on_open: bool = False
    """Drop and rebuild an existing table on every open."""

    serialize_file_passes: bool = True
    """Run sync passes for the same file one at a time."""

    def __post_init__(self) -> None:
        if not self.table_name.strip():
            raise ValidationError("table_name must be a non-empty string")
        if not self.storage_dir.strip():
            raise ValidationError("storage_dir must be a non-empty string")
        for name in ("dimension", "max_attempts", "delete_batch_size", "scan_limit"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be >= 1")
        if self.max_text_chars < 0:
            raise ValidationError("max_text_chars must be >= 0")
        if self.retry_base_delay < 0:
            raise ValidationError("retry_base_delay must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Build a config from ``DOCVEC_*`` environment variables.

        Each field maps to an upper-cased variable, e.g. ``DOCVEC_SCAN_LIMIT``.
        Unparseable values are logged and ignored.  Keyword *overrides* win
        over the environment.
        """
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            try:
                values[f.name] = _coerce(raw, f.default)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", _ENV_PREFIX + f.name.upper(), raw)
        values.update(overrides)
        return cls(**values)


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
