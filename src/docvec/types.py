"""Data types — symbols, stored records, reconciliation plans, and metrics."""

from __future__ import annotations

from dataclasses import dataclass, field

# ------------------------------------------------------------------
# Inputs
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CodeSymbol:
    """A symbol reported by the caller's parser.

    Attributes:
        name: Symbol name, unique within its file (e.g. ``"parseConfig"``).
        documentation: Raw doc comment, or ``None`` when undocumented.
        file_path: Path of the file declaring the symbol.
        source_text: Declaration source, if the caller has it.
        type: Symbol kind (``"function"``, ``"class"``, ...).
    """

    name: str
    documentation: str | None = None
    file_path: str = ""
    source_text: str | None = None
    type: str | None = None

    @property
    def is_documented(self) -> bool:
        """True when the symbol carries non-blank documentation."""
        return bool(self.documentation and self.documentation.strip())


# ------------------------------------------------------------------
# Stored data
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EmbeddingRecord:
    """One row of the vector table.

    Attributes:
        id: ``"<file_path>:<symbol_name>"``.
        text: The embedded documentation text.
        vector: Embedding of *text*.
        file_path: Normalized, workspace-relative path grouping the record.
        content_hash: SHA-256 of *text*.
    """

    id: str
    text: str
    vector: list[float]
    file_path: str
    content_hash: str

    def to_row(self) -> dict[str, object]:
        """Return the row mapping written to the table."""
        return {
            "id": self.id,
            "text": self.text,
            "vector": self.vector,
            "file_path": self.file_path,
            "content_hash": self.content_hash,
        }


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A single similarity-search hit.

    Attributes:
        id: Record id.
        text: Stored documentation text.
        file_path: File the record belongs to.
        score: ``1 / (1 + |distance|)``, in ``(0, 1]``; higher is closer.
    """

    id: str
    text: str
    file_path: str
    score: float


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Result of a delete operation.

    Attributes:
        deleted_count: Number of ids the store was asked to remove.
    """

    deleted_count: int


# ------------------------------------------------------------------
# Reconciliation
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReconciliationPlan:
    """Store mutations needed to align one file's records with its symbols.

    Attributes:
        ids_to_delete: Ids present in the store but no longer produced.
        symbols_to_upsert: Documented symbols that need a (new) record.
        unchanged_ids: Ids already present and left alone.
        skipped: Symbols not eligible for a record (undocumented, unnamed,
            or repeating an earlier name).
    """

    ids_to_delete: frozenset[str] = frozenset()
    symbols_to_upsert: tuple[CodeSymbol, ...] = ()
    unchanged_ids: frozenset[str] = frozenset()
    skipped: tuple[CodeSymbol, ...] = ()

    @property
    def is_noop(self) -> bool:
        """True when the plan mutates nothing."""
        return not self.ids_to_delete and not self.symbols_to_upsert


@dataclass(slots=True)
class OperationMetrics:
    """Counters for one sync pass.

    Attributes:
        processed: Symbols for which an embed+upsert was attempted.
        successful: Symbols stored successfully.
        failed: Symbols that could not be stored.
        skipped: Symbols that needed no work or had nothing to embed.
        errors: Short failure descriptions, for logging.
    """

    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Symbols accounted for by this pass."""
        return self.successful + self.failed + self.skipped
