"""Reconciliation planning — the set difference between stored and current symbols."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docvec.types import ReconciliationPlan
from docvec.utils import extract_plain_text, generate_content_hash, generate_id

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from docvec.types import CodeSymbol

logger = logging.getLogger(__name__)


def plan(
    existing_ids: Iterable[str],
    symbols: Iterable[CodeSymbol],
    file_path: str,
    existing_hashes: Mapping[str, str] | None = None,
) -> ReconciliationPlan:
    """Compute the store mutations that align *file_path* with *symbols*.

    Every documented, named symbol produces the id
    ``generate_id(file_path, symbol.name)``.  Stored ids no longer produced
    are deleted; produced ids not yet stored are upserted.  Ids present on
    both sides are left alone, unless *existing_hashes* is given and the
    stored hash differs from the hash of the symbol's current text.

    Undocumented and unnamed symbols, and later symbols repeating an earlier
    name, are returned in ``skipped``.  Pure: performs no I/O.
    """
    existing = frozenset(existing_ids)

    expected: dict[str, CodeSymbol] = {}
    skipped: list[CodeSymbol] = []
    for symbol in symbols:
        if not symbol.name or not symbol.name.strip() or not symbol.is_documented:
            skipped.append(symbol)
            continue
        symbol_id = generate_id(file_path, symbol.name)
        if symbol_id in expected:
            logger.debug("Duplicate symbol %s in %s; keeping the first", symbol.name, file_path)
            skipped.append(symbol)
            continue
        expected[symbol_id] = symbol

    to_upsert: list[CodeSymbol] = []
    unchanged: set[str] = set()
    for symbol_id, symbol in expected.items():
        if symbol_id not in existing:
            to_upsert.append(symbol)
        elif existing_hashes is not None and _is_stale(symbol, existing_hashes.get(symbol_id)):
            to_upsert.append(symbol)
        else:
            unchanged.add(symbol_id)

    return ReconciliationPlan(
        ids_to_delete=existing.difference(expected),
        symbols_to_upsert=tuple(to_upsert),
        unchanged_ids=frozenset(unchanged),
        skipped=tuple(skipped),
    )


def _is_stale(symbol: CodeSymbol, stored_hash: str | None) -> bool:
    text = extract_plain_text(symbol.documentation)
    if not text:
        return False
    return stored_hash != generate_content_hash(text)
