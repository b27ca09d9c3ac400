"""Path normalization, record ids, content hashing, and text cleanup."""

from __future__ import annotations

import hashlib
import os
import re

from docvec.exceptions import ValidationError

# =============================================================================
# Paths and ids
# =============================================================================


def normalize_path(absolute_path: str, workspace_root: str) -> str:
    """Convert a file path into a workspace-relative, forward-slash path.

    Relative inputs are resolved against *workspace_root*.  The result has no
    leading slash.

    Examples:
        normalize_path("/home/u/proj/src/a.ts", "/home/u/proj") -> "src/a.ts"
        normalize_path("./src/a.ts", "/home/u/proj") -> "src/a.ts"

    Raises:
        ValidationError: If either argument is empty or the path lies outside
            the workspace.
    """
    if not isinstance(absolute_path, str) or not absolute_path.strip():
        raise ValidationError("absolute_path must be a non-empty string")
    if not isinstance(workspace_root, str) or not workspace_root.strip():
        raise ValidationError("workspace_root must be a non-empty string")

    root = os.path.abspath(workspace_root.strip())
    target = absolute_path.strip()
    if not os.path.isabs(target):
        target = os.path.join(root, target)
    target = os.path.abspath(target)

    try:
        relative = os.path.relpath(target, root)
    except ValueError as exc:
        # Different drives on Windows
        msg = f'File path "{absolute_path}" is outside the workspace root "{workspace_root}"'
        raise ValidationError(msg) from exc

    if relative == os.curdir or relative == os.pardir or relative.startswith(os.pardir + os.sep):
        msg = f'File path "{absolute_path}" is outside the workspace root "{workspace_root}"'
        raise ValidationError(msg)

    return relative.replace(os.sep, "/")


def id_prefix_path(file_path: str) -> str:
    """Return *file_path* as it appears before the ``:`` of a record id."""
    if not isinstance(file_path, str) or not file_path.strip():
        raise ValidationError("Invalid file_path: must be a non-empty string")
    normalized = file_path.strip().replace("\\", "/").lstrip("/")
    if not normalized:
        raise ValidationError("Invalid file_path: cannot be empty after normalization")
    return normalized


def generate_id(file_path: str, symbol_name: str) -> str:
    """Return the record id ``"<file_path>:<symbol_name>"``.

    Leading slashes are dropped, backslashes become forward slashes, and the
    symbol name is trimmed.

    Examples:
        generate_id("src/a.ts", "foo") -> "src/a.ts:foo"
        generate_id("/src\\\\a.ts", " foo ") -> "src/a.ts:foo"
    """
    if not isinstance(symbol_name, str) or not symbol_name.strip():
        raise ValidationError("Invalid symbol_name: must be a non-empty string")
    return f"{id_prefix_path(file_path)}:{symbol_name.strip()}"


def generate_content_hash(text: str) -> str:
    """SHA-256 hex digest of *text*."""
    return hashlib.sha256(text.encode()).hexdigest()


# =============================================================================
# Text cleanup
# =============================================================================

_WHITESPACE = re.compile(r"\s+")
_BLOCK_OPEN = re.compile(r"^(/\*\*+|/\*!?|\"\"\"|''')")
_BLOCK_CLOSE = re.compile(r"(\*+/|\"\"\"|''')$")
_LINE_MARKER = re.compile(r"^(\*+(?!/)|///?|#+(?=\s|$))\s?")
_INLINE_TAG = re.compile(r"\{@\w+\s+([^}]*)\}")
_TYPE_BRACES = re.compile(r"\{[^{}]*\}")
_BLOCK_TAG = re.compile(r"(?<![\w@])@\w+")
_HTML_TAG = re.compile(r"</?[A-Za-z][^<>]*>")


def collapse_whitespace(text: str) -> str:
    """Replace every whitespace run (including newlines) with one space and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def extract_plain_text(documentation: str | None) -> str:
    """Strip comment markers and doc tags from *documentation*.

    Handles JSDoc/TSDoc blocks (``/** ... */``), line comments, and Python
    docstrings.  ``{@link Foo}`` keeps its label, ``@param``-style tags and
    ``{type}`` annotations are dropped, and HTML tags are removed.  Returns an
    empty string when nothing readable remains.
    """
    if not documentation or not isinstance(documentation, str):
        return ""

    text = documentation.strip()
    text = _BLOCK_OPEN.sub("", text, count=1)
    text = _BLOCK_CLOSE.sub("", text, count=1)

    lines = []
    for raw in text.splitlines():
        line = _LINE_MARKER.sub("", raw.strip(), count=1)
        if line:
            lines.append(line)
    text = " ".join(lines)

    text = _INLINE_TAG.sub(r"\1", text)
    text = _TYPE_BRACES.sub(" ", text)
    text = _BLOCK_TAG.sub(" ", text)
    text = _HTML_TAG.sub(" ", text)
    return collapse_whitespace(text)


def preprocess_text(text: str, max_chars: int) -> str:
    """Collapse whitespace and truncate to *max_chars* characters."""
    processed = collapse_whitespace(text)
    if max_chars > 0 and len(processed) > max_chars:
        processed = processed[:max_chars]
    return processed
