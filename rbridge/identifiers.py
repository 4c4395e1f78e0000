"""Normalize host-side field names into R identifiers."""

import re
from typing import Any, Dict, Iterable, List

PLACEHOLDER_NAME = "column"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_]")
_VALID_START = re.compile(r"^[A-Za-z_]")


def sanitize_identifier(name: Any) -> str:
    """Sanitize a single name (no collision handling)."""
    text = "" if name is None else str(name).strip()
    if not text:
        text = PLACEHOLDER_NAME
    text = _INVALID_CHARS.sub("_", text)
    if not _VALID_START.match(text):
        text = "_" + text
    return text


def sanitize_names(names: Iterable[Any]) -> List[str]:
    """Sanitize a full column set, resolving collisions with _2, _3, ...

    All base names are computed before any is assigned, so a suffixed name
    never steals the base name of a later column.
    """
    bases = [sanitize_identifier(n) for n in names]
    reserved = set(bases)
    assigned: List[str] = []
    taken = set()

    for base in bases:
        if base not in taken:
            candidate = base
        else:
            counter = 2
            candidate = f"{base}_{counter}"
            while candidate in taken or candidate in reserved:
                counter += 1
                candidate = f"{base}_{counter}"
        taken.add(candidate)
        assigned.append(candidate)

    return assigned


def sanitize_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rename the keys of a row table to sanitized names.

    Columns are ordered by first appearance across all rows; a row lacking a
    column gets None for it.
    """
    columns: List[Any] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)

    mapping = dict(zip(columns, sanitize_names(columns)))
    return [{mapping[c]: row.get(c) for c in columns} for row in rows]
