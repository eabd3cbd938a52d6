"""Split sampled rows into size-bounded groups for indexing."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Mapping, Sequence

from .models import Record

LOG = logging.getLogger(__name__)

DEFAULT_BYTE_BUDGET = 4000

# Array overhead of an encoded group: "[" "]" and one "," between entries.
_BRACKETS = 2
_COMMA = 1

_IDENTIFIER_NAME = re.compile(r"^(?:id|_id|uuid|key)$|(?:_id|_uuid|_key)$", re.IGNORECASE)


def encoded_size(value: Any) -> int:
    """UTF-8 length of the compact JSON encoding."""

    text = json.dumps(value, default=str, separators=(",", ":"), ensure_ascii=False)
    return len(text.encode("utf-8"))


def identify_key_columns(rows: Sequence[Mapping[str, Any] | None]) -> tuple[str, ...]:
    """Pick the columns that identify a row within the sample.

    A candidate is present in every row with a distinct value each time.
    Candidates named like identifiers win; otherwise the first candidate is
    used alone. No candidates means rows cannot be factored by key.
    """

    present = [row for row in rows if row is not None]
    if not present:
        return ()
    seen: dict[str, set[str]] = {column: set() for column in present[0]}
    for row in present:
        for column, values in seen.items():
            if column in row:
                values.add(json.dumps(row[column], default=str, sort_keys=True))
    unique = [column for column, values in seen.items() if len(values) == len(present)]
    preferred = tuple(column for column in unique if _IDENTIFIER_NAME.search(column))
    if preferred:
        return preferred
    return (unique[0],) if unique else ()


def chunk_rows(
    rows: Sequence[Mapping[str, Any] | None],
    byte_budget: int = DEFAULT_BYTE_BUDGET,
) -> list[list[Record]]:
    """Group rows into chunks whose encoded size stays within ``byte_budget``.

    With key columns every non-key cell becomes a ``{"pk", "attribute"}``
    entry; without them whole rows are packed. The budget bounds the encoded
    JSON array of each group, brackets and commas included. An entry that
    cannot fit alone is emitted as a group of its own.
    """

    keys = identify_key_columns(rows)
    if not keys:
        LOG.debug("No key columns found, packing whole rows", extra={"rows": len(rows)})
        return _pack((dict(row) for row in rows if row is not None), byte_budget)
    return _pack(_factor(rows, keys), byte_budget)


def _factor(rows: Iterable[Mapping[str, Any] | None], keys: tuple[str, ...]) -> Iterable[Record]:
    for row in rows:
        if row is None:
            continue
        pk = {column: row[column] for column in keys}
        for column, value in row.items():
            if column in keys:
                continue
            yield {"pk": pk, "attribute": {column: value}}


def _pack(entries: Iterable[Record], byte_budget: int) -> list[list[Record]]:
    groups: list[list[Record]] = []
    current: list[Record] = []
    current_size = _BRACKETS
    for entry in entries:
        size = encoded_size(entry)
        if size + _BRACKETS > byte_budget:
            LOG.debug("Oversized chunk entry", extra={"bytes": size})
            groups.append([entry])
            continue
        if current and current_size + _COMMA + size > byte_budget:
            groups.append(current)
            current, current_size = [], _BRACKETS
        current_size += size + (_COMMA if current else 0)
        current.append(entry)
    if current:
        groups.append(current)
    return groups


__all__ = ["DEFAULT_BYTE_BUDGET", "chunk_rows", "encoded_size", "identify_key_columns"]
