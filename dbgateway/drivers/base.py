"""Capability protocol implemented by every dialect driver."""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Protocol, runtime_checkable

from ..config import PoolSettings
from ..models import ColumnDescriptor, Dialect, QueryResult, Record
from ..tls import ConnectStrategy

ErrorCallback = Callable[[BaseException], None]

_LEADING_NOISE = re.compile(r"^(?:\s+|--[^\n]*(?:\n|$)|/\*.*?\*/|\()*", re.DOTALL)
_RETURNING = re.compile(r"\breturning\b", re.IGNORECASE)
_ROW_KEYWORDS = frozenset({"select", "with", "show", "values", "table", "explain", "describe", "desc"})
_WRITE_KEYWORDS = frozenset({"insert", "update", "delete"})


@runtime_checkable
class DialectDriver(Protocol):
    """Protocol implemented by dialect drivers.

    Pools are opaque to callers; only the driver that created a pool knows
    its concrete type.
    """

    dialect: Dialect

    async def connect(
        self,
        uri: str,
        strategy: ConnectStrategy,
        settings: PoolSettings,
        on_error: ErrorCallback,
    ) -> Any:
        """Open and verify a pool; raise if the server cannot be reached."""

    async def disconnect(self, pool: Any) -> None:
        """Close every connection held by the pool."""

    async def run_query(self, pool: Any, statement: str) -> QueryResult:
        """Execute caller-supplied text and normalize the result."""

    async def list_tables(self, pool: Any) -> list[str]:
        """Return user tables (or collections) in the default schema."""

    async def describe_columns(self, pool: Any, table: str) -> tuple[ColumnDescriptor, ...]:
        """Return column metadata for a table."""

    async def sample_rows(self, pool: Any, table: str, limit: int) -> tuple[Record, ...]:
        """Return up to ``limit`` rows from a table."""

    async def count_rows(self, pool: Any, table: str) -> int:
        """Return the current row (or document) count for a table."""

    def is_fatal(self, exc: BaseException) -> bool:
        """Whether an error means the pool itself is no longer usable."""


class Stopwatch:
    """Tiny helper measuring elapsed milliseconds."""

    def __init__(self) -> None:
        self._started = time.perf_counter()

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)


def returns_rows(statement: str) -> bool:
    """Guess from the text whether a statement produces a row set."""

    body = _LEADING_NOISE.sub("", statement, count=1)
    token = body.split(None, 1)
    if not token:
        return False
    head = token[0].lower()
    if head in _ROW_KEYWORDS:
        return True
    return head in _WRITE_KEYWORDS and _RETURNING.search(body) is not None


__all__ = ["DialectDriver", "ErrorCallback", "Stopwatch", "returns_rows"]
