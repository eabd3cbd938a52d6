"""In-memory driver used by demo mode and tests."""

from __future__ import annotations

import asyncio
import itertools
import re
from dataclasses import dataclass, field
from typing import Collection, Iterable, Mapping, Sequence

from ..config import PoolSettings
from ..errors import QueryExecutionError
from ..inference import SchemaMode, classify_value, infer_document_columns
from ..models import ColumnDescriptor, Dialect, QueryResult, Record
from ..tls import ConnectStrategy
from ..validation import parse_document_query
from .base import ErrorCallback, returns_rows

DEMO_TABLES: Mapping[str, Sequence[Record]] = {
    "accounts": (
        {"id": 1, "email": "ada@example.com", "status": "active"},
        {"id": 2, "email": "grace@example.com", "status": "active"},
        {"id": 3, "email": "linus@example.com", "status": "disabled"},
    ),
    "orders": (
        {"id": 10, "account_id": 1, "total": 42.5, "currency": "EUR"},
        {"id": 11, "account_id": 2, "total": 12.0, "currency": "USD"},
    ),
    "payments": (
        {"id": 100, "order_id": 10, "amount": 42.5},
    ),
}

_FROM_TABLE = re.compile(r"\bfrom\s+[`\"]?(\w+)[`\"]?", re.IGNORECASE)
_tokens = itertools.count(1)


@dataclass(slots=True)
class MemoryPool:
    """Handle returned by ``MemoryDriver.connect``."""

    token: int
    uri: str
    strategy: str
    on_error: ErrorCallback
    closed: bool = False


@dataclass(slots=True)
class MemoryDriver:
    """Driver serving tables from dictionaries.

    ``refuse_strategies`` lists ladder rungs whose connect attempt fails,
    which is how a server that insists on TLS is simulated. ``fail_counts``
    and ``fail_fetches`` name tables whose count or fetch raises.
    """

    dialect: Dialect = Dialect.POSTGRES
    tables: dict[str, list[Record]] = field(default_factory=dict)
    columns: dict[str, tuple[ColumnDescriptor, ...]] = field(default_factory=dict)
    refuse_strategies: Collection[str] = ()
    fail_counts: set[str] = field(default_factory=set)
    fail_fetches: set[str] = field(default_factory=set)
    fail_listing: bool = False
    schema_mode: SchemaMode = "first"
    connect_delay: float = 0.0
    connect_calls: list[str] = field(default_factory=list)
    pools: list[MemoryPool] = field(default_factory=list)
    statements: list[str] = field(default_factory=list)

    @classmethod
    def seeded(
        cls,
        tables: Mapping[str, Iterable[Record]] | None = None,
        *,
        dialect: Dialect = Dialect.POSTGRES,
        **options: object,
    ) -> MemoryDriver:
        source = DEMO_TABLES if tables is None else tables
        return cls(
            dialect=dialect,
            tables={name: [dict(row) for row in rows] for name, rows in source.items()},
            **options,  # type: ignore[arg-type]
        )

    def append_rows(self, table: str, rows: Iterable[Record]) -> None:
        """Grow a table (testing helper)."""

        self.tables.setdefault(table, []).extend(dict(row) for row in rows)

    async def connect(
        self,
        uri: str,
        strategy: ConnectStrategy,
        settings: PoolSettings,
        on_error: ErrorCallback,
    ) -> MemoryPool:
        self.connect_calls.append(strategy.name)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if strategy.name in self.refuse_strategies:
            raise ConnectionRefusedError(f"server rejected {uri} under {strategy.name}")
        pool = MemoryPool(token=next(_tokens), uri=uri, strategy=strategy.name, on_error=on_error)
        self.pools.append(pool)
        return pool

    async def disconnect(self, pool: MemoryPool) -> None:
        pool.closed = True

    def fail(self, pool: MemoryPool, exc: BaseException) -> None:
        """Report an asynchronous pool error, as a heartbeat monitor would."""

        pool.on_error(exc)

    async def run_query(self, pool: MemoryPool, statement: str) -> QueryResult:
        self._check_open(pool)
        self.statements.append(statement)
        if self.dialect is Dialect.MONGODB:
            command = parse_document_query(statement)
            rows = [
                dict(row)
                for row in self._table(command.collection)
                if all(row.get(key) == value for key, value in command.filter.items())
            ]
            if command.limit:
                rows = rows[: command.limit]
        elif returns_rows(statement):
            match = _FROM_TABLE.search(statement)
            if not match:
                return QueryResult(columns=(), rows=(), row_count=0)
            rows = [dict(row) for row in self._table(match.group(1))]
        else:
            return QueryResult(columns=(), rows=(), row_count=0, status="OK 0")
        columns = tuple(rows[0]) if rows else ()
        return QueryResult(columns=columns, rows=tuple(rows), row_count=len(rows), status=f"{len(rows)} row(s)")

    async def list_tables(self, pool: MemoryPool) -> list[str]:
        self._check_open(pool)
        if self.fail_listing:
            raise ConnectionResetError("catalog unavailable")
        return sorted(self.tables)

    async def describe_columns(self, pool: MemoryPool, table: str) -> tuple[ColumnDescriptor, ...]:
        self._check_open(pool)
        if table in self.fail_fetches:
            raise QueryExecutionError(f"permission denied for table {table}")
        if table in self.columns:
            return self.columns[table]
        rows = self._table(table)
        if self.dialect is Dialect.MONGODB:
            return infer_document_columns(rows, self.schema_mode)
        first = rows[0] if rows else {}
        return tuple(ColumnDescriptor(name=key, data_type=classify_value(value)) for key, value in first.items())

    async def sample_rows(self, pool: MemoryPool, table: str, limit: int) -> tuple[Record, ...]:
        self._check_open(pool)
        if table in self.fail_fetches:
            raise QueryExecutionError(f"permission denied for table {table}")
        return tuple(dict(row) for row in self._table(table)[:limit])

    async def count_rows(self, pool: MemoryPool, table: str) -> int:
        self._check_open(pool)
        if table in self.fail_counts:
            raise QueryExecutionError(f"statement timeout counting {table}")
        return len(self._table(table))

    def is_fatal(self, exc: BaseException) -> bool:
        cause = exc.__cause__ or exc
        return isinstance(cause, ConnectionError)

    def _table(self, name: str) -> list[Record]:
        try:
            return self.tables[name]
        except KeyError:
            raise QueryExecutionError(f'relation "{name}" does not exist') from None

    @staticmethod
    def _check_open(pool: MemoryPool) -> None:
        if pool.closed:
            raise ConnectionResetError("pool is closed")


__all__ = ["DEMO_TABLES", "MemoryDriver", "MemoryPool"]
