"""PostgreSQL driver backed by asyncpg pools."""

from __future__ import annotations

import asyncpg

from ..config import PoolSettings
from ..errors import QueryExecutionError
from ..models import ColumnDescriptor, Dialect, QueryResult, Record
from ..tls import ConnectStrategy, permissive_ssl_context, prepare_uri
from .base import ErrorCallback, Stopwatch

_FATAL_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.AdminShutdownError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionError,
)

# Raised by the server for text holding several statements.
_MULTIPLE_COMMANDS = "cannot insert multiple commands into a prepared statement"


class PostgresDriver:
    """Relational driver for PostgreSQL (double-quoted identifiers)."""

    dialect = Dialect.POSTGRES

    _TABLES_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
        ORDER BY table_name
    """

    _COLUMNS_QUERY = """
        SELECT column_name, data_type, is_nullable, column_default
        FROM information_schema.columns
        WHERE table_schema = 'public' AND table_name = $1
        ORDER BY ordinal_position
    """

    async def connect(
        self,
        uri: str,
        strategy: ConnectStrategy,
        settings: PoolSettings,
        on_error: ErrorCallback,
    ) -> asyncpg.Pool:
        """Create a pool and open its first connection.

        asyncpg reports server-side disconnects on the next call rather than
        asynchronously, so ``on_error`` is not wired here; see ``is_fatal``.
        """

        pool = asyncpg.create_pool(
            dsn=prepare_uri(uri, self.dialect, strategy),
            min_size=1,
            max_size=settings.max_size,
            max_inactive_connection_lifetime=settings.idle_timeout,
            timeout=settings.connect_timeout,
            command_timeout=settings.statement_timeout,
            ssl=permissive_ssl_context() if strategy.permissive_tls else None,
        )
        try:
            await pool
        except BaseException:
            pool.terminate()
            raise
        return pool

    async def disconnect(self, pool: asyncpg.Pool) -> None:
        await pool.close()

    async def run_query(self, pool: asyncpg.Pool, statement: str) -> QueryResult:
        """Run caller-supplied text and normalize the result.

        The prepared statement's result attributes decide whether rows come
        back, so leading comments and ``RETURNING`` clauses are handled the
        same way as a plain ``SELECT``.
        """

        watch = Stopwatch()
        try:
            async with pool.acquire() as conn:
                columns, rows, status = await _run_statement(conn, statement)
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        if rows is None:
            return QueryResult(
                columns=(),
                rows=(),
                row_count=affected_rows(status),
                status=status,
                elapsed_ms=watch.elapsed_ms,
            )
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            status=status or f"{len(rows)} row(s)",
            elapsed_ms=watch.elapsed_ms,
        )

    async def list_tables(self, pool: asyncpg.Pool) -> list[str]:
        rows = await pool.fetch(self._TABLES_QUERY)
        return [str(row["table_name"]) for row in rows]

    async def describe_columns(self, pool: asyncpg.Pool, table: str) -> tuple[ColumnDescriptor, ...]:
        rows = await pool.fetch(self._COLUMNS_QUERY, table)
        return tuple(
            ColumnDescriptor(
                name=str(row["column_name"]),
                data_type=str(row["data_type"]),
                nullable=row["is_nullable"] == "YES",
                default=row["column_default"],
            )
            for row in rows
        )

    async def sample_rows(self, pool: asyncpg.Pool, table: str, limit: int) -> tuple[Record, ...]:
        records = await pool.fetch(f"SELECT * FROM {quote_identifier(table)} LIMIT $1", limit)
        return tuple(dict(record) for record in records)

    async def count_rows(self, pool: asyncpg.Pool, table: str) -> int:
        value = await pool.fetchval(f"SELECT COUNT(*) FROM {quote_identifier(table)}")
        return int(value or 0)

    def is_fatal(self, exc: BaseException) -> bool:
        cause = exc.__cause__ or exc
        return isinstance(cause, _FATAL_ERRORS)


async def _run_statement(
    conn: asyncpg.Connection,
    statement: str,
) -> tuple[tuple[str, ...], tuple[Record, ...] | None, str]:
    """Return column names, rows (``None`` for row-less commands) and the status tag."""

    try:
        prepared = await conn.prepare(statement)
    except asyncpg.exceptions.PostgresSyntaxError as exc:
        if _MULTIPLE_COMMANDS not in str(exc):
            raise
        return (), None, await conn.execute(statement)
    attributes = prepared.get_attributes()
    records = await prepared.fetch()
    status = prepared.get_statusmsg() or ""
    if not attributes:
        return (), None, status
    columns = tuple(attribute.name for attribute in attributes)
    return columns, tuple(dict(record) for record in records), status


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def affected_rows(status: str) -> int:
    """Parse the trailing count out of a command tag such as ``UPDATE 3``."""

    tail = status.rsplit(" ", 1)[-1] if status else ""
    return int(tail) if tail.isdigit() else 0


__all__ = ["PostgresDriver", "affected_rows", "quote_identifier"]
