"""MySQL driver backed by aiomysql pools."""

from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, unquote, urlsplit

import aiomysql

from ..config import PoolSettings
from ..errors import DriverError, QueryExecutionError
from ..models import ColumnDescriptor, Dialect, QueryResult, Record
from ..tls import ConnectStrategy, permissive_ssl_context, prepare_uri
from .base import ErrorCallback, Stopwatch

# Client error codes for a lost or unreachable server.
_FATAL_CODES = frozenset({2003, 2006, 2013})


@dataclass(slots=True)
class MySQLPool:
    """aiomysql pool plus the statement timeout it was created with."""

    pool: aiomysql.Pool
    statement_timeout: float


class MySQLDriver:
    """Relational driver for MySQL (backtick identifiers)."""

    dialect = Dialect.MYSQL

    _TABLES_QUERY = (
        "SELECT TABLE_NAME FROM information_schema.TABLES "
        "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
        "ORDER BY TABLE_NAME"
    )

    _COLUMNS_QUERY = (
        "SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, COLUMN_DEFAULT, COLUMN_KEY "
        "FROM information_schema.COLUMNS "
        "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s "
        "ORDER BY ORDINAL_POSITION"
    )

    async def connect(
        self,
        uri: str,
        strategy: ConnectStrategy,
        settings: PoolSettings,
        on_error: ErrorCallback,
    ) -> MySQLPool:
        options = parse_mysql_uri(prepare_uri(uri, self.dialect, strategy))
        if strategy.permissive_tls:
            options["ssl"] = permissive_ssl_context()
        # create_pool closes its half-built pool before re-raising.
        pool = await aiomysql.create_pool(
            minsize=1,
            maxsize=settings.max_size,
            pool_recycle=int(settings.idle_timeout),
            connect_timeout=settings.connect_timeout,
            autocommit=True,
            **options,
        )
        return MySQLPool(pool=pool, statement_timeout=settings.statement_timeout)

    async def disconnect(self, pool: MySQLPool) -> None:
        pool.pool.close()
        await pool.pool.wait_closed()

    async def run_query(self, pool: MySQLPool, statement: str) -> QueryResult:
        watch = Stopwatch()
        try:
            description, rows, rowcount = await self._execute(pool, statement)
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        if description is None:
            return QueryResult(
                columns=(),
                rows=(),
                row_count=max(rowcount, 0),
                status=f"{max(rowcount, 0)} row(s) affected",
                elapsed_ms=watch.elapsed_ms,
            )
        return QueryResult(
            columns=tuple(column[0] for column in description),
            rows=rows,
            row_count=len(rows),
            status=f"{len(rows)} row(s)",
            elapsed_ms=watch.elapsed_ms,
        )

    async def list_tables(self, pool: MySQLPool) -> list[str]:
        _, rows, _ = await self._execute(pool, self._TABLES_QUERY)
        return [str(row["TABLE_NAME"]) for row in rows]

    async def describe_columns(self, pool: MySQLPool, table: str) -> tuple[ColumnDescriptor, ...]:
        _, rows, _ = await self._execute(pool, self._COLUMNS_QUERY, (table,))
        return tuple(
            ColumnDescriptor(
                name=str(row["COLUMN_NAME"]),
                data_type=str(row["DATA_TYPE"]),
                nullable=row["IS_NULLABLE"] == "YES",
                default=row["COLUMN_DEFAULT"],
                key=row["COLUMN_KEY"] or None,
            )
            for row in rows
        )

    async def sample_rows(self, pool: MySQLPool, table: str, limit: int) -> tuple[Record, ...]:
        _, rows, _ = await self._execute(pool, f"SELECT * FROM {quote_identifier(table)} LIMIT %s", (limit,))
        return rows

    async def count_rows(self, pool: MySQLPool, table: str) -> int:
        _, rows, _ = await self._execute(pool, f"SELECT COUNT(*) AS row_count FROM {quote_identifier(table)}")
        return int(rows[0]["row_count"]) if rows else 0

    def is_fatal(self, exc: BaseException) -> bool:
        cause = exc.__cause__ or exc
        if isinstance(cause, aiomysql.OperationalError):
            return bool(cause.args) and cause.args[0] in _FATAL_CODES
        return isinstance(cause, ConnectionError)

    async def _execute(
        self,
        pool: MySQLPool,
        statement: str,
        args: tuple[Any, ...] | None = None,
    ) -> tuple[Any, tuple[Record, ...], int]:
        async def run() -> tuple[Any, tuple[Record, ...], int]:
            async with pool.pool.acquire() as conn:
                async with conn.cursor(aiomysql.DictCursor) as cursor:
                    await cursor.execute(statement, args)
                    if cursor.description is None:
                        return None, (), cursor.rowcount
                    rows = await cursor.fetchall()
                    return cursor.description, tuple(dict(row) for row in rows), cursor.rowcount

        return await asyncio.wait_for(run(), timeout=pool.statement_timeout)


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


def parse_mysql_uri(uri: str) -> dict[str, Any]:
    """Translate a ``mysql://`` URI into aiomysql connect keyword arguments."""

    parts = urlsplit(uri)
    if parts.scheme not in {"mysql", "mysql+aiomysql"}:
        raise DriverError(f"Unsupported MySQL URI scheme: {parts.scheme or '<none>'}")
    if not parts.hostname:
        raise DriverError("MySQL URI is missing a host")
    options: dict[str, Any] = {
        "host": parts.hostname,
        "port": parts.port or 3306,
        "user": unquote(parts.username) if parts.username else None,
        "password": unquote(parts.password) if parts.password else "",
    }
    database = parts.path.lstrip("/")
    if database:
        options["db"] = unquote(database)
    params = {key.lower().replace("_", "-"): value for key, value in parse_qsl(parts.query)}
    context = _ssl_for_mode(params.get("ssl-mode") or ("REQUIRED" if params.get("ssl") == "true" else None))
    if context is not None:
        options["ssl"] = context
    return options


def _ssl_for_mode(mode: str | None) -> ssl.SSLContext | None:
    if mode is None:
        return None
    mode = mode.upper()
    if mode in {"DISABLED", "PREFERRED"}:
        return None
    if mode == "REQUIRED":
        return permissive_ssl_context()
    context = ssl.create_default_context()
    if mode == "VERIFY_CA":
        context.check_hostname = False
    return context


__all__ = ["MySQLDriver", "MySQLPool", "parse_mysql_uri", "quote_identifier"]
