"""MongoDB driver backed by pymongo's asyncio client."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Mapping, TypeVar

from bson import ObjectId
from pymongo import AsyncMongoClient, monitoring
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config import PoolSettings
from ..errors import QueryExecutionError
from ..inference import SchemaMode, infer_document_columns
from ..models import ColumnDescriptor, Dialect, QueryResult, Record
from ..tls import ConnectStrategy, prepare_uri
from ..validation import DocumentQuery, parse_document_query
from .base import ErrorCallback, Stopwatch

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class _HeartbeatListener(monitoring.ServerHeartbeatListener):
    """Forward heartbeat failures of an established client to the registry."""

    def __init__(self, on_error: ErrorCallback) -> None:
        self._on_error = on_error
        self.armed = False

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        pass

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        if not self.armed:
            return
        LOG.warning("MongoDB heartbeat failed", extra={"address": str(event.connection_id)})
        error = event.reply if isinstance(event.reply, BaseException) else ConnectionFailure(str(event.reply))
        self._on_error(error)


@dataclass(slots=True)
class MongoPool:
    client: AsyncMongoClient
    database: Any
    statement_timeout: float
    listener: _HeartbeatListener


class MongoDriver:
    """Document driver; collections stand in for tables."""

    dialect = Dialect.MONGODB

    def __init__(self, sample_size: int = 100, schema_mode: SchemaMode = "first") -> None:
        self._sample_size = sample_size
        self._schema_mode = schema_mode

    async def connect(
        self,
        uri: str,
        strategy: ConnectStrategy,
        settings: PoolSettings,
        on_error: ErrorCallback,
    ) -> MongoPool:
        listener = _HeartbeatListener(on_error)
        timeout_ms = int(settings.connect_timeout * 1000)
        client: AsyncMongoClient = AsyncMongoClient(
            prepare_uri(uri, self.dialect, strategy),
            maxPoolSize=settings.max_size,
            maxIdleTimeMS=int(settings.idle_timeout * 1000),
            connectTimeoutMS=timeout_ms,
            serverSelectionTimeoutMS=timeout_ms,
            event_listeners=[listener],
        )
        try:
            await client.admin.command("ping")
        except BaseException:
            await client.close()
            raise
        listener.armed = True
        # Database name comes from the URI path.
        database = client.get_default_database(default="test")
        return MongoPool(
            client=client,
            database=database,
            statement_timeout=settings.statement_timeout,
            listener=listener,
        )

    async def disconnect(self, pool: MongoPool) -> None:
        pool.listener.armed = False
        await pool.client.close()

    async def run_query(self, pool: MongoPool, statement: str) -> QueryResult:
        command = parse_document_query(statement)
        watch = Stopwatch()
        try:
            documents = await asyncio.wait_for(self._dispatch(pool, command), timeout=pool.statement_timeout)
        except (PyMongoError, asyncio.TimeoutError) as exc:
            raise QueryExecutionError(str(exc) or type(exc).__name__) from exc
        rows = tuple(_plain(document) for document in documents)
        columns: dict[str, None] = {}
        for row in rows:
            columns.update(dict.fromkeys(row))
        return QueryResult(
            columns=tuple(columns),
            rows=rows,
            row_count=len(rows),
            status=f"{len(rows)} document(s)",
            elapsed_ms=watch.elapsed_ms,
        )

    async def list_tables(self, pool: MongoPool) -> list[str]:
        names = await _bounded(pool, pool.database.list_collection_names())
        return sorted(names)

    async def describe_columns(self, pool: MongoPool, table: str) -> tuple[ColumnDescriptor, ...]:
        documents = await self._find(pool, table, self._sample_size)
        return infer_document_columns(documents, self._schema_mode)

    async def sample_rows(self, pool: MongoPool, table: str, limit: int) -> tuple[Record, ...]:
        documents = await self._find(pool, table, limit)
        return tuple(_plain(document) for document in documents)

    async def count_rows(self, pool: MongoPool, table: str) -> int:
        return int(await _bounded(pool, pool.database[table].count_documents({})))

    def is_fatal(self, exc: BaseException) -> bool:
        cause = exc.__cause__ or exc
        return isinstance(cause, (ConnectionFailure, ConnectionError))

    async def _find(self, pool: MongoPool, collection: str, limit: int) -> list[Mapping[str, Any]]:
        cursor = pool.database[collection].find({}).limit(limit)
        return await _bounded(pool, cursor.to_list(length=None))

    async def _dispatch(self, pool: MongoPool, command: DocumentQuery) -> list[Mapping[str, Any]]:
        collection = pool.database[command.collection]
        if command.pipeline is not None:
            cursor = await collection.aggregate(list(command.pipeline))
            return await cursor.to_list(length=None)
        cursor = collection.find(command.filter, command.projection)
        if command.sort:
            cursor = cursor.sort(list(command.sort.items()))
        if command.limit:
            cursor = cursor.limit(command.limit)
        return await cursor.to_list(length=None)


async def _bounded(pool: MongoPool, awaitable: Awaitable[T]) -> T:
    """Await a catalog call under the pool's statement timeout."""

    try:
        return await asyncio.wait_for(awaitable, timeout=pool.statement_timeout)
    except asyncio.TimeoutError as exc:
        raise QueryExecutionError(f"MongoDB call timed out after {pool.statement_timeout:g}s") from exc


def _plain(document: Mapping[str, Any]) -> Record:
    row = dict(document)
    if isinstance(row.get("_id"), ObjectId):
        row["_id"] = str(row["_id"])
    return row


__all__ = ["MongoDriver", "MongoPool"]
