"""Facade wiring the registry, engines and stores for callers."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from .config import GatewayConfig
from .drivers import default_drivers, demo_drivers
from .errors import GatewayError
from .ingestion import IngestionPipeline, JsonlIndexWriter
from .introspect import SchemaIntrospector
from .models import ConnectionDescriptor, Dialect, PipelineMode, QueryOutcome, SyncReport, SyncWatermark
from .query import QueryGateway
from .registry import PoolRegistry
from .stores import ConnectionStore, JsonStateStore, WatermarkStore
from .sync import SyncEngine
from .tls import redact_uri

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EstablishRequest:
    """Details supplied when a caller registers a database."""

    dialect: Dialect
    uri: str
    connection_id: str | None = None
    owner_id: str | None = None
    display_name: str | None = None
    pipeline_mode: PipelineMode = PipelineMode.SNAPSHOT


@dataclass(frozen=True, slots=True)
class EstablishResult:
    descriptor: ConnectionDescriptor
    strategy: str
    failed_tables: tuple[str, ...] = ()
    ingested_records: int = 0
    ingestion_error: str | None = None


class DatabaseGateway:
    """Entry point for the establish, sync, execute and delete flows."""

    def __init__(
        self,
        registry: PoolRegistry,
        connections: ConnectionStore,
        watermarks: WatermarkStore,
        *,
        ingestion: IngestionPipeline | None = None,
        config: GatewayConfig | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self._registry = registry
        self._connections = connections
        self._watermarks = watermarks
        self._ingestion = ingestion
        self._introspector = SchemaIntrospector(self._config.sync)
        self._sync = SyncEngine(
            registry,
            connections,
            watermarks,
            introspector=self._introspector,
            ingestion=ingestion,
            settings=self._config.sync,
        )
        self._query = QueryGateway(registry, connections)

    @classmethod
    def from_config(cls, config: GatewayConfig, *, demo: bool = False) -> DatabaseGateway:
        """Build a gateway persisting to the state and index files of ``config``."""

        drivers = demo_drivers(config.sync) if demo else default_drivers(config.sync)
        registry = PoolRegistry(drivers, settings=config.pool)
        state = JsonStateStore(config.state_file)
        ingestion = IngestionPipeline(JsonlIndexWriter(config.index_file), config.chunking)
        return cls(registry, state, state.watermark_store(), ingestion=ingestion, config=config)

    @property
    def registry(self) -> PoolRegistry:
        return self._registry

    @property
    def connections(self) -> ConnectionStore:
        return self._connections

    async def __aenter__(self) -> DatabaseGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def establish(self, request: EstablishRequest) -> EstablishResult:
        """Connect, capture the initial snapshot and persist the descriptor.

        Nothing is stored when every connection strategy fails. Watermarks are
        not seeded, so the first sync re-reads every non-empty table.
        """

        connection_id = request.connection_id or uuid.uuid4().hex
        existing = await self._connections.get(connection_id)
        if existing is not None and (existing.uri != request.uri or existing.dialect is not request.dialect):
            raise GatewayError(f"Connection '{connection_id}' already exists with different details")

        handle = await self._registry.acquire(connection_id, request.dialect, request.uri)
        capture_data = request.pipeline_mode.captures_data
        try:
            snapshot = await self._introspector.describe_schema(handle, capture_data=capture_data)
        except Exception:
            await self._registry.release(connection_id)
            raise

        if existing is not None:
            descriptor = existing.with_snapshots(snapshot.schema, snapshot.data)
        else:
            descriptor = ConnectionDescriptor(
                id=connection_id,
                dialect=request.dialect,
                uri=request.uri,
                owner_id=request.owner_id,
                display_name=request.display_name,
                pipeline_mode=request.pipeline_mode,
                schema=snapshot.schema,
                data=snapshot.data,
            )
        await self._connections.save(descriptor)
        LOG.info(
            "Connection established",
            extra={
                "connection_id": connection_id,
                "dialect": request.dialect.value,
                "tables": len(snapshot.schema),
                "failed": len(snapshot.failed_tables),
            },
        )

        ingested, ingestion_error = 0, None
        if self._ingestion is not None and snapshot.refreshes:
            try:
                ingested = await self._ingestion.ingest(descriptor, snapshot.refreshes)
            except Exception as exc:
                LOG.exception("Initial ingestion failed", extra={"connection_id": connection_id})
                ingestion_error = redact_uri(str(exc) or type(exc).__name__)

        return EstablishResult(
            descriptor=descriptor,
            strategy=handle.strategy,
            failed_tables=snapshot.failed_tables,
            ingested_records=ingested,
            ingestion_error=ingestion_error,
        )

    async def sync(self, connection_id: str) -> SyncReport:
        return await self._sync.sync(connection_id)

    async def execute(self, connection_id: str, query_text: str) -> QueryOutcome:
        return await self._query.execute(connection_id, query_text)

    async def describe(self, connection_id: str) -> ConnectionDescriptor | None:
        return await self._connections.get(connection_id)

    async def watermarks(self, connection_id: str) -> tuple[SyncWatermark, ...]:
        return await self._watermarks.for_connection(connection_id)

    async def delete(self, connection_id: str) -> bool:
        """Drop the live pool, the watermarks and the descriptor of a connection."""

        await self._registry.release(connection_id)
        removed_marks = await self._watermarks.delete_for_connection(connection_id)
        removed = await self._connections.delete(connection_id)
        LOG.info(
            "Connection deleted",
            extra={"connection_id": connection_id, "watermarks": removed_marks, "existed": removed},
        )
        return removed

    async def shutdown(self) -> None:
        await self._registry.release_all()


__all__ = ["DatabaseGateway", "EstablishRequest", "EstablishResult"]
