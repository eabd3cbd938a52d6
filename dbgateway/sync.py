"""Row-count driven incremental re-sync."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from .batching import run_in_batches
from .config import SyncSettings
from .ingestion import IngestionPipeline
from .introspect import SchemaIntrospector
from .models import Dialect, SyncReport, SyncStatus, SyncWatermark, TableRefresh
from .registry import PoolHandle, PoolRegistry
from .snapshot import merge_refreshes
from .stores import ConnectionStore, WatermarkStore
from .tls import redact_uri

LOG = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return redact_uri(str(exc) or type(exc).__name__)


class SyncEngine:
    """Refreshes the snapshot of tables whose row count grew since the last pass.

    Updates or deletes that leave the row count unchanged go unnoticed.
    """

    def __init__(
        self,
        registry: PoolRegistry,
        connections: ConnectionStore,
        watermarks: WatermarkStore,
        *,
        introspector: SchemaIntrospector | None = None,
        ingestion: IngestionPipeline | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        self._registry = registry
        self._connections = connections
        self._watermarks = watermarks
        self._settings = settings or SyncSettings()
        self._introspector = introspector or SchemaIntrospector(self._settings)
        self._ingestion = ingestion

    async def sync(self, connection_id: str) -> SyncReport:
        try:
            descriptor = await self._connections.get(connection_id)
        except Exception as exc:
            LOG.exception("Failed to load connection", extra={"connection_id": connection_id})
            return SyncReport(connection_id, SyncStatus.FAILED, error=_describe(exc))
        if descriptor is None:
            return SyncReport(connection_id, SyncStatus.FAILED, error=f"Unknown connection '{connection_id}'")

        handle: PoolHandle | None = None
        try:
            handle = await self._registry.acquire(connection_id, descriptor.dialect, descriptor.uri)
            tables = await handle.driver.list_tables(handle.pool)
        except Exception as exc:
            if handle is not None and handle.driver.is_fatal(exc):
                await self._registry.invalidate(connection_id, exc, token=handle.token)
            LOG.warning("Sync probe failed", extra={"connection_id": connection_id, "error": _describe(exc)})
            return SyncReport(connection_id, SyncStatus.FAILED, error=_describe(exc))

        dirty, unchecked = await self._find_dirty_tables(handle, tables)
        refreshes, skipped = await self._fetch_tables(handle, dirty, descriptor.pipeline_mode.captures_data)
        if not refreshes:
            LOG.info(
                "Sync found no changes",
                extra={"connection_id": connection_id, "skipped": len(skipped), "unchecked": len(unchecked)},
            )
            return SyncReport(
                connection_id,
                SyncStatus.NO_CHANGE,
                skipped_tables=skipped,
                unchecked_tables=unchecked,
            )

        updated = merge_refreshes(descriptor, refreshes)
        try:
            await self._connections.save(updated)
        except Exception as exc:
            LOG.exception("Failed to persist snapshot", extra={"connection_id": connection_id})
            return SyncReport(
                connection_id,
                SyncStatus.FAILED,
                skipped_tables=skipped,
                unchecked_tables=unchecked,
                error=_describe(exc),
            )

        unmarked = await self._record_watermarks(connection_id, descriptor.dialect, refreshes)

        ingested, ingestion_error = 0, None
        if self._ingestion is not None:
            try:
                ingested = await self._ingestion.ingest(updated, refreshes)
            except Exception as exc:
                LOG.exception("Ingestion failed after sync", extra={"connection_id": connection_id})
                ingestion_error = _describe(exc)

        updated_tables = tuple(refresh.table_name for refresh in refreshes)
        error = None
        if unmarked:
            error = f"Failed to record watermarks for: {', '.join(unmarked)}"
        LOG.info("Sync complete", extra={"connection_id": connection_id, "updated": len(updated_tables)})
        return SyncReport(
            connection_id,
            SyncStatus.FAILED if unmarked else SyncStatus.SYNCED,
            updated_tables=updated_tables,
            skipped_tables=skipped,
            unchecked_tables=unchecked,
            error=error,
            ingested_records=ingested,
            ingestion_error=ingestion_error,
        )

    async def _record_watermarks(
        self,
        connection_id: str,
        dialect: Dialect,
        refreshes: list[TableRefresh],
    ) -> tuple[str, ...]:
        """Upsert one watermark per refreshed table; returns the tables that failed."""

        synced_at = datetime.now(tz=timezone.utc)
        failed: list[str] = []
        for refresh in refreshes:
            watermark = SyncWatermark(
                connection_id=connection_id,
                table_name=refresh.table_name,
                last_row_count=refresh.row_count or 0,
                last_synced_at=synced_at,
                dialect=dialect,
            )
            try:
                await self._watermarks.upsert(watermark)
            except Exception as exc:
                LOG.warning(
                    "Watermark write failed",
                    extra={"connection_id": connection_id, "table": refresh.table_name, "error": _describe(exc)},
                )
                failed.append(refresh.table_name)
        return tuple(failed)

    async def _find_dirty_tables(
        self,
        handle: PoolHandle,
        tables: list[str],
    ) -> tuple[list[tuple[str, int]], tuple[str, ...]]:
        async def check(table: str) -> int | None:
            current = await handle.driver.count_rows(handle.pool, table)
            watermark = await self._watermarks.get(handle.connection_id, table)
            last = watermark.last_row_count if watermark else 0
            return current if current > last else None

        results = await run_in_batches(tables, self._settings.batch_size, check)
        dirty: list[tuple[str, int]] = []
        unchecked: list[str] = []
        for table, result in zip(tables, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                LOG.warning(
                    "Row count failed",
                    extra={"connection_id": handle.connection_id, "table": table, "error": _describe(result)},
                )
                unchecked.append(table)
            elif result is not None:
                dirty.append((table, result))
        return dirty, tuple(unchecked)

    async def _fetch_tables(
        self,
        handle: PoolHandle,
        dirty: list[tuple[str, int]],
        capture_data: bool,
    ) -> tuple[list[TableRefresh], tuple[str, ...]]:
        async def fetch(item: tuple[str, int]) -> TableRefresh:
            table, count = item
            return await self._introspector.fetch_table(handle, table, capture_data=capture_data, row_count=count)

        results = await run_in_batches(dirty, self._settings.batch_size, fetch)
        refreshes: list[TableRefresh] = []
        skipped: list[str] = []
        for (table, _), result in zip(dirty, results):
            if isinstance(result, TableRefresh):
                refreshes.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            LOG.warning(
                "Table fetch failed",
                extra={"connection_id": handle.connection_id, "table": table, "error": _describe(result)},
            )
            skipped.append(table)
        return refreshes, tuple(skipped)


__all__ = ["SyncEngine"]
