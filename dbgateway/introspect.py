"""Schema and sample capture for a live pool."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial

from .batching import run_in_batches
from .config import SyncSettings
from .models import TableDescriptor, TableRefresh, TableSample
from .registry import PoolHandle
from .tls import redact_uri

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SchemaSnapshot:
    """Result of one introspection pass."""

    schema: tuple[TableDescriptor, ...]
    data: tuple[TableSample, ...]
    refreshes: tuple[TableRefresh, ...]

    @property
    def failed_tables(self) -> tuple[str, ...]:
        return tuple(table.table_name for table in self.schema if table.error)


class SchemaIntrospector:
    """Walks every table of a connection in bounded batches."""

    def __init__(self, settings: SyncSettings | None = None) -> None:
        self._settings = settings or SyncSettings()

    async def describe_schema(self, handle: PoolHandle, *, capture_data: bool = True) -> SchemaSnapshot:
        """Describe all tables; a failing table is marked instead of aborting the pass.

        Listing the tables is the only step whose failure propagates.
        """

        tables = await handle.driver.list_tables(handle.pool)
        LOG.debug(
            "Introspecting tables",
            extra={"connection_id": handle.connection_id, "tables": len(tables)},
        )
        results = await run_in_batches(
            tables,
            self._settings.batch_size,
            partial(self.fetch_table, handle, capture_data=capture_data),
        )
        schema: list[TableDescriptor] = []
        data: list[TableSample] = []
        refreshes: list[TableRefresh] = []
        for table, result in zip(tables, results):
            if isinstance(result, TableRefresh):
                schema.append(TableDescriptor(table_name=table, columns=result.columns))
                if capture_data:
                    data.append(TableSample(table_name=table, rows=result.rows))
                refreshes.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            message = redact_uri(str(result) or type(result).__name__)
            LOG.warning(
                "Failed to introspect table",
                extra={"connection_id": handle.connection_id, "table": table, "error": message},
            )
            schema.append(TableDescriptor(table_name=table, error=message))
            if capture_data:
                data.append(TableSample(table_name=table))
        return SchemaSnapshot(schema=tuple(schema), data=tuple(data), refreshes=tuple(refreshes))

    async def fetch_table(
        self,
        handle: PoolHandle,
        table: str,
        *,
        capture_data: bool = True,
        row_count: int | None = None,
    ) -> TableRefresh:
        """Fetch columns and (optionally) a bounded row sample concurrently."""

        driver, pool = handle.driver, handle.pool
        if not capture_data:
            columns = await driver.describe_columns(pool, table)
            return TableRefresh(table_name=table, columns=columns, rows=(), row_count=row_count)
        columns, rows = await asyncio.gather(
            driver.describe_columns(pool, table),
            driver.sample_rows(pool, table, self._settings.sample_limit),
        )
        return TableRefresh(table_name=table, columns=columns, rows=rows, row_count=row_count)


__all__ = ["SchemaIntrospector", "SchemaSnapshot"]
