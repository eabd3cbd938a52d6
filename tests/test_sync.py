"""Tests for the incremental sync engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

import pytest

from dbgateway.drivers import MemoryDriver
from dbgateway.ingestion import IngestionPipeline, IngestionRecord
from dbgateway.models import ConnectionDescriptor, Dialect, SyncStatus, SyncWatermark, TableDescriptor, TableSample
from dbgateway.registry import PoolRegistry
from dbgateway.stores import InMemoryConnectionStore, InMemoryWatermarkStore
from dbgateway.sync import SyncEngine

URI = "postgresql://app:secret@db/app"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _RecordingWriter:
    def __init__(self, fail: bool = False) -> None:
        self.batches: list[list[IngestionRecord]] = []
        self.fail = fail

    async def upsert(self, records: Sequence[IngestionRecord]) -> None:
        if self.fail:
            raise RuntimeError("index unavailable")
        self.batches.append(list(records))


class _FlakyWatermarks(InMemoryWatermarkStore):
    def __init__(self) -> None:
        super().__init__()
        self.broken: set[str] = set()

    async def upsert(self, watermark: SyncWatermark) -> None:
        if watermark.table_name in self.broken:
            raise OSError("disk full")
        await super().upsert(watermark)


class _BrokenConnections(InMemoryConnectionStore):
    async def get(self, connection_id: str) -> ConnectionDescriptor | None:
        raise OSError("state file unreadable")


class _Harness:
    def __init__(
        self,
        driver: MemoryDriver,
        writer: _RecordingWriter | None = None,
        *,
        connections: InMemoryConnectionStore | None = None,
        watermarks: InMemoryWatermarkStore | None = None,
    ) -> None:
        self.driver = driver
        self.registry = PoolRegistry({driver.dialect: driver})
        self.connections = connections or InMemoryConnectionStore()
        self.watermarks = watermarks or InMemoryWatermarkStore()
        self.writer = writer or _RecordingWriter()
        self.engine = SyncEngine(
            self.registry,
            self.connections,
            self.watermarks,
            ingestion=IngestionPipeline(self.writer),
        )

    async def register(self, **watermarks: int) -> ConnectionDescriptor:
        descriptor = ConnectionDescriptor(
            id="c1",
            dialect=self.driver.dialect,
            uri=URI,
            schema=tuple(TableDescriptor(table_name=name) for name in sorted(self.driver.tables)),
            data=tuple(TableSample(table_name=name) for name in sorted(self.driver.tables)),
        )
        await self.connections.save(descriptor)
        for table, count in watermarks.items():
            await self.watermarks.upsert(
                SyncWatermark("c1", table, count, datetime(2024, 1, 1, tzinfo=timezone.utc), self.driver.dialect)
            )
        return descriptor


@pytest.mark.anyio
async def test_unchanged_counts_leave_everything_alone() -> None:
    harness = _Harness(MemoryDriver.seeded())
    before = await harness.register(accounts=3, orders=2, payments=1)

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.NO_CHANGE
    assert report.updated_tables == ()
    assert await harness.connections.get("c1") == before
    assert (await harness.watermarks.get("c1", "accounts")).last_row_count == 3
    assert harness.writer.batches == []


@pytest.mark.anyio
async def test_shrunk_table_is_not_dirty() -> None:
    harness = _Harness(MemoryDriver.seeded())
    await harness.register(accounts=10, orders=2, payments=1)

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.NO_CHANGE
    assert (await harness.watermarks.get("c1", "accounts")).last_row_count == 10


@pytest.mark.anyio
async def test_grown_table_is_refreshed_and_watermarked() -> None:
    harness = _Harness(MemoryDriver.seeded())
    await harness.register(accounts=3, orders=2, payments=1)
    harness.driver.append_rows("orders", [{"id": 12, "account_id": 3, "total": 5.0, "currency": "EUR"}])

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.SYNCED
    assert report.updated_tables == ("orders",)
    assert (await harness.watermarks.get("c1", "orders")).last_row_count == 3
    assert (await harness.watermarks.get("c1", "accounts")).last_row_count == 3
    descriptor = await harness.connections.get("c1")
    samples = {sample.table_name: sample.rows for sample in descriptor.data}
    assert len(samples["orders"]) == 3
    assert samples["accounts"] == ()
    assert descriptor.uri == URI
    assert report.ingested_records > 0
    ingested_tables = {record.metadata["tableName"] for batch in harness.writer.batches for record in batch}
    assert ingested_tables == {"orders"}


@pytest.mark.anyio
async def test_missing_watermarks_count_as_zero() -> None:
    harness = _Harness(MemoryDriver.seeded())
    await harness.register()

    report = await harness.engine.sync("c1")

    assert report.updated_tables == ("accounts", "orders", "payments")
    assert (await harness.watermarks.get("c1", "payments")).last_row_count == 1


@pytest.mark.anyio
async def test_new_table_is_appended_to_snapshot() -> None:
    harness = _Harness(MemoryDriver.seeded())
    await harness.register(accounts=3, orders=2, payments=1)
    harness.driver.append_rows("refunds", [{"id": 1, "payment_id": 100}])

    report = await harness.engine.sync("c1")

    descriptor = await harness.connections.get("c1")
    assert report.updated_tables == ("refunds",)
    assert descriptor.table_names() == ("accounts", "orders", "payments", "refunds")


@pytest.mark.anyio
async def test_count_failure_marks_table_unchecked() -> None:
    harness = _Harness(MemoryDriver.seeded(fail_counts={"accounts"}))
    await harness.register(orders=0, payments=1)

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.SYNCED
    assert report.unchecked_tables == ("accounts",)
    assert report.updated_tables == ("orders",)
    assert await harness.watermarks.get("c1", "accounts") is None


@pytest.mark.anyio
async def test_fetch_failure_skips_table_and_keeps_watermark() -> None:
    harness = _Harness(MemoryDriver.seeded(fail_fetches={"orders"}))
    await harness.register(accounts=0, orders=0, payments=1)

    report = await harness.engine.sync("c1")

    assert report.updated_tables == ("accounts",)
    assert report.skipped_tables == ("orders",)
    assert (await harness.watermarks.get("c1", "orders")).last_row_count == 0


@pytest.mark.anyio
async def test_probe_failure_fails_without_touching_watermarks() -> None:
    driver = MemoryDriver.seeded(refuse_strategies={"as-given", "permissive-tls", "stripped-permissive-tls"})
    harness = _Harness(driver)
    await harness.register(accounts=1)

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.FAILED
    assert "secret" not in (report.error or "")
    assert (await harness.watermarks.get("c1", "accounts")).last_row_count == 1


@pytest.mark.anyio
async def test_listing_failure_fails_the_pass() -> None:
    harness = _Harness(MemoryDriver.seeded(fail_listing=True))
    await harness.register()

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.FAILED
    assert harness.registry.get("c1") is None


@pytest.mark.anyio
async def test_unknown_connection_fails() -> None:
    harness = _Harness(MemoryDriver.seeded())

    report = await harness.engine.sync("missing")

    assert report.status is SyncStatus.FAILED


@pytest.mark.anyio
async def test_ingestion_failure_is_reported_but_watermarks_stay() -> None:
    harness = _Harness(MemoryDriver.seeded(), writer=_RecordingWriter(fail=True))
    await harness.register(accounts=0, orders=2, payments=1)

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.SYNCED
    assert report.ingestion_error == "index unavailable"
    assert (await harness.watermarks.get("c1", "accounts")).last_row_count == 3


@pytest.mark.anyio
async def test_mongodb_collections_sync_by_document_count() -> None:
    driver = MemoryDriver.seeded({"people": [{"a": 1}, {"a": 2}]}, dialect=Dialect.MONGODB)
    harness = _Harness(driver)
    await harness.register(people=1)

    report = await harness.engine.sync("c1")

    assert report.updated_tables == ("people",)
    assert (await harness.watermarks.get("c1", "people")).dialect is Dialect.MONGODB


@pytest.mark.anyio
async def test_watermark_write_failure_fails_the_pass() -> None:
    watermarks = _FlakyWatermarks()
    harness = _Harness(MemoryDriver.seeded(), watermarks=watermarks)
    await harness.register(accounts=0, orders=0, payments=1)
    watermarks.broken.add("orders")

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.FAILED
    assert report.updated_tables == ("accounts", "orders")
    assert report.error == "Failed to record watermarks for: orders"
    assert (await watermarks.get("c1", "accounts")).last_row_count == 3
    assert (await watermarks.get("c1", "orders")).last_row_count == 0


@pytest.mark.anyio
async def test_unreadable_connection_store_fails_the_pass() -> None:
    harness = _Harness(MemoryDriver.seeded(), connections=_BrokenConnections())

    report = await harness.engine.sync("c1")

    assert report.status is SyncStatus.FAILED
    assert report.error == "state file unreadable"
    assert harness.driver.connect_calls == []
