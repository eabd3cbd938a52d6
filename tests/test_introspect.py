"""Tests for schema introspection and document inference."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from bson import ObjectId

from dbgateway.config import SyncSettings
from dbgateway.drivers import MemoryDriver
from dbgateway.inference import classify_value, infer_document_columns
from dbgateway.introspect import SchemaIntrospector
from dbgateway.models import Dialect
from dbgateway.registry import PoolRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def _handle(driver: MemoryDriver):
    registry = PoolRegistry({driver.dialect: driver})
    return await registry.acquire("c1", driver.dialect, "memory://demo")


def test_classify_value_names_shapes() -> None:
    assert classify_value(None) == "null"
    assert classify_value(True) == "boolean"
    assert classify_value(3) == "number"
    assert classify_value(2.5) == "number"
    assert classify_value("x") == "string"
    assert classify_value([1]) == "array"
    assert classify_value({"a": 1}) == "object"
    assert classify_value(datetime(2024, 1, 1)) == "date"
    assert classify_value(ObjectId()) == "objectId"


def test_first_document_defines_columns() -> None:
    documents = [{"a": 1, "b": "x"}, {"a": 2, "b": "y", "c": [1, 2]}]

    columns = infer_document_columns(documents)

    assert [(column.name, column.data_type) for column in columns] == [("a", "number"), ("b", "string")]


def test_union_mode_types_late_fields_from_first_occurrence() -> None:
    documents = [{"a": 1, "b": None}, {"a": 2, "b": "y", "c": {"k": 1}}, {"c": [1]}]

    columns = infer_document_columns(documents, "union")

    assert [(column.name, column.data_type) for column in columns] == [
        ("a", "number"),
        ("b", "null"),
        ("c", "object"),
    ]


@pytest.mark.anyio
async def test_relational_tables_are_described_with_samples() -> None:
    driver = MemoryDriver.seeded()
    introspector = SchemaIntrospector()

    snapshot = await introspector.describe_schema(await _handle(driver))

    assert [table.table_name for table in snapshot.schema] == ["accounts", "orders", "payments"]
    accounts = snapshot.schema[0]
    assert [column.name for column in accounts.columns] == ["id", "email", "status"]
    assert len(snapshot.data[0].rows) == 3
    assert snapshot.failed_tables == ()
    assert [refresh.table_name for refresh in snapshot.refreshes] == ["accounts", "orders", "payments"]


@pytest.mark.anyio
async def test_sample_is_capped() -> None:
    driver = MemoryDriver.seeded({"events": [{"id": index} for index in range(30)]})
    introspector = SchemaIntrospector(SyncSettings(sample_limit=10))

    snapshot = await introspector.describe_schema(await _handle(driver))

    assert len(snapshot.data[0].rows) == 10


@pytest.mark.anyio
async def test_failing_table_is_marked_and_others_continue() -> None:
    driver = MemoryDriver.seeded(fail_fetches={"orders"})
    introspector = SchemaIntrospector()

    snapshot = await introspector.describe_schema(await _handle(driver))

    by_name = {table.table_name: table for table in snapshot.schema}
    assert by_name["orders"].columns == ()
    assert "permission denied" in (by_name["orders"].error or "")
    assert by_name["accounts"].error is None
    assert {sample.table_name: sample.rows for sample in snapshot.data}["orders"] == ()
    assert snapshot.failed_tables == ("orders",)


@pytest.mark.anyio
async def test_document_collections_use_first_document() -> None:
    driver = MemoryDriver.seeded(
        {"people": [{"a": 1, "b": "x"}, {"a": 2, "b": "y", "c": True}]},
        dialect=Dialect.MONGODB,
    )

    snapshot = await SchemaIntrospector().describe_schema(await _handle(driver))

    assert [column.name for column in snapshot.schema[0].columns] == ["a", "b"]


@pytest.mark.anyio
async def test_schema_only_skips_samples() -> None:
    driver = MemoryDriver.seeded()

    snapshot = await SchemaIntrospector().describe_schema(await _handle(driver), capture_data=False)

    assert snapshot.data == ()
    assert all(refresh.rows == () for refresh in snapshot.refreshes)
    assert snapshot.schema[0].columns


class _CountingDriver(MemoryDriver):
    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.in_flight = 0
        self.peak = 0

    async def describe_columns(self, pool, table):  # type: ignore[no-untyped-def]
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0.001)
        self.in_flight -= 1
        return await super().describe_columns(pool, table)


@pytest.mark.anyio
async def test_tables_are_processed_in_bounded_batches() -> None:
    tables = {f"t{index:02d}": [{"id": index}] for index in range(12)}
    driver = _CountingDriver(tables={name: list(rows) for name, rows in tables.items()})

    snapshot = await SchemaIntrospector(SyncSettings(batch_size=5)).describe_schema(await _handle(driver))

    assert len(snapshot.schema) == 12
    assert driver.peak == 5
