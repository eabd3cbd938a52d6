"""Snapshot merging and JSON conversion for persisted descriptors."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

from .models import (
    ColumnDescriptor,
    ConnectionDescriptor,
    Dialect,
    PipelineMode,
    SyncWatermark,
    TableDescriptor,
    TableRefresh,
    TableSample,
)


def merge_refreshes(
    descriptor: ConnectionDescriptor,
    refreshes: Iterable[TableRefresh],
) -> ConnectionDescriptor:
    """Upsert refreshed tables by name; untouched tables keep their entries."""

    schema = {table.table_name: table for table in descriptor.schema}
    data = {sample.table_name: sample for sample in descriptor.data}
    capture_data = descriptor.pipeline_mode.captures_data
    for refresh in refreshes:
        schema[refresh.table_name] = TableDescriptor(table_name=refresh.table_name, columns=refresh.columns)
        if capture_data:
            data[refresh.table_name] = TableSample(table_name=refresh.table_name, rows=refresh.rows)
    return descriptor.with_snapshots(tuple(schema.values()), tuple(data.values()))


def column_to_json(column: ColumnDescriptor) -> dict[str, Any]:
    return {
        "name": column.name,
        "type": column.data_type,
        "nullable": column.nullable,
        "default": column.default,
        "key": column.key,
    }


def column_from_json(payload: Mapping[str, Any]) -> ColumnDescriptor:
    return ColumnDescriptor(
        name=str(payload["name"]),
        data_type=str(payload.get("type", "unknown")),
        nullable=payload.get("nullable"),
        default=payload.get("default"),
        key=payload.get("key"),
    )


def descriptor_to_json(descriptor: ConnectionDescriptor) -> dict[str, Any]:
    """Serialize a descriptor; schema and data entries keep their external shape."""

    return {
        "id": descriptor.id,
        "dialect": descriptor.dialect.value,
        "uri": descriptor.uri,
        "ownerId": descriptor.owner_id,
        "displayName": descriptor.display_name,
        "pipelineMode": descriptor.pipeline_mode.value,
        "schema": [
            {
                "tableName": table.table_name,
                "columns": [column_to_json(column) for column in table.columns],
                **({"error": table.error} if table.error else {}),
            }
            for table in descriptor.schema
        ],
        "data": [{"tableName": sample.table_name, "data": list(sample.rows)} for sample in descriptor.data],
        "createdAt": descriptor.created_at.isoformat(),
        "updatedAt": descriptor.updated_at.isoformat(),
    }


def descriptor_from_json(payload: Mapping[str, Any]) -> ConnectionDescriptor:
    return ConnectionDescriptor(
        id=str(payload["id"]),
        dialect=Dialect(payload["dialect"]),
        uri=str(payload["uri"]),
        owner_id=payload.get("ownerId"),
        display_name=payload.get("displayName"),
        pipeline_mode=PipelineMode(payload.get("pipelineMode", PipelineMode.SNAPSHOT.value)),
        schema=tuple(
            TableDescriptor(
                table_name=str(entry["tableName"]),
                columns=tuple(column_from_json(column) for column in entry.get("columns", ())),
                error=entry.get("error"),
            )
            for entry in payload.get("schema", ())
        ),
        data=tuple(
            TableSample(table_name=str(entry["tableName"]), rows=tuple(dict(row) for row in entry.get("data", ())))
            for entry in payload.get("data", ())
        ),
        created_at=datetime.fromisoformat(payload["createdAt"]),
        updated_at=datetime.fromisoformat(payload["updatedAt"]),
    )


def watermark_to_json(watermark: SyncWatermark) -> dict[str, Any]:
    return {
        "connectionId": watermark.connection_id,
        "tableName": watermark.table_name,
        "lastRowCount": watermark.last_row_count,
        "lastSyncedAt": watermark.last_synced_at.isoformat(),
        "dialect": watermark.dialect.value,
    }


def watermark_from_json(payload: Mapping[str, Any]) -> SyncWatermark:
    return SyncWatermark(
        connection_id=str(payload["connectionId"]),
        table_name=str(payload["tableName"]),
        last_row_count=int(payload["lastRowCount"]),
        last_synced_at=datetime.fromisoformat(payload["lastSyncedAt"]),
        dialect=Dialect(payload["dialect"]),
    )


__all__ = [
    "column_from_json",
    "column_to_json",
    "descriptor_from_json",
    "descriptor_to_json",
    "merge_refreshes",
    "watermark_from_json",
    "watermark_to_json",
]
