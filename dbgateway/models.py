"""Shared dataclasses used across the driver, sync and query modules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

Record = dict[str, Any]


class Dialect(str, Enum):
    """Backend families the gateway can talk to."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"

    @property
    def is_relational(self) -> bool:
        return self is not Dialect.MONGODB


class PipelineMode(str, Enum):
    """How much of a source database a connection captures."""

    SNAPSHOT = "snapshot"
    SCHEMA_ONLY = "schema_only"

    @property
    def captures_data(self) -> bool:
        return self is PipelineMode.SNAPSHOT


class SyncStatus(str, Enum):
    """Terminal states of a sync pass."""

    SYNCED = "synced"
    NO_CHANGE = "no_change"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """Declared (relational) or inferred (document) column metadata."""

    name: str
    data_type: str
    nullable: bool | None = None
    default: str | None = None
    key: str | None = None


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    """Schema entry for one table or collection."""

    table_name: str
    columns: tuple[ColumnDescriptor, ...] = ()
    error: str | None = None


@dataclass(frozen=True, slots=True)
class TableSample:
    """Bounded row sample captured for one table."""

    table_name: str
    rows: tuple[Record, ...] = ()


@dataclass(frozen=True, slots=True)
class TableRefresh:
    """Freshly fetched table contents handed to the ingestion path."""

    table_name: str
    columns: tuple[ColumnDescriptor, ...]
    rows: tuple[Record, ...]
    row_count: int | None = None


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class ConnectionDescriptor:
    """Persisted connection plus its schema and data snapshots."""

    id: str
    dialect: Dialect
    uri: str
    owner_id: str | None = None
    display_name: str | None = None
    pipeline_mode: PipelineMode = PipelineMode.SNAPSHOT
    schema: tuple[TableDescriptor, ...] = ()
    data: tuple[TableSample, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def with_snapshots(
        self,
        schema: tuple[TableDescriptor, ...],
        data: tuple[TableSample, ...],
        *,
        updated_at: datetime | None = None,
    ) -> ConnectionDescriptor:
        """Return a copy with replaced snapshots; the uri never changes."""

        return replace(self, schema=schema, data=data, updated_at=updated_at or _utcnow())

    def table_names(self) -> tuple[str, ...]:
        return tuple(table.table_name for table in self.schema)


@dataclass(frozen=True, slots=True)
class SyncWatermark:
    """Last row count observed for a table at its latest successful sync."""

    connection_id: str
    table_name: str
    last_row_count: int
    last_synced_at: datetime
    dialect: Dialect


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Driver-level result with rows already converted to dicts."""

    columns: tuple[str, ...]
    rows: tuple[Record, ...]
    row_count: int
    status: str = "OK"
    elapsed_ms: int = 0


@dataclass(frozen=True, slots=True)
class QueryOutcome:
    """Normalized result returned across the query execution boundary."""

    success: bool
    rows: tuple[Record, ...] = ()
    row_count: int | None = None
    columns: tuple[str, ...] = ()
    error: str | None = None
    error_kind: str | None = None
    warnings: tuple[str, ...] = ()
    elapsed_ms: int | None = None

    @classmethod
    def failure(cls, error: str, kind: str, *, warnings: tuple[str, ...] = ()) -> QueryOutcome:
        return cls(success=False, error=error, error_kind=kind, warnings=warnings)

    def as_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, "rows": list(self.rows), "rowCount": self.row_count}


@dataclass(frozen=True, slots=True)
class SyncReport:
    """Outcome of one sync invocation."""

    connection_id: str
    status: SyncStatus
    updated_tables: tuple[str, ...] = ()
    skipped_tables: tuple[str, ...] = ()
    unchecked_tables: tuple[str, ...] = ()
    error: str | None = None
    ingested_records: int = 0
    ingestion_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "connectionId": self.connection_id,
            "status": self.status.value,
            "updatedTables": list(self.updated_tables),
            "skippedTables": list(self.skipped_tables),
        }
        if self.unchecked_tables:
            payload["uncheckedTables"] = list(self.unchecked_tables)
        if self.error:
            payload["error"] = self.error
        if self.ingestion_error:
            payload["ingestionError"] = self.ingestion_error
        payload["ingestedRecords"] = self.ingested_records
        return payload


__all__ = [
    "ColumnDescriptor",
    "ConnectionDescriptor",
    "Dialect",
    "PipelineMode",
    "QueryOutcome",
    "QueryResult",
    "Record",
    "SyncReport",
    "SyncStatus",
    "SyncWatermark",
    "TableDescriptor",
    "TableRefresh",
    "TableSample",
]
