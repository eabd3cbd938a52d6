"""Hand-off of refreshed tables to the downstream semantic index."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol, Sequence, runtime_checkable

from .chunking import chunk_rows
from .config import ChunkSettings
from .models import ConnectionDescriptor, TableRefresh

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IngestionRecord:
    """One unit handed to the index."""

    id: str
    payload: dict[str, Any]
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "payload": self.payload, "metadata": self.metadata}


@runtime_checkable
class IndexWriter(Protocol):
    """Consumer of ingestion records (a vector index in production)."""

    async def upsert(self, records: Sequence[IngestionRecord]) -> None:
        """Insert or replace records by id."""


class IngestionPipeline:
    """Turns table refreshes into schema and data records and streams them out."""

    def __init__(self, writer: IndexWriter, settings: ChunkSettings | None = None) -> None:
        self._writer = writer
        self._settings = settings or ChunkSettings()

    def build_records(
        self,
        descriptor: ConnectionDescriptor,
        refreshes: Iterable[TableRefresh],
    ) -> Iterator[IngestionRecord]:
        """Yield one schema record per table, then chunked data records.

        Data records are only produced for connections that capture data.
        """

        timestamp = datetime.now(tz=timezone.utc).isoformat()
        base = {"connectionId": descriptor.id, "dbType": descriptor.dialect.value}
        for refresh in refreshes:
            yield IngestionRecord(
                id=f"schema-{descriptor.id}-{refresh.table_name}",
                payload={
                    "tableName": refresh.table_name,
                    "columns": ", ".join(f"{column.name} ({column.data_type})" for column in refresh.columns),
                },
                metadata={
                    **base,
                    "type": "schema",
                    "tableName": refresh.table_name,
                    "pipeline": descriptor.pipeline_mode.value,
                    "timestamp": timestamp,
                },
            )
            if not descriptor.pipeline_mode.captures_data or not refresh.rows:
                continue
            groups = chunk_rows(refresh.rows, self._settings.byte_budget)
            LOG.debug(
                "Chunked table",
                extra={"connection_id": descriptor.id, "table": refresh.table_name, "chunks": len(groups)},
            )
            for index, entries in enumerate(groups):
                yield IngestionRecord(
                    id=f"data-{descriptor.id}-{refresh.table_name}-{index}",
                    payload={"tableName": refresh.table_name, "entries": entries},
                    metadata={
                        **base,
                        "type": "data",
                        "tableName": refresh.table_name,
                        "chunkIndex": index,
                        "timestamp": timestamp,
                    },
                )

    async def ingest(self, descriptor: ConnectionDescriptor, refreshes: Iterable[TableRefresh]) -> int:
        """Stream records to the writer in fixed-size batches; returns the record count."""

        batch: list[IngestionRecord] = []
        total = 0
        for record in self.build_records(descriptor, refreshes):
            batch.append(record)
            if len(batch) >= self._settings.ingestion_batch_size:
                await self._writer.upsert(batch)
                total += len(batch)
                batch = []
        if batch:
            await self._writer.upsert(batch)
            total += len(batch)
        LOG.info("Ingested records", extra={"connection_id": descriptor.id, "records": total})
        return total


class JsonlIndexWriter:
    """Appends records to a JSON Lines file."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def upsert(self, records: Sequence[IngestionRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record.as_dict(), default=str, ensure_ascii=False))
                handle.write("\n")


__all__ = ["IndexWriter", "IngestionPipeline", "IngestionRecord", "JsonlIndexWriter"]
