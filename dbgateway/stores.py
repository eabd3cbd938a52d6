"""Persistence seams for connection descriptors and sync watermarks."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from .models import ConnectionDescriptor, SyncWatermark
from .snapshot import descriptor_from_json, descriptor_to_json, watermark_from_json, watermark_to_json

LOG = logging.getLogger(__name__)


@runtime_checkable
class ConnectionStore(Protocol):
    """Where connection descriptors and their snapshots live."""

    async def get(self, connection_id: str) -> ConnectionDescriptor | None:
        """Return the descriptor or ``None`` when unknown."""

    async def save(self, descriptor: ConnectionDescriptor) -> None:
        """Insert or replace a descriptor."""

    async def delete(self, connection_id: str) -> bool:
        """Remove a descriptor; returns whether one existed."""

    async def list(self) -> tuple[ConnectionDescriptor, ...]:
        """Return every stored descriptor."""


@runtime_checkable
class WatermarkStore(Protocol):
    """Where per-table row-count watermarks live."""

    async def get(self, connection_id: str, table_name: str) -> SyncWatermark | None:
        """Return the watermark for a table, if any."""

    async def upsert(self, watermark: SyncWatermark) -> None:
        """Insert or replace the watermark for ``(connection_id, table_name)``."""

    async def delete_for_connection(self, connection_id: str) -> int:
        """Drop every watermark of a connection; returns how many were removed."""

    async def for_connection(self, connection_id: str) -> tuple[SyncWatermark, ...]:
        """Return the watermarks of a connection ordered by table name."""


class InMemoryConnectionStore:
    def __init__(self) -> None:
        self._descriptors: dict[str, ConnectionDescriptor] = {}

    async def get(self, connection_id: str) -> ConnectionDescriptor | None:
        return self._descriptors.get(connection_id)

    async def save(self, descriptor: ConnectionDescriptor) -> None:
        self._descriptors[descriptor.id] = descriptor

    async def delete(self, connection_id: str) -> bool:
        return self._descriptors.pop(connection_id, None) is not None

    async def list(self) -> tuple[ConnectionDescriptor, ...]:
        return tuple(self._descriptors.values())


class InMemoryWatermarkStore:
    def __init__(self) -> None:
        self._watermarks: dict[tuple[str, str], SyncWatermark] = {}

    async def get(self, connection_id: str, table_name: str) -> SyncWatermark | None:
        return self._watermarks.get((connection_id, table_name))

    async def upsert(self, watermark: SyncWatermark) -> None:
        self._watermarks[(watermark.connection_id, watermark.table_name)] = watermark

    async def delete_for_connection(self, connection_id: str) -> int:
        keys = [key for key in self._watermarks if key[0] == connection_id]
        for key in keys:
            del self._watermarks[key]
        return len(keys)

    async def for_connection(self, connection_id: str) -> tuple[SyncWatermark, ...]:
        return tuple(
            watermark
            for key, watermark in sorted(self._watermarks.items())
            if key[0] == connection_id
        )


class JsonStateStore:
    """Both stores backed by a single JSON document on disk.

    The whole file is rewritten on every change, which suits the command line
    where a handful of connections are tracked.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._connections: InMemoryConnectionStore | None = None
        self._watermarks: InMemoryWatermarkStore | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, connection_id: str) -> ConnectionDescriptor | None:
        connections, _ = self._state()
        return await connections.get(connection_id)

    async def save(self, descriptor: ConnectionDescriptor) -> None:
        connections, _ = self._state()
        await connections.save(descriptor)
        self._flush()

    async def delete(self, connection_id: str) -> bool:
        connections, _ = self._state()
        removed = await connections.delete(connection_id)
        if removed:
            self._flush()
        return removed

    async def list(self) -> tuple[ConnectionDescriptor, ...]:
        connections, _ = self._state()
        return await connections.list()

    async def get_watermark(self, connection_id: str, table_name: str) -> SyncWatermark | None:
        _, watermarks = self._state()
        return await watermarks.get(connection_id, table_name)

    async def upsert(self, watermark: SyncWatermark) -> None:
        _, watermarks = self._state()
        await watermarks.upsert(watermark)
        self._flush()

    async def delete_for_connection(self, connection_id: str) -> int:
        _, watermarks = self._state()
        removed = await watermarks.delete_for_connection(connection_id)
        if removed:
            self._flush()
        return removed

    async def for_connection(self, connection_id: str) -> tuple[SyncWatermark, ...]:
        _, watermarks = self._state()
        return await watermarks.for_connection(connection_id)

    def watermark_store(self) -> WatermarkStore:
        """View exposing ``get`` with the watermark signature."""

        return _WatermarkView(self)

    def _state(self) -> tuple[InMemoryConnectionStore, InMemoryWatermarkStore]:
        if self._connections is None or self._watermarks is None:
            self._connections, self._watermarks = self._load()
        return self._connections, self._watermarks

    def _load(self) -> tuple[InMemoryConnectionStore, InMemoryWatermarkStore]:
        connections = InMemoryConnectionStore()
        watermarks = InMemoryWatermarkStore()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return connections, watermarks
        except (OSError, json.JSONDecodeError) as exc:
            LOG.warning("Ignoring unreadable state file", extra={"path": str(self._path), "error": str(exc)})
            return connections, watermarks
        for payload in raw.get("connections", ()):
            descriptor = descriptor_from_json(payload)
            connections._descriptors[descriptor.id] = descriptor
        for payload in raw.get("watermarks", ()):
            watermark = watermark_from_json(payload)
            watermarks._watermarks[(watermark.connection_id, watermark.table_name)] = watermark
        return connections, watermarks

    def _flush(self) -> None:
        connections, watermarks = self._state()
        payload: dict[str, Any] = {
            "connections": [descriptor_to_json(item) for item in connections._descriptors.values()],
            "watermarks": [watermark_to_json(item) for _, item in sorted(watermarks._watermarks.items())],
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_suffix(self._path.suffix + ".tmp")
        staging.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        staging.replace(self._path)


class _WatermarkView:
    def __init__(self, store: JsonStateStore) -> None:
        self._store = store

    async def get(self, connection_id: str, table_name: str) -> SyncWatermark | None:
        return await self._store.get_watermark(connection_id, table_name)

    async def upsert(self, watermark: SyncWatermark) -> None:
        await self._store.upsert(watermark)

    async def delete_for_connection(self, connection_id: str) -> int:
        return await self._store.delete_for_connection(connection_id)

    async def for_connection(self, connection_id: str) -> tuple[SyncWatermark, ...]:
        return await self._store.for_connection(connection_id)


__all__ = [
    "ConnectionStore",
    "InMemoryConnectionStore",
    "InMemoryWatermarkStore",
    "JsonStateStore",
    "WatermarkStore",
]
