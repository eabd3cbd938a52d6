"""Dialect drivers and the default driver table."""

from __future__ import annotations

from ..config import SyncSettings
from ..models import Dialect
from .base import DialectDriver, ErrorCallback
from .memory import DEMO_TABLES, MemoryDriver
from .mongo import MongoDriver
from .mysql import MySQLDriver
from .postgres import PostgresDriver


def default_drivers(settings: SyncSettings | None = None) -> dict[Dialect, DialectDriver]:
    """Build one driver per supported dialect."""

    settings = settings or SyncSettings()
    return {
        Dialect.POSTGRES: PostgresDriver(),
        Dialect.MYSQL: MySQLDriver(),
        Dialect.MONGODB: MongoDriver(
            sample_size=settings.document_sample_size,
            schema_mode=settings.document_schema_mode,
        ),
    }


def demo_drivers(settings: SyncSettings | None = None) -> dict[Dialect, DialectDriver]:
    """Drivers serving the bundled demo tables for every dialect."""

    settings = settings or SyncSettings()
    return {
        dialect: MemoryDriver.seeded(DEMO_TABLES, dialect=dialect, schema_mode=settings.document_schema_mode)
        for dialect in Dialect
    }


__all__ = [
    "DialectDriver",
    "ErrorCallback",
    "MemoryDriver",
    "MongoDriver",
    "MySQLDriver",
    "PostgresDriver",
    "default_drivers",
    "demo_drivers",
]
