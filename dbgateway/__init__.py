"""Database gateway and incremental sync engine for user-supplied databases."""

from __future__ import annotations

__version__ = "0.1.0"

from .gateway import DatabaseGateway, EstablishRequest, EstablishResult
from .models import (
    ConnectionDescriptor,
    Dialect,
    PipelineMode,
    QueryOutcome,
    SyncReport,
    SyncStatus,
)
from .registry import PoolRegistry

__all__ = [
    "ConnectionDescriptor",
    "DatabaseGateway",
    "Dialect",
    "EstablishRequest",
    "EstablishResult",
    "PipelineMode",
    "PoolRegistry",
    "QueryOutcome",
    "SyncReport",
    "SyncStatus",
    "__version__",
]
