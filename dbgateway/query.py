"""Validated query execution through the pool registry."""

from __future__ import annotations

import logging

from .errors import (
    ConnectionEstablishError,
    DriverError,
    QueryExecutionError,
    QueryValidationError,
    RegistryClosedError,
)
from .models import QueryOutcome
from .registry import PoolHandle, PoolRegistry
from .stores import ConnectionStore
from .tls import redact_uri
from .validation import QueryValidator

LOG = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return redact_uri(str(exc) or type(exc).__name__)


class QueryGateway:
    """Runs caller-supplied statements and normalizes every result.

    Errors never escape ``execute``; they come back as a failed
    ``QueryOutcome`` whose ``error_kind`` tells validation, connection and
    execution problems apart. Nothing is retried.
    """

    def __init__(
        self,
        registry: PoolRegistry,
        connections: ConnectionStore,
        validator: QueryValidator | None = None,
    ) -> None:
        self._registry = registry
        self._connections = connections
        self._validator = validator or QueryValidator()

    async def execute(self, connection_id: str, query_text: str) -> QueryOutcome:
        try:
            descriptor = await self._connections.get(connection_id)
        except Exception as exc:
            LOG.exception("Failed to load connection", extra={"connection_id": connection_id})
            return QueryOutcome.failure(_describe(exc), "connection")
        if descriptor is None:
            return QueryOutcome.failure(f"Unknown connection '{connection_id}'", "not_found")

        try:
            warnings = self._validator.validate(descriptor.dialect, query_text)
        except QueryValidationError as exc:
            LOG.info("Query rejected", extra={"connection_id": connection_id, "reason": str(exc)})
            return QueryOutcome.failure(str(exc), "validation", warnings=exc.warnings)

        try:
            handle = await self._registry.acquire(connection_id, descriptor.dialect, descriptor.uri)
        except Exception as exc:
            if not isinstance(exc, (ConnectionEstablishError, RegistryClosedError, DriverError)):
                LOG.exception("Unexpected error acquiring pool", extra={"connection_id": connection_id})
            return QueryOutcome.failure(_describe(exc), "connection", warnings=warnings)

        try:
            result = await handle.driver.run_query(handle.pool, query_text)
        except QueryValidationError as exc:
            return QueryOutcome.failure(str(exc), "validation", warnings=warnings)
        except Exception as exc:
            if not isinstance(exc, (QueryExecutionError, ConnectionError)):
                LOG.exception("Unexpected driver error", extra={"connection_id": connection_id})
            await self._report(handle, exc)
            return QueryOutcome.failure(_describe(exc), "execution", warnings=warnings)

        LOG.debug(
            "Query executed",
            extra={"connection_id": connection_id, "rows": result.row_count, "elapsed_ms": result.elapsed_ms},
        )
        return QueryOutcome(
            success=True,
            rows=result.rows,
            row_count=result.row_count,
            columns=result.columns,
            warnings=warnings,
            elapsed_ms=result.elapsed_ms,
        )

    async def _report(self, handle: PoolHandle, exc: BaseException) -> None:
        if handle.driver.is_fatal(exc):
            await self._registry.invalidate(handle.connection_id, exc, token=handle.token)


__all__ = ["QueryGateway"]
