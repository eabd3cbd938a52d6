"""Exception types raised across the gateway."""

from __future__ import annotations

from dataclasses import dataclass


class GatewayError(RuntimeError):
    """Base class for gateway failures."""


@dataclass(frozen=True, slots=True)
class AttemptFailure:
    """One failed rung of the connection ladder."""

    strategy: str
    message: str


class ConnectionEstablishError(GatewayError):
    """Raised when every connection strategy failed for a connection."""

    def __init__(self, connection_id: str, attempts: tuple[AttemptFailure, ...]) -> None:
        self.connection_id = connection_id
        self.attempts = attempts
        stages = "; ".join(f"{attempt.strategy}: {attempt.message}" for attempt in attempts)
        super().__init__(f"Failed to connect '{connection_id}' ({stages or 'no strategies attempted'})")


class RegistryClosedError(GatewayError):
    """Raised when a pool is requested after shutdown."""


class DriverError(GatewayError):
    """Raised by drivers for malformed connection details."""


class QueryValidationError(GatewayError):
    """Raised when a statement is rejected before dispatch."""

    def __init__(self, message: str, warnings: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.warnings = warnings


class QueryExecutionError(GatewayError):
    """Raised when a statement fails on the source database."""


__all__ = [
    "AttemptFailure",
    "ConnectionEstablishError",
    "DriverError",
    "GatewayError",
    "QueryExecutionError",
    "QueryValidationError",
    "RegistryClosedError",
]
