"""Connection pool registry keyed by connection id."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Mapping, Sequence

from .config import PoolSettings
from .drivers.base import DialectDriver
from .errors import AttemptFailure, ConnectionEstablishError, DriverError, RegistryClosedError
from .models import Dialect
from .tls import DEFAULT_STRATEGIES, ConnectStrategy, redact_uri

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PoolHandle:
    """Live pool for one connection id; never serialized."""

    connection_id: str
    dialect: Dialect
    driver: DialectDriver
    pool: Any
    strategy: str
    created_at: datetime
    token: object = field(default_factory=object, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class PoolErrorEvent:
    """Emitted when a pool is evicted after a fatal error."""

    connection_id: str
    dialect: Dialect
    error: str


PoolListener = Callable[[PoolErrorEvent], None]


class PoolRegistry:
    """Owns every live pool; at most one per connection id.

    Pool creation is serialized per connection id only, so establishing one
    connection never waits on another.
    """

    def __init__(
        self,
        drivers: Mapping[Dialect, DialectDriver],
        *,
        settings: PoolSettings | None = None,
        strategies: Sequence[ConnectStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self._drivers = dict(drivers)
        self._settings = settings or PoolSettings()
        self._strategies = tuple(strategies)
        self._handles: dict[str, PoolHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}
        self._listeners: set[PoolListener] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._drain: asyncio.Future[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, connection_id: str) -> PoolHandle | None:
        return self._handles.get(connection_id)

    def driver_for(self, dialect: Dialect) -> DialectDriver:
        try:
            return self._drivers[dialect]
        except KeyError:
            raise DriverError(f"No driver registered for dialect '{dialect.value}'") from None

    def subscribe(self, listener: PoolListener) -> Callable[[], None]:
        """Subscribe to pool error events; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def acquire(self, connection_id: str, dialect: Dialect, uri: str) -> PoolHandle:
        """Return the pool for ``connection_id``, creating it on first use."""

        self._ensure_open()
        self._loop = asyncio.get_running_loop()
        handle = self._handles.get(connection_id)
        if handle is not None:
            return _check_dialect(handle, dialect)
        lock = self._locks.setdefault(connection_id, asyncio.Lock())
        self._waiters[connection_id] = self._waiters.get(connection_id, 0) + 1
        try:
            async with lock:
                self._ensure_open()
                handle = self._handles.get(connection_id)
                if handle is not None:
                    return _check_dialect(handle, dialect)
                handle = await self._create(connection_id, dialect, uri)
                if self._closed:
                    await handle.driver.disconnect(handle.pool)
                    raise RegistryClosedError("Pool registry is shut down")
                self._handles[connection_id] = handle
                return handle
        finally:
            self._forget_lock(connection_id)

    async def release(self, connection_id: str) -> bool:
        """Close and forget the pool for one connection id."""

        handle = self._handles.pop(connection_id, None)
        if handle is None:
            return False
        await self._disconnect(handle)
        LOG.info("Pool released", extra={"connection_id": connection_id})
        return True

    async def invalidate(self, connection_id: str, error: BaseException, *, token: object | None = None) -> bool:
        """Evict a pool after a fatal error and notify subscribers.

        ``token`` pins the eviction to one pool instance so a late report about
        an already replaced pool is ignored.
        """

        handle = self._handles.get(connection_id)
        if handle is None or (token is not None and handle.token is not token):
            return False
        del self._handles[connection_id]
        message = redact_uri(str(error) or type(error).__name__)
        LOG.warning(
            "Evicting pool after fatal error",
            extra={"connection_id": connection_id, "dialect": handle.dialect.value, "error": message},
        )
        await self._disconnect(handle)
        event = PoolErrorEvent(connection_id=connection_id, dialect=handle.dialect, error=message)
        for listener in tuple(self._listeners):
            listener(event)
        return True

    async def release_all(self) -> None:
        """Drain every pool once; later and concurrent calls await the same drain."""

        self._closed = True
        if self._drain is None:
            self._drain = asyncio.ensure_future(self._drain_pools())
        await asyncio.shield(self._drain)

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Drain the registry on SIGTERM or SIGINT."""

        loop = loop or asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._on_signal, loop, signum)
            except (NotImplementedError, RuntimeError):
                LOG.debug("Signal handlers unavailable", extra={"signal": signum.name})

    async def _create(self, connection_id: str, dialect: Dialect, uri: str) -> PoolHandle:
        driver = self.driver_for(dialect)
        failures: list[AttemptFailure] = []
        for strategy in self._strategies:
            token = object()
            on_error = partial(self._report_fatal, connection_id, token)
            try:
                pool = await driver.connect(uri, strategy, self._settings, on_error)
            except Exception as exc:
                message = redact_uri(str(exc) or type(exc).__name__)
                failures.append(AttemptFailure(strategy=strategy.name, message=message))
                LOG.warning(
                    "Connection attempt failed",
                    extra={"connection_id": connection_id, "strategy": strategy.name, "error": message},
                )
                continue
            LOG.info(
                "Pool established",
                extra={"connection_id": connection_id, "dialect": dialect.value, "strategy": strategy.name},
            )
            return PoolHandle(
                connection_id=connection_id,
                dialect=dialect,
                driver=driver,
                pool=pool,
                strategy=strategy.name,
                created_at=datetime.now(tz=timezone.utc),
                token=token,
            )
        raise ConnectionEstablishError(connection_id, tuple(failures))

    def _report_fatal(self, connection_id: str, token: object, error: BaseException) -> None:
        # Drivers may report from a monitor thread.
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._spawn, self.invalidate(connection_id, error, token=token))

    def _on_signal(self, loop: asyncio.AbstractEventLoop, signum: signal.Signals) -> None:
        LOG.info("Received signal, draining pools", extra={"signal": signum.name})
        self._spawn(self.release_all(), loop=loop)

    def _spawn(self, coro: Any, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        task = (loop or asyncio.get_running_loop()).create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drain_pools(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        await asyncio.gather(*(self._disconnect(handle) for handle in handles))
        LOG.info("Pool registry drained", extra={"pools": len(handles)})

    async def _disconnect(self, handle: PoolHandle) -> None:
        try:
            await handle.driver.disconnect(handle.pool)
        except Exception:
            LOG.exception("Failed to close pool", extra={"connection_id": handle.connection_id})

    def _forget_lock(self, connection_id: str) -> None:
        # Locks live only while an acquire for the id is in flight.
        remaining = self._waiters[connection_id] - 1
        if remaining:
            self._waiters[connection_id] = remaining
            return
        del self._waiters[connection_id]
        del self._locks[connection_id]

    def _ensure_open(self) -> None:
        if self._closed:
            raise RegistryClosedError("Pool registry is shut down")


def _check_dialect(handle: PoolHandle, dialect: Dialect) -> PoolHandle:
    if handle.dialect is not dialect:
        raise ValueError(
            f"Connection '{handle.connection_id}' is registered as {handle.dialect.value}, not {dialect.value}"
        )
    return handle


__all__ = ["PoolErrorEvent", "PoolHandle", "PoolListener", "PoolRegistry"]
