# src/scriptmap/engine/connector_pool.py
"""Per-worker connections to the external graph store.

Invariants:
- At most one open connection per live worker.
- A connection object is never handed to two workers.
- Writes stay buffered in the connection until the worker's partition
  commits, which happens once, after cleanup() returns.

Readers of the external store may see some partitions committed and others
not while a job runs; there is no cross-partition transaction.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from scriptmap.contracts import StoreConnectionError, WorkerState
from scriptmap.plugins.protocols import GraphConnectionProtocol, GraphStoreProtocol

logger = structlog.get_logger(__name__)


@dataclass
class _Lease:
    connection: GraphConnectionProtocol
    options: dict[str, Any] = field(default_factory=dict)


class ConnectorPool:
    """Hands out and retires store connections for the workers of one job.

    Args:
        store: The external store, or None when the job has none configured
        default_options: Connection options used when a script passes none
        read_only: Connections reject writes (jobs without external writes)
    """

    def __init__(
        self,
        store: GraphStoreProtocol | None,
        default_options: Mapping[str, Any] | None = None,
        *,
        read_only: bool = False,
    ) -> None:
        self._store = store
        self._default_options = dict(default_options or {})
        self._read_only = read_only
        self._lock = threading.Lock()
        self._live: dict[str, _Lease] = {}

    @property
    def read_only(self) -> bool:
        return self._read_only

    def open(self, worker_id: str, options: Mapping[str, Any] | None = None) -> GraphConnectionProtocol:
        """Open the worker's connection, or return the one it already holds.

        Raises:
            StoreConnectionError: Store unreachable, options rejected, no
                store configured, or the worker already holds a connection
                opened with different options
        """
        effective = dict(self._default_options if options is None else options)
        with self._lock:
            lease = self._live.get(worker_id)
        if lease is not None:
            if lease.options != effective:
                raise StoreConnectionError(
                    f"worker {worker_id} already holds a connection opened with different options"
                )
            return lease.connection

        if self._store is None:
            raise StoreConnectionError("no graph store is configured for this job")

        connection = self._store.connect(effective)
        connection.read_only = self._read_only
        with self._lock:
            if any(held.connection is connection for held in self._live.values()):
                connection.close()
                raise StoreConnectionError("store returned a connection already owned by another worker")
            self._live[worker_id] = _Lease(connection, effective)
        logger.debug("store_connection_opened", worker=worker_id, read_only=self._read_only)
        return connection

    def connection(self, worker_id: str) -> GraphConnectionProtocol | None:
        with self._lock:
            lease = self._live.get(worker_id)
        return lease.connection if lease is not None else None

    def commit(self, worker_id: str) -> int:
        """Commit the worker's buffered writes. Returns writes applied."""
        connection = self.connection(worker_id)
        if connection is None:
            return 0
        return connection.commit()

    def release(self, worker_id: str, *, commit: bool) -> bool:
        """Retire the worker's connection, committing first if asked.

        The connection is always closed, also when the commit raises.

        Returns:
            True if a connection was committed
        """
        with self._lock:
            lease = self._live.pop(worker_id, None)
        if lease is None:
            return False
        try:
            if commit:
                applied = lease.connection.commit()
                logger.debug("store_connection_committed", worker=worker_id, writes=applied)
        finally:
            lease.connection.close()
        return commit

    def live_workers(self) -> list[str]:
        with self._lock:
            return sorted(self._live)

    def close_all(self) -> None:
        """Close every live connection without committing."""
        with self._lock:
            leases = list(self._live.items())
            self._live.clear()
        for worker_id, lease in leases:
            logger.warning("store_connection_abandoned", worker=worker_id)
            lease.connection.close()


class StoreHandle:
    """The `store` global a script sees: its worker's slice of the pool.

    Usage from a script:
        def setup(args):
            store.open({"url": args[0]})

        def map(vertex, args):
            store.connection.set_property(vertex.id, "seen", True)
    """

    def __init__(self, pool: ConnectorPool, worker_id: str, state: Callable[[], WorkerState]) -> None:
        self._pool = pool
        self._worker_id = worker_id
        self._state = state

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def open(self, options: Mapping[str, Any] | None = None) -> GraphConnectionProtocol:
        return self._pool.open(self._worker_id, options)

    @property
    def connection(self) -> GraphConnectionProtocol:
        """The open connection; opens one with default options if needed."""
        connection = self._pool.connection(self._worker_id)
        if connection is None:
            connection = self._pool.open(self._worker_id)
        return connection

    @property
    def is_open(self) -> bool:
        return self._pool.connection(self._worker_id) is not None

    def commit(self) -> int:
        """Commit now. Only allowed from cleanup().

        Raises:
            RuntimeError: If the worker is not cleaning up
        """
        state = self._state()
        if state != WorkerState.CLEANING_UP:
            raise RuntimeError(f"store.commit() is only allowed in cleanup(), worker is {state.value}")
        return self._pool.commit(self._worker_id)
