# src/scriptmap/plugins/stores/memory_store.py
"""In-process transactional graph store.

Committed state lives in one dict guarded by a lock; each connection
buffers its writes and applies them atomically on commit. Useful for
tests, examples and single-process runs.

Connection options:
    url: must be "memory://<name>" for this store's name when given.
         Anything else is rejected with StoreConnectionError, which is how
         a bad connection string surfaces.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from scriptmap.contracts import StoreConnectionError, Vertex, VertexId
from scriptmap.plugins.base import BaseGraphConnection, BaseGraphStore, WriteOp, apply_op


@dataclass(frozen=True)
class CommitRecord:
    """One committed transaction, in commit order."""

    sequence: int
    connection_id: int
    ops: tuple[WriteOp, ...]


class MemoryConnection(BaseGraphConnection):
    def __init__(self, store: MemoryGraphStore) -> None:
        super().__init__()
        self._store = store

    def _read_committed(self, vertex_id: VertexId) -> Vertex | None:
        return self._store.get(vertex_id)

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        self._store._commit(self.connection_id, ops)

    def _release(self) -> None:
        self._store._forget(self)


class MemoryGraphStore(BaseGraphStore):
    """Thread-safe in-memory graph store.

    Config options:
        name: Store name, used in "memory://<name>" urls (default "default")
        shard_locations: Shard id -> location
        shards: Vertex id (as string) -> shard id
        unavailable: Reject every connection as unreachable (default False)
    """

    name = "memory"
    plugin_version = "1.0.0"

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        super().__init__(config)
        self.store_name = str(self.config.get("name", "default"))
        self.available = not bool(self.config.get("unavailable", False))
        self._lock = threading.Lock()
        self._vertices: dict[VertexId, Vertex] = {}
        self._shards: dict[str, str] = {str(k): str(v) for k, v in dict(self.config.get("shards", {})).items()}
        self._commits: list[CommitRecord] = []
        self._open: dict[int, MemoryConnection] = {}

    @property
    def url(self) -> str:
        return f"memory://{self.store_name}"

    def connect(self, options: Mapping[str, Any] | None = None) -> MemoryConnection:
        options = options or {}
        if not self.available:
            raise StoreConnectionError(f"graph store {self.url} is unreachable")
        url = options.get("url")
        if url is not None and url != self.url:
            raise StoreConnectionError(f"graph store {self.url} rejected connection string {url!r}")
        conn = MemoryConnection(self)
        with self._lock:
            self._open[conn.connection_id] = conn
        return conn

    def shard_of(self, vertex_id: VertexId) -> str | None:
        return self._shards.get(str(vertex_id))

    def load_vertices(self, vertices: Sequence[Vertex], shard_of: Mapping[VertexId, str] | None = None) -> int:
        with self._lock:
            for vertex in vertices:
                self._vertices[vertex.id] = vertex
                if shard_of is not None and vertex.id in shard_of:
                    self._shards[str(vertex.id)] = shard_of[vertex.id]
        return len(vertices)

    # === committed-state reads (what any other reader of the store sees) ===

    def get(self, vertex_id: VertexId) -> Vertex | None:
        with self._lock:
            return self._vertices.get(vertex_id)

    def vertices(self) -> dict[VertexId, Vertex]:
        with self._lock:
            return dict(self._vertices)

    @property
    def commits(self) -> list[CommitRecord]:
        with self._lock:
            return list(self._commits)

    @property
    def open_connections(self) -> int:
        with self._lock:
            return len(self._open)

    # === connection callbacks ===

    def _commit(self, connection_id: int, ops: Sequence[WriteOp]) -> None:
        with self._lock:
            staged = dict(self._vertices)
            for op in ops:
                updated = apply_op(staged.get(op.vertex_id), op)
                if updated is not None:
                    staged[op.vertex_id] = updated
            self._vertices = staged
            self._commits.append(CommitRecord(len(self._commits) + 1, connection_id, tuple(ops)))

    def _forget(self, conn: MemoryConnection) -> None:
        with self._lock:
            self._open.pop(conn.connection_id, None)
