# src/scriptmap/plugins/base.py
"""Base classes for plugin implementations.

These provide common functionality and ensure proper interface compliance.
Built-in plugins subclass these (BasePartitionSource, BaseOutputSink,
BaseGraphStore); the registry looks plugins up by their `name` attribute.

BaseGraphConnection carries the write-buffer semantics every store shares:
writes are queued as operations, reads overlay the queue on committed state,
and only commit() hands the queue to the store. Subclasses implement the
two storage primitives, _read_committed() and _apply().
"""

from __future__ import annotations

import itertools
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from scriptmap.contracts import Dataset, Edge, Partition, Vertex, VertexId
from scriptmap.core.filesystem import DistributedFileSystem


class BasePartitionSource(ABC):
    """Base class for partition store adapters."""

    name: str
    plugin_version: str = "0.0.0"

    def __init__(self, config: dict[str, Any], dfs: DistributedFileSystem | None = None) -> None:
        self.config = config
        self.dfs = dfs

    @abstractmethod
    def partitions(self) -> list[Partition]: ...

    @abstractmethod
    def read(self, partition: Partition, start: int = 0) -> Iterator[Vertex]: ...

    def close(self) -> None:  # noqa: B027 - optional override
        pass


class BaseOutputSink(ABC):
    """Base class for output sinks.

    Subclasses get a lock (self._lock) for write_partition, which runs on
    worker threads.
    """

    name: str
    plugin_version: str = "0.0.0"
    writes_data: bool = True

    def __init__(self, config: dict[str, Any], dfs: DistributedFileSystem | None = None) -> None:
        self.config = config
        self.dfs = dfs
        self._lock = threading.Lock()

    def prepare(self) -> None:  # noqa: B027 - optional override
        pass

    @abstractmethod
    def write_partition(self, partition: Partition, vertices: Sequence[Vertex]) -> int: ...

    @abstractmethod
    def finalize(self, partitions: Sequence[Partition]) -> Dataset | None: ...

    def close(self) -> None:  # noqa: B027 - optional override
        pass


@dataclass(frozen=True)
class WriteOp:
    """One buffered store mutation.

    kind is one of: "set", "remove", "add_vertex", "add_edge". add_vertex and
    add_edge carry the Vertex or Edge as value.
    """

    kind: str
    vertex_id: VertexId
    key: str | None = None
    value: Any = None


_connection_ids = itertools.count(1)


class BaseGraphConnection(ABC):
    """Buffered connection to an external graph store.

    Not thread-safe: a connection belongs to one worker, and a worker is
    single-threaded.
    """

    def __init__(self) -> None:
        self.connection_id = next(_connection_ids)
        self.read_only = False
        self._buffer: list[WriteOp] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_writes(self) -> int:
        return len(self._buffer)

    # === storage primitives ===

    @abstractmethod
    def _read_committed(self, vertex_id: VertexId) -> Vertex | None:
        """Committed state of a vertex, ignoring this connection's buffer."""

    @abstractmethod
    def _apply(self, ops: Sequence[WriteOp]) -> None:
        """Durably apply ops as one transaction; all or nothing."""

    def _release(self) -> None:  # noqa: B027 - optional override
        """Free store resources held by this connection."""

    # === reads ===

    def get_vertex(self, vertex_id: VertexId) -> Vertex | None:
        self._check_open()
        vertex = self._read_committed(vertex_id)
        for op in self._buffer:
            if op.vertex_id != vertex_id:
                continue
            vertex = apply_op(vertex, op)
        return vertex

    # === buffered writes ===

    def set_property(self, vertex_id: VertexId, key: str, value: Any) -> None:
        self._queue(WriteOp("set", vertex_id, key, value))

    def remove_property(self, vertex_id: VertexId, key: str) -> None:
        self._queue(WriteOp("remove", vertex_id, key))

    def add_vertex(self, vertex: Vertex) -> None:
        self._queue(WriteOp("add_vertex", vertex.id, value=vertex))

    def add_edge(
        self,
        source: VertexId,
        label: str,
        target: VertexId,
        properties: Mapping[str, Any] | None = None,
    ) -> None:
        self._queue(WriteOp("add_edge", source, label, Edge(label=label, target=target, properties=properties or {})))

    def _queue(self, op: WriteOp) -> None:
        self._check_open()
        if self.read_only:
            raise PermissionError("connection is read-only: the job does not declare external writes")
        self._buffer.append(op)

    # === transaction control ===

    def commit(self) -> int:
        self._check_open()
        ops = list(self._buffer)
        if ops:
            self._apply(ops)
        self._buffer.clear()
        return len(ops)

    def rollback(self) -> None:
        self._buffer.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._buffer.clear()
        self._closed = True
        self._release()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"connection {self.connection_id} is closed")


def apply_op(vertex: Vertex | None, op: WriteOp) -> Vertex | None:
    """State of a vertex after one write op.

    Property writes against an unknown vertex create it, matching stores that
    upsert on write.
    """
    if op.kind == "add_vertex":
        added: Vertex = op.value
        return added
    current = vertex if vertex is not None else Vertex(id=op.vertex_id)
    if op.kind == "set":
        return current.with_properties(**{op.key: op.value})
    if op.kind == "remove":
        props = {k: v for k, v in current.properties.items() if k != op.key}
        return Vertex(id=current.id, properties=props, edges=current.edges)
    if op.kind == "add_edge":
        edge: Edge = op.value
        return Vertex(id=current.id, properties=current.properties, edges=(*current.edges, edge))
    raise ValueError(f"unknown write op kind: {op.kind!r}")


class BaseGraphStore(ABC):
    """Base class for external graph store plugins."""

    name: str
    plugin_version: str = "0.0.0"

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        self.config = dict(config or {})
        self._shard_locations: dict[str, str] = {
            str(k): str(v) for k, v in dict(self.config.get("shard_locations", {})).items()
        }

    @abstractmethod
    def connect(self, options: Mapping[str, Any] | None = None) -> BaseGraphConnection: ...

    @abstractmethod
    def shard_of(self, vertex_id: VertexId) -> str | None: ...

    def shard_locations(self) -> dict[str, str]:
        return dict(self._shard_locations)

    @abstractmethod
    def load_vertices(self, vertices: Sequence[Vertex], shard_of: Mapping[VertexId, str] | None = None) -> int:
        """Bulk-load committed vertices (seeding, tests). Returns count."""

    def close(self) -> None:  # noqa: B027 - optional override
        pass
