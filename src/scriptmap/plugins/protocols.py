# src/scriptmap/plugins/protocols.py
"""Plugin protocols defining the contracts for each plugin type.

These protocols define what methods plugins must implement.
They're used for type checking, not runtime enforcement (that's pluggy's job).

Plugin Types:
- PartitionSource: ordered, resumable vertex reads per partition
- OutputSink: writes a job's per-vertex results (or nothing, for noop)
- GraphStore: the external, transactional graph store scripts write to
"""

from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from scriptmap.contracts import Dataset, Partition, Vertex, VertexId


@runtime_checkable
class PartitionSourceProtocol(Protocol):
    """Protocol for partition store adapters.

    The engine consumes this capability; it does not own the data.

    Lifecycle:
    1. __init__(config, dfs) - Plugin instantiation
    2. partitions() - Called once per job, before scheduling
    3. read(partition, start) - Called by each worker attempt
    4. close() - Cleanup
    """

    name: str
    plugin_version: str

    def partitions(self) -> list["Partition"]:
        """All partitions, ordered by index."""
        ...

    def read(self, partition: "Partition", start: int = 0) -> Iterator["Vertex"]:
        """Yield the partition's vertices in order, from record offset start.

        Raises:
            PartitionReadError: If the next record cannot be produced
        """
        ...

    def close(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class OutputSinkProtocol(Protocol):
    """Protocol for job output sinks.

    write_partition() is called once per succeeded partition, possibly from
    several worker threads at once, and must replace any earlier output of
    the same partition. finalize() is called once after all partitions.
    """

    name: str
    plugin_version: str
    writes_data: bool

    def prepare(self) -> None:
        """Create the output location. Called before any partition runs."""
        ...

    def write_partition(self, partition: "Partition", vertices: Sequence["Vertex"]) -> int:
        """Write one partition's records. Returns records written."""
        ...

    def finalize(self, partitions: Sequence["Partition"]) -> "Dataset | None":
        """Write dataset metadata; return the dataset (None for noop)."""
        ...

    def close(self) -> None:
        """Release resources."""
        ...


@runtime_checkable
class GraphConnectionProtocol(Protocol):
    """One connection to the external store, owned by exactly one worker.

    Writes are buffered until commit(); reads see committed state overlaid
    with this connection's own buffered writes.
    """

    @property
    def closed(self) -> bool: ...

    @property
    def pending_writes(self) -> int: ...

    read_only: bool

    def get_vertex(self, vertex_id: "VertexId") -> "Vertex | None": ...

    def set_property(self, vertex_id: "VertexId", key: str, value: Any) -> None: ...

    def remove_property(self, vertex_id: "VertexId", key: str) -> None: ...

    def add_vertex(self, vertex: "Vertex") -> None: ...

    def add_edge(
        self,
        source: "VertexId",
        label: str,
        target: "VertexId",
        properties: Mapping[str, Any] | None = None,
    ) -> None: ...

    def commit(self) -> int:
        """Make buffered writes durable and visible. Returns writes applied."""
        ...

    def rollback(self) -> None:
        """Discard buffered writes."""
        ...

    def close(self) -> None:
        """Discard uncommitted writes and release. Safe after a failed commit."""
        ...


@runtime_checkable
class GraphStoreProtocol(Protocol):
    """Protocol for external graph store plugins."""

    name: str
    plugin_version: str

    def connect(self, options: Mapping[str, Any] | None = None) -> GraphConnectionProtocol:
        """Open a connection.

        Raises:
            StoreConnectionError: Store unreachable or options rejected
        """
        ...

    def shard_of(self, vertex_id: "VertexId") -> str | None:
        """Shard holding a vertex, if the store is sharded."""
        ...

    def shard_locations(self) -> dict[str, str]:
        """Shard id -> physical location."""
        ...

    def close(self) -> None:
        """Release store-level resources."""
        ...
