# src/scriptmap/contracts/data.py
"""Graph records and job descriptors passed between subsystems.

Vertices are read-only from the engine's perspective. Scripts mutate the
external store through their connection, never the Vertex objects they are
handed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from scriptmap.contracts.enums import OutputMode

VertexId = str | int


@dataclass(frozen=True)
class Edge:
    """A typed, directed edge to another vertex."""

    label: str
    target: VertexId
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"label": self.label, "target": self.target}
        if self.properties:
            data["properties"] = dict(self.properties)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Edge:
        return cls(
            label=data["label"],
            target=data["target"],
            properties=data.get("properties", {}),
        )


@dataclass(frozen=True)
class Vertex:
    """A vertex record: stable id, unique-keyed properties, ordered edges.

    Attributes:
        id: Identifier shared by the source dataset and the external store
        properties: Property name -> value (read-only view)
        edges: Outgoing edges in dataset order
    """

    id: VertexId
    properties: Mapping[str, Any] = field(default_factory=dict)
    edges: tuple[Edge, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "edges", tuple(self.edges))

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def out(self, label: str) -> list[VertexId]:
        """Target ids of outgoing edges with the given label, in order."""
        return [edge.target for edge in self.edges if edge.label == label]

    def with_properties(self, **updates: Any) -> Vertex:
        """Copy of this vertex with property updates applied."""
        return Vertex(id=self.id, properties={**self.properties, **updates}, edges=self.edges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "properties": dict(self.properties),
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Vertex:
        """Build a vertex from its record form.

        Raises:
            KeyError: If the record has no "id"
            TypeError: If properties/edges have the wrong shape
        """
        properties = data.get("properties", {})
        if not isinstance(properties, Mapping):
            raise TypeError(f"vertex properties must be an object, got {type(properties).__name__}")
        edges = data.get("edges", [])
        if not isinstance(edges, list):
            raise TypeError(f"vertex edges must be a list, got {type(edges).__name__}")
        return cls(
            id=data["id"],
            properties=properties,
            edges=tuple(Edge.from_dict(edge) for edge in edges),
        )


@dataclass(frozen=True)
class Partition:
    """An ordered, contiguous subset of a dataset's vertices.

    Attributes:
        index: Partition number, unique within a dataset
        vertex_count: Number of records, if known up front
        locality_hint: Id of the external store shard holding the same
            vertex range. Used for scheduling only.
        name: Storage name (e.g. file name) for the partition
    """

    index: int
    vertex_count: int | None = None
    locality_hint: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"partition index must be >= 0, got {self.index}")


@dataclass(frozen=True)
class ScriptUnit:
    """Immutable reference to a script satisfying the setup/map/cleanup contract."""

    location: str
    args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(str(arg) for arg in self.args))


@dataclass(frozen=True)
class WorkerSlot:
    """A place a worker can run, at a physical location."""

    slot_id: str
    location: str
    capacity: int = 1

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"slot capacity must be >= 1, got {self.capacity}")


@dataclass(frozen=True)
class Dataset:
    """A partitioned, record-oriented dataset on the distributed filesystem."""

    path: str
    format: str = "jsonl"


@dataclass(frozen=True)
class OutputSpec:
    """Output selector for a job: Materialize(format) or NoOp."""

    mode: OutputMode
    format: str | None = None

    def __post_init__(self) -> None:
        if self.mode == OutputMode.MATERIALIZE and not self.format:
            raise ValueError("materialize output requires a format")
        if self.mode == OutputMode.NOOP and self.format is not None:
            raise ValueError("noop output takes no format")

    @classmethod
    def materialize(cls, format: str = "jsonl") -> OutputSpec:
        return cls(OutputMode.MATERIALIZE, format)

    @classmethod
    def noop(cls) -> OutputSpec:
        return cls(OutputMode.NOOP)

    @property
    def is_noop(self) -> bool:
        return self.mode == OutputMode.NOOP
