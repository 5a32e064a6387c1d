# src/scriptmap/plugins/sources/memory_source.py
"""In-process partition source.

Holds vertices in memory, already partitioned. Used for programmatic runs
and tests; from YAML, records are given inline.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from scriptmap.contracts import Partition, Vertex
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.core.partitioning import ShardLocator, split_contiguous
from scriptmap.plugins.base import BasePartitionSource


class MemoryPartitionSource(BasePartitionSource):
    """Serve pre-partitioned vertices from memory.

    Config options:
        partitions: List of partitions, each a list of vertex records
        locality_hints: Optional list of shard ids, one per partition
    """

    name = "memory"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any], dfs: DistributedFileSystem | None = None) -> None:
        super().__init__(config, dfs)
        raw_partitions = config.get("partitions", [])
        hints = list(config.get("locality_hints") or [None] * len(raw_partitions))
        if len(hints) != len(raw_partitions):
            raise ValueError(f"got {len(hints)} locality hints for {len(raw_partitions)} partitions")
        self._data: list[tuple[Partition, list[Vertex]]] = []
        for index, (records, hint) in enumerate(zip(raw_partitions, hints, strict=True)):
            vertices = [record if isinstance(record, Vertex) else Vertex.from_dict(record) for record in records]
            partition = Partition(index=index, vertex_count=len(vertices), locality_hint=hint)
            self._data.append((partition, vertices))

    @classmethod
    def from_vertices(
        cls,
        vertices: Sequence[Vertex],
        partition_count: int,
        shard_of: ShardLocator | None = None,
    ) -> MemoryPartitionSource:
        """Partition an ordered vertex list contiguously."""
        chunks = split_contiguous(vertices, partition_count, shard_of)
        return cls(
            {
                "partitions": [chunk for _, chunk in chunks],
                "locality_hints": [partition.locality_hint for partition, _ in chunks],
            }
        )

    def partitions(self) -> list[Partition]:
        return [partition for partition, _ in self._data]

    def read(self, partition: Partition, start: int = 0) -> Iterator[Vertex]:
        _, vertices = self._data[partition.index]
        yield from vertices[start:]
