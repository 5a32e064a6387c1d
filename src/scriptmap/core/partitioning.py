# src/scriptmap/core/partitioning.py
"""Split an ordered vertex sequence into contiguous partitions.

Every vertex lands in exactly one partition and order is preserved, so the
concatenation of all partitions in index order is the input sequence.
Partition sizes differ by at most one.

Locality hints: when a shard locator is given, each partition is hinted
with the shard holding most of its vertices (first seen wins ties). With
range-sharded stores and contiguous partitions this is usually the only
shard the partition touches.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from pathlib import Path

from scriptmap.contracts import Partition, Vertex, VertexId
from scriptmap.core.dataset import part_file_name, write_manifest, write_partition_file

ShardLocator = Callable[[VertexId], str | None]


def partition_bounds(total: int, partition_count: int) -> list[tuple[int, int]]:
    """Half-open [start, end) ranges for near-equal contiguous partitions.

    Empty trailing partitions are not produced: asking for more partitions
    than vertices yields one partition per vertex.
    """
    if partition_count < 1:
        raise ValueError(f"partition_count must be >= 1, got {partition_count}")
    if total == 0:
        return []
    count = min(partition_count, total)
    base, extra = divmod(total, count)
    bounds: list[tuple[int, int]] = []
    start = 0
    for i in range(count):
        size = base + (1 if i < extra else 0)
        bounds.append((start, start + size))
        start += size
    return bounds


def majority_shard(vertices: Sequence[Vertex], shard_of: ShardLocator) -> str | None:
    counts: Counter[str] = Counter()
    for vertex in vertices:
        shard = shard_of(vertex.id)
        if shard is not None:
            counts[shard] += 1
    if not counts:
        return None
    # Counter.most_common keeps insertion order among equal counts
    return counts.most_common(1)[0][0]


def split_contiguous(
    vertices: Sequence[Vertex],
    partition_count: int,
    shard_of: ShardLocator | None = None,
) -> list[tuple[Partition, list[Vertex]]]:
    """Cut vertices into contiguous partitions with optional locality hints."""
    result: list[tuple[Partition, list[Vertex]]] = []
    for index, (start, end) in enumerate(partition_bounds(len(vertices), partition_count)):
        chunk = list(vertices[start:end])
        hint = majority_shard(chunk, shard_of) if shard_of is not None else None
        partition = Partition(
            index=index,
            vertex_count=len(chunk),
            locality_hint=hint,
            name=part_file_name(index),
        )
        result.append((partition, chunk))
    return result


def write_partitioned_dataset(
    directory: Path,
    vertices: Sequence[Vertex],
    partition_count: int,
    shard_of: ShardLocator | None = None,
) -> list[Partition]:
    """Partition vertices and write them as a JSONL dataset with manifest."""
    partitions: list[Partition] = []
    for partition, chunk in split_contiguous(vertices, partition_count, shard_of):
        write_partition_file(directory, partition.index, chunk)
        partitions.append(partition)
    write_manifest(directory, partitions)
    return partitions
