# src/scriptmap/plugins/sinks/jsonl_sink.py
"""JSONL sink plugin for scriptmap.

Writes a job's results as a partitioned dataset (see core/dataset.py), so
the next job in a chain can read it with the jsonl source.

Each partition file is written atomically (temp file + rename) as soon as
the partition succeeds. A retried partition replaces its earlier file, so
readers never see a mix of attempts. The manifest is written last, by
finalize(), and only lists the partitions that were written.
"""

from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from scriptmap.contracts import Dataset, Partition, Vertex
from scriptmap.core.dataset import part_file_name, write_manifest, write_partition_file
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.plugins.base import BaseOutputSink


class JsonlOutputSink(BaseOutputSink):
    """Materialize job output as a JSONL dataset.

    Config options:
        path: Output directory on the distributed filesystem (required)
    """

    name = "jsonl"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any], dfs: DistributedFileSystem | None = None) -> None:
        super().__init__(config, dfs)
        if "path" not in config:
            raise ValueError("jsonl sink requires a 'path' option")
        self._dfs = dfs if dfs is not None else DistributedFileSystem(".")
        self._relative_path = str(config["path"])
        self._directory = self._dfs.resolve(self._relative_path)
        self._written: dict[int, Partition] = {}

    def prepare(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)

    def write_partition(self, partition: Partition, vertices: Sequence[Vertex]) -> int:
        _, count = write_partition_file(self._directory, partition.index, vertices)
        with self._lock:
            self._written[partition.index] = replace(
                partition, vertex_count=count, name=part_file_name(partition.index)
            )
        return count

    def finalize(self, partitions: Sequence[Partition]) -> Dataset:
        with self._lock:
            written = [self._written[p.index] for p in partitions if p.index in self._written]
        write_manifest(self._directory, written)
        return Dataset(path=self._relative_path, format="jsonl")
