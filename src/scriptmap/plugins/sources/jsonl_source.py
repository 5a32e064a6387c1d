# src/scriptmap/plugins/sources/jsonl_source.py
"""JSONL partition source.

Reads a partitioned dataset directory (see core/dataset.py) from the
distributed filesystem. Each partition is one file, one vertex per line.
Record offsets count non-blank lines, so read(partition, start=n) resumes
after the first n records.

NOTE: Non-standard JSON constants (NaN, Infinity, -Infinity) are rejected
at parse time. Use null for missing values.
"""

from collections.abc import Iterator
from typing import Any

from scriptmap.contracts import Partition, PartitionReadError, Vertex
from scriptmap.core.dataset import decode_vertex, discover_partitions, part_file_name
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.plugins.base import BasePartitionSource


class JsonlPartitionSource(BasePartitionSource):
    """Read vertices from a partitioned JSONL dataset.

    Config options:
        path: Dataset directory on the distributed filesystem (required)
        encoding: File encoding (default: "utf-8")
    """

    name = "jsonl"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any], dfs: DistributedFileSystem | None = None) -> None:
        super().__init__(config, dfs)
        if "path" not in config:
            raise ValueError("jsonl source requires a 'path' option")
        self._dfs = dfs if dfs is not None else DistributedFileSystem(".")
        self._directory = self._dfs.resolve(config["path"])
        self._encoding = config.get("encoding", "utf-8")

    @property
    def path(self) -> str:
        return str(self._directory)

    def partitions(self) -> list[Partition]:
        if not self._directory.is_dir():
            raise FileNotFoundError(f"dataset directory not found: {self._directory}")
        return discover_partitions(self._directory)

    def read(self, partition: Partition, start: int = 0) -> Iterator[Vertex]:
        file_path = self._directory / (partition.name or part_file_name(partition.index))
        try:
            handle = file_path.open("r", encoding=self._encoding)
        except OSError as e:
            raise PartitionReadError(partition.index, start, f"cannot open {file_path}: {e}") from e

        with handle:
            offset = 0
            try:
                for line in handle:
                    if not line.strip():
                        continue
                    if offset >= start:
                        try:
                            vertex = decode_vertex(line)
                        except (ValueError, KeyError, TypeError) as e:
                            raise PartitionReadError(partition.index, offset, f"bad record: {e}") from e
                        yield vertex
                    offset += 1
            except UnicodeDecodeError as e:
                raise PartitionReadError(partition.index, offset, f"undecodable bytes: {e}") from e
