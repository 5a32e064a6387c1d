# src/scriptmap/plugins/sinks/null_sink.py
"""No-op sink for jobs whose effects live in the external store."""

from collections.abc import Sequence

from scriptmap.contracts import Partition, Vertex
from scriptmap.plugins.base import BaseOutputSink


class NullSink(BaseOutputSink):
    """Discards every result. finalize() returns no dataset."""

    name = "noop"
    plugin_version = "1.0.0"
    writes_data = False

    def write_partition(self, partition: Partition, vertices: Sequence[Vertex]) -> int:
        return 0

    def finalize(self, partitions: Sequence[Partition]) -> None:
        return None
