# src/scriptmap/plugins/__init__.py
"""Plugin system: partition sources, output sinks and graph stores via pluggy.

- Protocols: Type contracts for plugin implementations
- Base classes: Shared buffering and lifecycle behavior
- Manager: Plugin registration and lookup
- Hookspecs: pluggy hook definitions
"""

from scriptmap.plugins.base import (
    BaseGraphConnection,
    BaseGraphStore,
    BaseOutputSink,
    BasePartitionSource,
    WriteOp,
)
from scriptmap.plugins.hookspecs import hookimpl, hookspec
from scriptmap.plugins.manager import PluginManager, PluginSpec
from scriptmap.plugins.protocols import (
    GraphConnectionProtocol,
    GraphStoreProtocol,
    OutputSinkProtocol,
    PartitionSourceProtocol,
)

__all__ = [
    "BaseGraphConnection",
    "BaseGraphStore",
    "BaseOutputSink",
    "BasePartitionSource",
    "GraphConnectionProtocol",
    "GraphStoreProtocol",
    "OutputSinkProtocol",
    "PartitionSourceProtocol",
    "PluginManager",
    "PluginSpec",
    "WriteOp",
    "hookimpl",
    "hookspec",
]
