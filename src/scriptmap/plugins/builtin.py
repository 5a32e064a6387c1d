# src/scriptmap/plugins/builtin.py
"""Hook implementations registering the built-in plugins."""

from typing import Any

from scriptmap.plugins.hookspecs import hookimpl


class BuiltinSources:
    @hookimpl
    def scriptmap_get_sources(self) -> list[type[Any]]:
        from scriptmap.plugins.sources.jsonl_source import JsonlPartitionSource
        from scriptmap.plugins.sources.memory_source import MemoryPartitionSource

        return [JsonlPartitionSource, MemoryPartitionSource]


class BuiltinSinks:
    @hookimpl
    def scriptmap_get_sinks(self) -> list[type[Any]]:
        from scriptmap.plugins.sinks.jsonl_sink import JsonlOutputSink
        from scriptmap.plugins.sinks.null_sink import NullSink

        return [JsonlOutputSink, NullSink]


class BuiltinStores:
    @hookimpl
    def scriptmap_get_stores(self) -> list[type[Any]]:
        from scriptmap.plugins.stores.memory_store import MemoryGraphStore
        from scriptmap.plugins.stores.sql_store import SqlGraphStore

        return [MemoryGraphStore, SqlGraphStore]


BUILTIN_PLUGINS: tuple[type, ...] = (BuiltinSources, BuiltinSinks, BuiltinStores)
