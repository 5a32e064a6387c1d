# src/scriptmap/plugins/manager.py
"""Plugin manager for discovery, registration, and lookup.

Uses pluggy for hook-based plugin registration.
"""

from dataclasses import dataclass
from typing import Any

import pluggy

from scriptmap.plugins.base import BaseGraphStore, BaseOutputSink, BasePartitionSource
from scriptmap.plugins.hookspecs import (
    PROJECT_NAME,
    ScriptMapSinkSpec,
    ScriptMapSourceSpec,
    ScriptMapStoreSpec,
)


def get_plugin_description(plugin_cls: type) -> str:
    """First non-empty docstring line, or "<name> plugin"."""
    if plugin_cls.__doc__:
        for line in plugin_cls.__doc__.strip().split("\n"):
            cleaned = line.strip()
            if cleaned:
                return cleaned
    name = getattr(plugin_cls, "name", plugin_cls.__name__)
    return f"{name} plugin"


@dataclass(frozen=True)
class PluginSpec:
    """Registration record for a plugin, for listings."""

    name: str
    kind: str
    version: str
    description: str

    @classmethod
    def from_plugin(cls, plugin_cls: type, kind: str) -> "PluginSpec":
        return cls(
            name=plugin_cls.name,  # type: ignore[attr-defined]
            kind=kind,
            version=getattr(plugin_cls, "plugin_version", "0.0.0"),
            description=get_plugin_description(plugin_cls),
        )


def _collect(results: list[list[type]], kind: str) -> dict[str, type]:
    """Flatten hook results, rejecting duplicate names."""
    found: dict[str, type] = {}
    for classes in results:
        for cls in classes:
            name = cls.name  # type: ignore[attr-defined]
            if name in found:
                raise ValueError(
                    f"Duplicate {kind} plugin name: '{name}'. Already registered by {found[name].__name__}"
                )
            found[name] = cls
    return found


class PluginManager:
    """Manages plugin registration and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        store_cls = manager.get_store_by_name("sql")
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)

        self._pm.add_hookspecs(ScriptMapSourceSpec)
        self._pm.add_hookspecs(ScriptMapSinkSpec)
        self._pm.add_hookspecs(ScriptMapStoreSpec)

        # Caches - map name to plugin class for duplicate detection
        self._sources: dict[str, type[BasePartitionSource]] = {}
        self._sinks: dict[str, type[BaseOutputSink]] = {}
        self._stores: dict[str, type[BaseGraphStore]] = {}

    def register_builtin_plugins(self) -> None:
        """Register the built-in sources, sinks and stores.

        Call this once at startup to make built-in plugins discoverable.
        """
        from scriptmap.plugins.builtin import BUILTIN_PLUGINS

        for plugin_cls in BUILTIN_PLUGINS:
            self.register(plugin_cls())

    def register(self, plugin: Any) -> None:
        """Register a plugin.

        Args:
            plugin: Plugin instance implementing hook methods

        Raises:
            ValueError: If a plugin with the same name and kind is already registered
        """
        self._pm.register(plugin)
        try:
            self._refresh_caches()
        except ValueError:
            self._pm.unregister(plugin)
            raise

    def _refresh_caches(self) -> None:
        # Collect everything first so a duplicate leaves the caches untouched
        sources = _collect(self._pm.hook.scriptmap_get_sources(), "source")
        sinks = _collect(self._pm.hook.scriptmap_get_sinks(), "sink")
        stores = _collect(self._pm.hook.scriptmap_get_stores(), "store")

        self._sources = sources  # type: ignore[assignment]
        self._sinks = sinks  # type: ignore[assignment]
        self._stores = stores  # type: ignore[assignment]

    # === Getters ===

    def get_sources(self) -> list[type[BasePartitionSource]]:
        """Get all registered partition source plugins."""
        return list(self._sources.values())

    def get_sinks(self) -> list[type[BaseOutputSink]]:
        """Get all registered output sink plugins."""
        return list(self._sinks.values())

    def get_stores(self) -> list[type[BaseGraphStore]]:
        """Get all registered graph store plugins."""
        return list(self._stores.values())

    def list_plugins(self) -> list[PluginSpec]:
        """Every registered plugin, grouped by kind, sorted by name."""
        specs: list[PluginSpec] = []
        for kind, registry in (("source", self._sources), ("sink", self._sinks), ("store", self._stores)):
            specs.extend(PluginSpec.from_plugin(cls, kind) for _, cls in sorted(registry.items()))
        return specs

    # === Lookup by name ===

    def get_source_by_name(self, name: str) -> type[BasePartitionSource] | None:
        """Get partition source plugin by name."""
        return self._sources.get(name)

    def get_sink_by_name(self, name: str) -> type[BaseOutputSink] | None:
        """Get output sink plugin by name."""
        return self._sinks.get(name)

    def get_store_by_name(self, name: str) -> type[BaseGraphStore] | None:
        """Get graph store plugin by name."""
        return self._stores.get(name)
