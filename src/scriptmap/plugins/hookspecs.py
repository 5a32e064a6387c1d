# src/scriptmap/plugins/hookspecs.py
"""pluggy hook specifications for scriptmap plugins.

Plugins implement these hooks to register themselves with the engine.
The plugin manager calls these hooks when refreshing its registry.

Usage (implementing a plugin):
    from scriptmap.plugins.hookspecs import hookimpl

    class MyStorePlugin:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def scriptmap_get_stores(self):
            return [MyGraphStore]

Note: @hookspec defines the hook interface (done here).
      @hookimpl marks plugin implementations of those hooks.
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from scriptmap.plugins.base import BaseGraphStore, BaseOutputSink, BasePartitionSource

# Project name for pluggy
PROJECT_NAME = "scriptmap"

# Hook specification marker
hookspec = pluggy.HookspecMarker(PROJECT_NAME)

# Hook implementation marker (for plugins to use)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class ScriptMapSourceSpec:
    """Hook specifications for partition source plugins."""

    @hookspec
    def scriptmap_get_sources(self) -> list[type["BasePartitionSource"]]:  # type: ignore[empty-body]
        """Return partition source plugin classes.

        Returns:
            List of source plugin classes (not instances)
        """


class ScriptMapSinkSpec:
    """Hook specifications for output sink plugins."""

    @hookspec
    def scriptmap_get_sinks(self) -> list[type["BaseOutputSink"]]:  # type: ignore[empty-body]
        """Return output sink plugin classes.

        Returns:
            List of sink plugin classes
        """


class ScriptMapStoreSpec:
    """Hook specifications for external graph store plugins."""

    @hookspec
    def scriptmap_get_stores(self) -> list[type["BaseGraphStore"]]:  # type: ignore[empty-body]
        """Return graph store plugin classes.

        Returns:
            List of graph store plugin classes
        """
