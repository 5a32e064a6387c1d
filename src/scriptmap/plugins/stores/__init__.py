"""Built-in external graph store plugins for scriptmap.

Scripts reach the store through the `store` handle bound into their runtime;
the engine opens and commits connections on their behalf.

Plugins are accessed via PluginManager, not direct imports:
    manager = PluginManager()
    manager.register_builtin_plugins()
    store_cls = manager.get_store_by_name("sql")
"""
