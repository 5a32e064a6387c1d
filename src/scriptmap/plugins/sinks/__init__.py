"""Built-in output sink plugins for scriptmap.

Sinks receive each succeeded partition's map() results. The "noop" sink is
used for jobs whose scripts write to the external store themselves.

Plugins are accessed via PluginManager, not direct imports:
    manager = PluginManager()
    manager.register_builtin_plugins()
    sink_cls = manager.get_sink_by_name("jsonl")
"""
