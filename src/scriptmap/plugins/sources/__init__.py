"""Built-in partition source plugins for scriptmap.

Sources serve a dataset's partitions to workers. Exactly one source per job:
the original dataset for the first job, the previous job's output after that.

Plugins are accessed via PluginManager, not direct imports:
    manager = PluginManager()
    manager.register_builtin_plugins()
    source_cls = manager.get_source_by_name("jsonl")
"""
