"""
scriptmap: run a script once per vertex of a partitioned graph dataset.

Workers run setup/map/cleanup over one partition each, placed next to the
external store shard holding the same vertices, and commit their store
writes once per partition. Jobs chain, each reading the previous output.
"""

__version__ = "0.1.0"
