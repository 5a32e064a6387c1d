# src/scriptmap/core/__init__.py
"""Core infrastructure: Configuration, Logging, Events, Filesystems, Datasets, Topology."""

from scriptmap.core.config import (
    DatasetSettings,
    JobSettings,
    RetrySettings,
    SchedulerSettings,
    ScriptMapSettings,
    SlotSettings,
    StoreSettings,
    load_settings,
    resolve_config,
)
from scriptmap.core.events import EventBus, EventBusProtocol, NullEventBus
from scriptmap.core.filesystem import DistributedFileSystem, FileSystemHandle, LocalFileSystem
from scriptmap.core.partitioning import split_contiguous, write_partitioned_dataset
from scriptmap.core.topology import Topology

__all__ = [
    "DatasetSettings",
    "DistributedFileSystem",
    "EventBus",
    "EventBusProtocol",
    "FileSystemHandle",
    "JobSettings",
    "LocalFileSystem",
    "NullEventBus",
    "RetrySettings",
    "SchedulerSettings",
    "ScriptMapSettings",
    "SlotSettings",
    "StoreSettings",
    "Topology",
    "load_settings",
    "resolve_config",
    "split_contiguous",
    "write_partitioned_dataset",
]
