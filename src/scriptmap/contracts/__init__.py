# src/scriptmap/contracts/__init__.py
"""Shared contracts: data records, enums, errors, results and events.

Leaf package - imports nothing from engine, core or plugins.
"""

from scriptmap.contracts.data import (
    Dataset,
    Edge,
    OutputSpec,
    Partition,
    ScriptUnit,
    Vertex,
    VertexId,
    WorkerSlot,
)
from scriptmap.contracts.enums import (
    WORKER_TRANSITIONS,
    ChainStatus,
    JobStatus,
    MapErrorPolicy,
    OutputMode,
    PartitionStatus,
    WorkerState,
)
from scriptmap.contracts.errors import (
    ConfigurationError,
    DatasetError,
    JobCancelledError,
    JobChainError,
    OutputEncodingError,
    PartitionReadError,
    ScriptContractError,
    ScriptLoadError,
    ScriptMapError,
    ScriptRuntimeError,
    StoreConnectionError,
)
from scriptmap.contracts.events import (
    ChainCompleted,
    JobCompleted,
    JobStarted,
    PartitionCompleted,
    WorkerTransition,
)
from scriptmap.contracts.results import (
    ChainResult,
    JobResult,
    PartitionAttempt,
    PartitionResult,
    VertexFailure,
)

__all__ = [
    "WORKER_TRANSITIONS",
    "ChainCompleted",
    "ChainResult",
    "ChainStatus",
    "ConfigurationError",
    "Dataset",
    "DatasetError",
    "Edge",
    "JobCancelledError",
    "JobChainError",
    "JobCompleted",
    "JobResult",
    "JobStarted",
    "JobStatus",
    "MapErrorPolicy",
    "OutputEncodingError",
    "OutputMode",
    "OutputSpec",
    "Partition",
    "PartitionAttempt",
    "PartitionCompleted",
    "PartitionReadError",
    "PartitionResult",
    "PartitionStatus",
    "ScriptContractError",
    "ScriptLoadError",
    "ScriptMapError",
    "ScriptRuntimeError",
    "ScriptUnit",
    "StoreConnectionError",
    "Vertex",
    "VertexFailure",
    "VertexId",
    "WorkerSlot",
    "WorkerState",
    "WorkerTransition",
]
