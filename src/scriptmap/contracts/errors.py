# src/scriptmap/contracts/errors.py
"""Exception taxonomy for the execution engine.

Scope of each error:
- ScriptLoadError: fatal to the job before any worker starts
- ScriptRuntimeError: raised by a lifecycle hook; per-vertex map errors are
  recorded and skipped or escalated, per policy
- StoreConnectionError: fatal to the partition attempt, retried
- PartitionReadError: fatal to the partition attempt, retried
- DatasetError: fatal to the job before any worker starts
- OutputEncodingError: fatal to the partition, not retried
- JobChainError: a job exhausted its retries; the chain halts
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from scriptmap.contracts.results import ChainResult


class ScriptMapError(Exception):
    """Base class for engine errors."""


class ConfigurationError(ScriptMapError):
    """Raised when settings or job definitions are inconsistent."""


class ScriptLoadError(ScriptMapError):
    """Script is missing, unparsable, or violates the entry point contract."""

    def __init__(self, location: str, message: str) -> None:
        self.location = location
        super().__init__(f"{location}: {message}")


class ScriptContractError(ScriptLoadError):
    """Script lacks setup/map/cleanup or one has the wrong arity."""


class ScriptRuntimeError(ScriptMapError):
    """A lifecycle hook raised.

    Attributes:
        hook: "setup", "map" or "cleanup"
        partition: Partition index the worker owns
        vertex_id: Vertex being mapped (map hook only)
    """

    def __init__(
        self,
        hook: str,
        message: str,
        *,
        partition: int | None = None,
        vertex_id: Any = None,
    ) -> None:
        self.hook = hook
        self.partition = partition
        self.vertex_id = vertex_id
        where = f"partition {partition}" if partition is not None else "worker"
        if vertex_id is not None:
            where += f", vertex {vertex_id!r}"
        super().__init__(f"{hook}() failed in {where}: {message}")


class StoreConnectionError(ScriptMapError, ConnectionError):
    """External store is unreachable or rejected the configuration."""


class DatasetError(ScriptMapError):
    """A dataset directory or its partition manifest cannot be read."""


class PartitionReadError(ScriptMapError):
    """The partition store adapter cannot produce the next vertex record."""

    def __init__(self, partition: int, offset: int, message: str) -> None:
        self.partition = partition
        self.offset = offset
        super().__init__(f"partition {partition} record {offset}: {message}")


class OutputEncodingError(ScriptMapError):
    """A mapped vertex cannot be written in the job's output format.

    Deterministic for a given script and input, so never retried.
    """

    def __init__(self, partition: int, vertex_id: Any, message: str) -> None:
        self.partition = partition
        self.vertex_id = vertex_id
        super().__init__(f"partition {partition}, vertex {vertex_id!r}: cannot encode output: {message}")


class JobCancelledError(ScriptMapError):
    """Cancellation was signalled while a partition was running."""


class JobChainError(ScriptMapError):
    """A job in the chain failed; later jobs were not started.

    Attributes:
        job_name: Name of the failed job
        job_index: Position of the failed job in the chain
        partition: Partition where the first unrecoverable error happened
        vertex_id: Vertex being mapped when it happened, if known
        result: Full chain result, including succeeded jobs' outputs
    """

    def __init__(
        self,
        job_name: str,
        job_index: int,
        message: str,
        *,
        partition: int | None = None,
        vertex_id: Any = None,
        result: ChainResult | None = None,
    ) -> None:
        self.job_name = job_name
        self.job_index = job_index
        self.partition = partition
        self.vertex_id = vertex_id
        self.result = result
        super().__init__(f"job {job_index} ({job_name!r}) failed: {message}")
