# src/scriptmap/contracts/results.py
"""Result types reported by workers, jobs and chains."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from scriptmap.contracts.data import Dataset, Partition, VertexId
from scriptmap.contracts.enums import ChainStatus, JobStatus, PartitionStatus, WorkerState


@dataclass(frozen=True)
class VertexFailure:
    """A map() call that raised for one vertex."""

    vertex_id: VertexId
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, vertex_id: VertexId, error: BaseException) -> VertexFailure:
        cause = error.__cause__ if error.__cause__ is not None else error
        return cls(vertex_id=vertex_id, error_type=type(cause).__name__, message=str(cause))


@dataclass(frozen=True)
class PartitionAttempt:
    """One lifecycle run (setup -> map* -> cleanup) of a partition."""

    attempt: int
    slot_id: str | None
    final_state: WorkerState
    error: str | None = None
    local: bool | None = None


@dataclass
class PartitionResult:
    """Outcome of a partition across all its attempts.

    records_in counts vertices read by the last attempt; records_out counts
    records handed to the output sink (0 for noop output).
    """

    partition: Partition
    status: PartitionStatus
    attempts: list[PartitionAttempt] = field(default_factory=list)
    records_in: int = 0
    records_out: int = 0
    vertex_failures: list[VertexFailure] = field(default_factory=list)
    error: BaseException | None = None
    committed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == PartitionStatus.SUCCEEDED


@dataclass
class JobResult:
    """Outcome of one job."""

    job_id: str
    name: str
    index: int
    status: JobStatus
    partitions: list[PartitionResult] = field(default_factory=list)
    output: Dataset | None = None
    error: BaseException | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def failed_partitions(self) -> list[PartitionResult]:
        return [p for p in self.partitions if p.status == PartitionStatus.FAILED]

    @property
    def vertices_mapped(self) -> int:
        return sum(p.records_in for p in self.partitions if p.succeeded)

    def first_failure(self) -> tuple[int | None, Any]:
        """(partition index, vertex id) of the first unrecoverable error, if known."""
        for part in sorted(self.failed_partitions, key=lambda p: p.partition.index):
            vertex_id = getattr(part.error, "vertex_id", None)
            return part.partition.index, vertex_id
        return None, None


@dataclass
class ChainResult:
    """Outcome of a job chain. Succeeded jobs' outputs are never rolled back."""

    chain_id: str
    status: ChainStatus
    jobs: list[JobResult] = field(default_factory=list)
    failed_job_index: int | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChainStatus.SUCCEEDED

    @property
    def final_output(self) -> Dataset | None:
        for job in reversed(self.jobs):
            if job.output is not None:
                return job.output
        return None
