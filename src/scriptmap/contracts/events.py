# src/scriptmap/contracts/events.py
"""Observability events for job chain execution.

Emitted by the chain driver, job executor and workers through an EventBus.
Consumed by CLI formatters and by tests that assert on lifecycle order.
Events from workers are emitted on worker threads.
"""

from dataclasses import dataclass

from scriptmap.contracts.enums import ChainStatus, JobStatus, PartitionStatus, WorkerState


@dataclass(frozen=True, slots=True)
class JobStarted:
    """Emitted when a job leaves PENDING and its partitions are planned."""

    job_id: str
    name: str
    index: int
    partition_count: int


@dataclass(frozen=True, slots=True)
class WorkerTransition:
    """Emitted on every worker state change."""

    job_id: str
    partition: int
    attempt: int
    from_state: WorkerState
    to_state: WorkerState


@dataclass(frozen=True, slots=True)
class PartitionCompleted:
    """Emitted once per partition, after its last attempt."""

    job_id: str
    partition: int
    status: PartitionStatus
    attempts: int
    records_in: int


@dataclass(frozen=True, slots=True)
class JobCompleted:
    """Emitted when a job reaches a terminal status."""

    job_id: str
    name: str
    index: int
    status: JobStatus
    duration_seconds: float
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class ChainCompleted:
    """Emitted when the chain finishes, whatever the outcome."""

    chain_id: str
    status: ChainStatus
    jobs_run: int
    failed_job_index: int | None = None
