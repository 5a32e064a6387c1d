# src/scriptmap/contracts/enums.py
"""All status codes, modes, and kinds used across subsystem boundaries."""

from enum import StrEnum


class WorkerState(StrEnum):
    """Lifecycle state of a partition worker.

    Normal path: CREATED -> SETTING_UP -> MAPPING -> CLEANING_UP -> TERMINATED.
    FAILED is reachable from every non-terminal state.
    """

    CREATED = "created"
    SETTING_UP = "setting_up"
    MAPPING = "mapping"
    CLEANING_UP = "cleaning_up"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerState.TERMINATED, WorkerState.FAILED)


# Legal transitions; anything else is an engine bug.
WORKER_TRANSITIONS: dict[WorkerState, frozenset[WorkerState]] = {
    WorkerState.CREATED: frozenset({WorkerState.SETTING_UP, WorkerState.FAILED}),
    WorkerState.SETTING_UP: frozenset({WorkerState.MAPPING, WorkerState.FAILED}),
    WorkerState.MAPPING: frozenset({WorkerState.CLEANING_UP, WorkerState.FAILED}),
    WorkerState.CLEANING_UP: frozenset({WorkerState.TERMINATED, WorkerState.FAILED}),
    WorkerState.TERMINATED: frozenset(),
    WorkerState.FAILED: frozenset(),
}


class JobStatus(StrEnum):
    """Status of one job in a chain.

    PENDING -> SCHEDULED -> RUNNING -> {SUCCEEDED, FAILED, CANCELLED}
    """

    PENDING = "pending"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChainStatus(StrEnum):
    """Status of a job chain."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PartitionStatus(StrEnum):
    """Final status of a partition within a job.

    Values:
        SUCCEEDED: A lifecycle run reached TERMINATED
        FAILED: Retry budget exhausted (or non-retryable failure)
        CANCELLED: Abandoned mid-run after cancellation was signalled
        SKIPPED: Never started because the job was cancelled first
    """

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class OutputMode(StrEnum):
    """Where a job's per-vertex results go.

    MATERIALIZE writes a new dataset consumable by the next job.
    NOOP performs no writes; required when the script writes to the
    external store itself, so the same data is not written twice.
    """

    MATERIALIZE = "materialize"
    NOOP = "noop"


class MapErrorPolicy(StrEnum):
    """What a worker does when map() raises for a single vertex."""

    SKIP_AND_CONTINUE = "skip_and_continue"
    ABORT_PARTITION = "abort_partition"
