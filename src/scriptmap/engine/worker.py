# src/scriptmap/engine/worker.py
"""PartitionWorker: one lifecycle run of a script over one partition.

    created -> setting_up -> mapping -> cleaning_up -> terminated
                   |            |            |
                   +------------+------------+--> failed

- setting_up: the script module is loaded into a fresh runtime and
  setup(args) runs exactly once.
- mapping: map(vertex, args) runs once per vertex, in partition order.
  Cancellation is checked before each call.
- cleaning_up: cleanup(args) runs exactly once, then the worker's store
  connection is committed and released. This is the only commit point for
  the partition; nothing the partition wrote is visible before it.

A failed run never commits: the connection is closed with its buffered
writes discarded. cleanup() does not run after a failed setup or an aborted
map phase. Within a worker everything is sequential.

A worker is single-use. Retries build a new worker.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from scriptmap.contracts import (
    WORKER_TRANSITIONS,
    JobCancelledError,
    MapErrorPolicy,
    Partition,
    PartitionReadError,
    ScriptMapError,
    ScriptRuntimeError,
    ScriptUnit,
    Vertex,
    VertexFailure,
    WorkerState,
    WorkerTransition,
)
from scriptmap.core.events import EventBusProtocol, NullEventBus
from scriptmap.core.filesystem import DistributedFileSystem, LocalFileSystem
from scriptmap.engine.connector_pool import ConnectorPool, StoreHandle
from scriptmap.engine.script import CompiledScript, ScriptRuntime
from scriptmap.plugins.protocols import PartitionSourceProtocol

logger = structlog.get_logger(__name__)


def result_to_vertex(vertex: Vertex, result: Any, result_key: str = "result") -> Vertex:
    """Output record for one map() result.

    - a Vertex replaces the input
    - a mapping is merged into the input's properties
    - None passes the input through unchanged
    - anything else is stored under result_key
    """
    if isinstance(result, Vertex):
        return result
    if result is None:
        return vertex
    if isinstance(result, Mapping):
        return Vertex(id=vertex.id, properties={**vertex.properties, **result}, edges=vertex.edges)
    return Vertex(id=vertex.id, properties={**vertex.properties, result_key: result}, edges=vertex.edges)


@dataclass(frozen=True)
class WorkerSettings:
    """Job-level knobs a worker needs."""

    job_id: str
    map_error_policy: MapErrorPolicy = MapErrorPolicy.SKIP_AND_CONTINUE
    collect_outputs: bool = True
    result_key: str = "result"


@dataclass
class WorkerOutcome:
    """What one lifecycle run produced.

    outputs is empty for noop jobs. committed is True only when the worker's
    connection was committed after cleanup().
    """

    state: WorkerState
    outputs: list[Vertex] = field(default_factory=list)
    records_in: int = 0
    vertex_failures: list[VertexFailure] = field(default_factory=list)
    error: BaseException | None = None
    committed: bool = False

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, JobCancelledError)


class PartitionWorker:
    """Drives setup/map/cleanup over one partition, once."""

    def __init__(
        self,
        partition: Partition,
        unit: ScriptUnit,
        compiled: CompiledScript,
        source: PartitionSourceProtocol,
        pool: ConnectorPool,
        settings: WorkerSettings,
        cancel_event: threading.Event | None = None,
        *,
        dfs: DistributedFileSystem,
        attempt: int = 1,
        slot_id: str | None = None,
        events: EventBusProtocol | None = None,
    ) -> None:
        self.partition = partition
        self.unit = unit
        self.compiled = compiled
        self.source = source
        self.pool = pool
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self.dfs = dfs
        self.attempt = attempt
        self.slot_id = slot_id
        self.worker_id = f"{settings.job_id}/p{partition.index}/a{attempt}"
        self._events: EventBusProtocol = events or NullEventBus()
        self._state = WorkerState.CREATED
        self.history: list[tuple[WorkerState, WorkerState]] = []
        self._log = logger.bind(
            job=settings.job_id,
            partition=partition.index,
            attempt=attempt,
            slot=slot_id,
        )

    @property
    def state(self) -> WorkerState:
        return self._state

    def _transition(self, to_state: WorkerState) -> None:
        from_state = self._state
        if to_state not in WORKER_TRANSITIONS[from_state]:
            raise RuntimeError(f"illegal worker transition {from_state.value} -> {to_state.value}")
        self._state = to_state
        self.history.append((from_state, to_state))
        self._log.debug("worker_transition", from_state=from_state.value, to_state=to_state.value)
        self._events.emit(
            WorkerTransition(
                job_id=self.settings.job_id,
                partition=self.partition.index,
                attempt=self.attempt,
                from_state=from_state,
                to_state=to_state,
            )
        )

    def _fail(self, error: BaseException, outcome: WorkerOutcome) -> WorkerOutcome:
        self._transition(WorkerState.FAILED)
        self.pool.release(self.worker_id, commit=False)
        outcome.state = WorkerState.FAILED
        outcome.error = error
        if isinstance(error, JobCancelledError):
            self._log.info("worker_cancelled", records_in=outcome.records_in)
        else:
            self._log.warning("worker_failed", error=str(error), records_in=outcome.records_in)
        return outcome

    def _cancelled(self) -> JobCancelledError:
        return JobCancelledError(f"partition {self.partition.index} cancelled in {self._state.value}")

    def run(self) -> WorkerOutcome:
        """Run the lifecycle once. Script errors end in FAILED, never raise.

        Errors that are not the script's or the source's (engine bugs) are
        raised after the connection is closed without commit.
        """
        if self._state != WorkerState.CREATED:
            raise RuntimeError(f"worker {self.worker_id} already ran")
        local = LocalFileSystem.scratch(prefix=f"scriptmap-p{self.partition.index}-a{self.attempt}-")
        try:
            return self._run(local)
        finally:
            # Idempotent: a no-op when a path above already released
            self.pool.release(self.worker_id, commit=False)
            local.close()

    def _run(self, local: LocalFileSystem) -> WorkerOutcome:
        outcome = WorkerOutcome(state=self._state)
        args = self.unit.args

        self._transition(WorkerState.SETTING_UP)
        if self.cancel_event.is_set():
            return self._fail(self._cancelled(), outcome)
        try:
            runtime = ScriptRuntime(
                self.compiled,
                dfs=self.dfs,
                local=local,
                store=StoreHandle(self.pool, self.worker_id, lambda: self._state),
                partition=self.partition.index,
            )
            runtime.setup(args)
        except ScriptMapError as e:
            return self._fail(e, outcome)

        self._transition(WorkerState.MAPPING)
        try:
            for vertex in self.source.read(self.partition):
                if self.cancel_event.is_set():
                    return self._fail(self._cancelled(), outcome)
                outcome.records_in += 1
                try:
                    result = runtime.map(vertex, args)
                except ScriptRuntimeError as e:
                    failure = VertexFailure.from_exception(vertex.id, e)
                    outcome.vertex_failures.append(failure)
                    self._log.warning(
                        "map_failed",
                        vertex_id=vertex.id,
                        error_type=failure.error_type,
                        error=failure.message,
                        policy=self.settings.map_error_policy.value,
                    )
                    if self.settings.map_error_policy == MapErrorPolicy.ABORT_PARTITION:
                        return self._fail(e, outcome)
                    continue
                if self.settings.collect_outputs:
                    outcome.outputs.append(result_to_vertex(vertex, result, self.settings.result_key))
        except PartitionReadError as e:
            return self._fail(e, outcome)

        self._transition(WorkerState.CLEANING_UP)
        try:
            runtime.cleanup(args)
        except ScriptRuntimeError as e:
            return self._fail(e, outcome)

        if self.cancel_event.is_set():
            return self._fail(self._cancelled(), outcome)

        try:
            outcome.committed = self.pool.release(self.worker_id, commit=True)
        except Exception as e:
            # Any store error on commit fails the partition; release() has closed the connection
            return self._fail(e, outcome)

        self._transition(WorkerState.TERMINATED)
        outcome.state = WorkerState.TERMINATED
        self._log.debug(
            "worker_terminated",
            records_in=outcome.records_in,
            vertex_failures=len(outcome.vertex_failures),
            committed=outcome.committed,
        )
        return outcome
