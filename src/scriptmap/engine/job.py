# src/scriptmap/engine/job.py
"""JobExecutor: runs one script over every partition of a dataset.

Job status: pending -> scheduled -> running -> {succeeded, failed, cancelled}

1. The script is compiled and checked. A bad script fails the job here,
   before any worker exists.
2. Partitions are listed and the output sink is prepared.
3. Each partition runs on the thread pool: acquire a slot, run a worker,
   release the slot, retry the whole lifecycle on failure.
4. Materialized output is written per partition as soon as it succeeds;
   the dataset manifest is written once every partition has succeeded.

A job fails if any partition fails after its retries. The other partitions
still run to completion unless fail_fast is set; either way their committed
store writes and written output files stay where they are.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from scriptmap.contracts import (
    ConfigurationError,
    DatasetError,
    JobCancelledError,
    JobCompleted,
    JobResult,
    JobStarted,
    JobStatus,
    MapErrorPolicy,
    OutputEncodingError,
    OutputSpec,
    Partition,
    PartitionAttempt,
    PartitionCompleted,
    PartitionReadError,
    PartitionResult,
    PartitionStatus,
    ScriptLoadError,
    ScriptUnit,
    WorkerSlot,
)
from scriptmap.core.events import EventBusProtocol, NullEventBus
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.core.topology import Topology
from scriptmap.engine.connector_pool import ConnectorPool
from scriptmap.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from scriptmap.engine.scheduler import SlotLease, SlotPool
from scriptmap.engine.script import CompiledScript, compile_script
from scriptmap.engine.worker import PartitionWorker, WorkerOutcome, WorkerSettings
from scriptmap.plugins.protocols import GraphStoreProtocol, OutputSinkProtocol, PartitionSourceProtocol

if TYPE_CHECKING:
    from scriptmap.core.config import JobSettings
    from scriptmap.plugins.manager import PluginManager

logger = structlog.get_logger(__name__)

DEFAULT_SLOT = WorkerSlot(slot_id="local-0", location="localhost")


@dataclass(frozen=True)
class JobSpec:
    """One script step.

    external_writes declares that the script writes to the external store.
    Such jobs must use noop output, so results are not also materialized.
    """

    name: str
    unit: ScriptUnit
    output: OutputSpec = OutputSpec.materialize()
    external_writes: bool = False
    map_error_policy: MapErrorPolicy = MapErrorPolicy.SKIP_AND_CONTINUE
    fail_fast: bool = False
    result_key: str = "result"

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("job name must not be empty")
        if self.external_writes and not self.output.is_noop:
            raise ConfigurationError(f"job {self.name!r}: external_writes requires noop output")

    @classmethod
    def from_settings(cls, settings: JobSettings) -> JobSpec:
        return cls(
            name=settings.name,
            unit=settings.to_script_unit(),
            output=settings.to_output_spec(),
            external_writes=settings.external_writes,
            map_error_policy=settings.on_map_error,
            fail_fast=settings.fail_fast,
            result_key=settings.result_key,
        )


class _JobRun:
    """Mutable state of one JobExecutor.run() call."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.stop = threading.Event()
        self.cancel_requested = False


class JobExecutor:
    """Executes jobs against a dataset, a store and a set of worker slots.

    One run at a time; cancel() stops the run in progress.
    """

    def __init__(
        self,
        *,
        dfs: DistributedFileSystem,
        store: GraphStoreProtocol | None = None,
        store_options: Mapping[str, Any] | None = None,
        retry: RetryConfig | None = None,
        slots: Sequence[WorkerSlot] | None = None,
        topology: Topology | None = None,
        locality_wait_seconds: float = 0.5,
        events: EventBusProtocol | None = None,
        plugin_manager: PluginManager | None = None,
    ) -> None:
        self.dfs = dfs
        self.store = store
        self.store_options = dict(store_options or {})
        self.retry_config = retry or RetryConfig()
        self.slots = list(slots or [DEFAULT_SLOT])
        self.topology = topology or Topology()
        self.locality_wait_seconds = locality_wait_seconds
        self._events: EventBusProtocol = events or NullEventBus()
        self._plugin_manager = plugin_manager
        self._lock = threading.Lock()
        self._current: _JobRun | None = None
        self._slot_pool: SlotPool | None = None
        self.last_slot_pool: SlotPool | None = None

    # === cancellation ===

    def cancel(self) -> None:
        """Signal the running job to stop. Workers stop at the next map() boundary."""
        with self._lock:
            run = self._current
            slot_pool = self._slot_pool
        if run is None:
            return
        run.cancel_requested = True
        run.stop.set()
        if slot_pool is not None:
            slot_pool.wake()

    # === execution ===

    def _plugins(self) -> PluginManager:
        if self._plugin_manager is None:
            from scriptmap.plugins.manager import PluginManager

            manager = PluginManager()
            manager.register_builtin_plugins()
            self._plugin_manager = manager
        return self._plugin_manager

    def create_sink(self, job: JobSpec, output_path: str | None) -> OutputSinkProtocol:
        """Output sink for a job: the noop sink, or the one named by its format.

        Raises:
            ConfigurationError: Unknown format, or no output path for a
                materializing job
        """
        plugins = self._plugins()
        if job.output.is_noop:
            noop_cls = plugins.get_sink_by_name("noop")
            assert noop_cls is not None, "builtin noop sink is always registered"
            return noop_cls({}, self.dfs)
        if output_path is None:
            raise ConfigurationError(f"job {job.name!r} materializes output but has no output path")
        sink_cls = plugins.get_sink_by_name(str(job.output.format))
        if sink_cls is None or not sink_cls.writes_data:
            raise ConfigurationError(f"job {job.name!r}: unknown output format {job.output.format!r}")
        return sink_cls({"path": output_path}, self.dfs)

    def run(
        self,
        job: JobSpec,
        source: PartitionSourceProtocol,
        index: int = 0,
        *,
        output_path: str | None = None,
        job_id: str | None = None,
        cancelled: threading.Event | None = None,
    ) -> JobResult:
        """Run a job to completion and report what happened.

        Never raises for script, data or store failures; those are in the
        result. Engine bugs propagate.

        cancelled is an outer cancel flag, e.g. a chain's. If it is already
        set when the run registers, the run starts stopped and ends cancelled.
        """
        run = _JobRun(job_id or uuid.uuid4().hex[:12])
        with self._lock:
            if self._current is not None:
                raise RuntimeError("JobExecutor runs one job at a time")
            self._current = run
            if cancelled is not None and cancelled.is_set():
                run.cancel_requested = True
                run.stop.set()
        try:
            return self._run(job, source, index, output_path, run)
        finally:
            with self._lock:
                self._current = None
                self._slot_pool = None

    def _run(
        self,
        job: JobSpec,
        source: PartitionSourceProtocol,
        index: int,
        output_path: str | None,
        run: _JobRun,
    ) -> JobResult:
        started = time.perf_counter()
        result = JobResult(job_id=run.job_id, name=job.name, index=index, status=JobStatus.PENDING)
        log = logger.bind(job=job.name, job_id=run.job_id, index=index)
        log.info("job_pending", script=job.unit.location)

        try:
            compiled = compile_script(job.unit, self.dfs)
            partitions = source.partitions()
            sink = self.create_sink(job, output_path)
            sink.prepare()
        except (ScriptLoadError, ConfigurationError, DatasetError, PartitionReadError, OSError) as e:
            log.error("job_failed_before_start", error=str(e), error_type=type(e).__name__)
            return self._finish(result, JobStatus.FAILED, started, error=e)

        result.status = JobStatus.SCHEDULED
        self._events.emit(JobStarted(job_id=run.job_id, name=job.name, index=index, partition_count=len(partitions)))
        log.info("job_scheduled", partitions=len(partitions), output=job.output.mode.value)

        shard_locations = self.store.shard_locations() if self.store is not None else {}
        slot_pool = SlotPool(
            self.slots,
            shard_locations=shard_locations,
            topology=self.topology,
            locality_wait_seconds=self.locality_wait_seconds,
        )
        connector_pool = ConnectorPool(self.store, self.store_options, read_only=not job.external_writes)
        with self._lock:
            self._slot_pool = slot_pool
        self.last_slot_pool = slot_pool

        result.status = JobStatus.RUNNING
        log.info("job_running", slots=len(self.slots), capacity=slot_pool.total_capacity)
        try:
            with ThreadPoolExecutor(
                max_workers=max(1, min(slot_pool.total_capacity, len(partitions) or 1)),
                thread_name_prefix=f"scriptmap-{job.name}",
            ) as pool:
                futures = [
                    pool.submit(
                        self._run_partition,
                        job,
                        compiled,
                        source,
                        partition,
                        sink,
                        slot_pool,
                        connector_pool,
                        run,
                    )
                    for partition in partitions
                ]
                result.partitions = [future.result() for future in futures]
        finally:
            connector_pool.close_all()

        stats = slot_pool.stats()
        log.info("job_locality", local=stats.local, remote=stats.remote, unhinted=stats.unhinted)

        try:
            if run.cancel_requested:
                return self._finish(result, JobStatus.CANCELLED, started, error=JobCancelledError("job cancelled"))
            failed = result.failed_partitions
            if failed:
                first = min(failed, key=lambda p: p.partition.index)
                return self._finish(result, JobStatus.FAILED, started, error=first.error)
            try:
                result.output = sink.finalize(partitions)
            except OSError as e:
                return self._finish(result, JobStatus.FAILED, started, error=e)
            return self._finish(result, JobStatus.SUCCEEDED, started)
        finally:
            sink.close()

    def _finish(
        self,
        result: JobResult,
        status: JobStatus,
        started: float,
        *,
        error: BaseException | None = None,
    ) -> JobResult:
        result.status = status
        result.error = error
        result.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "job_completed",
            job=result.name,
            job_id=result.job_id,
            status=status.value,
            partitions=len(result.partitions),
            failed_partitions=len(result.failed_partitions),
            vertices=result.vertices_mapped,
            duration_ms=round(result.duration_ms, 1),
        )
        self._events.emit(
            JobCompleted(
                job_id=result.job_id,
                name=result.name,
                index=result.index,
                status=status,
                duration_seconds=result.duration_ms / 1000,
                error=error,
            )
        )
        return result

    def _run_partition(
        self,
        job: JobSpec,
        compiled: CompiledScript,
        source: PartitionSourceProtocol,
        partition: Partition,
        sink: OutputSinkProtocol,
        slot_pool: SlotPool,
        connector_pool: ConnectorPool,
        run: _JobRun,
    ) -> PartitionResult:
        log = logger.bind(job=job.name, job_id=run.job_id, partition=partition.index)
        settings = WorkerSettings(
            job_id=run.job_id,
            map_error_policy=job.map_error_policy,
            collect_outputs=not job.output.is_noop,
            result_key=job.result_key,
        )
        attempts: list[PartitionAttempt] = []
        last: dict[str, WorkerOutcome] = {}

        def attempt_once(attempt: int) -> tuple[WorkerOutcome, int]:
            if run.stop.is_set():
                raise JobCancelledError(f"partition {partition.index} not started: job stopping")
            lease: SlotLease = slot_pool.acquire(partition, run.stop)
            try:
                worker = PartitionWorker(
                    partition,
                    job.unit,
                    compiled,
                    source,
                    connector_pool,
                    settings,
                    run.stop,
                    dfs=self.dfs,
                    attempt=attempt,
                    slot_id=lease.slot_id,
                    events=self._events,
                )
                outcome = worker.run()
            finally:
                slot_pool.release(lease)
            last["outcome"] = outcome
            attempts.append(
                PartitionAttempt(
                    attempt=attempt,
                    slot_id=lease.slot_id,
                    final_state=outcome.state,
                    error=str(outcome.error) if outcome.error is not None else None,
                    local=lease.local,
                )
            )
            if outcome.error is not None:
                raise outcome.error
            records_out = sink.write_partition(partition, outcome.outputs) if sink.writes_data else 0
            return outcome, records_out

        def on_retry(attempt: int, error: BaseException) -> None:
            log.warning("partition_retry", attempt=attempt, error=str(error), error_type=type(error).__name__)

        result = PartitionResult(partition=partition, status=PartitionStatus.FAILED, attempts=attempts)
        try:
            outcome, records_out = RetryManager(self.retry_config).execute_with_retry(
                attempt_once,
                on_retry=on_retry,
                sleep=run.stop.wait,
            )
            result.status = PartitionStatus.SUCCEEDED
            result.records_out = records_out
            result.committed = outcome.committed
        except JobCancelledError as e:
            result.status = PartitionStatus.CANCELLED if attempts else PartitionStatus.SKIPPED
            result.error = e
        except MaxRetriesExceeded as e:
            result.error = e.last_error
            log.error("partition_failed", attempts=e.attempts, error=str(e.last_error))
        except (ScriptLoadError, OutputEncodingError) as e:
            # A module body that rebinds an entry point badly, or map() output
            # the sink cannot encode; neither is retryable
            result.error = e
            log.error("partition_failed", attempts=len(attempts), error=str(e))

        outcome_seen = last.get("outcome")
        if outcome_seen is not None:
            result.records_in = outcome_seen.records_in
            result.vertex_failures = list(outcome_seen.vertex_failures)

        if result.status == PartitionStatus.FAILED and job.fail_fast:
            log.warning("fail_fast_stopping_job")
            run.stop.set()
            slot_pool.wake()

        self._events.emit(
            PartitionCompleted(
                job_id=run.job_id,
                partition=partition.index,
                status=result.status,
                attempts=len(attempts),
                records_in=result.records_in,
            )
        )
        return result


def partition_state_summary(result: JobResult) -> dict[str, int]:
    """Count of partitions per final status, for reports."""
    counts: dict[str, int] = {status.value: 0 for status in PartitionStatus}
    for part in result.partitions:
        counts[part.status.value] += 1
    return counts

