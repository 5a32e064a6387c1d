# src/scriptmap/engine/chain.py
"""JobChain: ordered script steps, each reading the previous step's output.

    chain = JobChain(source, dfs=dfs, store=store)
    chain.script_step("scripts/clean.py")
    chain.script_step("scripts/father_name.py", ["sqlite:///graph.db"], external_writes=True)
    result = chain.run()

The first job reads the original dataset. A job with materialized output
hands its dataset to the next job; a noop job hands on its own input.
Intermediate datasets live under <work_dir>/<chain_id>/<index>-<name>/.

The chain halts at the first failed job and raises JobChainError. Nothing
is rolled back: earlier jobs' outputs and committed store writes remain.
Later jobs never start.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path, PurePosixPath
from types import TracebackType
from typing import TYPE_CHECKING, Any

import structlog

from scriptmap.contracts import (
    ChainCompleted,
    ChainResult,
    ChainStatus,
    ConfigurationError,
    Dataset,
    JobChainError,
    JobStatus,
    MapErrorPolicy,
    OutputSpec,
    ScriptLoadError,
    ScriptUnit,
    WorkerSlot,
)
from scriptmap.core.events import EventBusProtocol, NullEventBus
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.core.topology import Topology
from scriptmap.engine.job import JobExecutor, JobSpec
from scriptmap.engine.retry import RetryConfig
from scriptmap.engine.scheduler import plan_assignments
from scriptmap.engine.script import compile_script
from scriptmap.plugins.protocols import GraphStoreProtocol, PartitionSourceProtocol

if TYPE_CHECKING:
    from scriptmap.core.config import ScriptMapSettings
    from scriptmap.plugins.manager import PluginManager

logger = structlog.get_logger(__name__)


def _builtin_plugins() -> PluginManager:
    from scriptmap.plugins.manager import PluginManager

    manager = PluginManager()
    manager.register_builtin_plugins()
    return manager


class JobChain:
    """An ordered list of jobs over one original dataset."""

    def __init__(
        self,
        source: PartitionSourceProtocol,
        *,
        dfs: DistributedFileSystem,
        store: GraphStoreProtocol | None = None,
        store_options: Mapping[str, Any] | None = None,
        retry: RetryConfig | None = None,
        slots: Sequence[WorkerSlot] | None = None,
        topology: Topology | None = None,
        locality_wait_seconds: float = 0.5,
        work_dir: str | Path = ".scriptmap/work",
        events: EventBusProtocol | None = None,
        plugin_manager: PluginManager | None = None,
        chain_id: str | None = None,
        owns_resources: bool = False,
    ) -> None:
        self.source = source
        self.dfs = dfs
        self.store = store
        self.work_dir = PurePosixPath(Path(work_dir).as_posix())
        self.chain_id = chain_id or uuid.uuid4().hex[:12]
        self._events: EventBusProtocol = events or NullEventBus()
        self._plugins = plugin_manager or _builtin_plugins()
        self._owns_resources = owns_resources
        self._jobs: list[JobSpec] = []
        self._cancelled = threading.Event()
        self._intermediate: list[PartitionSourceProtocol] = []
        self.executor = JobExecutor(
            dfs=dfs,
            store=store,
            store_options=store_options,
            retry=retry,
            slots=slots,
            topology=topology,
            locality_wait_seconds=locality_wait_seconds,
            events=self._events,
            plugin_manager=self._plugins,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ScriptMapSettings,
        *,
        events: EventBusProtocol | None = None,
        plugin_manager: PluginManager | None = None,
        chain_id: str | None = None,
    ) -> JobChain:
        """Build a chain, its dataset source and its store from settings.

        The chain owns the source and store it creates; close() releases them.

        Raises:
            ConfigurationError: Unknown source or store plugin
        """
        plugins = plugin_manager or _builtin_plugins()
        dfs = DistributedFileSystem(settings.shared_root)

        source_cls = plugins.get_source_by_name(settings.dataset.plugin)
        if source_cls is None:
            raise ConfigurationError(f"unknown dataset plugin {settings.dataset.plugin!r}")
        source = source_cls(dict(settings.dataset.options), dfs)

        store = None
        if settings.store is not None:
            store_cls = plugins.get_store_by_name(settings.store.plugin)
            if store_cls is None:
                source.close()
                raise ConfigurationError(f"unknown store plugin {settings.store.plugin!r}")
            store = store_cls(dict(settings.store.options))

        chain = cls(
            source,
            dfs=dfs,
            store=store,
            retry=RetryConfig.from_settings(settings.retry),
            slots=settings.scheduler.worker_slots(),
            topology=Topology.from_settings(settings.scheduler.topology),
            locality_wait_seconds=settings.scheduler.locality_wait_seconds,
            work_dir=settings.work_dir,
            events=events,
            plugin_manager=plugins,
            chain_id=chain_id,
            owns_resources=True,
        )
        for job in settings.jobs:
            chain.add(JobSpec.from_settings(job))
        return chain

    # === building ===

    @property
    def jobs(self) -> list[JobSpec]:
        return list(self._jobs)

    def add(self, job: JobSpec) -> JobSpec:
        if any(existing.name == job.name for existing in self._jobs):
            raise ConfigurationError(f"duplicate job name {job.name!r}")
        self._jobs.append(job)
        return job

    def script_step(
        self,
        location: str,
        args: Sequence[str] = (),
        *,
        output: OutputSpec | None = None,
        external_writes: bool = False,
        name: str | None = None,
        map_error_policy: MapErrorPolicy = MapErrorPolicy.SKIP_AND_CONTINUE,
        fail_fast: bool = False,
        result_key: str = "result",
    ) -> JobSpec:
        """Append a script step. Output defaults to noop for external writers,
        materialized jsonl otherwise."""
        if output is None:
            output = OutputSpec.noop() if external_writes else OutputSpec.materialize("jsonl")
        if name is None:
            name = PurePosixPath(location).stem
            taken = {job.name for job in self._jobs}
            if name in taken:
                stem, n = name, len(self._jobs)
                while f"{stem}-{n}" in taken:
                    n += 1
                name = f"{stem}-{n}"
        return self.add(
            JobSpec(
                name=name,
                unit=ScriptUnit(location=location, args=tuple(args)),
                output=output,
                external_writes=external_writes,
                map_error_policy=map_error_policy,
                fail_fast=fail_fast,
                result_key=result_key,
            )
        )

    # === inspection ===

    def validate(self) -> list[ScriptLoadError]:
        """Static check of every job's script. Empty when all load."""
        errors: list[ScriptLoadError] = []
        for job in self._jobs:
            try:
                compile_script(job.unit, self.dfs)
            except ScriptLoadError as e:
                errors.append(e)
        return errors

    def plan(self) -> dict[int, str]:
        """Where the first job's partitions would run, absent contention."""
        shard_locations = self.store.shard_locations() if self.store is not None else {}
        return plan_assignments(
            self.source.partitions(),
            self.executor.slots,
            shard_locations,
            self.executor.topology,
        )

    def output_path(self, index: int, job: JobSpec) -> str:
        return str(self.work_dir / self.chain_id / f"{index}-{job.name}")

    # === execution ===

    def _open_dataset(self, dataset: Dataset) -> PartitionSourceProtocol:
        source_cls = self._plugins.get_source_by_name(dataset.format)
        if source_cls is None:
            raise ConfigurationError(f"no partition source reads format {dataset.format!r}")
        source = source_cls({"path": dataset.path}, self.dfs)
        self._intermediate.append(source)
        return source

    def cancel(self) -> None:
        """Stop the running job and start no further jobs."""
        self._cancelled.set()
        self.executor.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self) -> ChainResult:
        """Run every job in order.

        Returns:
            ChainResult with status succeeded, or cancelled if cancel() was
            called

        Raises:
            JobChainError: A job failed; carries the ChainResult so far
            ConfigurationError: The chain has no jobs
        """
        if not self._jobs:
            raise ConfigurationError("job chain has no jobs")

        log = logger.bind(chain_id=self.chain_id)
        result = ChainResult(chain_id=self.chain_id, status=ChainStatus.RUNNING)
        log.info("chain_started", jobs=len(self._jobs))
        current: PartitionSourceProtocol = self.source

        for index, job in enumerate(self._jobs):
            if self._cancelled.is_set():
                result.status = ChainStatus.CANCELLED
                break

            job_result = self.executor.run(
                job,
                current,
                index,
                output_path=None if job.output.is_noop else self.output_path(index, job),
                job_id=f"{self.chain_id}-{index}",
                cancelled=self._cancelled,
            )
            result.jobs.append(job_result)

            if job_result.status == JobStatus.CANCELLED:
                result.status = ChainStatus.CANCELLED
                break

            if job_result.status == JobStatus.FAILED:
                partition, vertex_id = job_result.first_failure()
                result.status = ChainStatus.FAILED
                result.failed_job_index = index
                error = JobChainError(
                    job.name,
                    index,
                    str(job_result.error) if job_result.error is not None else "job failed",
                    partition=partition,
                    vertex_id=vertex_id,
                    result=result,
                )
                result.error = error
                self._complete(result)
                log.error(
                    "chain_failed",
                    job=job.name,
                    index=index,
                    partition=partition,
                    vertex_id=vertex_id,
                    error=str(job_result.error),
                )
                raise error from job_result.error

            if job_result.output is not None:
                current = self._open_dataset(job_result.output)
        else:
            result.status = ChainStatus.SUCCEEDED

        self._complete(result)
        log.info("chain_completed", status=result.status.value, jobs_run=len(result.jobs))
        return result

    def _complete(self, result: ChainResult) -> None:
        self._events.emit(
            ChainCompleted(
                chain_id=result.chain_id,
                status=result.status,
                jobs_run=len(result.jobs),
                failed_job_index=result.failed_job_index,
            )
        )

    # === resources ===

    def close(self) -> None:
        for source in self._intermediate:
            source.close()
        self._intermediate.clear()
        if self._owns_resources:
            self.source.close()
            if self.store is not None:
                self.store.close()

    def __enter__(self) -> JobChain:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
