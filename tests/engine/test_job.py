# tests/engine/test_job.py
"""Tests for JobExecutor: one script over every partition of a dataset."""

import threading
from collections.abc import Callable

import pytest

from scriptmap.contracts import (
    ConfigurationError,
    Dataset,
    JobCompleted,
    JobStarted,
    JobStatus,
    MapErrorPolicy,
    OutputEncodingError,
    OutputSpec,
    PartitionCompleted,
    PartitionStatus,
    ScriptContractError,
    ScriptRuntimeError,
    ScriptUnit,
    Vertex,
    WorkerSlot,
    WorkerState,
)
from scriptmap.core.config import JobSettings
from scriptmap.core.events import EventBus
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.engine.job import JobExecutor, JobSpec, partition_state_summary
from scriptmap.engine.retry import RetryConfig
from scriptmap.plugins.sources.jsonl_source import JsonlPartitionSource
from scriptmap.plugins.sources.memory_source import MemoryPartitionSource
from scriptmap.plugins.stores.memory_store import MemoryGraphStore

UPPERCASE_SCRIPT = """
def setup(args):
    pass

def map(vertex, args):
    return {"upper": vertex.get("name").upper()}

def cleanup(args):
    pass
"""

# Fails setup on the first attempt of every partition
FLAKY_SCRIPT = """
def setup(args):
    if store.worker_id.endswith("/a1"):
        raise ConnectionError("transient")

def map(vertex, args):
    return None

def cleanup(args):
    pass
"""

# Partition 0 always fails; the others succeed
POISONED_SCRIPT = """
def setup(args):
    if "/p0/" in store.worker_id:
        raise RuntimeError("poisoned partition")

def map(vertex, args):
    return None

def cleanup(args):
    pass
"""

# Sets hold no JSON representation
UNENCODABLE_SCRIPT = """
def setup(args):
    pass

def map(vertex, args):
    return {"seen": {vertex.id}}

def cleanup(args):
    pass
"""

WRITER_SCRIPT = """
def setup(args):
    store.open({"url": args[0]})

def map(vertex, args):
    store.connection.set_property(vertex.id, "visited", True)

def cleanup(args):
    pass
"""


def _job(location: str, **kwargs) -> JobSpec:
    args = kwargs.pop("args", ())
    return JobSpec(name=kwargs.pop("name", "job"), unit=ScriptUnit(location, tuple(args)), **kwargs)


@pytest.fixture
def source(people: list[Vertex]) -> MemoryPartitionSource:
    return MemoryPartitionSource.from_vertices(people, 3)


@pytest.fixture
def executor(dfs: DistributedFileSystem, memory_store: MemoryGraphStore, fast_retry: RetryConfig) -> JobExecutor:
    return JobExecutor(dfs=dfs, store=memory_store, retry=fast_retry)


class TestJobSpec:
    def test_external_writes_require_noop(self) -> None:
        with pytest.raises(ConfigurationError, match="noop"):
            _job("s.py", external_writes=True)

    def test_name_required(self) -> None:
        with pytest.raises(ConfigurationError):
            _job("s.py", name="")

    def test_from_settings(self) -> None:
        settings = JobSettings(
            name="copy",
            script="scripts/copy.py",
            args=["memory://people"],
            output="noop",
            external_writes=True,
            on_map_error="abort_partition",
            fail_fast=True,
        )

        job = JobSpec.from_settings(settings)

        assert job.unit == ScriptUnit("scripts/copy.py", ("memory://people",))
        assert job.output == OutputSpec.noop()
        assert job.external_writes
        assert job.map_error_policy == MapErrorPolicy.ABORT_PARTITION
        assert job.fail_fast


class TestJobExecutor:
    def test_materialized_job(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        dfs: DistributedFileSystem,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/upper.py", UPPERCASE_SCRIPT))

        result = executor.run(job, source, output_path="work/upper")

        assert result.status == JobStatus.SUCCEEDED
        assert result.output == Dataset(path="work/upper", format="jsonl")
        assert result.vertices_mapped == 12
        assert [p.records_out for p in result.partitions] == [4, 4, 4]
        out = JsonlPartitionSource({"path": "work/upper"}, dfs)
        vertices = [v for p in out.partitions() for v in out.read(p)]
        assert [v.id for v in vertices] == list(range(1, 13))
        assert vertices[0].get("upper") == "PERSON-1"

    def test_noop_job_writes_nothing(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        dfs: DistributedFileSystem,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/upper.py", UPPERCASE_SCRIPT), output=OutputSpec.noop())

        result = executor.run(job, source)

        assert result.status == JobStatus.SUCCEEDED
        assert result.output is None
        assert all(p.records_out == 0 for p in result.partitions)
        assert dfs.ls() == ["scripts"]

    def test_bad_script_fails_before_any_worker(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        bus = EventBus()
        started: list[JobStarted] = []
        bus.subscribe(JobStarted, started.append)
        executor = JobExecutor(dfs=executor.dfs, store=executor.store, events=bus)

        result = executor.run(_job(write_script("scripts/bad.py", "def setup(args): pass\n")), source, output_path="o")

        assert result.status == JobStatus.FAILED
        assert isinstance(result.error, ScriptContractError)
        assert result.partitions == []
        assert started == []

    def test_unknown_output_format(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/upper.py", UPPERCASE_SCRIPT), output=OutputSpec.materialize("parquet"))

        result = executor.run(job, source, output_path="work/out")

        assert result.status == JobStatus.FAILED
        assert isinstance(result.error, ConfigurationError)

    def test_materialize_without_output_path(self, executor: JobExecutor) -> None:
        with pytest.raises(ConfigurationError, match="no output path"):
            executor.create_sink(_job("s.py"), None)

    def test_transient_failures_are_retried(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        result = executor.run(_job(write_script("scripts/flaky.py", FLAKY_SCRIPT), output=OutputSpec.noop()), source)

        assert result.status == JobStatus.SUCCEEDED
        for part in result.partitions:
            assert [a.attempt for a in part.attempts] == [1, 2]
            assert [a.final_state for a in part.attempts] == [WorkerState.FAILED, WorkerState.TERMINATED]
            assert "transient" in str(part.attempts[0].error)

    def test_partition_failure_fails_job_but_others_complete(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/poisoned.py", POISONED_SCRIPT))

        result = executor.run(job, source, output_path="work/poisoned")

        assert result.status == JobStatus.FAILED
        assert [p.status for p in result.partitions] == [
            PartitionStatus.FAILED,
            PartitionStatus.SUCCEEDED,
            PartitionStatus.SUCCEEDED,
        ]
        assert len(result.partitions[0].attempts) == 3
        assert isinstance(result.error, ScriptRuntimeError)
        assert result.error.hook == "setup"
        assert result.output is None
        # Succeeded partitions' files stay; no manifest for a failed job
        assert executor.dfs.ls("work/poisoned") == ["part-00001.jsonl", "part-00002.jsonl"]
        assert partition_state_summary(result) == {"succeeded": 2, "failed": 1, "cancelled": 0, "skipped": 0}

    def test_unencodable_output_is_not_retried(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/unencodable.py", UNENCODABLE_SCRIPT))

        result = executor.run(job, source, output_path="work/sets")

        assert result.status == JobStatus.FAILED
        assert [p.status for p in result.partitions] == [PartitionStatus.FAILED] * 3
        assert all(len(p.attempts) == 1 for p in result.partitions)
        assert isinstance(result.error, OutputEncodingError)
        assert result.first_failure() == (0, 1)
        assert not executor.dfs.exists("work/sets/_partitions.json")

    def test_fail_fast_skips_remaining_partitions(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/poisoned.py", POISONED_SCRIPT), output=OutputSpec.noop(), fail_fast=True)

        result = executor.run(job, source)

        assert result.status == JobStatus.FAILED
        assert [p.status for p in result.partitions] == [
            PartitionStatus.FAILED,
            PartitionStatus.SKIPPED,
            PartitionStatus.SKIPPED,
        ]

    def test_cancel_stops_job(
        self,
        dfs: DistributedFileSystem,
        memory_store: MemoryGraphStore,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        bus = EventBus()
        executor = JobExecutor(dfs=dfs, store=memory_store, retry=RetryConfig.immediate(3), events=bus)

        def cancel_after_first(event: PartitionCompleted) -> None:
            if event.partition == 0:
                executor.cancel()

        bus.subscribe(PartitionCompleted, cancel_after_first)

        result = executor.run(_job(write_script("scripts/upper.py", UPPERCASE_SCRIPT)), source, output_path="work/c")

        assert result.status == JobStatus.CANCELLED
        assert [p.status for p in result.partitions] == [
            PartitionStatus.SUCCEEDED,
            PartitionStatus.SKIPPED,
            PartitionStatus.SKIPPED,
        ]
        assert result.output is None
        assert not dfs.exists("work/c/_partitions.json")

    def test_outer_cancel_flag_set_before_start(
        self,
        executor: JobExecutor,
        source: MemoryPartitionSource,
        dfs: DistributedFileSystem,
        counting_script: str,
        call_counts: Callable[[], dict[str, int]],
    ) -> None:
        cancelled = threading.Event()
        cancelled.set()

        result = executor.run(_job(counting_script), source, output_path="work/c", cancelled=cancelled)

        assert result.status == JobStatus.CANCELLED
        assert [p.status for p in result.partitions] == [PartitionStatus.SKIPPED] * 3
        assert call_counts() == {}
        assert not dfs.exists("work/c/_partitions.json")

    def test_cancel_without_running_job_is_noop(self, executor: JobExecutor) -> None:
        executor.cancel()

    def test_external_writes_commit_per_partition(
        self,
        executor: JobExecutor,
        memory_store: MemoryGraphStore,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(
            write_script("scripts/writer.py", WRITER_SCRIPT),
            args=("memory://people",),
            output=OutputSpec.noop(),
            external_writes=True,
        )

        result = executor.run(job, source)

        assert result.status == JobStatus.SUCCEEDED
        assert all(p.committed for p in result.partitions)
        assert len(memory_store.commits) == 3
        assert all(v.get("visited") for v in memory_store.vertices().values())
        assert memory_store.open_connections == 0

    def test_writes_rejected_without_external_writes(
        self,
        executor: JobExecutor,
        memory_store: MemoryGraphStore,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        job = _job(write_script("scripts/writer.py", WRITER_SCRIPT), args=("memory://people",), output=OutputSpec.noop())

        result = executor.run(job, source)

        assert result.status == JobStatus.SUCCEEDED
        assert sum(len(p.vertex_failures) for p in result.partitions) == 12
        assert {f.error_type for p in result.partitions for f in p.vertex_failures} == {"PermissionError"}
        assert memory_store.commits == []

    def test_events_in_order(
        self,
        dfs: DistributedFileSystem,
        source: MemoryPartitionSource,
        write_script: Callable[[str, str], str],
    ) -> None:
        bus = EventBus()
        seen: list[object] = []
        for event_type in (JobStarted, PartitionCompleted, JobCompleted):
            bus.subscribe(event_type, seen.append)
        executor = JobExecutor(dfs=dfs, events=bus)

        executor.run(_job(write_script("scripts/upper.py", UPPERCASE_SCRIPT)), source, 2, output_path="o", job_id="c-2")

        assert isinstance(seen[0], JobStarted)
        assert seen[0].partition_count == 3
        assert [type(e) for e in seen[1:4]] == [PartitionCompleted] * 3
        assert isinstance(seen[-1], JobCompleted)
        assert (seen[-1].job_id, seen[-1].index, seen[-1].status) == ("c-2", 2, JobStatus.SUCCEEDED)


class TestLocality:
    def test_partitions_run_at_their_shard(
        self,
        dfs: DistributedFileSystem,
        people: list[Vertex],
        write_script: Callable[[str, str], str],
    ) -> None:
        store = MemoryGraphStore({"shard_locations": {"s0": "rack-a", "s1": "rack-b", "s2": "rack-c"}})
        source = MemoryPartitionSource.from_vertices(people, 3, lambda vid: f"s{(int(vid) - 1) // 4}")
        slots = [WorkerSlot("a1", "rack-a"), WorkerSlot("b1", "rack-b"), WorkerSlot("c1", "rack-c")]
        executor = JobExecutor(dfs=dfs, store=store, slots=slots, locality_wait_seconds=5.0)

        result = executor.run(_job(write_script("scripts/upper.py", UPPERCASE_SCRIPT)), source, output_path="o")

        assert result.status == JobStatus.SUCCEEDED
        assert [p.attempts[0].slot_id for p in result.partitions] == ["a1", "b1", "c1"]
        assert all(p.attempts[0].local for p in result.partitions)
        assert executor.last_slot_pool is not None
        assert executor.last_slot_pool.stats().local == 3
