# src/scriptmap/engine/__init__.py
"""Execution engine: script binding, workers, scheduling, retry, jobs, chains."""

from scriptmap.engine.chain import JobChain
from scriptmap.engine.connector_pool import ConnectorPool, StoreHandle
from scriptmap.engine.job import JobExecutor, JobSpec
from scriptmap.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from scriptmap.engine.scheduler import SchedulerStats, SlotLease, SlotPool, plan_assignments
from scriptmap.engine.script import CompiledScript, ScriptRuntime, compile_script
from scriptmap.engine.worker import PartitionWorker, WorkerOutcome, WorkerSettings, result_to_vertex

__all__ = [
    "CompiledScript",
    "ConnectorPool",
    "JobChain",
    "JobExecutor",
    "JobSpec",
    "MaxRetriesExceeded",
    "PartitionWorker",
    "RetryConfig",
    "RetryManager",
    "SchedulerStats",
    "ScriptRuntime",
    "SlotLease",
    "SlotPool",
    "StoreHandle",
    "WorkerOutcome",
    "WorkerSettings",
    "compile_script",
    "plan_assignments",
    "result_to_vertex",
]
