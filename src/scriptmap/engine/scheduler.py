# src/scriptmap/engine/scheduler.py
"""Locality-aware assignment of partitions to worker slots.

A partition's locality hint names the store shard holding the same vertex
range. The shard's location (store.shard_locations(), falling back to the
hint itself) is the partition's preferred location; a slot there is
"co-located".

Ranking, everywhere in this module:
- co-located slots first, least loaded, then lowest slot id
- otherwise every slot, by (network hops to the preferred location, load,
  slot id)

Locality only ever changes where a partition runs, never whether or how.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from scriptmap.contracts import JobCancelledError, Partition, WorkerSlot
from scriptmap.core.topology import Topology

logger = structlog.get_logger(__name__)

# Upper bound on one condition wait, so cancellation is noticed promptly
_POLL_SECONDS = 0.05


def preferred_location(partition: Partition, shard_locations: Mapping[str, str]) -> str | None:
    """Location a partition should run at, if it has a locality hint."""
    if partition.locality_hint is None:
        return None
    return shard_locations.get(partition.locality_hint, partition.locality_hint)


def _rank_fallback(
    slots: Iterable[WorkerSlot],
    target: str | None,
    load: Mapping[str, int],
    topology: Topology,
) -> list[WorkerSlot]:
    def key(slot: WorkerSlot) -> tuple[float, int, str]:
        distance = topology.hops(slot.location, target) if target is not None else 0
        return (distance, load[slot.slot_id], slot.slot_id)

    return sorted(slots, key=key)


def plan_assignments(
    partitions: Sequence[Partition],
    slots: Sequence[WorkerSlot],
    shard_locations: Mapping[str, str] | None = None,
    topology: Topology | None = None,
) -> dict[int, str]:
    """Deterministic partition -> slot id plan, ignoring capacity and timing.

    Partitions are placed in index order; load is the number of partitions
    already planned on a slot. Used by `scriptmap plan` and to reason about
    placement; the running job uses SlotPool.
    """
    if not slots:
        raise ValueError("at least one worker slot is required")
    shard_locations = shard_locations or {}
    topology = topology or Topology()
    load = {slot.slot_id: 0 for slot in slots}
    plan: dict[int, str] = {}
    for partition in sorted(partitions, key=lambda p: p.index):
        target = preferred_location(partition, shard_locations)
        colocated = [slot for slot in slots if target is not None and slot.location == target]
        if colocated:
            chosen = min(colocated, key=lambda s: (load[s.slot_id], s.slot_id))
        else:
            chosen = _rank_fallback(slots, target, load, topology)[0]
        load[chosen.slot_id] += 1
        plan[partition.index] = chosen.slot_id
    return plan


@dataclass(frozen=True)
class SlotLease:
    """A partition's claim on one unit of a slot's capacity.

    local is None when the partition had no locality hint.
    """

    lease_id: int
    slot: WorkerSlot
    partition: int
    local: bool | None

    @property
    def slot_id(self) -> str:
        return self.slot.slot_id


@dataclass(frozen=True)
class SchedulerStats:
    local: int = 0
    remote: int = 0
    unhinted: int = 0

    @property
    def total(self) -> int:
        return self.local + self.remote + self.unhinted


class SlotPool:
    """Runtime slot allocation for one job.

    acquire() blocks until a slot has free capacity. A partition with a
    preferred location waits up to locality_wait_seconds for a co-located
    slot to free up before taking the best remote one.
    """

    def __init__(
        self,
        slots: Sequence[WorkerSlot],
        *,
        shard_locations: Mapping[str, str] | None = None,
        topology: Topology | None = None,
        locality_wait_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not slots:
            raise ValueError("at least one worker slot is required")
        ids = [slot.slot_id for slot in slots]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate slot ids: {sorted(ids)}")
        self._slots = sorted(slots, key=lambda s: s.slot_id)
        self._shard_locations = dict(shard_locations or {})
        self._topology = topology or Topology()
        self._locality_wait = locality_wait_seconds
        self._clock = clock
        self._condition = threading.Condition()
        self._active: dict[str, int] = {slot.slot_id: 0 for slot in self._slots}
        self._leases: dict[int, SlotLease] = {}
        self._lease_ids = itertools.count(1)
        self._local = 0
        self._remote = 0
        self._unhinted = 0

    @property
    def total_capacity(self) -> int:
        return sum(slot.capacity for slot in self._slots)

    @property
    def slots(self) -> list[WorkerSlot]:
        return list(self._slots)

    def active(self, slot_id: str) -> int:
        with self._condition:
            return self._active[slot_id]

    def stats(self) -> SchedulerStats:
        with self._condition:
            return SchedulerStats(local=self._local, remote=self._remote, unhinted=self._unhinted)

    def _free(self, slots: Iterable[WorkerSlot]) -> list[WorkerSlot]:
        return [slot for slot in slots if self._active[slot.slot_id] < slot.capacity]

    def _grant(self, slot: WorkerSlot, partition: Partition, target: str | None) -> SlotLease:
        local = None if target is None else slot.location == target
        lease = SlotLease(next(self._lease_ids), slot, partition.index, local)
        self._active[slot.slot_id] += 1
        self._leases[lease.lease_id] = lease
        if local is None:
            self._unhinted += 1
        elif local:
            self._local += 1
        else:
            self._remote += 1
        return lease

    def acquire(self, partition: Partition, cancel_event: threading.Event | None = None) -> SlotLease:
        """Block until a slot is granted.

        Raises:
            JobCancelledError: If cancel_event is set while waiting
        """
        target = preferred_location(partition, self._shard_locations)
        colocated = [slot for slot in self._slots if target is not None and slot.location == target]
        # No point waiting for a location no slot lives at
        deadline = self._clock() + (self._locality_wait if colocated else 0.0)

        with self._condition:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise JobCancelledError(f"partition {partition.index} cancelled while waiting for a slot")

                free_local = self._free(colocated)
                if free_local:
                    chosen = min(free_local, key=lambda s: (self._active[s.slot_id], s.slot_id))
                    return self._grant(chosen, partition, target)

                remaining = deadline - self._clock()
                if remaining <= 0:
                    free_any = self._free(self._slots)
                    if free_any:
                        chosen = _rank_fallback(free_any, target, self._active, self._topology)[0]
                        if target is not None:
                            logger.debug(
                                "non_local_assignment",
                                partition=partition.index,
                                preferred=target,
                                slot=chosen.slot_id,
                            )
                        return self._grant(chosen, partition, target)
                    remaining = _POLL_SECONDS

                self._condition.wait(timeout=min(remaining, _POLL_SECONDS))

    def release(self, lease: SlotLease) -> None:
        with self._condition:
            if self._leases.pop(lease.lease_id, None) is None:
                raise ValueError(f"lease {lease.lease_id} is not active")
            self._active[lease.slot_id] -= 1
            self._condition.notify_all()

    def wake(self) -> None:
        """Wake every waiter, e.g. after cancellation."""
        with self._condition:
            self._condition.notify_all()
