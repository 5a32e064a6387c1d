# tests/property/test_scheduler_properties.py
"""Property tests for locality-aware scheduling.

Key Invariants:
- Every partition is planned onto exactly one existing slot
- A partition whose preferred location has a slot is planned there
- Partitions sharing a location are spread evenly over its slots
- A SlotPool never grants more leases on a slot than its capacity
"""

from __future__ import annotations

from collections import Counter

from hypothesis import given
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, precondition, rule

from scriptmap.contracts import Partition, WorkerSlot
from scriptmap.core.topology import Topology
from scriptmap.engine.scheduler import SlotLease, SlotPool, plan_assignments
from tests.property.conftest import LINKS, LOCATIONS, locations, slot_lists
from tests.property.settings import STANDARD_SETTINGS

hinted_partitions = st.lists(st.one_of(st.none(), locations), max_size=20).map(
    lambda hints: [Partition(index=i, locality_hint=hint) for i, hint in enumerate(hints)]
)


class TestPlanAssignments:
    @given(partitions=hinted_partitions, slots=slot_lists())
    @STANDARD_SETTINGS
    def test_every_partition_planned_once(self, partitions: list[Partition], slots: list[WorkerSlot]) -> None:
        plan = plan_assignments(partitions, slots, topology=Topology(LINKS))

        assert sorted(plan) == [p.index for p in partitions]
        assert set(plan.values()) <= {slot.slot_id for slot in slots}

    @given(partitions=hinted_partitions, slots=slot_lists())
    @STANDARD_SETTINGS
    def test_colocated_slot_preferred(self, partitions: list[Partition], slots: list[WorkerSlot]) -> None:
        plan = plan_assignments(partitions, slots, topology=Topology(LINKS))
        location_of = {slot.slot_id: slot.location for slot in slots}
        available = set(location_of.values())

        for partition in partitions:
            if partition.locality_hint in available:
                assert location_of[plan[partition.index]] == partition.locality_hint

    @given(
        count=st.integers(min_value=1, max_value=30),
        slots=slot_lists(),
        location=locations,
    )
    @STANDARD_SETTINGS
    def test_colocated_load_balanced(self, count: int, slots: list[WorkerSlot], location: str) -> None:
        partitions = [Partition(index=i, locality_hint=location) for i in range(count)]
        colocated = [slot.slot_id for slot in slots if slot.location == location]

        plan = plan_assignments(partitions, slots)

        if colocated:
            load = Counter(plan.values())
            loads = [load[slot_id] for slot_id in colocated]
            assert max(loads) - min(loads) <= 1

    @given(partitions=hinted_partitions, slots=slot_lists())
    @STANDARD_SETTINGS
    def test_plan_is_deterministic(self, partitions: list[Partition], slots: list[WorkerSlot]) -> None:
        topology = Topology(LINKS)

        assert plan_assignments(partitions, slots, topology=topology) == plan_assignments(
            list(reversed(partitions)), list(reversed(slots)), topology=topology
        )


class SlotPoolStateMachine(RuleBasedStateMachine):
    """Acquire/release interleavings against a fixed set of slots.

    Acquires only run while capacity is free, so they never block.
    """

    SLOTS = (
        WorkerSlot("a1", "rack-a", capacity=2),
        WorkerSlot("b1", "rack-b", capacity=1),
        WorkerSlot("c1", "rack-c", capacity=1),
    )

    def __init__(self) -> None:
        super().__init__()
        self.pool = SlotPool(self.SLOTS, topology=Topology(LINKS), locality_wait_seconds=0)
        self.leases: list[SlotLease] = []
        self.next_index = 0

    def _has_free_capacity(self) -> bool:
        return len(self.leases) < self.pool.total_capacity

    @precondition(lambda self: self._has_free_capacity())
    @rule(hint=st.one_of(st.none(), st.sampled_from(LOCATIONS)))
    def acquire(self, hint: str | None) -> None:
        free_before = {s.slot_id for s in self.SLOTS if self.pool.active(s.slot_id) < s.capacity}
        lease = self.pool.acquire(Partition(index=self.next_index, locality_hint=hint))
        self.next_index += 1
        self.leases.append(lease)

        colocated_free = {s.slot_id for s in self.SLOTS if s.location == hint and s.slot_id in free_before}
        if colocated_free:
            assert lease.slot_id in colocated_free
            assert lease.local is True
        assert lease.slot_id in free_before

    @precondition(lambda self: bool(self.leases))
    @rule(data=st.data())
    def release(self, data: st.DataObject) -> None:
        lease = self.leases.pop(data.draw(st.integers(min_value=0, max_value=len(self.leases) - 1)))
        self.pool.release(lease)

    @invariant()
    def capacity_respected(self) -> None:
        for slot in self.SLOTS:
            assert 0 <= self.pool.active(slot.slot_id) <= slot.capacity

    @invariant()
    def active_matches_leases(self) -> None:
        held = Counter(lease.slot_id for lease in self.leases)
        for slot in self.SLOTS:
            assert self.pool.active(slot.slot_id) == held[slot.slot_id]

    @invariant()
    def stats_count_every_grant(self) -> None:
        assert self.pool.stats().total == self.next_index


TestSlotPoolStateMachine = SlotPoolStateMachine.TestCase
