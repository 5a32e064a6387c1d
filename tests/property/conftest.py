# tests/property/conftest.py
"""Shared Hypothesis strategies for property-based tests.

Strategy Categories:
- Vertex sequences (ordered, unique ids)
- Partition counts
- Worker slots at a handful of locations

Usage:
    from tests.property.conftest import vertex_lists, slot_lists

    @given(vertices=vertex_lists(), slots=slot_lists())
    def test_every_vertex_mapped_once(vertices, slots) -> None:
        ...
"""

# =============================================================================
# Hypothesis Settings
# =============================================================================
#
# For standardized @settings decorators, import from tests.property.settings:
#   from tests.property.settings import STANDARD_SETTINGS, SLOW_SETTINGS
#
# Tiers: STANDARD (100), SLOW (25), QUICK (20)
# =============================================================================

from __future__ import annotations

from hypothesis import strategies as st

from scriptmap.contracts import Vertex, WorkerSlot

LOCATIONS = ("rack-a", "rack-b", "rack-c")

# Racks hang off one core switch, so every location is reachable
LINKS = (("rack-a", "core"), ("rack-b", "core"), ("rack-c", "core"))


def vertex_lists(min_size: int = 0, max_size: int = 40) -> st.SearchStrategy[list[Vertex]]:
    """Ordered vertices with ids 1..n and an integer payload."""
    return st.lists(st.integers(min_value=-1000, max_value=1000), min_size=min_size, max_size=max_size).map(
        lambda values: [Vertex(id=i + 1, properties={"value": v}) for i, v in enumerate(values)]
    )


partition_counts = st.integers(min_value=1, max_value=8)

locations = st.sampled_from(LOCATIONS)


def slot_lists(min_size: int = 1, max_size: int = 5) -> st.SearchStrategy[list[WorkerSlot]]:
    """Slots s0..sn spread over LOCATIONS with capacity 1-3."""
    return st.lists(
        st.tuples(locations, st.integers(min_value=1, max_value=3)),
        min_size=min_size,
        max_size=max_size,
    ).map(
        lambda specs: [
            WorkerSlot(slot_id=f"s{i}", location=location, capacity=capacity)
            for i, (location, capacity) in enumerate(specs)
        ]
    )
