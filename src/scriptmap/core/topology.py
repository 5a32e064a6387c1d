# src/scriptmap/core/topology.py
"""Network topology between worker locations and store shard locations.

The scheduler uses hop counts to rank fallback slots when no co-located slot
is free. Locations are opaque strings (hosts, racks). Links are undirected.
Unknown locations, or locations in disconnected components, are infinitely
far apart - they still rank behind every reachable slot but are never
excluded.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from functools import lru_cache

import networkx as nx


class Topology:
    """Undirected location graph with cached hop distances."""

    def __init__(self, links: Iterable[tuple[str, str]] = ()) -> None:
        self._graph: nx.Graph[str] = nx.Graph()
        for a, b in links:
            self._graph.add_edge(a, b)
        # Per-instance cache; topology is immutable after construction
        self._hops = lru_cache(maxsize=4096)(self._compute_hops)

    @property
    def locations(self) -> frozenset[str]:
        return frozenset(self._graph.nodes)

    def hops(self, a: str, b: str) -> float:
        """Number of links between two locations (0 when equal)."""
        if a == b:
            return 0
        return self._hops(a, b)

    def _compute_hops(self, a: str, b: str) -> float:
        if a not in self._graph or b not in self._graph:
            return math.inf
        try:
            return nx.shortest_path_length(self._graph, a, b)
        except nx.NetworkXNoPath:
            return math.inf

    @classmethod
    def from_settings(cls, links: Iterable[Iterable[str]]) -> Topology:
        """Build from configured [a, b] pairs.

        Raises:
            ValueError: If a link does not have exactly two endpoints
        """
        pairs: list[tuple[str, str]] = []
        for link in links:
            ends = list(link)
            if len(ends) != 2:
                raise ValueError(f"topology link must have exactly 2 locations, got {ends!r}")
            pairs.append((str(ends[0]), str(ends[1])))
        return cls(pairs)
