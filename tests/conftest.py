# tests/conftest.py
"""Shared test fixtures.

Fixtures here build the pieces most engine tests need: a distributed
filesystem rooted in tmp_path, a helper writing scripts onto it, an
in-memory graph store, and the "people" graph used by the scenario tests.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from scriptmap.contracts import Edge, Vertex
from scriptmap.core.filesystem import DistributedFileSystem
from scriptmap.engine.retry import RetryConfig
from scriptmap.plugins.manager import PluginManager
from scriptmap.plugins.stores.memory_store import MemoryGraphStore

# =============================================================================
# Filesystem and scripts
# =============================================================================


@pytest.fixture
def shared_root(tmp_path: Path) -> Path:
    root = tmp_path / "shared"
    root.mkdir()
    return root


@pytest.fixture
def dfs(shared_root: Path) -> DistributedFileSystem:
    return DistributedFileSystem(shared_root)


@pytest.fixture
def write_script(dfs: DistributedFileSystem) -> Callable[[str, str], str]:
    """Write a dedented script onto the dfs; returns its location."""

    def _write(location: str, source: str) -> str:
        dfs.write_text(location, textwrap.dedent(source).lstrip())
        return location

    return _write


# Records one line per map() call under calls/<vertex id>, so tests can
# count exactly how often each vertex was mapped.
COUNTING_SCRIPT = """
def setup(args):
    pass

def map(vertex, args):
    with dfs.open(f"calls/{vertex.id}", "a") as handle:
        handle.write("x\\n")
    return {"mapped": True}

def cleanup(args):
    pass
"""


@pytest.fixture
def counting_script(write_script: Callable[[str, str], str]) -> str:
    return write_script("scripts/counting.py", COUNTING_SCRIPT)


def count_calls(dfs: DistributedFileSystem) -> dict[str, int]:
    if not dfs.exists("calls"):
        return {}
    return {name: len(dfs.read_text(f"calls/{name}").splitlines()) for name in dfs.ls("calls")}


@pytest.fixture
def call_counts(dfs: DistributedFileSystem) -> Callable[[], dict[str, int]]:
    return lambda: count_calls(dfs)


# =============================================================================
# Graph data
# =============================================================================


def build_people(count: int = 12) -> list[Vertex]:
    """count people; person i (i >= 2) has father i // 2."""
    people = []
    for i in range(1, count + 1):
        edges = (Edge(label="father", target=i // 2),) if i >= 2 else ()
        people.append(Vertex(id=i, properties={"name": f"person-{i}"}, edges=edges))
    return people


@pytest.fixture
def people() -> list[Vertex]:
    return build_people()


@pytest.fixture
def memory_store(people: list[Vertex]) -> MemoryGraphStore:
    store = MemoryGraphStore({"name": "people"})
    store.load_vertices(people)
    return store


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig.immediate(max_attempts=3)


@pytest.fixture
def plugin_manager() -> PluginManager:
    manager = PluginManager()
    manager.register_builtin_plugins()
    return manager


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
