# src/scriptmap/engine/script.py
"""Script loading and per-worker runtime binding.

A script is a Python module on the distributed filesystem defining three
top-level functions:

    def setup(args): ...            # once per worker, before any vertex
    def map(vertex, args): ...      # once per vertex of the partition
    def cleanup(args): ...          # once per worker, after the last vertex

compile_script() parses the module once per job and checks the entry points
statically, without running any script code, so a broken script fails the
job before a single worker is scheduled.

ScriptRuntime executes the compiled module in a fresh namespace for one
worker. Three handles are pre-bound as module globals:

    dfs     distributed filesystem (shared by all workers)
    local   worker-private scratch directory
    store   worker-scoped external store handle

Nothing in a runtime is shared with another worker.
"""

from __future__ import annotations

import ast
import inspect
import itertools
import types
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from scriptmap.contracts import (
    ScriptContractError,
    ScriptLoadError,
    ScriptRuntimeError,
    ScriptUnit,
    Vertex,
)
from scriptmap.core.filesystem import DistributedFileSystem, LocalFileSystem

if TYPE_CHECKING:
    from scriptmap.engine.connector_pool import StoreHandle

# Entry point name -> number of positional arguments it is called with
ENTRY_POINTS: dict[str, int] = {"setup": 1, "map": 2, "cleanup": 1}

_runtime_ids = itertools.count(1)


def _accepts_positional(args: ast.arguments, count: int) -> bool:
    """Whether a def with these parameters can be called with count positionals."""
    positional = [*args.posonlyargs, *args.args]
    required = len(positional) - len(args.defaults)
    if count < required:
        return False
    if count > len(positional) and args.vararg is None:
        return False
    # Keyword-only parameters without defaults can never be satisfied
    return all(default is not None for default in args.kw_defaults)


def check_entry_points(tree: ast.Module) -> list[str]:
    """Contract violations in a parsed script, empty when it conforms."""
    defs: dict[str, ast.FunctionDef | ast.AsyncFunctionDef] = {}
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name in ENTRY_POINTS:
            defs[node.name] = node  # last definition wins, as at import time

    problems: list[str] = []
    for name, arity in ENTRY_POINTS.items():
        node = defs.get(name)
        if node is None:
            problems.append(f"missing entry point {name}()")
        elif isinstance(node, ast.AsyncFunctionDef):
            problems.append(f"{name}() must be a plain function, not async")
        elif not _accepts_positional(node.args, arity):
            noun = "argument" if arity == 1 else "arguments"
            problems.append(f"{name}() must accept {arity} positional {noun} (line {node.lineno})")
    return problems


@dataclass(frozen=True)
class CompiledScript:
    """A script that passed the static capability check.

    Attributes:
        unit: The script reference it was compiled from
        path: Resolved path on the distributed filesystem
        code: Module code object, executed once per worker
    """

    unit: ScriptUnit
    path: str
    code: types.CodeType

    @property
    def location(self) -> str:
        return self.unit.location


def compile_script(unit: ScriptUnit, dfs: DistributedFileSystem) -> CompiledScript:
    """Load, parse and check a script. Never executes script code.

    Raises:
        ScriptLoadError: Script missing, unreadable or not valid Python
        ScriptContractError: Entry points missing or with the wrong arity
    """
    try:
        path = dfs.resolve(unit.location)
        source = path.read_text(encoding="utf-8")
    except (OSError, ValueError) as e:
        raise ScriptLoadError(unit.location, f"cannot read script: {e}") from e

    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError as e:
        raise ScriptLoadError(unit.location, f"syntax error at line {e.lineno}: {e.msg}") from e

    problems = check_entry_points(tree)
    if problems:
        raise ScriptContractError(unit.location, "; ".join(problems))

    return CompiledScript(unit=unit, path=str(path), code=compile(tree, str(path), "exec"))


def _bind_entry_point(compiled: CompiledScript, namespace: dict[str, Any], name: str) -> Callable[..., Any]:
    """Look up an entry point after module execution and re-check its arity."""
    fn = namespace.get(name)
    if not callable(fn):
        raise ScriptContractError(compiled.location, f"{name} is not callable after module load")
    arity = ENTRY_POINTS[name]
    try:
        inspect.signature(fn).bind(*([None] * arity))
    except TypeError as e:
        raise ScriptContractError(compiled.location, f"{name}() cannot be called with {arity} arguments: {e}") from e
    except ValueError:
        # No introspectable signature (some builtins); the call itself will tell
        pass
    return fn


class ScriptRuntime:
    """One worker's instance of a script.

    Raises (from the constructor):
        ScriptRuntimeError: hook "load" - the module body raised
        ScriptContractError: module body rebound an entry point badly
    """

    def __init__(
        self,
        compiled: CompiledScript,
        *,
        dfs: DistributedFileSystem,
        local: LocalFileSystem,
        store: StoreHandle,
        partition: int | None = None,
    ) -> None:
        self.compiled = compiled
        self.partition = partition
        module = types.ModuleType(f"scriptmap_script_{next(_runtime_ids)}")
        module.__file__ = compiled.path
        namespace = module.__dict__
        namespace.update(dfs=dfs, local=local, store=store)
        try:
            exec(compiled.code, namespace)  # noqa: S102 - running user scripts is the point
        except Exception as e:
            raise ScriptRuntimeError("load", f"{type(e).__name__}: {e}", partition=partition) from e
        self._module = module
        self._setup = _bind_entry_point(compiled, namespace, "setup")
        self._map = _bind_entry_point(compiled, namespace, "map")
        self._cleanup = _bind_entry_point(compiled, namespace, "cleanup")

    @property
    def module(self) -> types.ModuleType:
        return self._module

    def _call(self, hook: str, fn: Callable[..., Any], *call_args: Any, vertex_id: Any = None) -> Any:
        try:
            return fn(*call_args)
        except Exception as e:
            raise ScriptRuntimeError(
                hook,
                f"{type(e).__name__}: {e}",
                partition=self.partition,
                vertex_id=vertex_id,
            ) from e

    def setup(self, args: Sequence[str]) -> None:
        self._call("setup", self._setup, args)

    def map(self, vertex: Vertex, args: Sequence[str]) -> Any:
        return self._call("map", self._map, vertex, args, vertex_id=vertex.id)

    def cleanup(self, args: Sequence[str]) -> None:
        self._call("cleanup", self._cleanup, args)
