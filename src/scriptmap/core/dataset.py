# src/scriptmap/core/dataset.py
"""On-disk layout of partitioned JSONL datasets.

A dataset is a directory:

    part-00000.jsonl      one vertex record per line, in partition order
    part-00001.jsonl
    _partitions.json      manifest: index, file, count, locality hint

The manifest is optional on read (partitions are then discovered from file
names, without locality hints) and always written by the sink.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from scriptmap.contracts import DatasetError, OutputEncodingError, Partition, Vertex

MANIFEST_NAME = "_partitions.json"
PART_PATTERN = re.compile(r"^part-(\d{5,})\.jsonl$")


def _reject_nonfinite_constant(value: str) -> None:
    """Reject NaN/Infinity constants, which are not valid JSON."""
    raise ValueError(f"Non-standard JSON constant '{value}' not allowed")


def part_file_name(index: int) -> str:
    return f"part-{index:05d}.jsonl"


def encode_vertex(vertex: Vertex) -> str:
    return json.dumps(vertex.to_dict(), sort_keys=True, allow_nan=False)


def decode_vertex(line: str) -> Vertex:
    """Parse one record line.

    Raises:
        ValueError: Malformed JSON or non-object record
        KeyError/TypeError: Record missing id or with bad field shapes
    """
    data = json.loads(line, parse_constant=_reject_nonfinite_constant)
    if not isinstance(data, dict):
        raise ValueError(f"record must be a JSON object, got {type(data).__name__}")
    return Vertex.from_dict(data)


def read_manifest(directory: Path) -> list[Partition] | None:
    """Read the partition manifest, or None when the dataset has none.

    Raises:
        DatasetError: Manifest is unreadable, not JSON, or has bad entries
    """
    path = directory / MANIFEST_NAME
    if not path.exists():
        return None
    try:
        entries = json.loads(path.read_text(encoding="utf-8"), parse_constant=_reject_nonfinite_constant)
        return [
            Partition(
                index=int(entry["index"]),
                vertex_count=entry.get("count"),
                locality_hint=entry.get("locality_hint"),
                name=entry.get("file", part_file_name(int(entry["index"]))),
            )
            for entry in entries["partitions"]
        ]
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise DatasetError(f"malformed partition manifest {path}: {e}") from e


def discover_partitions(directory: Path) -> list[Partition]:
    """Partitions from the manifest, else from part-NNNNN.jsonl file names."""
    manifest = read_manifest(directory)
    if manifest is not None:
        return sorted(manifest, key=lambda p: p.index)
    found: list[Partition] = []
    for entry in sorted(directory.iterdir()):
        match = PART_PATTERN.match(entry.name)
        if match:
            found.append(Partition(index=int(match.group(1)), name=entry.name))
    return found


def write_manifest(directory: Path, partitions: Iterable[Partition]) -> Path:
    entries: list[dict[str, Any]] = []
    for part in sorted(partitions, key=lambda p: p.index):
        entries.append(
            {
                "index": part.index,
                "file": part.name or part_file_name(part.index),
                "count": part.vertex_count,
                "locality_hint": part.locality_hint,
            }
        )
    return atomic_write_text(directory / MANIFEST_NAME, json.dumps({"partitions": entries}, indent=2))


def write_partition_file(directory: Path, index: int, vertices: Iterable[Vertex]) -> tuple[Path, int]:
    """Write one partition file atomically. Returns (path, record count).

    Raises:
        OutputEncodingError: A vertex has values JSON cannot represent
    """
    lines: list[str] = []
    for vertex in vertices:
        try:
            lines.append(encode_vertex(vertex))
        except (TypeError, ValueError) as e:
            raise OutputEncodingError(index, vertex.id, str(e)) from e
    body = "".join(f"{line}\n" for line in lines)
    return atomic_write_text(directory / part_file_name(index), body), len(lines)


def atomic_write_text(path: Path, data: str) -> Path:
    """Write via temp file + rename so readers never see a partial file.

    A retried partition rewrites its file; the rename replaces the old one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path
