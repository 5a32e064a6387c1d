#!/usr/bin/env python3
"""
Generate the "people" graph for the father-name example.

Creates, next to this file:
- people.jsonl: one vertex per line; person i (i >= 2) has a father edge to i // 2
- shards.json: vertex id -> store shard, contiguous ranges of 1,000 ids
- graph.db: SQLite graph store seeded with the same vertices

Usage:
    python generate_data.py              # 10,000 people
    python generate_data.py 100000       # 100,000 people

Then partition and run:
    scriptmap partition people.jsonl data/people -n 8 --shard-map shards.json
    scriptmap run -s settings.yaml
"""

import json
import random
import sys
from pathlib import Path

from scriptmap.contracts import Edge, Vertex
from scriptmap.plugins.stores.sql_store import SqlGraphStore

SHARD_SIZE = 1_000
FIRST_NAMES = ["Ada", "Alan", "Grace", "Edsger", "Barbara", "Donald", "Frances", "Ken"]


def build_people(count: int) -> list[Vertex]:
    rng = random.Random(42)
    people = []
    for i in range(1, count + 1):
        edges = (Edge(label="father", target=i // 2),) if i >= 2 else ()
        name = f"{rng.choice(FIRST_NAMES)} #{i}"
        people.append(Vertex(id=i, properties={"name": name}, edges=edges))
    return people


def generate_data(count: int = 10_000, directory: Path | None = None) -> None:
    """Write people.jsonl and shards.json, and seed graph.db."""
    if directory is None:
        directory = Path(__file__).parent

    people = build_people(count)
    shards = {vertex.id: f"shard-{(int(vertex.id) - 1) // SHARD_SIZE}" for vertex in people}

    print(f"Generating {count:,} people in {directory}...")  # noqa: T201

    with open(directory / "people.jsonl", "w", encoding="utf-8") as f:
        for vertex in people:
            f.write(json.dumps(vertex.to_dict()) + "\n")
    (directory / "shards.json").write_text(json.dumps({str(k): v for k, v in shards.items()}, indent=2))

    db_path = directory / "graph.db"
    db_path.unlink(missing_ok=True)
    store = SqlGraphStore({"url": f"sqlite:///{db_path}"})
    try:
        store.load_vertices(people, shards)
    finally:
        store.close()

    print(f"Generated {count:,} people and seeded {db_path.name}")  # noqa: T201


if __name__ == "__main__":
    count = int(sys.argv[1]) if len(sys.argv) > 1 else 10_000

    if count < 1 or count > 1_000_000:
        print("Error: people count must be between 1 and 1,000,000", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    generate_data(count)
