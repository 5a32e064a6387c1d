# src/scriptmap/plugins/stores/sql_store.py
"""SQL-backed transactional graph store.

Uses SQLAlchemy Core (not ORM) for explicit control over transactions.
Each worker connection holds its own DBAPI connection; buffered writes are
applied in a single transaction on commit, so a partition's side effects
become visible all at once or not at all.

Vertex ids are stored JSON-encoded so int and str ids round-trip.

Config options:
    url: SQLAlchemy database URL (required), e.g. "sqlite:///graph.db"
    shard_locations: Shard id -> location

Connection options:
    url: Connect to a different database than the store default. Bad or
         unreachable URLs raise StoreConnectionError.

SQLite note: "sqlite://" (in-memory) gives every connection a private
database; use a file URL when workers must share state.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Connection,
    Engine,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    and_,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, OperationalError, SQLAlchemyError

from scriptmap.contracts import Edge, StoreConnectionError, Vertex, VertexId
from scriptmap.plugins.base import BaseGraphConnection, BaseGraphStore, WriteOp

metadata = MetaData()

vertices_table = Table(
    "vertices",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("shard", String(64)),
)

properties_table = Table(
    "vertex_properties",
    metadata,
    Column("vertex_id", String(255), nullable=False),
    Column("key", String(255), nullable=False),
    Column("value", JSON),
    PrimaryKeyConstraint("vertex_id", "key"),
)

edges_table = Table(
    "edges",
    metadata,
    Column("edge_id", Integer, primary_key=True, autoincrement=True),
    Column("source", String(255), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("label", String(255), nullable=False),
    Column("target", String(255), nullable=False),
    Column("properties", JSON),
)


def _key(vertex_id: VertexId) -> str:
    return json.dumps(vertex_id)


def _configure_sqlite(engine: Engine) -> None:
    """WAL for concurrent readers alongside a writer; busy timeout for contention."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: object) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def _create_engine(url: str) -> Engine:
    try:
        parsed = make_url(url)
        is_sqlite = parsed.get_backend_name() == "sqlite"
        # Pooled sqlite connections move between worker threads
        connect_args = {"check_same_thread": False} if is_sqlite else {}
        engine = create_engine(parsed, echo=False, connect_args=connect_args)
    except (ArgumentError, ImportError) as e:
        raise StoreConnectionError(f"invalid graph store url {url!r}: {e}") from e
    if is_sqlite:
        _configure_sqlite(engine)
    try:
        metadata.create_all(engine)
    except OperationalError as e:
        engine.dispose()
        raise StoreConnectionError(f"graph store {engine.url!r} is unreachable: {e}") from e
    return engine


def _read_vertex(conn: Connection, vertex_id: VertexId) -> Vertex | None:
    key = _key(vertex_id)
    row = conn.execute(select(vertices_table.c.id).where(vertices_table.c.id == key)).first()
    if row is None:
        return None
    props = {
        prop.key: prop.value
        for prop in conn.execute(
            select(properties_table.c.key, properties_table.c.value).where(properties_table.c.vertex_id == key)
        )
    }
    edges = tuple(
        Edge(label=edge.label, target=json.loads(edge.target), properties=edge.properties or {})
        for edge in conn.execute(
            select(edges_table.c.label, edges_table.c.target, edges_table.c.properties)
            .where(edges_table.c.source == key)
            .order_by(edges_table.c.position)
        )
    )
    return Vertex(id=vertex_id, properties=props, edges=edges)


def _ensure_vertex(conn: Connection, key: str, shard: str | None = None) -> None:
    exists = conn.execute(select(vertices_table.c.id).where(vertices_table.c.id == key)).first()
    if exists is None:
        conn.execute(insert(vertices_table).values(id=key, shard=shard))


def _set_property(conn: Connection, key: str, name: str, value: Any) -> None:
    conn.execute(
        delete(properties_table).where(and_(properties_table.c.vertex_id == key, properties_table.c.key == name))
    )
    conn.execute(insert(properties_table).values(vertex_id=key, key=name, value=value))


def _insert_edge(conn: Connection, key: str, position: int, edge: Edge) -> None:
    conn.execute(
        insert(edges_table).values(
            source=key,
            position=position,
            label=edge.label,
            target=_key(edge.target),
            properties=dict(edge.properties) or None,
        )
    )


def _append_edge(conn: Connection, key: str, edge: Edge) -> None:
    position = conn.execute(select(func.count()).where(edges_table.c.source == key)).scalar_one()
    _insert_edge(conn, key, position, edge)


def _write_vertex(conn: Connection, vertex: Vertex, shard: str | None = None) -> None:
    """Replace a vertex with the given record."""
    key = _key(vertex.id)
    _ensure_vertex(conn, key, shard)
    if shard is not None:
        conn.execute(vertices_table.update().where(vertices_table.c.id == key).values(shard=shard))
    conn.execute(delete(properties_table).where(properties_table.c.vertex_id == key))
    conn.execute(delete(edges_table).where(edges_table.c.source == key))
    for name, value in vertex.properties.items():
        conn.execute(insert(properties_table).values(vertex_id=key, key=name, value=value))
    for position, edge in enumerate(vertex.edges):
        _insert_edge(conn, key, position, edge)


class SqlConnection(BaseGraphConnection):
    def __init__(self, conn: Connection) -> None:
        super().__init__()
        self._conn = conn

    def _read_committed(self, vertex_id: VertexId) -> Vertex | None:
        try:
            return _read_vertex(self._conn, vertex_id)
        finally:
            # End the implicit read transaction so the next read sees new commits
            self._conn.rollback()

    def _apply(self, ops: Sequence[WriteOp]) -> None:
        with self._conn.begin():
            for op in ops:
                key = _key(op.vertex_id)
                if op.kind == "set":
                    _ensure_vertex(self._conn, key)
                    _set_property(self._conn, key, str(op.key), op.value)
                elif op.kind == "remove":
                    self._conn.execute(
                        delete(properties_table).where(
                            and_(properties_table.c.vertex_id == key, properties_table.c.key == op.key)
                        )
                    )
                elif op.kind == "add_vertex":
                    _write_vertex(self._conn, op.value)
                elif op.kind == "add_edge":
                    _ensure_vertex(self._conn, key)
                    _append_edge(self._conn, key, op.value)
                else:
                    raise ValueError(f"unknown write op kind: {op.kind!r}")

    def _release(self) -> None:
        self._conn.close()


class SqlGraphStore(BaseGraphStore):
    """Graph store on any SQLAlchemy-supported database."""

    name = "sql"
    plugin_version = "1.0.0"

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        super().__init__(config)
        if "url" not in self.config:
            raise ValueError("sql graph store requires a 'url' option")
        self.url = str(self.config["url"])
        self._engines: dict[str, Engine] = {}
        self._engines_lock = threading.Lock()
        self._engine = self._engine_for(self.url)

    def _engine_for(self, url: str) -> Engine:
        with self._engines_lock:
            engine = self._engines.get(url)
            if engine is None:
                engine = _create_engine(url)
                self._engines[url] = engine
            return engine

    def connect(self, options: Mapping[str, Any] | None = None) -> SqlConnection:
        url = str((options or {}).get("url", self.url))
        engine = self._engine_for(url)
        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            raise StoreConnectionError(f"graph store {url!r} is unreachable: {e}") from e
        return SqlConnection(conn)

    def shard_of(self, vertex_id: VertexId) -> str | None:
        with self._engine.connect() as conn:
            shard: str | None = conn.execute(
                select(vertices_table.c.shard).where(vertices_table.c.id == _key(vertex_id))
            ).scalar_one_or_none()
        return shard

    def load_vertices(self, vertices: Sequence[Vertex], shard_of: Mapping[VertexId, str] | None = None) -> int:
        with self._engine.begin() as conn:
            for vertex in vertices:
                _write_vertex(conn, vertex, shard_of.get(vertex.id) if shard_of else None)
        return len(vertices)

    def get(self, vertex_id: VertexId) -> Vertex | None:
        """Committed state of one vertex."""
        with self._engine.connect() as conn:
            return _read_vertex(conn, vertex_id)

    def vertices(self) -> dict[VertexId, Vertex]:
        """Committed state of every vertex."""
        with self._engine.connect() as conn:
            ids = [json.loads(row.id) for row in conn.execute(select(vertices_table.c.id))]
            found = {vertex_id: _read_vertex(conn, vertex_id) for vertex_id in ids}
        return {vertex_id: vertex for vertex_id, vertex in found.items() if vertex is not None}

    def close(self) -> None:
        with self._engines_lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
