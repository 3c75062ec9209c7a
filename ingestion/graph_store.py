"""SQLite-backed node arena used as the ingestion graph store.

Nodes live in one table indexed by a stable integer id. A node gains types by
collecting labels: specializing a generic node into a repository artifact adds
a label and properties to the same row instead of copying it. Edges are typed,
directed, and unique per (source, type, target).

sqlite-utils creates the schema and serves reads. Writes go through raw SQL on
the shared connection because sqlite-utils' insert helpers commit on their own,
which would break the all-or-nothing guarantee of `transaction()`.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, cast

import sqlite_utils

from types_models import Edge, Node

logger = logging.getLogger(__name__)

NODES_TABLE = "nodes"
EDGES_TABLE = "edges"

_HAS_LABEL = "EXISTS (SELECT 1 FROM json_each(labels) WHERE json_each.value = ?)"
_PROPERTY_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _row_to_node(row: Mapping[str, Any]) -> Node:
    return Node(
        id=int(row["id"]),
        key=row["key"],
        labels=frozenset(json.loads(row["labels"])),
        properties=json.loads(row["properties"]),
    )


def _row_to_edge(row: Mapping[str, Any]) -> Edge:
    return Edge(
        id=int(row["id"]),
        source=int(row["source"]),
        type=str(row["type"]),
        target=int(row["target"]),
        properties=json.loads(row["properties"]),
    )


class SqliteGraphStore:
    """Graph store over a single SQLite database file (or memory)."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        super().__init__()
        if db_path is None:
            self._db = sqlite_utils.Database(memory=True)
        else:
            self._db = sqlite_utils.Database(str(db_path))
        self._depth = 0
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        table_names = self._db.table_names()
        if NODES_TABLE not in table_names:
            nodes = cast(sqlite_utils.db.Table, self._db[NODES_TABLE])
            nodes.create(
                {"id": int, "key": str, "labels": str, "properties": str},
                pk="id",
                not_null={"labels", "properties"},
            )
            # SQLite treats NULLs as distinct, so keyless nodes never collide.
            nodes.create_index(["key"], unique=True)
        if EDGES_TABLE not in table_names:
            edges = cast(sqlite_utils.db.Table, self._db[EDGES_TABLE])
            edges.create(
                {"id": int, "source": int, "type": str, "target": int, "properties": str},
                pk="id",
                not_null={"source", "type", "target", "properties"},
            )
            edges.create_index(["source", "type", "target"], unique=True)
            edges.create_index(["target"])

    # -- transactions -------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def begin(self) -> None:
        if self._depth == 0 and not self._db.conn.in_transaction:
            self._db.conn.execute("BEGIN")
        self._depth += 1

    def commit(self) -> None:
        if self._depth == 0:
            raise RuntimeError("commit() called without an open transaction")
        self._depth -= 1
        if self._depth == 0:
            self._db.conn.commit()

    def rollback(self) -> None:
        if self._depth == 0:
            raise RuntimeError("rollback() called without an open transaction")
        # Rolling back an inner scope aborts the whole unit of work.
        self._depth = 0
        self._db.conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit every write in the block, or none of them."""
        self.begin()
        try:
            yield
        except BaseException:
            if self._depth:
                self.rollback()
            raise
        else:
            self.commit()

    def _execute(self, sql: str, params: Iterable[Any]) -> int:
        if self._depth:
            cursor = self._db.execute(sql, list(params))
            return int(cursor.lastrowid or 0)
        with self.transaction():
            cursor = self._db.execute(sql, list(params))
            return int(cursor.lastrowid or 0)

    # -- nodes --------------------------------------------------------

    def get(self, node_id: int) -> Node | None:
        rows = self._db[NODES_TABLE].rows_where("id = ?", [node_id], limit=1)
        for row in rows:
            return _row_to_node(row)
        return None

    def _require(self, node_id: int) -> Node:
        node = self.get(node_id)
        if node is None:
            raise KeyError(f"Node {node_id} does not exist")
        return node

    def find_by_key(self, label: str, key: str) -> Node | None:
        """Return the node with the given unique key if it carries ``label``."""
        rows = self._db[NODES_TABLE].rows_where("key = ?", [key], limit=1)
        for row in rows:
            node = _row_to_node(row)
            return node if node.has_label(label) else None
        return None

    def find_all(self, label: str, **properties: Any) -> list[Node]:
        """Return nodes carrying ``label`` whose properties equal the given values."""
        clauses = [_HAS_LABEL]
        args: list[Any] = [label]
        for name, value in properties.items():
            if not _PROPERTY_NAME.fullmatch(name):
                raise ValueError(f"Invalid property name: {name!r}")
            clauses.append(f"json_extract(properties, '$.{name}') = ?")
            args.append(value)
        rows = self._db[NODES_TABLE].rows_where(
            " AND ".join(clauses), args, order_by="id"
        )
        return [_row_to_node(row) for row in rows]

    def count(self, label: str) -> int:
        rows = self._db.execute(
            f"SELECT COUNT(*) FROM {NODES_TABLE} WHERE {_HAS_LABEL}", [label]
        ).fetchone()
        return int(rows[0])

    def create(
        self,
        label: str | Iterable[str],
        *,
        key: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Node:
        labels = frozenset([label] if isinstance(label, str) else label)
        if not labels:
            raise ValueError("A node needs at least one label")
        props = dict(properties or {})
        node_id = self._execute(
            f"INSERT INTO {NODES_TABLE} (key, labels, properties) VALUES (?, ?, ?)",
            [key, _dumps(sorted(labels)), _dumps(props)],
        )
        return Node(id=node_id, key=key, labels=labels, properties=props)

    def specialize(
        self,
        node_id: int,
        label: str,
        *,
        key: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Node:
        """Add ``label`` (and optionally a key and properties) to an existing node."""
        node = self._require(node_id)
        if key is not None and node.key is not None and node.key != key:
            raise ValueError(
                f"Node {node_id} already has key {node.key!r}, cannot re-key to {key!r}"
            )
        labels = node.labels | {label}
        props = {**node.properties, **(properties or {})}
        new_key = key if key is not None else node.key
        _ = self._execute(
            f"UPDATE {NODES_TABLE} SET key = ?, labels = ?, properties = ? WHERE id = ?",
            [new_key, _dumps(sorted(labels)), _dumps(props), node_id],
        )
        return Node(id=node_id, key=new_key, labels=labels, properties=props)

    def update(self, node_id: int, properties: Mapping[str, Any]) -> Node:
        node = self._require(node_id)
        props = {**node.properties, **properties}
        _ = self._execute(
            f"UPDATE {NODES_TABLE} SET properties = ? WHERE id = ?",
            [_dumps(props), node_id],
        )
        return node.model_copy(update={"properties": props})

    # -- edges --------------------------------------------------------

    def find_edge(self, source: int, type: str, target: int) -> Edge | None:
        rows = self._db[EDGES_TABLE].rows_where(
            "source = ? AND type = ? AND target = ?", [source, type, target], limit=1
        )
        for row in rows:
            return _row_to_edge(row)
        return None

    def edges_from(self, source: int, type: str) -> list[Edge]:
        rows = self._db[EDGES_TABLE].rows_where(
            "source = ? AND type = ?", [source, type], order_by="id"
        )
        return [_row_to_edge(row) for row in rows]

    def edges_to(self, target: int, type: str) -> list[Edge]:
        rows = self._db[EDGES_TABLE].rows_where(
            "target = ? AND type = ?", [target, type], order_by="id"
        )
        return [_row_to_edge(row) for row in rows]

    def create_edge(
        self,
        source: int,
        type: str,
        target: int,
        properties: Mapping[str, Any] | None = None,
    ) -> Edge:
        _ = self._require(source)
        _ = self._require(target)
        props = dict(properties or {})
        edge_id = self._execute(
            f"INSERT INTO {EDGES_TABLE} (source, type, target, properties) VALUES (?, ?, ?, ?)",
            [source, type, target, _dumps(props)],
        )
        return Edge(id=edge_id, source=source, type=type, target=target, properties=props)

    def update_edge(self, edge: Edge, properties: Mapping[str, Any]) -> Edge:
        props = {**edge.properties, **properties}
        _ = self._execute(
            f"UPDATE {EDGES_TABLE} SET properties = ? WHERE id = ?",
            [_dumps(props), edge.id],
        )
        return edge.model_copy(update={"properties": props})

    def close(self) -> None:
        self._db.close()


__all__ = ["SqliteGraphStore", "NODES_TABLE", "EDGES_TABLE"]
