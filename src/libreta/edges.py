"""Directed, relation-typed edges between nodes.

An **edge** is a ``(src_id, dst_id, relation)`` triple; the triple is the
key, so two nodes may be linked by several relations at once.  Both
endpoints must be existing nodes.  The relation is an open string; the
kinds the application uses today are:

- **child** -- hierarchical containment (``src`` is the child of ``dst``).
- **link** -- a free reference from one node to another.
- **chain** -- ordered sequence membership.

Adding an existing triple and removing a missing one are both no-ops.

Usage::

    from libreta.edges import Edge, EdgeManager, EDGE_REL_CHILD

    mgr = EdgeManager(storage)
    await mgr.add_many([Edge(child_id, parent_id, EDGE_REL_CHILD)])
    edges = await mgr.for_nodes([parent_id])
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from libreta.storage import Storage
from libreta.timestamps import format_timestamp, parse_timestamp, utcnow

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EDGE_REL_CHILD = "child"
EDGE_REL_LINK = "link"
EDGE_REL_CHAIN = "chain"


# ---------------------------------------------------------------------------
# Edge dataclass
# ---------------------------------------------------------------------------


@dataclass
class Edge:
    """In-memory representation of a single edge row.

    ``created_at`` is ignored on add and filled in on load.
    """

    src_id: str
    dst_id: str
    relation: str
    created_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.src_id, self.dst_id, self.relation)

    @classmethod
    def from_row(cls, row: Any) -> Edge:
        return cls(
            src_id=row["src_id"],
            dst_id=row["dst_id"],
            relation=row["relation"],
            created_at=parse_timestamp(row["created_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "src_id": self.src_id,
            "dst_id": self.dst_id,
            "relation": self.relation,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _validate_edge(edge: Edge) -> None:
    """Raise :class:`ValueError` if any part of the triple is empty."""
    if not edge.src_id or not edge.dst_id:
        raise ValueError(f"Edge endpoints must not be empty: {edge.key!r}")
    if not edge.relation:
        raise ValueError(f"Edge relation must not be empty: {edge.key!r}")


def _unique_keys(edges: Iterable[Edge]) -> list[tuple[str, str, str]]:
    keys: dict[tuple[str, str, str], None] = {}
    for edge in edges:
        _validate_edge(edge)
        keys[edge.key] = None
    return list(keys)


# ---------------------------------------------------------------------------
# Edge manager
# ---------------------------------------------------------------------------


class EdgeManager:
    """Async manager for graph edges.

    Parameters
    ----------
    storage:
        An initialised :class:`~libreta.storage.Storage` instance.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def add_many(self, edges: Iterable[Edge]) -> None:
        """Insert every triple in one statement, skipping existing ones.

        Raises
        ------
        ConstraintViolation
            If an endpoint is not an existing node.  Nothing is inserted.
        """
        keys = _unique_keys(edges)
        if not keys:
            return

        def _do_add(conn: sqlite3.Connection) -> int:
            now = format_timestamp(utcnow())
            cursor = conn.execute(
                f"""
                INSERT INTO edge (src_id, dst_id, relation, created_at)
                VALUES {",".join("(?, ?, ?, ?)" for _ in keys)}
                ON CONFLICT DO NOTHING
                """,
                [item for key in keys for item in (*key, now)],
            )
            return cursor.rowcount

        added = await self._storage.execute_transaction(_do_add)
        log.debug("Added %d of %d edge(s)", added, len(keys))

    async def remove_many(self, edges: Iterable[Edge]) -> None:
        """Delete every matching triple in one statement; missing ones are skipped."""
        keys = _unique_keys(edges)
        if not keys:
            return

        def _do_remove(conn: sqlite3.Connection) -> int:
            cursor = conn.execute(
                f"""
                WITH remove(src_id, dst_id, relation) AS (
                    VALUES {",".join("(?, ?, ?)" for _ in keys)}
                )
                DELETE FROM edge WHERE EXISTS (
                    SELECT 1 FROM remove
                    WHERE edge.src_id = remove.src_id
                      AND edge.dst_id = remove.dst_id
                      AND edge.relation = remove.relation
                )
                """,
                [item for key in keys for item in key],
            )
            return cursor.rowcount

        removed = await self._storage.execute_transaction(_do_remove)
        log.debug("Removed %d of %d edge(s)", removed, len(keys))

    async def for_nodes(self, ids: Iterable[str]) -> list[Edge]:
        """Return every edge with either endpoint in *ids*, unordered."""
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []

        rows = await self._storage.execute(
            f"""
            WITH ids(id) AS (VALUES {",".join("(?)" for _ in wanted)})
            SELECT src_id, dst_id, relation, created_at
            FROM edge
            WHERE src_id IN (SELECT id FROM ids) OR dst_id IN (SELECT id FROM ids)
            """,
            tuple(wanted),
        )
        return [Edge.from_row(r) for r in rows]
