"""Node records and their attribute sets.

A **node** is a named, addressable record pointing at exactly one stored
content blob (see :mod:`libreta.content`).  Nodes carry a multivalued set
of ``(key, value)`` attributes used for equality lookup.

Saving is an upsert keyed by node id:

- the first save creates the node with ``created_at == updated_at``;
- later saves overwrite ``name``, ``content_hash`` and
  ``content_mimetype``, refresh ``updated_at`` and keep ``created_at``;
- the attribute set is replaced wholesale.  Pairs already present keep
  their original ``created_at``, missing pairs are deleted and new pairs
  are stamped with the save time.

The node row and its attributes are written in one transaction, and the
full-text index follows the node row through the schema triggers.

Usage::

    from libreta.nodes import Node, NodeAttribute, NodeManager

    mgr = NodeManager(storage)
    await mgr.save(Node(id="20240105-143000", name="notes",
                        content_hash=h, content_mimetype="text/plain",
                        attributes=[NodeAttribute("sys.kind", "root")]))
    nodes = await mgr.load(["20240105-143000"])
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from libreta.storage import Storage, checkpoint
from libreta.timestamps import format_timestamp, parse_timestamp, utcnow

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NODE_ATTR_KIND = "sys.kind"
"""Attribute key describing what role a node plays."""

NODE_ATTR_KIND_ROOT = "root"
"""``sys.kind`` value marking a top-level node."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class NodeAttribute:
    """One ``(key, value)`` fact attached to a node.

    ``created_at`` is ignored on save and filled in on load.
    """

    key: str
    value: str
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class Node:
    """In-memory representation of a node row plus its attributes.

    Parameters
    ----------
    id:
        Caller- or generator-assigned identifier, stable for the node's life.
    name:
        Display name; always full-text indexed.
    content_hash:
        Hash of a blob previously stored with
        :meth:`~libreta.content.ContentStore.save`.
    content_mimetype:
        MIME type of the content.  Text types (see
        :func:`~libreta.schema.is_text_mimetype`) have their content indexed.
    content_length:
        Byte length of the referenced blob, measured on load.  Ignored on save.
    created_at, updated_at, deleted_at:
        Set by the store; ignored on save.
    attributes:
        The node's full attribute set.
    """

    id: str
    name: str
    content_hash: str
    content_mimetype: str
    content_length: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    attributes: list[NodeAttribute] = field(default_factory=list)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(cls, row: Any, attributes: list[NodeAttribute] | None = None) -> Node:
        """Create a :class:`Node` from a joined ``node``/``node_content`` row."""
        return cls(
            id=row["id"],
            name=row["name"],
            content_hash=row["content_hash"],
            content_mimetype=row["content_mimetype"],
            content_length=int(row["content_length"] or 0),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            deleted_at=parse_timestamp(row["deleted_at"]),
            attributes=list(attributes or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-friendly dict (timestamps as ISO-8601)."""
        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "name": self.name,
            "content_hash": self.content_hash,
            "content_mimetype": self.content_mimetype,
            "content_length": self.content_length,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deleted_at": _iso(self.deleted_at),
            "is_deleted": self.is_deleted,
            "attributes": [a.to_dict() for a in self.attributes],
        }


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _validate_node(node: Node) -> None:
    """Raise :class:`ValueError` if *node* cannot be saved."""
    if not node.id:
        raise ValueError("Node id must not be empty")
    if not node.content_hash:
        raise ValueError(f"Node {node.id!r} has no content hash")
    if not node.content_mimetype:
        raise ValueError(f"Node {node.id!r} has no content mimetype")
    for attr in node.attributes:
        if not attr.key:
            raise ValueError(f"Node {node.id!r} has an attribute with an empty key")


def _unique_ids(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


# ---------------------------------------------------------------------------
# Node manager
# ---------------------------------------------------------------------------


class NodeManager:
    """Async save/load manager for nodes and their attributes.

    Parameters
    ----------
    storage:
        An initialised :class:`~libreta.storage.Storage` instance.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save(self, node: Node) -> None:
        """Create or update *node* and replace its attribute set.

        Both the node row and its attributes are written in one transaction;
        if either fails nothing is changed.

        Raises
        ------
        ValueError
            If *node* is missing an id, content hash or mimetype.
        ConstraintViolation
            If ``content_hash`` does not reference stored content.
        """
        _validate_node(node)
        pairs = list(dict.fromkeys((a.key, a.value) for a in node.attributes))

        def _do_save(conn: sqlite3.Connection) -> None:
            now = format_timestamp(utcnow())
            conn.execute(
                """
                INSERT INTO node
                    (id, name, content_hash, content_mimetype, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    content_hash = excluded.content_hash,
                    content_mimetype = excluded.content_mimetype,
                    updated_at = excluded.updated_at
                """,
                (node.id, node.name, node.content_hash, node.content_mimetype, now, now),
            )
            checkpoint()

            # Replace the attribute set; surviving pairs keep created_at.
            if pairs:
                conn.execute(
                    """
                    WITH keep(key, value) AS (VALUES {values})
                    DELETE FROM node_attribute
                    WHERE node_id = ?
                      AND NOT EXISTS (
                          SELECT 1 FROM keep
                          WHERE keep.key = node_attribute.key
                            AND keep.value = node_attribute.value
                      )
                    """.format(values=",".join("(?, ?)" for _ in pairs)),
                    (*(item for pair in pairs for item in pair), node.id),
                )
                checkpoint()
                conn.executemany(
                    """
                    INSERT INTO node_attribute (node_id, key, value, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT DO NOTHING
                    """,
                    [(node.id, key, value, now) for key, value in pairs],
                )
            else:
                conn.execute(
                    "DELETE FROM node_attribute WHERE node_id = ?",
                    (node.id,),
                )

        await self._storage.execute_transaction(_do_save)
        log.debug("Saved node %s (%d attributes)", node.id, len(pairs))

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(self, ids: Iterable[str]) -> dict[str, Node]:
        """Batch-load nodes with their attributes.

        Uses two queries regardless of how many ids are requested, both in
        the same read snapshot.  Ids that do not exist are absent from the
        result.  Soft-deleted nodes are included with ``deleted_at`` set.

        Returns
        -------
        dict[str, Node]
            Mapping of node id to node.
        """
        wanted = _unique_ids(ids)
        if not wanted:
            return {}

        def _do_load(conn: sqlite3.Connection) -> dict[str, Node]:
            id_values = ",".join("(?)" for _ in wanted)

            attrs: dict[str, list[NodeAttribute]] = {}
            for row in conn.execute(
                f"""
                WITH ids(id) AS (VALUES {id_values})
                SELECT node_id, key, value, created_at
                FROM node_attribute
                WHERE node_id IN (SELECT id FROM ids)
                ORDER BY node_id, created_at, key, value
                """,
                wanted,
            ):
                attrs.setdefault(row["node_id"], []).append(
                    NodeAttribute(
                        key=row["key"],
                        value=row["value"],
                        created_at=parse_timestamp(row["created_at"]),
                    )
                )

            rows = conn.execute(
                f"""
                WITH ids(id) AS (VALUES {id_values})
                SELECT n.id, n.name, n.content_hash, n.content_mimetype,
                       n.created_at, n.updated_at, n.deleted_at,
                       length(c.content) AS content_length
                FROM node AS n
                JOIN node_content AS c ON c.hash = n.content_hash
                WHERE n.id IN (SELECT id FROM ids)
                """,
                wanted,
            ).fetchall()
            return {row["id"]: Node.from_row(row, attrs.get(row["id"])) for row in rows}

        return await self._storage.read(_do_load)

    # ------------------------------------------------------------------
    # Soft delete
    # ------------------------------------------------------------------

    async def soft_delete(self, ids: Iterable[str]) -> int:
        """Mark live nodes as deleted without removing their rows.

        Soft-deleted nodes drop out of attribute lookup and full-text
        search but can still be loaded by id.  Already-deleted and unknown
        ids are skipped.

        Returns
        -------
        int
            How many nodes were newly marked deleted.
        """
        wanted = _unique_ids(ids)
        if not wanted:
            return 0

        def _do_soft_delete(conn: sqlite3.Connection) -> int:
            now = format_timestamp(utcnow())
            cursor = conn.execute(
                f"""
                WITH ids(id) AS (VALUES {",".join("(?)" for _ in wanted)})
                UPDATE node SET deleted_at = ?, updated_at = ?
                WHERE id IN (SELECT id FROM ids) AND deleted_at IS NULL
                """,
                (*wanted, now, now),
            )
            return cursor.rowcount

        count = await self._storage.execute_transaction(_do_soft_delete)
        if count:
            log.info("Soft-deleted %d node(s)", count)
        return count
