"""Read-only node lookups: attribute equality and full-text search.

Full-text search runs against ``node_fts_idx``, an FTS5 table with the
``trigram`` tokenizer kept in sync with the ``node`` table by triggers, so
there is never a separate reindex step.  Matching and ranking are FTS5's
own; this module only builds the query and filters out soft-deleted nodes.
"""

from __future__ import annotations

import logging

from libreta.storage import Storage

log = logging.getLogger(__name__)


class QueryEngine:
    """Node id lookups over the read connections.

    Parameters
    ----------
    storage:
        An initialised :class:`~libreta.storage.Storage` instance.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def by_attribute(self, key: str, value: str) -> list[str]:
        """Return ids of live nodes carrying the exact ``(key, value)`` pair.

        The order is unspecified.
        """
        rows = await self._storage.execute(
            """
            SELECT a.node_id
            FROM node_attribute AS a
            JOIN node AS n ON n.id = a.node_id
            WHERE a.key = ? AND a.value = ? AND n.deleted_at IS NULL
            """,
            (key, value),
        )
        return [row["node_id"] for row in rows]

    async def full_text_search(self, term: str, limit: int = 20) -> list[str]:
        """Return up to *limit* ids of live nodes matching *term*, best first.

        *term* is an FTS5 query string over node names and text content
        (supports ``AND``, ``OR``, ``NOT`` and ``"phrase"`` matching).  With
        the trigram tokenizer each bare word must be at least three
        characters long to match anything.  Ties in rank are broken by the
        node's row id, so the order is stable for a given index state.

        Raises
        ------
        ValueError
            If *limit* is negative.
        InvalidQuery
            If FTS5 cannot parse *term* (e.g. an unbalanced quote).
        """
        if limit < 0:
            raise ValueError(f"Search limit must not be negative, got {limit}")
        if not term or not term.strip() or limit == 0:
            return []

        rows = await self._storage.execute(
            """
            SELECT n.id
            FROM node_fts_idx AS f
            JOIN node AS n ON n.fts_rowid = f.rowid
            WHERE node_fts_idx MATCH ?
              AND n.deleted_at IS NULL
            ORDER BY f.rank, f.rowid
            LIMIT ?
            """,
            (term, limit),
        )
        return [row["id"] for row in rows]
