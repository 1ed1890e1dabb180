"""On-disk schema for the libreta store.

The database holds five tables and one FTS5 index:

- ``schema_version`` -- one row per stamped version.
- ``node_content`` -- content-addressed blobs keyed by SHA-256 hex digest.
- ``node`` -- named records pointing at exactly one blob.
- ``node_attribute`` -- multivalued ``(key, value)`` facts per node.
- ``edge`` -- directed, relation-typed links between nodes.
- ``node_fts_idx`` -- trigram FTS5 index over node name and text content,
  an external-content table over ``node_fts_view`` kept in sync by the
  ``node_ai`` / ``node_ad`` / ``node_au`` triggers.

Only one schema version exists.  :func:`ensure_schema` creates it on a
fresh file and refuses any other stamped version.
"""

from __future__ import annotations

import logging
import sqlite3

from libreta.errors import SchemaMismatch
from libreta.timestamps import format_timestamp, utcnow

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
"""The only schema version this build reads and writes."""


def is_text_mimetype(mimetype: str | None) -> bool:
    """Return whether content of *mimetype* is indexed as text.

    ``text/*`` and ``application/json`` are text; parameters such as
    ``; charset=utf-8`` are allowed.  Everything else is indexed with an
    empty content string, so only the node name is searchable.
    """
    if not mimetype:
        return False
    if mimetype.startswith("text/"):
        return True
    return mimetype.split(";", 1)[0].strip() == "application/json"


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE schema_version (
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (version)
) STRICT;

-- Content-addressed blobs.  Rows are written once and never updated
-- except for the placeholder-to-digest rename inside the saving transaction.
CREATE TABLE node_content (
    hash TEXT NOT NULL,
    content BLOB NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (hash)
) STRICT;

-- fts_rowid aliases the rowid and keys the full-text index.
CREATE TABLE node (
    fts_rowid INTEGER,
    id TEXT NOT NULL,
    name TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    content_mimetype TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT NULL,
    FOREIGN KEY (content_hash) REFERENCES node_content(hash),
    UNIQUE (id),
    PRIMARY KEY (fts_rowid)
) STRICT;

CREATE TABLE node_attribute (
    node_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (node_id) REFERENCES node(id),
    PRIMARY KEY (node_id, key, value)
) STRICT;

CREATE INDEX node_attribute_key_value_idx ON node_attribute(key, value);

CREATE TABLE edge (
    src_id TEXT NOT NULL,
    dst_id TEXT NOT NULL,
    relation TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (src_id) REFERENCES node(id),
    FOREIGN KEY (dst_id) REFERENCES node(id),
    PRIMARY KEY (src_id, dst_id, relation)
) STRICT;

CREATE INDEX edge_dst_rel_idx ON edge(dst_id, relation);

-- Full-text search (external content, synced via triggers)
CREATE VIEW node_fts_view AS
    SELECT
        n.fts_rowid AS fts_rowid,
        n.id AS id,
        n.name AS name,
        IIF(is_text_mimetype(n.content_mimetype), CAST(c.content AS TEXT), '') AS content
    FROM node AS n
    INNER JOIN node_content AS c ON n.content_hash = c.hash;

CREATE VIRTUAL TABLE node_fts_idx USING fts5(
    id UNINDEXED, name, content,
    content='node_fts_view', content_rowid='fts_rowid', tokenize='trigram'
);

CREATE TRIGGER node_ai AFTER INSERT ON node BEGIN
    INSERT INTO node_fts_idx(rowid, name, content)
        SELECT new.fts_rowid, new.name,
               IIF(is_text_mimetype(new.content_mimetype), CAST(c.content AS TEXT), '')
        FROM node_content AS c
        WHERE c.hash = new.content_hash;
END;

CREATE TRIGGER node_ad AFTER DELETE ON node BEGIN
    INSERT INTO node_fts_idx(node_fts_idx, rowid, name, content)
        SELECT 'delete', old.fts_rowid, old.name,
               IIF(is_text_mimetype(old.content_mimetype), CAST(c.content AS TEXT), '')
        FROM node_content AS c
        WHERE c.hash = old.content_hash;
END;

CREATE TRIGGER node_au AFTER UPDATE ON node BEGIN
    INSERT INTO node_fts_idx(node_fts_idx, rowid, name, content)
        SELECT 'delete', old.fts_rowid, old.name,
               IIF(is_text_mimetype(old.content_mimetype), CAST(c.content AS TEXT), '')
        FROM node_content AS c
        WHERE c.hash = old.content_hash;
    INSERT INTO node_fts_idx(rowid, name, content)
        SELECT new.fts_rowid, new.name,
               IIF(is_text_mimetype(new.content_mimetype), CAST(c.content AS TEXT), '')
        FROM node_content AS c
        WHERE c.hash = new.content_hash;
END;
"""

CORE_TABLES: tuple[str, ...] = (
    "schema_version",
    "node_content",
    "node",
    "node_attribute",
    "edge",
    "node_fts_idx",
)

FTS_TRIGGERS: tuple[str, ...] = ("node_ai", "node_ad", "node_au")


# ---------------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the highest stamped schema version, or ``0`` for a fresh file."""
    try:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    except sqlite3.OperationalError as exc:
        if "no such table: schema_version" in str(exc):
            return 0
        raise
    if row is None or row[0] is None:
        return 0
    return int(row[0])


def ensure_schema(conn: sqlite3.Connection, allow_upgrade: bool = False) -> int:
    """Verify the stamped schema version, creating the schema on a fresh file.

    Parameters
    ----------
    conn:
        The write connection (autocommit mode; this function manages its
        own transaction).
    allow_upgrade:
        Reserved for a future migration path.  No upgrade exists yet, so a
        mismatched version is refused whether or not this is set.

    Returns
    -------
    int
        The schema version in effect.

    Raises
    ------
    SchemaMismatch
        If the file carries a non-zero version other than
        :data:`SCHEMA_VERSION`.
    """
    version = get_schema_version(conn)
    if version == SCHEMA_VERSION:
        return version
    if version == 0:
        _create_schema(conn)
        return SCHEMA_VERSION
    if allow_upgrade:
        log.warning(
            "Schema upgrade from %d to %d requested but no upgrade path exists",
            version,
            SCHEMA_VERSION,
        )
    raise SchemaMismatch(version, SCHEMA_VERSION)


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create every table, index, view, FTS table and trigger in one transaction."""
    # executescript() commits any pending transaction first, so the BEGIN
    # has to be part of the script itself.
    try:
        conn.executescript("BEGIN IMMEDIATE;\n" + _SCHEMA_SQL)
        conn.execute(
            "INSERT INTO schema_version (version, created_at) VALUES (?, ?)",
            (SCHEMA_VERSION, format_timestamp(utcnow())),
        )
        conn.commit()
    except BaseException:
        if conn.in_transaction:
            conn.rollback()
        raise
    log.info("Created schema version %d", SCHEMA_VERSION)
