"""Content-addressed blob storage.

Blobs live in the ``node_content`` table keyed by the hex SHA-256 digest of
their bytes.  Saving identical bytes twice yields the same hash and a
single stored row; an existing row is never modified.

Because the digest is only known once the input has been read in full,
:meth:`ContentStore.save` stages the blob under a throwaway placeholder key
and renames it to the digest inside the same transaction.  A blob is
therefore never addressable under its final hash before it is complete.
If the rename collides with an existing row, the bytes were already stored
and the save succeeds with that hash.
"""

from __future__ import annotations

import hashlib
import io
import logging
import sqlite3
import uuid
from typing import BinaryIO

from libreta.errors import NotFound
from libreta.storage import Storage, checkpoint
from libreta.timestamps import format_timestamp, utcnow

log = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024

_TMP_PREFIX = "tmp:"


def _read_and_hash(source: bytes | bytearray | memoryview | BinaryIO) -> tuple[bytes, str]:
    """Read *source* once, returning its bytes and hex SHA-256 digest."""
    digest = hashlib.sha256()
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        digest.update(data)
        return data, digest.hexdigest()

    buf = io.BytesIO()
    while True:
        chunk = source.read(_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
        buf.write(chunk)
    return buf.getvalue(), digest.hexdigest()


class ContentStore:
    """Save and load immutable content blobs.

    Parameters
    ----------
    storage:
        An initialised :class:`~libreta.storage.Storage` instance.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def save(self, source: bytes | bytearray | memoryview | BinaryIO) -> str:
        """Store *source* and return its hex SHA-256 hash.

        *source* is either a bytes-like object or a binary file-like object,
        which is read to EOF in chunks while the digest is computed.

        Idempotent: saving the same bytes again returns the same hash and
        stores nothing new.
        """
        def _do_save(conn: sqlite3.Connection) -> str:
            now = format_timestamp(utcnow())
            tmp_hash = f"{_TMP_PREFIX}{now}:{uuid.uuid4().hex}"

            data, content_hash = _read_and_hash(source)
            checkpoint()
            conn.execute(
                "INSERT INTO node_content (hash, content, created_at) VALUES (?, ?, ?)",
                (tmp_hash, data, now),
            )
            checkpoint()
            try:
                conn.execute(
                    "UPDATE node_content SET hash = ? WHERE hash = ?",
                    (content_hash, tmp_hash),
                )
            except sqlite3.IntegrityError:
                # Identical bytes already stored; drop the staged copy.
                conn.execute(
                    "DELETE FROM node_content WHERE hash = ?",
                    (tmp_hash,),
                )
                log.debug("Content %s already stored", content_hash)
                return content_hash
            log.debug("Stored content %s (%d bytes)", content_hash, len(data))
            return content_hash

        return await self._storage.execute_transaction(_do_save)

    async def load(self, content_hash: str) -> bytes:
        """Return the bytes stored under *content_hash*.

        Raises
        ------
        NotFound
            If no blob has that hash.
        """
        rows = await self._storage.execute(
            "SELECT content FROM node_content WHERE hash = ?",
            (content_hash,),
        )
        if not rows:
            raise NotFound(f"content {content_hash!r} not found")
        return bytes(rows[0]["content"])

    async def open(self, content_hash: str) -> io.BytesIO:
        """Like :meth:`load`, wrapped in a readable binary stream."""
        return io.BytesIO(await self.load(content_hash))

    async def exists(self, content_hash: str) -> bool:
        """Return whether a blob with *content_hash* is stored."""
        rows = await self._storage.execute(
            "SELECT 1 FROM node_content WHERE hash = ?",
            (content_hash,),
        )
        return bool(rows)
