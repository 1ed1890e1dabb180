"""Exception taxonomy for the libreta store.

Every failure raised by a store operation derives from :class:`StorageError`
so callers can catch the whole family, while the subclasses let a protocol
layer tell "not found" and "bad request" apart from internal failures.
Each subclass also inherits from the closest builtin exception, so generic
handlers (``except LookupError``, ``except TimeoutError``) keep working.
"""

from __future__ import annotations

import sqlite3


class StorageError(Exception):
    """Base class for all store failures."""


class NotFound(StorageError, LookupError):
    """The requested content hash or node does not exist."""


class ConstraintViolation(StorageError, ValueError):
    """A write would break a uniqueness or referential-integrity rule."""


class InvalidQuery(StorageError, ValueError):
    """A full-text search term the index cannot parse."""


class SchemaMismatch(StorageError):
    """The database file carries a schema version this build cannot use."""

    def __init__(self, found: int, expected: int) -> None:
        super().__init__(
            f"schema upgrade required from {found} to {expected}"
        )
        self.found = found
        self.expected = expected


class ContentionTimeout(StorageError, TimeoutError):
    """The write lock or a read connection was not free within the busy timeout.

    Transient: the operation did not run and is safe to retry.
    """


class IOFailure(StorageError, OSError):
    """The storage medium failed (disk, permissions, corrupt file)."""


_BUSY_MARKERS = ("database is locked", "database table is locked", "database is busy")
_QUERY_MARKERS = ("malformed match", "unterminated string")


def translate_sqlite_error(exc: BaseException) -> BaseException:
    """Map a ``sqlite3``/OS exception onto the store's taxonomy.

    Exceptions that are already :class:`StorageError` (or not storage
    related at all) are returned unchanged.  The caller is expected to
    ``raise translate_sqlite_error(exc) from exc``.
    """
    if isinstance(exc, StorageError):
        return exc
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintViolation(str(exc))
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        if any(marker in message for marker in _BUSY_MARKERS):
            return ContentionTimeout(str(exc))
        if message.startswith("fts5:") or any(m in message for m in _QUERY_MARKERS):
            return InvalidQuery(str(exc))
        return IOFailure(str(exc))
    if isinstance(exc, (sqlite3.DatabaseError, OSError)):
        return IOFailure(str(exc))
    return exc
