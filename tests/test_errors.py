"""Tests for the sqlite3-to-StorageError translation."""

from __future__ import annotations

import sqlite3

import pytest

from libreta.errors import (
    ConstraintViolation,
    ContentionTimeout,
    InvalidQuery,
    IOFailure,
    NotFound,
    SchemaMismatch,
    StorageError,
    translate_sqlite_error,
)


class TestTranslate:
    """translate_sqlite_error() maps driver errors onto the taxonomy."""

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (sqlite3.IntegrityError("FOREIGN KEY constraint failed"), ConstraintViolation),
            (sqlite3.OperationalError("database is locked"), ContentionTimeout),
            (sqlite3.OperationalError("fts5: syntax error near \"\""), InvalidQuery),
            (sqlite3.OperationalError("unterminated string"), InvalidQuery),
            (sqlite3.OperationalError("disk I/O error"), IOFailure),
            (sqlite3.DatabaseError("file is not a database"), IOFailure),
            (PermissionError("denied"), IOFailure),
        ],
    )
    def test_mapping(self, exc: BaseException, expected: type) -> None:
        translated = translate_sqlite_error(exc)
        assert isinstance(translated, expected)
        assert str(exc) in str(translated)

    def test_storage_error_unchanged(self) -> None:
        exc = NotFound("x")
        assert translate_sqlite_error(exc) is exc

    def test_unrelated_unchanged(self) -> None:
        exc = KeyError("x")
        assert translate_sqlite_error(exc) is exc


class TestHierarchy:
    """Every error is a StorageError and a sensible builtin."""

    def test_builtin_bases(self) -> None:
        assert issubclass(NotFound, LookupError)
        assert issubclass(ConstraintViolation, ValueError)
        assert issubclass(InvalidQuery, ValueError)
        assert issubclass(ContentionTimeout, TimeoutError)
        assert issubclass(IOFailure, OSError)

    def test_schema_mismatch_message(self) -> None:
        exc = SchemaMismatch(3, 1)
        assert isinstance(exc, StorageError)
        assert (exc.found, exc.expected) == (3, 1)
        assert str(exc) == "schema upgrade required from 3 to 1"
